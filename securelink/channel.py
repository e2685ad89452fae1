"""
Secure channel: a SessionManager bound to a Transport.

The channel encodes outbound messages into frames for the transport and
routes inbound frames to the session manager. Handshake frames from
trusted peers create responder sessions; data frames are decoded and
handed to the message handler. Only frames that authenticate (or new
handshakes from trusted peers) confirm the sender as the session's
return route. Rejected frames are logged and counted, never raised into
the transport's receive context.
"""

import logging
import threading
from typing import Callable, Dict, List, Optional, Union

from .crypto.keys import KeyPair
from .errors import (
    AuthenticationFailure,
    KeyAgreementFailure,
    MalformedFrame,
    ReplayRejected,
    SessionNotEstablished,
    ValidationFailure,
)
from .protocol.frame import FrameType, is_valid, parse_frame
from .protocol.handshake import BootstrapRecord, parse_handshake_frame
from .protocol.manager import SessionManager
from .protocol.session import DecodedMessage, Session
from .transport.base import Transport


logger = logging.getLogger(__name__)

MessageHandler = Callable[[DecodedMessage], None]


class SecureChannel:
    """
    Glue between a SessionManager and a Transport.

    Attaches itself as the transport's frame handler on creation.
    """

    def __init__(self, manager: SessionManager, transport: Transport,
                 local_keypair: Optional[KeyPair] = None,
                 trusted_peers: Optional[List[BootstrapRecord]] = None):
        """
        Initialize the channel.

        Args:
            manager: Session registry to encode and decode with
            transport: Byte transport to send and receive frames on
            local_keypair: This device's key pair; required to accept handshakes
            trusted_peers: Out-of-band records of peers allowed to open sessions
        """
        self.manager = manager
        self.transport = transport
        self.local_keypair = local_keypair
        self._trusted: List[BootstrapRecord] = list(trusted_peers or [])
        self._message_handler: Optional[MessageHandler] = None
        self._session_handler: Optional[Callable[[Session], None]] = None
        self._stats_lock = threading.Lock()
        self._stats = {
            'frames_sent': 0,
            'frames_received': 0,
            'messages_delivered': 0,
            'handshakes_accepted': 0,
            'malformed': 0,
            'replays': 0,
            'auth_failures': 0,
            'rejected': 0,
        }
        transport.set_frame_handler(self.on_frame_received)

    def set_message_handler(self, handler: Optional[MessageHandler]) -> None:
        """Set the callback for decoded messages."""
        self._message_handler = handler

    def set_session_handler(self, handler: Optional[Callable[[Session], None]]) -> None:
        """Set the callback for sessions created by accepted handshakes."""
        self._session_handler = handler

    def trust(self, record: BootstrapRecord) -> None:
        """Allow the peer in this record to open sessions with us."""
        self._trusted.append(record)

    def _count(self, key: str) -> None:
        with self._stats_lock:
            self._stats[key] += 1

    def get_stats(self) -> Dict[str, int]:
        with self._stats_lock:
            return dict(self._stats)

    # Outbound

    def open_session(self, bootstrap: BootstrapRecord, destination_id: int = 0) -> Session:
        """
        Connect to a peer and send it the handshake frame.

        Args:
            bootstrap: Peer record obtained out of band
            destination_id: Peer device id, 0 if unknown

        Returns:
            Established INITIATOR session

        Raises:
            ValidationFailure: If the channel has no local key pair
            KeyAgreementFailure: If key agreement fails
        """
        if self.local_keypair is None:
            raise ValidationFailure("Opening a session needs a local key pair")

        session = self.manager.connect(bootstrap, self.local_keypair)
        frame = self.manager.handshake_frame(session, self.local_keypair, destination_id)
        if self.transport.send(session.id, frame.to_bytes()):
            self._count('frames_sent')
        else:
            logger.warning(f"Handshake for session {session.id} was not sent")
        return session

    def send_message(self, session: Session, message: Union[str, bytes],
                     destination_id: int) -> bool:
        """
        Encode a message and send it over the transport.

        Args:
            session: Established session
            message: Text or binary message
            destination_id: Recipient device id

        Returns:
            True if the transport accepted the frame

        Raises:
            SessionNotEstablished: If the session has no keys
            ValidationFailure: If the message cannot be encoded
        """
        frame = self.manager.encode(session, message, destination_id)
        sent = self.transport.send(session.id, frame.to_bytes())
        if sent:
            self._count('frames_sent')
        return sent

    # Inbound

    def on_frame_received(self, frame_bytes: bytes) -> Optional[DecodedMessage]:
        """
        Handle one inbound frame from the transport.

        Args:
            frame_bytes: Raw frame bytes

        Returns:
            DecodedMessage for delivered data frames, otherwise None
        """
        self._count('frames_received')
        try:
            frame = parse_frame(frame_bytes)
        except MalformedFrame as e:
            self._count('malformed')
            logger.warning(f"Dropping malformed frame: {e}")
            return None

        if not is_valid(frame):
            self._count('malformed')
            logger.warning(f"Dropping invalid frame for session {frame.session_id}")
            return None

        if frame.type == FrameType.HANDSHAKE:
            self._handle_handshake(frame)
            return None
        if frame.type != FrameType.DATA:
            logger.debug(f"Ignoring frame type {frame.type} for session {frame.session_id}")
            return None

        try:
            message = self.manager.receive(frame)
        except ReplayRejected as e:
            self._count('replays')
            logger.debug(f"Dropping replayed frame: {e}")
            return None
        except AuthenticationFailure as e:
            self._count('auth_failures')
            logger.warning(f"Dropping unauthenticated frame from {frame.source_id}: {e}")
            return None
        except (MalformedFrame, SessionNotEstablished) as e:
            self._count('rejected')
            logger.warning(f"Dropping frame for session {frame.session_id}: {e}")
            return None

        self.transport.confirm_source(frame.session_id)
        self._count('messages_delivered')
        if self._message_handler is not None:
            self._message_handler(message)
        return message

    def _trusted_record_for(self, frame) -> Optional[BootstrapRecord]:
        _, _, announced = parse_handshake_frame(frame)
        for record in self._trusted:
            if record.peer_public_key.matches(announced):
                return record
        return None

    def _handle_handshake(self, frame) -> None:
        if self.local_keypair is None:
            self._count('rejected')
            logger.warning(f"Ignoring handshake for session {frame.session_id}: no local key pair")
            return

        try:
            record = self._trusted_record_for(frame)
            if record is None:
                self._count('rejected')
                logger.warning(f"Ignoring handshake for session {frame.session_id} from untrusted key")
                return
            existing = self.manager.get_session(frame.session_id)
            session = self.manager.accept_handshake(frame, self.local_keypair,
                                                    expected_peer=record)
        except (MalformedFrame, KeyAgreementFailure, SessionNotEstablished,
                ValidationFailure) as e:
            self._count('rejected')
            logger.warning(f"Rejected handshake for session {frame.session_id}: {e}")
            return

        if session is existing:
            logger.debug(f"Ignoring duplicate handshake for session {session.id}")
            return

        self.transport.confirm_source(session.id)
        self._count('handshakes_accepted')
        logger.info(f"Accepted session {session.id} from {record.peer_node_identifier}")
        if self._session_handler is not None:
            self._session_handler(session)

    def close_session(self, session_id: int) -> bool:
        """
        Close one session and drop its return route.

        Returns:
            True if a session was removed
        """
        self.transport.forget_route(session_id)
        return self.manager.close_session(session_id)

    def sweep_expired(self) -> List[int]:
        """Remove expired sessions from the manager and their routes from the transport."""
        removed = self.manager.sweep_expired()
        for session_id in removed:
            self.transport.forget_route(session_id)
        return removed

    def close(self) -> None:
        """Detach from the transport and close it."""
        self.transport.set_frame_handler(None)
        self.transport.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
