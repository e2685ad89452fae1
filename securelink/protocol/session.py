"""
SecureLink session state.

A Session is the mutable state of one secure channel to a peer: its
directional keys, sequence counters and replay window. Identity fields
(id, peer public key, role, creation time) are fixed at creation; only
counters, keys and lifecycle state change afterwards, always under the
session's own lock.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from ..crypto.keys import PeerPublicKey
from ..crypto.kdf import Role
from ..crypto.utils import SecureBytes
from ..errors import SessionExpired, SessionNotEstablished
from .payload import ContentType
from .window import ReplayGuard


class SessionState(Enum):
    CREATED = "created"
    KEYS_ESTABLISHED = "keys_established"
    EXPIRED = "expired"


class Session:
    """
    State for one secure channel.

    Keys are only reachable through keys(), which refuses to hand them out
    before key agreement has completed.
    """

    def __init__(self, session_id: int, peer_public_key: PeerPublicKey, created_at_ms: int,
                 role: Role = Role.INITIATOR, window_size: int = 64):
        """
        Initialize a session in the CREATED state.

        Args:
            session_id: 32-bit non-zero session identifier
            peer_public_key: The peer's public key
            created_at_ms: Creation time in milliseconds since the epoch
            role: Whether this side initiated the handshake
            window_size: Replay window size
        """
        self._id = session_id
        self._peer_public_key = peer_public_key
        self._created_at_ms = created_at_ms
        self._role = role

        self.send_sequence = 0
        self.receive_sequence = 0
        self.replay_guard = ReplayGuard(window_size)
        self.last_activity = created_at_ms / 1000.0
        self.state = SessionState.CREATED
        self.nonce_mask = 0
        self.lock = threading.RLock()

        self._transmit_key: Optional[SecureBytes] = None
        self._receive_key: Optional[SecureBytes] = None

    @property
    def id(self) -> int:
        return self._id

    @property
    def peer_public_key(self) -> PeerPublicKey:
        return self._peer_public_key

    @property
    def created_at_ms(self) -> int:
        return self._created_at_ms

    @property
    def created_at(self) -> float:
        """Creation time in seconds since the epoch."""
        return self._created_at_ms / 1000.0

    @property
    def role(self) -> Role:
        return self._role

    @property
    def established(self) -> bool:
        return self.state is SessionState.KEYS_ESTABLISHED

    @property
    def expired(self) -> bool:
        return self.state is SessionState.EXPIRED

    @property
    def message_count(self) -> int:
        return self.send_sequence + self.receive_sequence

    def install_keys(self, transmit_key: bytes, receive_key: bytes) -> None:
        """
        Store both directional keys and move to KEYS_ESTABLISHED.

        Both keys are installed together or not at all.
        """
        if self.expired:
            raise SessionExpired(f"Session {self._id} has expired")

        transmit = SecureBytes(transmit_key)
        receive = SecureBytes(receive_key)

        old = (self._transmit_key, self._receive_key)
        self._transmit_key = transmit
        self._receive_key = receive
        self.state = SessionState.KEYS_ESTABLISHED
        for key in old:
            if key is not None:
                key.clear()

    def keys(self) -> Tuple[bytearray, bytearray]:
        """
        Get (transmit_key, receive_key) as the live key buffers.

        The buffers are zeroed in place by erase_keys(). Use them only while
        holding the session lock and do not copy them into bytes.

        Raises:
            SessionExpired: If the session has been expired
            SessionNotEstablished: If key agreement has not completed
        """
        if self.expired:
            raise SessionExpired(f"Session {self._id} has expired")
        if not self.established or self._transmit_key is None or self._receive_key is None:
            raise SessionNotEstablished(f"Session {self._id} is not established")
        return self._transmit_key.raw_view(), self._receive_key.raw_view()

    def erase_keys(self) -> None:
        """Zero both keys and mark the session EXPIRED."""
        for key in (self._transmit_key, self._receive_key):
            if key is not None:
                key.clear()
        self._transmit_key = None
        self._receive_key = None
        self.state = SessionState.EXPIRED

    def metadata(self) -> 'SessionMetadata':
        return SessionMetadata(
            id=self._id,
            peer_public_key=self._peer_public_key.to_base64(),
            created_at=self.created_at,
            last_activity=self.last_activity,
            message_count=self.message_count,
            active=self.established,
        )

    def __repr__(self) -> str:
        return (
            f"Session(id={self._id}, role={self._role.value}, state={self.state.value}, "
            f"send={self.send_sequence}, receive={self.receive_sequence})"
        )


@dataclass(frozen=True)
class SessionMetadata:
    """
    Session facts that may be written to durable storage.

    Never contains key material.
    """
    id: int
    peer_public_key: str
    created_at: float
    last_activity: float
    message_count: int
    active: bool


@dataclass(frozen=True)
class DecodedMessage:
    """Result of decoding a DATA frame."""
    content_type: ContentType
    data: bytes
    session_id: int
    sequence: int
    source_id: int

    @property
    def text(self) -> str:
        """Decode the data as UTF-8 text."""
        return self.data.decode('utf-8')
