"""
SecureLink Session Management.

The SessionManager owns the session registry and drives each session
through its lifecycle:

    CREATED -> KEYS_ESTABLISHED -> (active) -> EXPIRED

It is an explicit store object: create one per local identity and pass it
to whatever needs sessions. The registry is guarded by a coarse lock;
each session's counters, replay window and keys are guarded by that
session's own lock. The registry lock is never held while a session lock
is being acquired.
"""

import logging
import threading
import time
from typing import Callable, List, Optional, Union

from ..config import SessionConfig
from ..crypto.aead import encrypt, decrypt
from ..crypto.compression import compress, decompress
from ..crypto.kdf import Role, derive_session_keys, build_handshake_salt
from ..crypto.keys import KeyPair, PeerPublicKey, agree
from ..crypto.utils import (
    UINT32_MAX,
    build_nonce,
    generate_nonce_mask,
    generate_random_id,
    secure_erase,
)
from ..errors import (
    AuthenticationFailure,
    KeyAgreementFailure,
    MalformedFrame,
    ReplayRejected,
    SessionExpired,
    UnknownSession,
    ValidationFailure,
)
from .frame import (
    Frame,
    FrameFlags,
    FrameType,
    MAX_PAYLOAD_SIZE,
    NONCE_SIZE,
    TAG_SIZE,
    build_header,
    parse_frame,
)
from .handshake import BootstrapRecord, build_handshake_frame, parse_handshake_frame
from .payload import ContentType, MAX_ORIGINAL_SIZE, PAYLOAD_HEADER_SIZE, Payload
from .session import DecodedMessage, Session, SessionMetadata


logger = logging.getLogger(__name__)

# Tolerated lead of a handshake creation time over the local clock
HANDSHAKE_CLOCK_SKEW_SECONDS = 300

FrameInput = Union[Frame, bytes, bytearray, memoryview]
PeerKeyInput = Union[PeerPublicKey, bytes, bytearray]


def _as_peer_key(value: PeerKeyInput) -> PeerPublicKey:
    if isinstance(value, PeerPublicKey):
        return value
    return PeerPublicKey(bytes(value))


def _as_frame(value: FrameInput) -> Frame:
    if isinstance(value, Frame):
        return value
    return parse_frame(value)


class SessionManager:
    """
    Registry and state machine for secure sessions.

    Combines key agreement, framing, replay protection and AEAD into
    encode()/decode() calls that work on bytes in and bytes out.
    """

    def __init__(self, config: Optional[SessionConfig] = None, device_id: Optional[int] = None,
                 clock: Callable[[], float] = time.time):
        """
        Initialize an empty session registry.

        Args:
            config: Session limits and framing defaults
            device_id: 32-bit non-zero id of this device (random if omitted)
            clock: Wall clock in seconds, injectable for tests
        """
        self.config = config or SessionConfig()
        if device_id is None:
            device_id = generate_random_id()
        if not (0 < device_id <= UINT32_MAX):
            raise ValidationFailure("Device id must be a non-zero 32-bit unsigned integer")

        self.device_id = device_id
        self._clock = clock
        self._sessions = {}
        # (session_id, created_at_ms) of closed sessions -> ms after which
        # the handshake would be rejected as stale anyway
        self._retired = {}
        self._registry_lock = threading.Lock()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # Registry

    def create_session(self, peer_public_key: PeerKeyInput, role: Role = Role.INITIATOR,
                       session_id: Optional[int] = None,
                       created_at_ms: Optional[int] = None) -> Session:
        """
        Create a session in the CREATED state and add it to the registry.

        Args:
            peer_public_key: The peer's public key
            role: INITIATOR for locally started sessions, RESPONDER for accepted ones
            session_id: Explicit id (a random unused id is chosen if omitted)
            created_at_ms: Explicit creation time (now if omitted)

        Returns:
            New Session

        Raises:
            ValidationFailure: If the explicit id is invalid or already in use
        """
        peer = _as_peer_key(peer_public_key)
        if created_at_ms is None:
            created_at_ms = self._now_ms()

        with self._registry_lock:
            if session_id is None:
                session_id = generate_random_id()
                while session_id in self._sessions:
                    session_id = generate_random_id()
            elif not (0 < session_id <= UINT32_MAX):
                raise ValidationFailure("Session id must be a non-zero 32-bit unsigned integer")
            elif session_id in self._sessions:
                raise ValidationFailure(f"Session id {session_id} is already in use")

            session = Session(session_id, peer, created_at_ms, role=role,
                              window_size=self.config.replay_window)
            self._sessions[session_id] = session

        logger.info(f"Created session {session_id} ({role.value}) with peer {peer.fingerprint()}")
        return session

    def get_session(self, session_id: int) -> Optional[Session]:
        """Get session by id, or None."""
        with self._registry_lock:
            return self._sessions.get(session_id)

    def get_or_create_session(self, peer_public_key: PeerKeyInput) -> Session:
        """
        Return a usable session with this peer, creating one if needed.

        Args:
            peer_public_key: The peer's public key

        Returns:
            Existing non-expired session for the peer, or a new one
        """
        peer = _as_peer_key(peer_public_key)
        for session in self.active_sessions():
            if session.peer_public_key.matches(peer):
                return session
        return self.create_session(peer)

    def active_sessions(self) -> List[Session]:
        """Get all sessions that are neither expired nor due for rekeying."""
        with self._registry_lock:
            sessions = list(self._sessions.values())
        return [s for s in sessions if not s.expired and not self.needs_rekey(s)]

    def _discard(self, session: Session) -> None:
        with session.lock:
            session.erase_keys()
        with self._registry_lock:
            if self._sessions.get(session.id) is session:
                del self._sessions[session.id]

    def _retire(self, session: Session) -> None:
        """Remove an erased session and remember its handshake so it cannot be replayed."""
        stale_after_ms = session.created_at_ms + int(self.config.max_session_age * 1000)
        with self._registry_lock:
            if self._sessions.get(session.id) is session:
                del self._sessions[session.id]
            self._retired[(session.id, session.created_at_ms)] = stale_after_ms

    def _prune_retired(self, now_ms: int) -> None:
        # Caller holds the registry lock
        for key in [k for k, until in self._retired.items() if until < now_ms]:
            del self._retired[key]

    # Key agreement

    def establish(self, session: Session, local_keypair: KeyPair,
                  peer_public_key: Optional[PeerKeyInput] = None) -> Session:
        """
        Run X25519 agreement and HKDF, then install the session keys.

        Both keys are installed together; on failure the session stays in
        CREATED with no key set.

        Args:
            session: Session to establish
            local_keypair: This device's key pair
            peer_public_key: Peer key (must match the session's if given)

        Returns:
            The established session

        Raises:
            KeyAgreementFailure: If agreement or derivation fails
            SessionExpired: If the session has already expired
        """
        peer = session.peer_public_key
        if peer_public_key is not None and not _as_peer_key(peer_public_key).matches(peer):
            raise KeyAgreementFailure(f"Peer key does not match session {session.id}")

        local_public = local_keypair.public_key.raw
        if session.role is Role.INITIATOR:
            initiator_public, responder_public = local_public, peer.raw
        else:
            initiator_public, responder_public = peer.raw, local_public

        with session.lock:
            if session.expired:
                raise SessionExpired(f"Session {session.id} has expired")

            shared_secret = None
            try:
                shared_secret = agree(local_keypair.private_key, peer)
                salt = build_handshake_salt(session.id, session.created_at_ms,
                                            initiator_public, responder_public)
                keys = derive_session_keys(shared_secret, salt)
                try:
                    transmit_key, receive_key = keys.for_role(session.role)
                    session.install_keys(transmit_key, receive_key)
                    session.nonce_mask = generate_nonce_mask() if self.config.nonce_time_mixing else 0
                finally:
                    keys.erase()
            except KeyAgreementFailure as e:
                logger.error(f"Failed to establish session {session.id}: {e}")
                raise
            finally:
                if shared_secret is not None:
                    secure_erase(shared_secret)

        logger.info(f"Session keys established for session {session.id}")
        return session

    def connect(self, bootstrap: BootstrapRecord, local_keypair: KeyPair) -> Session:
        """
        Create and establish an initiator session from an out-of-band record.

        Args:
            bootstrap: Peer record obtained out of band
            local_keypair: This device's key pair

        Returns:
            Established INITIATOR session

        Raises:
            KeyAgreementFailure: If agreement fails (the session is discarded)
        """
        session = self.create_session(bootstrap.peer_public_key, role=Role.INITIATOR)
        try:
            self.establish(session, local_keypair)
        except Exception:
            self._discard(session)
            raise
        logger.info(f"Connected session {session.id} to node {bootstrap.peer_node_identifier}")
        return session

    def handshake_frame(self, session: Session, local_keypair: KeyPair,
                        destination_id: int = 0) -> Frame:
        """
        Build the HANDSHAKE frame that lets the responder derive the same keys.

        Args:
            session: An INITIATOR session
            local_keypair: This device's key pair
            destination_id: Responder device id, 0 if unknown

        Returns:
            HANDSHAKE Frame
        """
        if session.role is not Role.INITIATOR:
            raise ValidationFailure("Only the initiator sends the handshake frame")
        return build_handshake_frame(session.id, session.created_at_ms, local_keypair.public_key,
                                     self.device_id, destination_id, self.config.default_ttl)

    def accept_handshake(self, frame: FrameInput, local_keypair: KeyPair,
                         expected_peer: Optional[Union[PeerKeyInput, BootstrapRecord]] = None
                         ) -> Session:
        """
        Create and establish the responder side of a session from a HANDSHAKE frame.

        Args:
            frame: HANDSHAKE frame or its bytes
            local_keypair: This device's key pair
            expected_peer: Initiator key obtained out of band; the announced
                key must match it

        Returns:
            Established RESPONDER session (the existing one if this
            handshake was already accepted)

        Raises:
            MalformedFrame: If the frame is not a valid handshake
            KeyAgreementFailure: If the announced key is not the expected one
            SessionExpired: If the handshake is older than the session age
                limit or belongs to a session that was already closed
            ValidationFailure: If the session id collides with another session
                or the creation time lies in the future
        """
        frame = _as_frame(frame)
        session_id, created_at_ms, initiator_public = parse_handshake_frame(frame)

        if expected_peer is not None:
            if isinstance(expected_peer, BootstrapRecord):
                expected_peer = expected_peer.peer_public_key
            if not _as_peer_key(expected_peer).matches(initiator_public):
                logger.warning(f"Handshake for session {session_id} announced an unexpected key")
                raise KeyAgreementFailure("Announced public key does not match the expected peer")

        now_ms = self._now_ms()
        age_ms = now_ms - created_at_ms
        if age_ms > self.config.max_session_age * 1000:
            logger.warning(f"Stale handshake for session {session_id} ({age_ms} ms old)")
            raise SessionExpired(f"Handshake for session {session_id} is past the session age limit")
        if -age_ms > HANDSHAKE_CLOCK_SKEW_SECONDS * 1000:
            logger.warning(f"Handshake for session {session_id} is dated {-age_ms} ms ahead")
            raise ValidationFailure(f"Handshake for session {session_id} is dated in the future")

        with self._registry_lock:
            self._prune_retired(now_ms)
            retired = (session_id, created_at_ms) in self._retired
        if retired:
            logger.warning(f"Replayed handshake for closed session {session_id}")
            raise SessionExpired(f"Session {session_id} was closed and cannot be re-established")

        existing = self.get_session(session_id)
        if existing is not None:
            if (existing.role is Role.RESPONDER and existing.established and
                    existing.created_at_ms == created_at_ms and
                    existing.peer_public_key.matches(initiator_public)):
                logger.debug(f"Duplicate handshake for session {session_id}")
                return existing
            raise ValidationFailure(f"Session id {session_id} is already in use")

        session = self.create_session(initiator_public, role=Role.RESPONDER,
                                      session_id=session_id, created_at_ms=created_at_ms)
        try:
            self.establish(session, local_keypair)
        except Exception:
            self._discard(session)
            raise
        return session

    # Data path

    def encode(self, session: Session, message: Union[str, bytes], destination_id: int,
               content_type: Optional[ContentType] = None) -> Frame:
        """
        Compress, frame and encrypt one application message.

        Args:
            session: Established session
            message: str (sent as TEXT) or bytes (sent as BINARY)
            destination_id: 32-bit recipient device id
            content_type: Override the inferred content type

        Returns:
            DATA Frame ready for frame.to_bytes()

        Raises:
            SessionNotEstablished: If the session has no keys
            SessionExpired: If the session expired or ran out of sequence numbers
            ValidationFailure: If the message is too large or arguments are invalid
        """
        if isinstance(message, str):
            data = message.encode('utf-8')
            inferred = ContentType.TEXT
        elif isinstance(message, (bytes, bytearray, memoryview)):
            data = bytes(message)
            inferred = ContentType.BINARY
        else:
            raise ValidationFailure(f"Message must be str or bytes, not {type(message).__name__}")
        if content_type is None:
            content_type = inferred
        else:
            try:
                content_type = ContentType(content_type)
            except ValueError as e:
                raise ValidationFailure(f"Unknown content type: {content_type!r}") from e

        if not (0 <= destination_id <= UINT32_MAX):
            raise ValidationFailure("Destination id must be a 32-bit unsigned integer")
        if len(data) > MAX_ORIGINAL_SIZE:
            raise ValidationFailure(f"Message too large: {len(data)} bytes (max {MAX_ORIGINAL_SIZE})")

        compressed = compress(data, self.config.compression_threshold)
        is_compressed = len(compressed) < len(data)
        payload = Payload(
            content_type=content_type,
            is_compressed=is_compressed,
            original_size=len(data),
            data=compressed if is_compressed else data,
        )
        payload_bytes = payload.to_bytes()
        if len(payload_bytes) > MAX_PAYLOAD_SIZE:
            raise ValidationFailure(f"Payload too large: {len(payload_bytes)} bytes")

        flags = FrameFlags.ENCRYPTED
        if is_compressed:
            flags |= FrameFlags.COMPRESSED

        ttl = self.config.default_ttl

        # The key buffer is used in place and only under the session lock,
        # so erase_keys() never races an encryption
        with session.lock:
            transmit_key, _ = session.keys()
            if session.send_sequence >= UINT32_MAX:
                raise SessionExpired(f"Session {session.id} has exhausted its sequence space")
            session.send_sequence += 1
            sequence = session.send_sequence

            nonce = build_nonce(session.id, self.device_id, sequence, session.nonce_mask)
            aad = build_header(FrameType.DATA, flags, self.device_id, destination_id,
                               session.id, sequence, ttl)
            ciphertext, tag = encrypt(transmit_key, payload_bytes, aad, nonce)
            session.last_activity = self._clock()

        logger.debug(
            f"Encoded frame session={session.id} seq={sequence} "
            f"size={len(data)} compressed={is_compressed}"
        )
        return Frame(
            type=FrameType.DATA,
            flags=flags,
            source_id=self.device_id,
            destination_id=destination_id,
            session_id=session.id,
            sequence=sequence,
            ttl=ttl,
            nonce=nonce,
            ciphertext=ciphertext,
            tag=tag,
        )

    def decode(self, session: Session, frame: FrameInput) -> DecodedMessage:
        """
        Verify, decrypt and unpack one DATA frame.

        The replay window is consulted before decryption. A frame that
        passes the window but fails authentication keeps its sequence slot.

        Args:
            session: Established session
            frame: Frame or raw frame bytes

        Returns:
            DecodedMessage

        Raises:
            MalformedFrame: If the frame or its payload cannot be parsed
            SessionNotEstablished: If the session has no keys
            ReplayRejected: If the sequence is stale or duplicate
            AuthenticationFailure: If the AEAD tag does not verify
        """
        frame = _as_frame(frame)
        if (len(frame.ciphertext) < PAYLOAD_HEADER_SIZE or len(frame.nonce) != NONCE_SIZE or
                len(frame.tag) != TAG_SIZE):
            raise MalformedFrame("Frame too small to carry a payload")

        # Header bytes are rebuilt from the received frame, so any header
        # change fails authentication
        aad = frame.header_bytes()

        with session.lock:
            _, receive_key = session.keys()
            if not session.replay_guard.accept(frame.sequence):
                logger.debug(f"Replay rejected session={session.id} seq={frame.sequence}")
                raise ReplayRejected(frame.sequence)
            try:
                plaintext = decrypt(receive_key, frame.ciphertext, aad, frame.nonce, frame.tag)
            except AuthenticationFailure as e:
                logger.warning(
                    f"Authentication failed session={session.id} seq={frame.sequence} "
                    f"source={frame.source_id}"
                )
                raise AuthenticationFailure(
                    f"Frame {frame.sequence} failed authentication; its sequence slot stays consumed",
                    sequence=frame.sequence,
                ) from e

        if frame.type != FrameType.DATA:
            raise MalformedFrame(f"Cannot decode frame type {frame.type} as data")

        payload = Payload.from_bytes(plaintext)
        if payload.is_compressed:
            data = decompress(payload.data, payload.original_size)
        else:
            data = payload.data

        with session.lock:
            session.receive_sequence += 1
            session.last_activity = self._clock()

        logger.debug(f"Decoded frame session={session.id} seq={frame.sequence} size={len(data)}")
        return DecodedMessage(
            content_type=payload.content_type,
            data=data,
            session_id=session.id,
            sequence=frame.sequence,
            source_id=frame.source_id,
        )

    def receive(self, frame_bytes: FrameInput) -> DecodedMessage:
        """
        Decode a frame, looking up its session by the header's session id.

        Raises:
            UnknownSession: If no session has the frame's id
        """
        frame = _as_frame(frame_bytes)
        session = self.get_session(frame.session_id)
        if session is None:
            raise UnknownSession(frame.session_id)
        return self.decode(session, frame)

    # Expiry

    def needs_rekey(self, session: Session) -> bool:
        """
        Check whether a session is past its age or message ceiling.

        Args:
            session: Session to check

        Returns:
            True if the session should be replaced
        """
        age = self._clock() - session.created_at
        return (
            age > self.config.max_session_age or
            session.send_sequence >= self.config.max_messages or
            session.receive_sequence >= self.config.max_messages
        )

    def sweep_expired(self) -> List[int]:
        """
        Erase and remove every session that needs rekeying.

        Callers run this periodically; nothing expires on access. The
        handshakes of removed sessions are remembered until they would be
        stale, so a replayed handshake cannot bring a session back.

        Returns:
            Ids of the removed sessions
        """
        with self._registry_lock:
            self._prune_retired(self._now_ms())
            candidates = list(self._sessions.values())

        removed = []
        for session in candidates:
            with session.lock:
                if not (session.expired or self.needs_rekey(session)):
                    continue
                session.erase_keys()
                self._retire(session)
            removed.append(session.id)
            logger.info(f"Cleaned up expired session {session.id}")

        return removed

    def close_session(self, session_id: int) -> bool:
        """
        Erase and remove one session.

        The session cannot be re-established from its old handshake.

        Returns:
            True if a session was removed
        """
        session = self.get_session(session_id)
        if session is None:
            return False
        with session.lock:
            session.erase_keys()
            self._retire(session)
        logger.info(f"Closed session {session_id}")
        return True

    def export_metadata(self) -> List[SessionMetadata]:
        """Get persistable metadata for every registered session (no keys)."""
        with self._registry_lock:
            sessions = list(self._sessions.values())
        result = []
        for session in sessions:
            with session.lock:
                result.append(session.metadata())
        return result

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._sessions)
