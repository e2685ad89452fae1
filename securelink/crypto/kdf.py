"""
Key Derivation Functions for SecureLink.

Implements the session key schedule:
- X25519 shared secret is expanded with HKDF-SHA256 into 64 bytes
- The first 32 bytes protect initiator -> responder traffic
- The last 32 bytes protect responder -> initiator traffic
- The salt is a hash of the handshake transcript, so both peers derive
  the same keys without exchanging anything else
"""

import hashlib
import struct
from enum import Enum
from typing import Tuple

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..errors import KeyAgreementFailure, ValidationFailure
from .utils import secure_erase


# Protocol constants
SESSION_KEYS_INFO = b"v1-session-keys"
KEY_LENGTH = 32  # 256-bit keys


class Role(Enum):
    """Which end of the link a peer is on."""
    INITIATOR = "initiator"
    RESPONDER = "responder"


class SessionKeys:
    """
    The two directional keys produced by one derivation.

    ``initiator_to_responder`` and ``responder_to_initiator`` are the same
    on both peers. ``for_role`` picks (transmit, receive) for one side.
    """

    def __init__(self, initiator_to_responder: bytearray, responder_to_initiator: bytearray):
        self.initiator_to_responder = initiator_to_responder
        self.responder_to_initiator = responder_to_initiator

    def for_role(self, role: Role) -> Tuple[bytearray, bytearray]:
        """
        Get (transmit_key, receive_key) for the given role.

        Args:
            role: Role.INITIATOR or Role.RESPONDER

        Returns:
            Tuple of (transmit_key, receive_key)
        """
        if role is Role.INITIATOR:
            return self.initiator_to_responder, self.responder_to_initiator
        if role is Role.RESPONDER:
            return self.responder_to_initiator, self.initiator_to_responder
        raise ValidationFailure(f"Unknown role: {role!r}")

    def erase(self) -> None:
        secure_erase(self.initiator_to_responder)
        secure_erase(self.responder_to_initiator)


def derive_session_keys(
    shared_secret: bytes,
    salt: bytes,
    info: bytes = SESSION_KEYS_INFO
) -> SessionKeys:
    """
    Expand a shared secret into two independent 32-byte session keys.

    Args:
        shared_secret: 32-byte X25519 shared secret
        salt: Handshake transcript hash (see build_handshake_salt)
        info: HKDF context string

    Returns:
        SessionKeys with the initiator->responder key first

    Raises:
        KeyAgreementFailure: If derivation fails or inputs are invalid
    """
    if shared_secret is None or len(shared_secret) != KEY_LENGTH:
        raise KeyAgreementFailure(f"Shared secret must be {KEY_LENGTH} bytes")
    if not salt:
        raise KeyAgreementFailure("Salt must not be empty")

    try:
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH * 2,
            salt=bytes(salt),
            info=info,
        )
        material = bytearray(hkdf.derive(bytes(shared_secret)))
    except Exception as e:
        raise KeyAgreementFailure(f"Key derivation failed: {e}") from e

    keys = SessionKeys(material[:KEY_LENGTH], material[KEY_LENGTH:])
    secure_erase(material)
    return keys


def build_handshake_salt(session_id: int, created_at_ms: int,
                         initiator_public: bytes, responder_public: bytes) -> bytes:
    """
    Hash the handshake transcript into the HKDF salt.

    salt = SHA-256(session_id (4B) || created_at_ms (8B) ||
                   initiator_public || responder_public)

    Public keys are ordered by role so both peers produce the same salt.

    Args:
        session_id: 32-bit session identifier shared by both peers
        created_at_ms: Session creation time in milliseconds
        initiator_public: Raw public key of the initiator
        responder_public: Raw public key of the responder

    Returns:
        32-byte salt
    """
    try:
        prefix = struct.pack('!IQ', session_id, created_at_ms)
    except struct.error as e:
        raise KeyAgreementFailure(f"Invalid transcript fields: {e}") from e

    digest = hashlib.sha256()
    digest.update(prefix)
    digest.update(initiator_public)
    digest.update(responder_public)
    return digest.digest()
