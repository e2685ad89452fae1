"""
X25519 key pairs and Diffie-Hellman agreement.

Peers exchange raw 32-byte X25519 public keys out of band. There is no
fallback algorithm: if the backend cannot do X25519, key generation fails
with KeyAgreementFailure, because a different algorithm would silently
break compatibility with the peer.
"""

import base64
import logging
from dataclasses import dataclass

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from ..errors import KeyAgreementFailure
from .utils import constant_time_compare


logger = logging.getLogger(__name__)

KEY_ALGORITHM = "X25519"
PUBLIC_KEY_SIZE = 32


@dataclass(frozen=True)
class PeerPublicKey:
    """
    A peer's public key: opaque raw bytes plus the declared algorithm.

    Fields:
        raw: Raw public key bytes (32 bytes for X25519)
        algorithm: Declared key algorithm name
    """
    raw: bytes
    algorithm: str = KEY_ALGORITHM

    def __post_init__(self):
        if not isinstance(self.raw, (bytes, bytearray)):
            raise KeyAgreementFailure("Public key must be bytes")
        object.__setattr__(self, 'raw', bytes(self.raw))

    @classmethod
    def from_base64(cls, encoded: str, algorithm: str = KEY_ALGORITHM) -> 'PeerPublicKey':
        """
        Decode a base64 public key as delivered by the bootstrap channel.

        Raises:
            KeyAgreementFailure: If the string is not valid base64
        """
        try:
            raw = base64.b64decode(encoded, validate=True)
        except (ValueError, TypeError) as e:
            raise KeyAgreementFailure("Public key is not valid base64") from e
        return cls(raw=raw, algorithm=algorithm)

    def to_base64(self) -> str:
        return base64.b64encode(self.raw).decode('ascii')

    def matches(self, other: 'PeerPublicKey') -> bool:
        """Constant-time equality on the raw key bytes."""
        return self.algorithm == other.algorithm and constant_time_compare(self.raw, other.raw)

    def fingerprint(self) -> str:
        """Short hex prefix for log lines."""
        return self.raw[:4].hex()


class KeyPair:
    """
    Local X25519 key pair.

    The private key stays inside the cryptography object; only the public
    half is exposed as raw bytes.
    """

    def __init__(self, private_key: X25519PrivateKey):
        self._private_key = private_key
        self.public_key = PeerPublicKey(
            private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        )

    @property
    def private_key(self) -> X25519PrivateKey:
        return self._private_key

    def __repr__(self) -> str:
        return f"KeyPair(public={self.public_key.fingerprint()}...)"


def generate_keypair() -> KeyPair:
    """
    Generate a fresh X25519 key pair.

    Returns:
        KeyPair

    Raises:
        KeyAgreementFailure: If the backend does not support X25519
    """
    try:
        private_key = X25519PrivateKey.generate()
    except UnsupportedAlgorithm as e:
        raise KeyAgreementFailure("X25519 is not supported by the crypto backend") from e

    keypair = KeyPair(private_key)
    logger.debug(f"Generated X25519 key pair {keypair.public_key.fingerprint()}")
    return keypair


def load_public_key(peer_public_key: PeerPublicKey) -> X25519PublicKey:
    """
    Turn a PeerPublicKey into a cryptography public key object.

    Raises:
        KeyAgreementFailure: On wrong algorithm or malformed key bytes
    """
    if peer_public_key.algorithm != KEY_ALGORITHM:
        raise KeyAgreementFailure(
            f"Unsupported peer key algorithm: {peer_public_key.algorithm}"
        )
    if len(peer_public_key.raw) != PUBLIC_KEY_SIZE:
        raise KeyAgreementFailure(
            f"Peer public key must be {PUBLIC_KEY_SIZE} bytes, got {len(peer_public_key.raw)}"
        )
    try:
        return X25519PublicKey.from_public_bytes(peer_public_key.raw)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise KeyAgreementFailure("Malformed peer public key") from e


def agree(private_key: X25519PrivateKey, peer_public_key: PeerPublicKey) -> bytearray:
    """
    Perform raw X25519 ECDH.

    agree(a.private_key, b.public_key) == agree(b.private_key, a.public_key)

    Args:
        private_key: Our private key
        peer_public_key: Their public key

    Returns:
        32-byte shared secret in a bytearray the caller should erase

    Raises:
        KeyAgreementFailure: If the peer key is malformed or low-order
    """
    public_key = load_public_key(peer_public_key)
    try:
        shared = private_key.exchange(public_key)
    except ValueError as e:
        # cryptography rejects all-zero results from low-order points
        raise KeyAgreementFailure("X25519 agreement produced an invalid shared secret") from e

    return bytearray(shared)
