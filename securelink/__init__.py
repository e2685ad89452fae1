"""
SecureLink secure session layer.

End-to-end encrypted sessions between two devices over an untrusted
transport. Keys come from an X25519 agreement with the peer's public key,
obtained out of band; every message travels in an AES-256-GCM frame whose
header is authenticated and whose sequence number is checked against a
replay window.

Basic Usage:
    >>> from securelink import SessionManager, generate_keypair
    >>>
    >>> alice_keys, bob_keys = generate_keypair(), generate_keypair()
    >>> alice = SessionManager(device_id=1)
    >>> bob = SessionManager(device_id=2)
    >>>
    >>> # Alice opens the session; Bob accepts her handshake frame
    >>> a = alice.create_session(bob_keys.public_key)
    >>> _ = alice.establish(a, alice_keys)
    >>> hello = alice.handshake_frame(a, alice_keys, destination_id=2)
    >>> b = bob.accept_handshake(hello.to_bytes(), bob_keys, expected_peer=alice_keys.public_key)
    >>>
    >>> frame = alice.encode(a, "hello", destination_id=2)
    >>> bob.receive(frame.to_bytes()).text
    'hello'
"""

__version__ = "0.1.0"

from .config import SessionConfig, load_config
from .errors import (
    SecureLinkError,
    KeyAgreementFailure,
    ValidationFailure,
    DecryptionFailure,
    AuthenticationFailure,
    MalformedCiphertext,
    ReplayRejected,
    MalformedFrame,
    SessionNotEstablished,
    SessionExpired,
    UnknownSession,
    ConfigError,
    TransportError,
)
from .crypto.keys import KeyPair, PeerPublicKey, generate_keypair
from .crypto.kdf import Role
from .protocol.frame import Frame, FrameType, FrameFlags, parse_frame, is_valid
from .protocol.payload import ContentType
from .protocol.window import ReplayGuard
from .protocol.session import Session, SessionMetadata, DecodedMessage
from .protocol.handshake import BootstrapRecord
from .protocol.manager import SessionManager
from .transport.base import Transport
from .transport.udp import UDPTransport
from .channel import SecureChannel

__all__ = [
    '__version__',

    # Configuration
    'SessionConfig',
    'load_config',

    # Errors
    'SecureLinkError',
    'KeyAgreementFailure',
    'ValidationFailure',
    'DecryptionFailure',
    'AuthenticationFailure',
    'MalformedCiphertext',
    'ReplayRejected',
    'MalformedFrame',
    'SessionNotEstablished',
    'SessionExpired',
    'UnknownSession',
    'ConfigError',
    'TransportError',

    # Keys
    'KeyPair',
    'PeerPublicKey',
    'generate_keypair',
    'Role',

    # Protocol
    'Frame',
    'FrameType',
    'FrameFlags',
    'parse_frame',
    'is_valid',
    'ContentType',
    'ReplayGuard',
    'Session',
    'SessionMetadata',
    'DecodedMessage',
    'BootstrapRecord',
    'SessionManager',

    # Transport
    'Transport',
    'UDPTransport',
    'SecureChannel',
]
