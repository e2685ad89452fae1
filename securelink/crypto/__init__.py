"""
Cryptographic primitives for SecureLink.

This module provides the stateless building blocks:
- X25519 key pairs and agreement
- Session key derivation (HKDF-SHA256)
- Authenticated encryption (AES-256-GCM)
- Payload compression
- Nonce construction and secure erasure
"""

from .keys import KeyPair, PeerPublicKey, generate_keypair, agree
from .kdf import Role, SessionKeys, derive_session_keys, build_handshake_salt
from .aead import encrypt, decrypt
from .compression import compress, decompress
from .utils import build_nonce, secure_erase, SecureBytes

__all__ = [
    'KeyPair',
    'PeerPublicKey',
    'generate_keypair',
    'agree',
    'Role',
    'SessionKeys',
    'derive_session_keys',
    'build_handshake_salt',
    'encrypt',
    'decrypt',
    'compress',
    'decompress',
    'build_nonce',
    'secure_erase',
    'SecureBytes',
]
