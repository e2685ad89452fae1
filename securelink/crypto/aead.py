"""
AEAD (Authenticated Encryption with Associated Data) implementation.

AES-256-GCM with an explicit 12-byte nonce and a separate 16-byte tag.
The associated data is the frame header, so header and ciphertext are
authenticated together.
"""

import logging
from typing import Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..errors import (
    AuthenticationFailure,
    DecryptionFailure,
    MalformedCiphertext,
    ValidationFailure,
)


logger = logging.getLogger(__name__)

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16
ALGORITHM_NAME = "AES-256-GCM"


def _check_key_and_nonce(key: bytes, nonce: bytes) -> None:
    if key is None or len(key) != KEY_SIZE:
        raise ValidationFailure(f"{ALGORITHM_NAME} requires {KEY_SIZE}-byte key")
    if nonce is None or len(nonce) != NONCE_SIZE:
        raise ValidationFailure(f"{ALGORITHM_NAME} requires {NONCE_SIZE}-byte nonce")


def encrypt(key: bytes, plaintext: bytes, associated_data: bytes,
            nonce: bytes) -> Tuple[bytes, bytes]:
    """
    Encrypt plaintext with AES-256-GCM.

    Args:
        key: 32-byte encryption key
        plaintext: Data to encrypt (must not be empty)
        associated_data: Bytes authenticated but not encrypted
        nonce: 12-byte nonce, never reused with the same key

    Returns:
        Tuple of (ciphertext, authentication_tag)

    Raises:
        ValidationFailure: On wrong key/nonce length or empty plaintext
    """
    _check_key_and_nonce(key, nonce)
    if not plaintext:
        raise ValidationFailure("Plaintext cannot be empty")

    # Keys may be bytearrays that are zeroed later; pass them through
    # without making an immutable copy
    aesgcm = AESGCM(key)

    # AES-GCM returns ciphertext with tag appended
    ciphertext_with_tag = aesgcm.encrypt(bytes(nonce), bytes(plaintext), associated_data)

    ciphertext = ciphertext_with_tag[:-TAG_SIZE]
    tag = ciphertext_with_tag[-TAG_SIZE:]

    logger.debug(f"Encrypted {len(plaintext)} bytes to {len(ciphertext)} bytes")
    return ciphertext, tag


def decrypt(key: bytes, ciphertext: bytes, associated_data: bytes,
            nonce: bytes, tag: bytes) -> bytes:
    """
    Decrypt and verify AES-256-GCM ciphertext.

    Args:
        key: 32-byte decryption key
        ciphertext: Encrypted data (without tag)
        associated_data: Bytes that were authenticated at encryption time
        nonce: 12-byte nonce used for encryption
        tag: 16-byte authentication tag

    Returns:
        Decrypted plaintext

    Raises:
        ValidationFailure: On wrong key/nonce length or empty ciphertext
        MalformedCiphertext: If the tag is not 16 bytes
        AuthenticationFailure: If the tag does not verify
        DecryptionFailure: For any other backend failure
    """
    _check_key_and_nonce(key, nonce)
    if not ciphertext:
        raise ValidationFailure("Ciphertext cannot be empty")
    if tag is None or len(tag) != TAG_SIZE:
        raise MalformedCiphertext(f"{ALGORITHM_NAME} requires {TAG_SIZE}-byte tag")

    aesgcm = AESGCM(key)

    try:
        plaintext = aesgcm.decrypt(bytes(nonce), bytes(ciphertext) + bytes(tag), associated_data)
    except InvalidTag as e:
        raise AuthenticationFailure("Authentication tag mismatch") from e
    except (ValueError, OverflowError) as e:
        raise DecryptionFailure(f"{ALGORITHM_NAME} decryption failed: {e}") from e

    logger.debug(f"Decrypted {len(ciphertext)} bytes to {len(plaintext)} bytes")
    return plaintext
