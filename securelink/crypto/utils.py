"""
Cryptographic utilities for secure memory handling, randomness and nonces.

This module provides the small stateless helpers shared by the rest of the
crypto layer: in-place erasure of key buffers, a key container that erases
itself, random identifiers, and per-frame nonce construction.
"""

import secrets
import struct
import time
from typing import Union

from ..errors import ValidationFailure


UINT32_MAX = 0xFFFFFFFF


def secure_erase(data: Union[bytearray, memoryview]) -> None:
    """
    Overwrite a mutable buffer with zeros in place.

    Immutable ``bytes`` cannot be erased in Python; callers that hold
    secrets must keep them in a bytearray (or SecureBytes) for this to work.

    Args:
        data: bytearray or writable memoryview to zero

    Raises:
        TypeError: If data is not a mutable buffer
    """
    if isinstance(data, memoryview):
        if data.readonly:
            raise TypeError("Cannot erase a read-only memoryview")
        data = data.cast('B')
    elif not isinstance(data, bytearray):
        raise TypeError("Data must be bytearray or memoryview")

    for i in range(len(data)):
        data[i] = 0


def generate_random_bytes(length: int) -> bytes:
    """
    Generate cryptographically secure random bytes.

    Args:
        length: Number of random bytes to generate

    Returns:
        Cryptographically secure random bytes
    """
    return secrets.token_bytes(length)


def generate_random_id() -> int:
    """Generate a random non-zero 32-bit identifier."""
    value = 0
    while value == 0:
        value = secrets.randbits(32)
    return value


def constant_time_compare(a: bytes, b: bytes) -> bool:
    """
    Compare two byte sequences in constant time.

    Args:
        a: First byte sequence
        b: Second byte sequence

    Returns:
        True if sequences are equal, False otherwise
    """
    return secrets.compare_digest(a, b)


def build_nonce(session_id: int, sender_id: int, sequence: int, mask: int = 0) -> bytes:
    """
    Build the 12-byte AEAD nonce for a frame.

    Layout: session_id (4B) || sender_id (4B) || (sequence XOR mask) (4B),
    big-endian. The mask is fixed for the lifetime of a session key, so
    distinct sequences always give distinct nonces. The nonce always travels
    inside the frame, so the receiver never has to recompute it.

    Args:
        session_id: 32-bit session identifier
        sender_id: 32-bit identifier of the sending device
        sequence: 32-bit frame sequence number
        mask: 32-bit per-session value XORed into the sequence bytes

    Returns:
        12-byte nonce

    Raises:
        ValidationFailure: If any field is outside the unsigned 32-bit range
    """
    for name, value in (("session_id", session_id), ("sender_id", sender_id),
                        ("sequence", sequence), ("mask", mask)):
        if not (0 <= value <= UINT32_MAX):
            raise ValidationFailure(f"{name} must be an unsigned 32-bit integer, got {value}")

    return struct.pack('!III', session_id, sender_id, sequence ^ mask)


def generate_nonce_mask() -> int:
    """Derive a per-session nonce mask from the nanosecond clock."""
    return time.monotonic_ns() & UINT32_MAX


class SecureBytes:
    """
    A container for key material that zeros itself when cleared.

    Use this for storing session keys so they can be erased on expiry.
    """

    def __init__(self, data: Union[bytes, bytearray]):
        """
        Initialize with sensitive data.

        Args:
            data: Sensitive bytes to store
        """
        self._data = bytearray(data)
        self._is_valid = True

    def __len__(self) -> int:
        if not self._is_valid:
            raise ValueError("SecureBytes has been cleared")
        return len(self._data)

    def __bytes__(self) -> bytes:
        """Get a copy of the stored data as bytes."""
        if not self._is_valid:
            raise ValueError("SecureBytes has been cleared")
        return bytes(self._data)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.clear()

    def __del__(self):
        """Securely clear data when object is destroyed."""
        if hasattr(self, '_data'):
            self.clear()

    def __repr__(self) -> str:
        state = "cleared" if not self._is_valid else f"{len(self._data)} bytes"
        return f"SecureBytes({state})"

    def clear(self) -> None:
        """Explicitly clear the stored data."""
        if self._is_valid:
            secure_erase(self._data)
            self._is_valid = False

    def is_cleared(self) -> bool:
        """Check if the SecureBytes has been cleared."""
        return not self._is_valid

    def raw_view(self) -> bytearray:
        """Return the underlying buffer (zeroed once cleared)."""
        return self._data
