"""
Frame structure and parsing for SecureLink.

This module defines the wire format and provides functions to build and
parse frames. All multi-byte integers are big-endian:

header = version (1B) || type (1B) || flags (1B) || header_length (1B) ||
         source_id (4B) || destination_id (4B) || session_id (4B) ||
         sequence (4B) || ttl (1B) || reserved (3B)
frame  = header || nonce (12B) || ciphertext (N B) || tag (16B)

The 24 header bytes double as the AEAD associated data.
"""

import struct
from dataclasses import dataclass
from enum import IntEnum, IntFlag

from ..errors import MalformedFrame, ValidationFailure


# Constants
PROTOCOL_VERSION = 1
HEADER_SIZE = 24
NONCE_SIZE = 12
TAG_SIZE = 16
MIN_FRAME_SIZE = HEADER_SIZE + NONCE_SIZE + TAG_SIZE  # 52
MAX_PAYLOAD_SIZE = 65535
RESERVED = b'\x00\x00\x00'

_HEADER_FORMAT = '!BBBBIIIIB3s'


class FrameType(IntEnum):
    HANDSHAKE = 1
    DATA = 2
    ACK = 3
    REKEY = 4
    HEARTBEAT = 5


class FrameFlags(IntFlag):
    NONE = 0x00
    COMPRESSED = 0x01
    ENCRYPTED = 0x02
    SIGNED = 0x04
    FRAGMENTED = 0x08
    LAST_FRAGMENT = 0x10


def build_header(frame_type: int, flags: int, source_id: int, destination_id: int,
                 session_id: int, sequence: int, ttl: int,
                 version: int = PROTOCOL_VERSION, header_length: int = HEADER_SIZE,
                 reserved: bytes = RESERVED) -> bytes:
    """
    Serialize header fields to the 24 bytes that open a frame.

    Encoders call this before encryption so the exact header bytes can be
    used as associated data.

    Raises:
        ValidationFailure: If a field does not fit its width
    """
    if len(reserved) != 3:
        raise ValidationFailure("Reserved field must be 3 bytes")
    try:
        return struct.pack(_HEADER_FORMAT, version, int(frame_type), int(flags), header_length,
                           source_id, destination_id, session_id, sequence, ttl, reserved)
    except struct.error as e:
        raise ValidationFailure(f"Header field out of range: {e}") from e


@dataclass(frozen=True)
class Frame:
    """
    Complete SecureLink frame.

    Fields:
        version: Protocol version
        type: FrameType value
        flags: FrameFlags bitmask
        header_length: Always HEADER_SIZE for this version
        source_id: 32-bit sender device id
        destination_id: 32-bit recipient device id
        session_id: 32-bit session id
        sequence: 32-bit per-direction sequence number
        ttl: Hop limit, must be positive
        reserved: 3 reserved bytes
        nonce: 12-byte AEAD nonce
        ciphertext: Encrypted payload
        tag: 16-byte AEAD authentication tag
    """
    type: int
    flags: int
    source_id: int
    destination_id: int
    session_id: int
    sequence: int
    ttl: int
    nonce: bytes
    ciphertext: bytes
    tag: bytes
    version: int = PROTOCOL_VERSION
    header_length: int = HEADER_SIZE
    reserved: bytes = RESERVED

    def __post_init__(self):
        """Check that integer fields fit their wire widths."""
        for name in ('version', 'type', 'flags', 'header_length', 'ttl'):
            value = getattr(self, name)
            if not (0 <= value <= 0xFF):
                raise ValidationFailure(f"{name} must fit in 1 byte, got {value}")
        for name in ('source_id', 'destination_id', 'session_id', 'sequence'):
            value = getattr(self, name)
            if not (0 <= value <= 0xFFFFFFFF):
                raise ValidationFailure(f"{name} must be a 32-bit unsigned integer, got {value}")
        if len(self.reserved) != 3:
            raise ValidationFailure("Reserved field must be 3 bytes")

    @property
    def size(self) -> int:
        """Get total frame size in bytes."""
        return HEADER_SIZE + len(self.nonce) + len(self.ciphertext) + len(self.tag)

    @property
    def frame_type(self) -> FrameType:
        """Get the type as a FrameType (raises ValueError for unknown types)."""
        return FrameType(self.type)

    def has_flag(self, flag: FrameFlags) -> bool:
        return bool(self.flags & flag)

    def header_bytes(self) -> bytes:
        """Serialize the header exactly as it appears on the wire (the AAD)."""
        return build_header(self.type, self.flags, self.source_id, self.destination_id,
                            self.session_id, self.sequence, self.ttl,
                            version=self.version, header_length=self.header_length,
                            reserved=self.reserved)

    def to_bytes(self) -> bytes:
        """Serialize complete frame to bytes."""
        return self.header_bytes() + self.nonce + self.ciphertext + self.tag

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Frame':
        """Deserialize complete frame from bytes."""
        if len(data) < MIN_FRAME_SIZE:
            raise MalformedFrame(f"Frame too short: {len(data)} bytes (minimum {MIN_FRAME_SIZE})")

        ciphertext_end = len(data) - TAG_SIZE
        ciphertext_size = ciphertext_end - HEADER_SIZE - NONCE_SIZE
        if ciphertext_size > MAX_PAYLOAD_SIZE:
            raise MalformedFrame(f"Ciphertext too large: {ciphertext_size} bytes")

        try:
            (version, frame_type, flags, header_length, source_id, destination_id,
             session_id, sequence, ttl, reserved) = struct.unpack_from(_HEADER_FORMAT, data, 0)
        except struct.error as e:
            raise MalformedFrame("Invalid header format") from e

        data = bytes(data)
        return cls(
            version=version,
            type=frame_type,
            flags=flags,
            header_length=header_length,
            source_id=source_id,
            destination_id=destination_id,
            session_id=session_id,
            sequence=sequence,
            ttl=ttl,
            reserved=reserved,
            nonce=data[HEADER_SIZE:HEADER_SIZE + NONCE_SIZE],
            ciphertext=data[HEADER_SIZE + NONCE_SIZE:ciphertext_end],
            tag=data[ciphertext_end:],
        )

    def __len__(self) -> int:
        return self.size


def parse_frame(frame_bytes: bytes) -> Frame:
    """
    Parse raw bytes into a Frame.

    Only the structure is checked here; see is_valid() for field semantics.

    Args:
        frame_bytes: Raw frame data

    Returns:
        Parsed Frame

    Raises:
        MalformedFrame: If the buffer is too short or too long
    """
    return Frame.from_bytes(frame_bytes)


def is_valid(frame: Frame) -> bool:
    """
    Check frame fields against the protocol rules.

    Args:
        frame: Frame to check

    Returns:
        True if version, header length, nonce/tag sizes, ciphertext bound,
        sequence and ttl are all acceptable
    """
    return (
        frame.version == PROTOCOL_VERSION and
        frame.header_length == HEADER_SIZE and
        len(frame.nonce) == NONCE_SIZE and
        len(frame.tag) == TAG_SIZE and
        len(frame.ciphertext) <= MAX_PAYLOAD_SIZE and
        frame.sequence >= 0 and
        frame.ttl > 0
    )


def frame_summary(frame: Frame) -> str:
    """
    Create a human-readable summary of a frame.

    Args:
        frame: Frame to summarize

    Returns:
        Summary string
    """
    try:
        type_name = FrameType(frame.type).name
    except ValueError:
        type_name = f"UNKNOWN({frame.type})"
    return (
        f"SecureLink Frame:\n"
        f"  Type: {type_name}\n"
        f"  Flags: 0x{frame.flags:02x}\n"
        f"  Source: {frame.source_id} -> Destination: {frame.destination_id}\n"
        f"  Session: {frame.session_id}  Sequence: {frame.sequence}  TTL: {frame.ttl}\n"
        f"  Nonce: {frame.nonce.hex()}\n"
        f"  Ciphertext size: {len(frame.ciphertext)} bytes\n"
        f"  Total size: {frame.size} bytes"
    )
