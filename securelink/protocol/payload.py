"""
Plaintext payload envelope.

Lives inside the AEAD boundary:

payload = content_type (1B) || compressed (1B) || original_size (2B) || data
"""

import struct
from dataclasses import dataclass
from enum import IntEnum

from ..errors import MalformedFrame, ValidationFailure


PAYLOAD_HEADER_SIZE = 4
MAX_ORIGINAL_SIZE = 0xFFFF

_PAYLOAD_FORMAT = '!BBH'


class ContentType(IntEnum):
    TEXT = 1
    BINARY = 2
    FILE = 3
    CONTROL = 4


@dataclass(frozen=True)
class Payload:
    content_type: ContentType
    is_compressed: bool
    original_size: int
    data: bytes

    def __post_init__(self):
        if not (0 <= self.original_size <= MAX_ORIGINAL_SIZE):
            raise ValidationFailure(
                f"Original size must fit in 2 bytes, got {self.original_size}"
            )

    def to_bytes(self) -> bytes:
        header = struct.pack(_PAYLOAD_FORMAT, int(self.content_type),
                             1 if self.is_compressed else 0, self.original_size)
        return header + self.data

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Payload':
        """
        Parse a decrypted payload.

        Raises:
            MalformedFrame: If the payload is short or carries unknown values
        """
        if len(data) < PAYLOAD_HEADER_SIZE:
            raise MalformedFrame(f"Payload too short: {len(data)} bytes")

        content_type, compressed_flag, original_size = struct.unpack_from(_PAYLOAD_FORMAT, data, 0)
        try:
            content_type = ContentType(content_type)
        except ValueError as e:
            raise MalformedFrame(f"Unknown content type: {content_type}") from e
        if compressed_flag not in (0, 1):
            raise MalformedFrame(f"Invalid compressed flag: {compressed_flag}")

        body = bytes(data[PAYLOAD_HEADER_SIZE:])
        if not compressed_flag and len(body) != original_size:
            raise MalformedFrame(
                f"Payload size mismatch: header says {original_size}, body has {len(body)}"
            )

        return cls(content_type=content_type, is_compressed=bool(compressed_flag),
                   original_size=original_size, data=body)
