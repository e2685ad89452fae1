"""
Payload compression.

Deflate (zlib format) is applied only to payloads above a size threshold,
and only kept when it actually shrinks the data. Whether compression was
applied is recorded by the caller in the payload's compressed flag.
"""

import logging
import zlib

from ..errors import MalformedFrame


logger = logging.getLogger(__name__)

COMPRESSION_THRESHOLD = 1024  # 1KB


def compress(data: bytes, threshold: int = COMPRESSION_THRESHOLD) -> bytes:
    """
    Compress data if it is larger than the threshold and compression helps.

    Args:
        data: Bytes to compress
        threshold: Inputs of this size or smaller are returned unchanged

    Returns:
        Compressed bytes, or the original bytes if compression was skipped,
        did not shrink the input, or failed
    """
    if len(data) <= threshold:
        return data

    try:
        compressed = zlib.compress(bytes(data))
    except zlib.error as e:
        logger.debug(f"Compression failed, sending uncompressed: {e}")
        return data

    if len(compressed) < len(data):
        return compressed
    return data


def decompress(data: bytes, original_size: int) -> bytes:
    """
    Inflate data that was produced by compress().

    Args:
        data: Compressed bytes
        original_size: Expected size after decompression

    Returns:
        Decompressed bytes

    Raises:
        MalformedFrame: If the data does not inflate to exactly original_size
    """
    if original_size <= 0:
        raise MalformedFrame("Compressed payload must declare a positive original size")

    decompressor = zlib.decompressobj()
    try:
        # Bound the output so a hostile stream cannot expand without limit
        result = decompressor.decompress(bytes(data), original_size)
    except zlib.error as e:
        raise MalformedFrame(f"Payload decompression failed: {e}") from e

    if len(result) != original_size or decompressor.unconsumed_tail:
        raise MalformedFrame(
            f"Decompressed size mismatch: expected {original_size}, got {len(result)}"
        )
    return result
