"""
Frame and payload codec tests for SecureLink.

Tests wire layout, parsing bounds, validation rules and the bootstrap
record format.
"""

import base64
import json
import struct

import pytest

from securelink.crypto.keys import generate_keypair
from securelink.errors import MalformedFrame, ValidationFailure
from securelink.protocol.frame import (
    Frame,
    FrameFlags,
    FrameType,
    HEADER_SIZE,
    MIN_FRAME_SIZE,
    build_header,
    frame_summary,
    is_valid,
    parse_frame,
)
from securelink.protocol.handshake import (
    BootstrapRecord,
    build_handshake_frame,
    parse_handshake_frame,
)
from securelink.protocol.payload import ContentType, Payload


def make_frame(**overrides) -> Frame:
    fields = dict(
        type=FrameType.DATA,
        flags=FrameFlags.ENCRYPTED,
        source_id=1,
        destination_id=2,
        session_id=1001,
        sequence=1,
        ttl=32,
        nonce=b"\x11" * 12,
        ciphertext=b"\x22" * 9,
        tag=b"\x33" * 16,
    )
    fields.update(overrides)
    return Frame(**fields)


class TestFrameLayout:
    """Test frame serialization."""

    def test_header_layout(self):
        """Header fields sit at fixed big-endian offsets."""
        header = build_header(FrameType.DATA, FrameFlags.ENCRYPTED, 0x01020304, 0x05060708,
                              1001, 7, 32)

        assert len(header) == HEADER_SIZE
        assert header[0] == 1  # version
        assert header[1] == FrameType.DATA
        assert header[2] == FrameFlags.ENCRYPTED
        assert header[3] == HEADER_SIZE
        assert header[4:8] == b"\x01\x02\x03\x04"
        assert header[8:12] == b"\x05\x06\x07\x08"
        assert struct.unpack('!I', header[12:16])[0] == 1001
        assert struct.unpack('!I', header[16:20])[0] == 7
        assert header[20] == 32
        assert header[21:24] == b"\x00\x00\x00"

    def test_serialized_size(self):
        frame = make_frame()
        data = frame.to_bytes()
        assert len(data) == HEADER_SIZE + 12 + 9 + 16
        assert len(frame) == len(data)

    def test_round_trip(self):
        frame = make_frame()
        assert parse_frame(frame.to_bytes()) == frame

    def test_segments(self):
        data = make_frame().to_bytes()
        assert data[24:36] == b"\x11" * 12
        assert data[36:45] == b"\x22" * 9
        assert data[45:] == b"\x33" * 16

    def test_header_bytes_match_wire(self):
        frame = make_frame()
        assert frame.to_bytes()[:HEADER_SIZE] == frame.header_bytes()

    def test_flags(self):
        frame = make_frame(flags=FrameFlags.ENCRYPTED | FrameFlags.COMPRESSED)
        assert frame.has_flag(FrameFlags.COMPRESSED)
        assert frame.has_flag(FrameFlags.ENCRYPTED)
        assert not frame.has_flag(FrameFlags.FRAGMENTED)

    def test_out_of_range_fields_rejected(self):
        with pytest.raises(ValidationFailure):
            make_frame(source_id=2 ** 32)
        with pytest.raises(ValidationFailure):
            make_frame(ttl=256)
        with pytest.raises(ValidationFailure):
            make_frame(sequence=-1)

    def test_summary(self):
        summary = frame_summary(make_frame())
        assert "DATA" in summary
        assert "1001" in summary


class TestFrameParsing:
    """Test parsing bounds."""

    def test_minimum_size_frame_parses(self):
        frame = parse_frame(make_frame(ciphertext=b"").to_bytes())
        assert len(frame.to_bytes()) == MIN_FRAME_SIZE
        assert frame.ciphertext == b""

    @pytest.mark.parametrize("size", [0, 1, 24, 36, 51])
    def test_short_buffer_is_malformed(self, size):
        with pytest.raises(MalformedFrame):
            parse_frame(b"\x01" * size)

    def test_oversized_ciphertext_is_malformed(self):
        data = make_frame().to_bytes()
        oversized = data[:36] + b"\x00" * 65536 + data[-16:]
        with pytest.raises(MalformedFrame):
            parse_frame(oversized)


class TestFrameValidation:
    """Test is_valid rules."""

    def test_valid_frame(self):
        assert is_valid(make_frame())

    def test_wrong_version(self):
        assert not is_valid(make_frame(version=2))

    def test_wrong_header_length(self):
        assert not is_valid(make_frame(header_length=20))

    def test_zero_ttl(self):
        assert not is_valid(make_frame(ttl=0))

    def test_wrong_nonce_size(self):
        assert not is_valid(make_frame(nonce=b"\x00" * 8))

    def test_wrong_tag_size(self):
        assert not is_valid(make_frame(tag=b"\x00" * 12))


class TestPayload:
    """Test the plaintext payload envelope."""

    def test_round_trip(self):
        payload = Payload(ContentType.TEXT, False, 5, b"hello")
        data = payload.to_bytes()
        assert data == b"\x01\x00\x00\x05hello"
        assert Payload.from_bytes(data) == payload

    def test_compressed_flag(self):
        payload = Payload(ContentType.BINARY, True, 5000, b"deflated")
        parsed = Payload.from_bytes(payload.to_bytes())
        assert parsed.is_compressed
        assert parsed.original_size == 5000

    def test_short_payload_is_malformed(self):
        with pytest.raises(MalformedFrame):
            Payload.from_bytes(b"\x01\x00\x00")

    def test_unknown_content_type_is_malformed(self):
        with pytest.raises(MalformedFrame):
            Payload.from_bytes(b"\x09\x00\x00\x01x")

    def test_bad_compressed_flag_is_malformed(self):
        with pytest.raises(MalformedFrame):
            Payload.from_bytes(b"\x01\x02\x00\x01x")

    def test_size_mismatch_is_malformed(self):
        with pytest.raises(MalformedFrame):
            Payload.from_bytes(b"\x01\x00\x00\x09hello")

    def test_original_size_bound(self):
        with pytest.raises(ValidationFailure):
            Payload(ContentType.BINARY, True, 0x10000, b"")


class TestHandshakeFrame:
    """Test the session announcement frame."""

    def test_round_trip(self):
        key = generate_keypair().public_key
        frame = build_handshake_frame(1001, 1700000000000, key, source_id=1,
                                      destination_id=2, ttl=32)

        assert frame.type == FrameType.HANDSHAKE
        assert frame.sequence == 0
        session_id, created_at_ms, announced = parse_handshake_frame(
            parse_frame(frame.to_bytes())
        )
        assert session_id == 1001
        assert created_at_ms == 1700000000000
        assert announced.matches(key)

    def test_corrupted_handshake_rejected(self):
        key = generate_keypair().public_key
        data = bytearray(build_handshake_frame(1001, 1, key, 1, 2, 32).to_bytes())
        data[40] ^= 0x01
        with pytest.raises(MalformedFrame):
            parse_handshake_frame(parse_frame(bytes(data)))

    def test_data_frame_is_not_a_handshake(self):
        with pytest.raises(MalformedFrame):
            parse_handshake_frame(make_frame())


class TestBootstrapRecord:
    """Test the out-of-band peer record."""

    def test_json_round_trip(self):
        key = generate_keypair().public_key
        record = BootstrapRecord(key.raw, "node-7")
        parsed = BootstrapRecord.from_json(record.to_json())
        assert parsed == record
        assert parsed.peer_public_key.matches(key)

    def test_short_keys_accepted(self):
        key = generate_keypair().public_key
        text = json.dumps({"pk": key.to_base64(), "fusion_node": "node-7"})
        record = BootstrapRecord.from_json(text)
        assert record.public_key == key.raw
        assert record.peer_node_identifier == "node-7"

    def test_wrapped_base64_accepted(self):
        key = generate_keypair().public_key
        encoded = base64.b64encode(key.raw).decode('ascii')
        text = json.dumps({"public_key": encoded[:20] + "\n" + encoded[20:],
                           "peer_node_identifier": "node-7"})
        assert BootstrapRecord.from_json(text).public_key == key.raw

    @pytest.mark.parametrize("text", [
        "not json",
        "[]",
        '{"public_key": "AAAA"}',
        '{"peer_node_identifier": "node"}',
        '{"public_key": "!!!", "peer_node_identifier": "node"}',
        '{"public_key": "", "peer_node_identifier": "node"}',
    ])
    def test_invalid_records_rejected(self, text):
        with pytest.raises(ValidationFailure):
            BootstrapRecord.from_json(text)
