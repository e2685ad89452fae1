"""
Handshake bootstrap for SecureLink.

Two pieces of information are needed before a session can carry data:

1. The peer's public key, delivered out of band (printed code, manual
   entry) as a BootstrapRecord. Its authenticity is what the whole
   session's security rests on.
2. The session id and creation time chosen by the initiator, which feed
   the key-derivation salt. These travel in a HANDSHAKE frame:

   ciphertext field = created_at_ms (8B) || initiator_public_key (32B)

   The body is sent in the clear. The tag is a SHA-256 checksum over
   header || nonce || body; it catches corruption but is not a MAC. The
   responder authenticates the announced key by comparing it with the
   out-of-band record.
"""

import base64
import binascii
import hashlib
import json
import struct
from dataclasses import dataclass
from typing import Tuple

from ..crypto.keys import PeerPublicKey, PUBLIC_KEY_SIZE
from ..crypto.utils import constant_time_compare, generate_random_bytes
from ..errors import MalformedFrame, ValidationFailure
from .frame import (
    Frame,
    FrameFlags,
    FrameType,
    NONCE_SIZE,
    TAG_SIZE,
    build_header,
    is_valid,
)


HANDSHAKE_BODY_SIZE = 8 + PUBLIC_KEY_SIZE


@dataclass(frozen=True)
class BootstrapRecord:
    """
    Out-of-band peer record: who the peer is and what its public key is.

    Fields:
        public_key: Raw peer public key bytes
        peer_node_identifier: Opaque peer/node name used for routing
    """
    public_key: bytes
    peer_node_identifier: str

    def __post_init__(self):
        if not self.public_key:
            raise ValidationFailure("Bootstrap record has no public key")
        if not self.peer_node_identifier:
            raise ValidationFailure("Bootstrap record has no peer node identifier")

    @property
    def peer_public_key(self) -> PeerPublicKey:
        return PeerPublicKey(self.public_key)

    def to_json(self) -> str:
        return json.dumps({
            'public_key': base64.b64encode(self.public_key).decode('ascii'),
            'peer_node_identifier': self.peer_node_identifier,
        })

    @classmethod
    def from_json(cls, text: str) -> 'BootstrapRecord':
        """
        Parse a bootstrap record.

        Accepts {"public_key", "peer_node_identifier"} as well as the short
        {"pk", "fusion_node"} keys used by printed codes.

        Raises:
            ValidationFailure: If the JSON is invalid or fields are missing
        """
        try:
            data = json.loads(text)
        except (TypeError, json.JSONDecodeError) as e:
            raise ValidationFailure(f"Bootstrap record is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ValidationFailure("Bootstrap record must be a JSON object")

        encoded_key = data.get('public_key', data.get('pk'))
        node = data.get('peer_node_identifier', data.get('fusion_node'))
        if not isinstance(encoded_key, str) or not isinstance(node, str):
            raise ValidationFailure("Bootstrap record needs public_key and peer_node_identifier")

        try:
            # Printed codes may wrap the base64 across lines
            raw = base64.b64decode("".join(encoded_key.split()), validate=True)
        except binascii.Error as e:
            raise ValidationFailure("Bootstrap public key is not valid base64") from e

        return cls(public_key=raw, peer_node_identifier=node)


def _checksum(header: bytes, nonce: bytes, body: bytes) -> bytes:
    return hashlib.sha256(header + nonce + body).digest()[:TAG_SIZE]


def build_handshake_frame(session_id: int, created_at_ms: int, initiator_public: PeerPublicKey,
                          source_id: int, destination_id: int, ttl: int) -> Frame:
    """
    Build the HANDSHAKE frame that announces a new session to the responder.

    Args:
        session_id: Session id chosen by the initiator
        created_at_ms: Session creation time in milliseconds
        initiator_public: Initiator's public key
        source_id: Initiator device id
        destination_id: Responder device id (0 if unknown)
        ttl: Hop limit

    Returns:
        HANDSHAKE Frame
    """
    if len(initiator_public.raw) != PUBLIC_KEY_SIZE:
        raise ValidationFailure(f"Initiator public key must be {PUBLIC_KEY_SIZE} bytes")

    body = struct.pack('!Q', created_at_ms) + initiator_public.raw
    nonce = generate_random_bytes(NONCE_SIZE)

    header = build_header(FrameType.HANDSHAKE, FrameFlags.NONE, source_id, destination_id,
                          session_id, 0, ttl)
    tag = _checksum(header, nonce, body)

    return Frame(
        type=FrameType.HANDSHAKE,
        flags=FrameFlags.NONE,
        source_id=source_id,
        destination_id=destination_id,
        session_id=session_id,
        sequence=0,
        ttl=ttl,
        nonce=nonce,
        ciphertext=body,
        tag=tag,
    )


def parse_handshake_frame(frame: Frame) -> Tuple[int, int, PeerPublicKey]:
    """
    Extract (session_id, created_at_ms, initiator_public_key) from a HANDSHAKE frame.

    Raises:
        MalformedFrame: If the frame is not a well-formed handshake
    """
    if frame.type != FrameType.HANDSHAKE:
        raise MalformedFrame(f"Expected HANDSHAKE frame, got type {frame.type}")
    if not is_valid(frame):
        raise MalformedFrame("Handshake frame failed validation")
    if len(frame.ciphertext) != HANDSHAKE_BODY_SIZE:
        raise MalformedFrame(
            f"Handshake body must be {HANDSHAKE_BODY_SIZE} bytes, got {len(frame.ciphertext)}"
        )
    if frame.session_id == 0:
        raise MalformedFrame("Handshake names session id 0")

    expected = _checksum(frame.header_bytes(), frame.nonce, frame.ciphertext)
    if not constant_time_compare(expected, frame.tag):
        raise MalformedFrame("Handshake checksum mismatch")

    (created_at_ms,) = struct.unpack_from('!Q', frame.ciphertext, 0)
    initiator_public = PeerPublicKey(frame.ciphertext[8:])
    return frame.session_id, created_at_ms, initiator_public
