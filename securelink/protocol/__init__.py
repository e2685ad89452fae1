"""
SecureLink protocol layer.

Frame and payload codecs, the replay window, session state and the
session manager that ties them to the crypto primitives.
"""

from .frame import (
    Frame,
    FrameType,
    FrameFlags,
    build_header,
    parse_frame,
    is_valid,
    frame_summary,
    HEADER_SIZE,
    MIN_FRAME_SIZE,
)
from .payload import Payload, ContentType
from .window import ReplayGuard
from .session import Session, SessionState, SessionMetadata, DecodedMessage
from .handshake import BootstrapRecord, build_handshake_frame, parse_handshake_frame
from .manager import SessionManager

__all__ = [
    'Frame',
    'FrameType',
    'FrameFlags',
    'build_header',
    'parse_frame',
    'is_valid',
    'frame_summary',
    'HEADER_SIZE',
    'MIN_FRAME_SIZE',
    'Payload',
    'ContentType',
    'ReplayGuard',
    'Session',
    'SessionState',
    'SessionMetadata',
    'DecodedMessage',
    'BootstrapRecord',
    'build_handshake_frame',
    'parse_handshake_frame',
    'SessionManager',
]
