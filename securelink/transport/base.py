"""
Transport interface for SecureLink.

The session core never touches the network. A transport moves opaque
frame bytes: ``send`` pushes a frame toward the peer of a session, and a
registered frame handler is called with every inbound frame. Transports
that address peers learn a session's return route only when the handler
confirms, from inside the handler call, that the frame authenticated. The same
frame bytes are valid over a radio characteristic, a datagram socket or
a stream.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, Union


@dataclass(frozen=True)
class Disconnected:
    pass


@dataclass(frozen=True)
class Connecting:
    pass


@dataclass(frozen=True)
class Connected:
    local_address: str = ""


@dataclass(frozen=True)
class Failed:
    reason: str


ConnectionStatus = Union[Disconnected, Connecting, Connected, Failed]

FrameHandler = Callable[[bytes], None]


class Transport(ABC):
    """
    Abstract byte transport.

    Implementations call the registered frame handler from their own
    receive context (thread, callback, event loop).
    """

    def __init__(self):
        self._frame_handler: Optional[FrameHandler] = None
        self._status: ConnectionStatus = Disconnected()

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    def set_frame_handler(self, handler: Optional[FrameHandler]) -> None:
        """
        Register the callback for inbound frames.

        Args:
            handler: Function called with raw frame bytes, or None to detach
        """
        self._frame_handler = handler

    def deliver(self, frame_bytes: bytes) -> None:
        """Hand an inbound frame to the registered handler, if any."""
        if self._frame_handler is not None:
            self._frame_handler(frame_bytes)

    @abstractmethod
    def send(self, session_id: int, frame_bytes: bytes) -> bool:
        """
        Send a frame to the peer of a session.

        Args:
            session_id: Session the frame belongs to
            frame_bytes: Raw frame bytes

        Returns:
            True if the frame was handed to the network
        """

    def confirm_source(self, session_id: int) -> None:
        """
        Mark the frame currently being delivered as authenticated for a session.

        Only meaningful while the frame handler is running. Transports with
        per-peer addressing route the session's replies to that frame's
        sender; the default does nothing.
        """

    def forget_route(self, session_id: int) -> None:
        """Drop any return route held for a closed session."""

    def close(self) -> None:
        self._status = Disconnected()
