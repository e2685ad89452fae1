"""
UDP Transport for SecureLink.

Carries frames as single datagrams. A background thread receives
datagrams and hands them to the frame handler; sends go to the address
registered for the frame's session, or to a default peer address.
"""

import logging
import socket
import threading
import time
from typing import Dict, Optional, Tuple

from ..errors import TransportError
from ..protocol.frame import MIN_FRAME_SIZE
from .base import Connected, Connecting, Disconnected, Failed, Transport


logger = logging.getLogger(__name__)

Address = Tuple[str, int]

MAX_DATAGRAM_SIZE = 65536


class UDPTransport(Transport):
    """
    UDP transport implementation.

    Remembers, per session id, the address of the last frame for that
    session that the channel confirmed as authenticated, so replies go back
    to the right peer. Unauthenticated datagrams never change a route.
    """

    def __init__(self, bind_address: str = "0.0.0.0", bind_port: int = 0,
                 default_peer: Optional[Address] = None):
        """
        Initialize UDP transport.

        Args:
            bind_address: Local interface to bind to
            bind_port: Local port to bind to (0 = auto-assign)
            default_peer: Address used when a session has no learned route
        """
        super().__init__()
        self.bind_address = bind_address
        self.bind_port = bind_port
        self.default_peer = default_peer
        self._socket: Optional[socket.socket] = None
        self._receive_thread: Optional[threading.Thread] = None
        self._running = False
        self._routes: Dict[int, Address] = {}
        self._routes_lock = threading.Lock()
        # Source address of the datagram being delivered on this thread
        self._delivery = threading.local()

    def start(self) -> Address:
        """
        Bind the socket and start the receive thread.

        Returns:
            Actual (host, port) being used

        Raises:
            TransportError: If the socket cannot be created or bound
        """
        if self._running:
            return self.get_local_address()

        self._status = Connecting()
        try:
            self._socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            self._socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            self._socket.bind((self.bind_address, self.bind_port))
            self._socket.settimeout(0.5)
            self.bind_port = self._socket.getsockname()[1]
        except OSError as e:
            self._status = Failed(str(e))
            self._close_socket()
            raise TransportError(f"Failed to bind UDP socket: {e}") from e

        self._running = True
        self._receive_thread = threading.Thread(target=self._receive_loop, daemon=True)
        self._receive_thread.start()

        self._status = Connected(f"{self.bind_address}:{self.bind_port}")
        logger.info(f"UDP transport started on {self.bind_address}:{self.bind_port}")
        return self.get_local_address()

    def close(self) -> None:
        """Stop the receive thread and close the socket."""
        self._running = False
        self._close_socket()

        if self._receive_thread and self._receive_thread.is_alive():
            self._receive_thread.join(timeout=1.0)
        self._receive_thread = None

        self._status = Disconnected()
        logger.info("UDP transport stopped")

    def _close_socket(self) -> None:
        if self._socket:
            self._socket.close()
            self._socket = None

    def set_route(self, session_id: int, address: Address) -> None:
        """Send frames for this session to the given address."""
        with self._routes_lock:
            self._routes[session_id] = address

    def route_for(self, session_id: int) -> Optional[Address]:
        with self._routes_lock:
            return self._routes.get(session_id, self.default_peer)

    def confirm_source(self, session_id: int) -> None:
        """Route this session to the sender of the datagram being delivered."""
        source = getattr(self._delivery, 'source', None)
        if source is None:
            return
        with self._routes_lock:
            previous = self._routes.get(session_id)
            self._routes[session_id] = source
        if previous is not None and previous != source:
            logger.info(f"Session {session_id} moved from {previous} to {source}")

    def forget_route(self, session_id: int) -> None:
        with self._routes_lock:
            self._routes.pop(session_id, None)

    def send(self, session_id: int, frame_bytes: bytes) -> bool:
        """
        Send a frame as one datagram.

        Returns:
            True if the datagram was sent, False if there is no route or
            the socket failed
        """
        if not self._running or not self._socket:
            logger.error(f"Cannot send frame for session {session_id}: transport not started")
            return False

        destination = self.route_for(session_id)
        if destination is None:
            logger.error(f"No route for session {session_id}")
            return False

        try:
            self._socket.sendto(frame_bytes, destination)
            return True
        except OSError as e:
            logger.error(f"Failed to send frame to {destination}: {e}")
            return False

    def get_local_address(self) -> Address:
        """
        Get the local bound address.

        Raises:
            TransportError: If the socket is not bound
        """
        if not self._socket:
            raise TransportError("Socket not bound")
        return self._socket.getsockname()

    def _receive_loop(self):
        """Main receive loop (runs in background thread)."""
        while self._running:
            sock = self._socket
            if sock is None:
                break

            try:
                data, source = sock.recvfrom(MAX_DATAGRAM_SIZE)
            except socket.timeout:
                continue
            except OSError as e:
                if self._running:
                    logger.error(f"Error in receive loop: {e}")
                    time.sleep(0.1)  # Brief pause to avoid tight error loop
                continue

            if len(data) < MIN_FRAME_SIZE:
                logger.warning(f"Received undersized datagram from {source}")
                continue

            self._delivery.source = source
            try:
                self.deliver(data)
            except Exception as e:
                logger.error(f"Frame handler failed for datagram from {source}: {e}")
            finally:
                self._delivery.source = None

    def __repr__(self):
        return f"UDPTransport({self.bind_address}:{self.bind_port}, {type(self._status).__name__})"

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
