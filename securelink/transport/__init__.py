"""
Transport adapters for SecureLink.
"""

from .base import (
    Transport,
    ConnectionStatus,
    Disconnected,
    Connecting,
    Connected,
    Failed,
)
from .udp import UDPTransport

__all__ = [
    'Transport',
    'ConnectionStatus',
    'Disconnected',
    'Connecting',
    'Connected',
    'Failed',
    'UDPTransport',
]
