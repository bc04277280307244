"""Outbound transports the dispatch queue delivers through."""
from channels.base import (
    MessageTransport,
    LogTransport,
    TransportError,
    PermanentTransportError,
    TransientTransportError,
)
from channels.factory import create_transport
from channels.wasender import WasenderTransport

__all__ = [
    "MessageTransport", "LogTransport",
    "TransportError", "PermanentTransportError", "TransientTransportError",
    "WasenderTransport", "create_transport",
]
