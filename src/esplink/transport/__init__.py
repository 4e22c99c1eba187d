"""Transport layer for the device message channel."""

from esplink.transport.base import (
    EventCallback,
    Transport,
    TransportEvent,
    TransportFactory,
)
from esplink.transport.websocket import WebSocketTransport

__all__ = [
    "EventCallback",
    "Transport",
    "TransportEvent",
    "TransportFactory",
    "WebSocketTransport",
]
