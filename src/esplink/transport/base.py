"""Abstract transport layer for the device message channel."""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import StrEnum
from typing import Any, Callable


class TransportEvent(StrEnum):
    """Events a transport reports back to its owner."""
    OPEN = "open"
    MESSAGE = "message"
    CLOSE = "close"
    ERROR = "error"


EventCallback = Callable[[TransportEvent, Any], None]


class Transport(ABC):
    """Abstract base for a bidirectional text-message channel.

    Implementations never raise out of the event path: connection
    results, inbound frames, and failures are all delivered through
    ``on_event``. ``open`` and ``close`` return immediately.
    """

    def __init__(self, url: str, on_event: EventCallback) -> None:
        self._url = url
        self._on_event = on_event

    @property
    def url(self) -> str:
        return self._url

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True once OPEN has been reported and until the channel closes."""

    @abstractmethod
    def open(self) -> None:
        """Start connecting. Reports OPEN, then MESSAGE*, then CLOSE or ERROR."""

    @abstractmethod
    def send(self, text: str) -> None:
        """Queue one text frame for delivery.

        Raises:
            TransportError: If the channel is not open.
        """

    @abstractmethod
    def close(self) -> None:
        """Tear the channel down without reporting further events."""

    def _emit(self, event: TransportEvent, data: Any = None) -> None:
        self._on_event(event, data)


TransportFactory = Callable[[str, EventCallback], Transport]
