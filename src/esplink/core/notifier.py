"""Single-slot transient status messages for the user."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import StrEnum
from typing import Callable

from esplink.protocol.commands import now_ms
from esplink.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT_MS = 3000


class Severity(StrEnum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    INFO = "info"


@dataclass(frozen=True)
class Notification:
    message: str
    severity: Severity
    issued_at: int


NotificationListener = Callable[[Notification | None], None]


class Notifier:
    """Holds at most one visible notification and auto-dismisses it.

    Each ``notify`` replaces whatever is showing and restarts the dismiss
    timer. Listeners get the new Notification, and ``None`` when the slot
    empties. Delivery is best effort.
    """

    def __init__(
        self,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        *,
        loop: asyncio.AbstractEventLoop,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._timeout_ms = timeout_ms
        self._loop = loop
        self._clock = clock
        self._active: Notification | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._listeners: list[NotificationListener] = []

    @property
    def active(self) -> Notification | None:
        return self._active

    def subscribe(self, listener: NotificationListener) -> None:
        self._listeners.append(listener)

    def notify(self, message: str, severity: Severity | str = Severity.INFO) -> Notification:
        note = Notification(message=message, severity=Severity(severity), issued_at=self._clock())
        self._cancel_timer()
        self._active = note
        self._timer = self._loop.call_later(self._timeout_ms / 1000, self._expire)
        logger.debug("notify", message=message, severity=note.severity.value)
        self._publish(note)
        return note

    def dismiss(self) -> None:
        self._cancel_timer()
        if self._active is None:
            return
        self._active = None
        self._publish(None)

    def close(self) -> None:
        """Drop the active notification and its timer without notifying."""
        self._cancel_timer()
        self._active = None

    def _expire(self) -> None:
        self._timer = None
        self.dismiss()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _publish(self, note: Notification | None) -> None:
        for listener in list(self._listeners):
            listener(note)
