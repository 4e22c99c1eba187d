"""Connection lifecycle for one device session.

State machine::

    IDLE -> CONNECTING -> OPEN -> CLOSED -> CONNECTING -> ...
                     \\-> CLOSED

Failures are never fatal: every close or error lands in CLOSED and
schedules exactly one reconnect. Staleness is handled by re-requesting
state, not by tearing the connection down, unless
``force_reconnect_after_ms`` is configured.
"""

from __future__ import annotations

import asyncio
from enum import StrEnum
from typing import Any, Callable

from esplink.config import SessionConfig
from esplink.core.notifier import Notifier, Severity
from esplink.exceptions import DecodeError, NotConnectedError, TransportError
from esplink.protocol.commands import Command, encode_command, now_ms, refresh_command
from esplink.protocol.snapshot import DeviceSnapshot, decode_snapshot
from esplink.transport.base import Transport, TransportEvent, TransportFactory
from esplink.utils.logging import get_logger

logger = get_logger(__name__)


class ConnectionState(StrEnum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.IDLE: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset({ConnectionState.OPEN, ConnectionState.CLOSED}),
    ConnectionState.OPEN: frozenset({ConnectionState.CLOSED}),
    ConnectionState.CLOSED: frozenset({ConnectionState.CONNECTING}),
}

SnapshotCallback = Callable[[DeviceSnapshot], None]
StateListener = Callable[[ConnectionState], None]


class SessionManager:
    """Owns the transport, the reconnect timer, and the liveness check.

    Args:
        config: Endpoint and timing settings.
        transport_factory: Builds a Transport for a URL and event callback.
        on_snapshot: Receives every successfully decoded snapshot.
        notifier: Surface for user-facing connection notices.
        loop: Event loop used for timers.
        clock: Wall clock in epoch milliseconds.
    """

    def __init__(
        self,
        config: SessionConfig,
        transport_factory: TransportFactory,
        *,
        on_snapshot: SnapshotCallback | None = None,
        notifier: Notifier | None = None,
        loop: asyncio.AbstractEventLoop,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._config = config
        self._transport_factory = transport_factory
        self._on_snapshot = on_snapshot
        self._notifier = notifier
        self._loop = loop
        self._clock = clock

        self._state = ConnectionState.IDLE
        self._transport: Transport | None = None
        self._generation = 0
        self._last_message_ms = clock()
        self._reconnect_delay_ms = config.reconnect_delay_ms
        self._reconnect_timer: asyncio.TimerHandle | None = None
        self._liveness_timer: asyncio.TimerHandle | None = None
        self._stopped = False
        self._listeners: list[StateListener] = []
        self.decode_failures = 0

        self._handlers: dict[TransportEvent, Callable[[Any], None]] = {
            TransportEvent.OPEN: self._handle_open,
            TransportEvent.MESSAGE: self._handle_message,
            TransportEvent.CLOSE: self._handle_close,
            TransportEvent.ERROR: self._handle_error,
        }

    # --- Introspection ---

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == ConnectionState.OPEN

    @property
    def last_message_ms(self) -> int:
        return self._last_message_ms

    @property
    def reconnect_delay_ms(self) -> int:
        return self._reconnect_delay_ms

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_timer is not None

    def subscribe(self, listener: StateListener) -> None:
        """Register a callback for connection state changes."""
        self._listeners.append(listener)

    # --- Lifecycle ---

    def start(self) -> None:
        """Connect and start the periodic liveness check."""
        self._stopped = False
        self.connect()
        if self._liveness_timer is None:
            self._schedule_liveness()

    def stop(self) -> None:
        """Tear the session down: cancel timers, close, never reconnect."""
        self._stopped = True
        self._cancel_reconnect()
        if self._liveness_timer is not None:
            self._liveness_timer.cancel()
            self._liveness_timer = None
        self._drop_transport()
        if self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            self._set_state(ConnectionState.CLOSED)
        logger.info("session_stopped")

    def connect(self) -> bool:
        """Open a new transport. Only valid from IDLE or CLOSED.

        Returns:
            True if a connection attempt was started.
        """
        if self._state not in (ConnectionState.IDLE, ConnectionState.CLOSED):
            logger.warning("connect_ignored", state=self._state.value)
            return False

        self._cancel_reconnect()
        self._generation += 1
        generation = self._generation
        url = self._config.url
        self._transport = self._transport_factory(
            url, lambda event, data=None: self._dispatch(generation, event, data)
        )
        self._set_state(ConnectionState.CONNECTING)
        logger.info("session_connecting", url=url, attempt=generation)
        try:
            self._transport.open()
        except (OSError, TransportError) as exc:
            self._dispatch(generation, TransportEvent.ERROR, exc)
        return True

    # --- Outbound ---

    def send(self, command: Command) -> None:
        """Send one command over the open transport.

        Raises:
            NotConnectedError: If the session is not OPEN. The command is
                dropped and the user is notified.
            TransportError: If the transport rejected the frame; the
                session moves to CLOSED and reconnects.
        """
        if self._state != ConnectionState.OPEN or self._transport is None:
            logger.warning("command_dropped", type=command.type.value, state=self._state.value)
            if self._notifier is not None:
                self._notifier.notify("No connection to device", Severity.WARNING)
            raise NotConnectedError(
                f"Cannot send '{command.type.value}': session is {self._state.value}"
            )
        try:
            self._transport.send(encode_command(command))
        except TransportError as exc:
            self._handle_error(exc)
            raise
        logger.debug("command_sent", type=command.type.value, data=command.payload)

    # --- Liveness ---

    def check_liveness(self) -> bool:
        """Re-request state if nothing has arrived for too long.

        Returns:
            True if a refresh request was sent.
        """
        if self._state != ConnectionState.OPEN:
            return False
        silent_ms = self._clock() - self._last_message_ms

        force_after = self._config.force_reconnect_after_ms
        if force_after is not None and silent_ms > force_after:
            logger.warning("session_stale_forcing_reconnect", silent_ms=silent_ms)
            self._handle_close("stale")
            return False

        if silent_ms <= self._config.stale_after_ms:
            return False
        logger.info("session_stale_ping", silent_ms=silent_ms)
        try:
            self.send(refresh_command())
        except TransportError:
            return False
        return True

    # --- Transport events ---

    def handle_event(self, event: TransportEvent, data: Any = None) -> None:
        """Feed an event from the current transport into the state machine."""
        self._handlers[event](data)

    def _dispatch(self, generation: int, event: TransportEvent, data: Any) -> None:
        if generation != self._generation:
            logger.debug(
                "stale_transport_event", transport_event=event.value, generation=generation
            )
            return
        self.handle_event(event, data)

    def _handle_open(self, _data: Any) -> None:
        if self._state != ConnectionState.CONNECTING:
            logger.warning("unexpected_open", state=self._state.value)
            return
        self._cancel_reconnect()
        self._reconnect_delay_ms = self._config.reconnect_delay_ms
        self._set_state(ConnectionState.OPEN)
        logger.info("session_open", url=self._config.url)
        if self._notifier is not None:
            self._notifier.notify("Connected to device", Severity.SUCCESS)
        try:
            self.send(refresh_command())
        except TransportError:
            logger.warning("initial_refresh_failed")

    def _handle_message(self, raw: Any) -> None:
        try:
            snapshot = decode_snapshot(raw, motor_count=self._config.motor_count)
        except DecodeError as exc:
            self.decode_failures += 1
            logger.warning("snapshot_decode_failed", error=str(exc), code=exc.code)
            return
        self._last_message_ms = self._clock()
        if self._on_snapshot is not None:
            self._on_snapshot(snapshot)

    def _handle_close(self, reason: Any) -> None:
        self._drop_transport()
        self._enter_closed(reason, TransportEvent.CLOSE)

    def _handle_error(self, error: Any) -> None:
        self._drop_transport()
        self._enter_closed(error, TransportEvent.ERROR)

    def _enter_closed(self, reason: Any, event: TransportEvent) -> None:
        if self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            was_open = self._state == ConnectionState.OPEN
            self._set_state(ConnectionState.CLOSED)
            logger.info(
                "session_closed",
                transport_event=event.value,
                reason=str(reason),
                was_open=was_open,
            )
            if self._notifier is not None:
                self._notifier.notify("Disconnected from device", Severity.WARNING)
        self._schedule_reconnect()

    # --- Timers ---

    def _schedule_reconnect(self) -> None:
        if self._stopped or self._reconnect_timer is not None:
            return
        if self._state != ConnectionState.CLOSED:
            return
        delay_ms = self._reconnect_delay_ms
        self._reconnect_timer = self._loop.call_later(delay_ms / 1000, self._reconnect_due)
        logger.info("reconnect_scheduled", delay_ms=delay_ms)
        if self._config.reconnect_backoff == "exponential":
            self._reconnect_delay_ms = min(delay_ms * 2, self._config.max_reconnect_delay_ms)

    def _reconnect_due(self) -> None:
        self._reconnect_timer = None
        if self._stopped:
            return
        self.connect()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    def _schedule_liveness(self) -> None:
        self._liveness_timer = self._loop.call_later(
            self._config.liveness_interval_ms / 1000, self._liveness_due
        )

    def _liveness_due(self) -> None:
        self._liveness_timer = None
        if self._stopped:
            return
        self.check_liveness()
        self._schedule_liveness()

    # --- Helpers ---

    def _drop_transport(self) -> None:
        transport, self._transport = self._transport, None
        self._generation += 1
        if transport is not None:
            transport.close()

    def _set_state(self, new_state: ConnectionState) -> None:
        old_state = self._state
        if new_state not in _TRANSITIONS[old_state]:
            raise RuntimeError(f"Illegal session transition {old_state.value} -> {new_state.value}")
        self._state = new_state
        for listener in list(self._listeners):
            listener(new_state)
