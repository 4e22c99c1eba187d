"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import heapq
import itertools
import json

import pytest

from esplink.config import SessionConfig
from esplink.core.engine import DeviceEngine
from esplink.transport.base import Transport, TransportEvent


class FakeTimer:
    """Stand-in for asyncio.TimerHandle."""

    def __init__(self, when: float, callback, args) -> None:
        self.when = when
        self.callback = callback
        self.args = args
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled


class FakeLoop:
    """Event loop double with manually advanced time (seconds)."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self._now = start
        self._timers: list[tuple[float, int, FakeTimer]] = []
        self._seq = itertools.count()

    def time(self) -> float:
        return self._now

    def now_ms(self) -> int:
        return int(round(self._now * 1000))

    def call_later(self, delay: float, callback, *args) -> FakeTimer:
        timer = FakeTimer(self._now + delay, callback, args)
        heapq.heappush(self._timers, (timer.when, next(self._seq), timer))
        return timer

    @property
    def pending_timers(self) -> list[FakeTimer]:
        return [t for _, _, t in self._timers if not t.cancelled()]

    def advance(self, seconds: float) -> None:
        """Move time forward, firing due timers in order."""
        deadline = self._now + seconds
        while self._timers and self._timers[0][0] <= deadline:
            when, _, timer = heapq.heappop(self._timers)
            if timer.cancelled():
                continue
            self._now = when
            timer.callback(*timer.args)
        self._now = deadline


class FakeTransport(Transport):
    """Transport double that records frames and lets tests raise events."""

    def __init__(self, url: str, on_event) -> None:
        super().__init__(url, on_event)
        self.opened = False
        self.closed = False
        self.sent: list[str] = []
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        self.opened = True

    def send(self, text: str) -> None:
        self.sent.append(text)

    def close(self) -> None:
        self.closed = True
        self._open = False

    # Test helpers

    def fire_open(self) -> None:
        self._open = True
        self._emit(TransportEvent.OPEN)

    def fire_message(self, payload) -> None:
        text = payload if isinstance(payload, str) else json.dumps(payload)
        self._emit(TransportEvent.MESSAGE, text)

    def fire_close(self, code: int | None = 1006) -> None:
        self._open = False
        self._emit(TransportEvent.CLOSE, code)

    def fire_error(self, error: Exception | None = None) -> None:
        self._open = False
        self._emit(TransportEvent.ERROR, error or OSError("connection refused"))

    @property
    def sent_messages(self) -> list[dict]:
        return [json.loads(text) for text in self.sent]


class TransportRecorder:
    """Transport factory that keeps every transport it built."""

    def __init__(self) -> None:
        self.transports: list[FakeTransport] = []

    def __call__(self, url: str, on_event) -> FakeTransport:
        transport = FakeTransport(url, on_event)
        self.transports.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]

    def all_sent(self) -> list[dict]:
        return [msg for t in self.transports for msg in t.sent_messages]


@pytest.fixture
def loop() -> FakeLoop:
    return FakeLoop()


@pytest.fixture
def transports() -> TransportRecorder:
    return TransportRecorder()


@pytest.fixture
def config() -> SessionConfig:
    return SessionConfig(host="esp32.local")


@pytest.fixture
def engine(config: SessionConfig, transports: TransportRecorder, loop: FakeLoop) -> DeviceEngine:
    return DeviceEngine(config, transports, loop=loop, clock=loop.now_ms)


@pytest.fixture
def open_engine(engine: DeviceEngine, transports: TransportRecorder) -> DeviceEngine:
    """Engine with an OPEN session and the initial refresh already sent."""
    engine.start()
    transports.last.fire_open()
    transports.last.sent.clear()
    return engine


def motor_payload(
    position: int = 0,
    target: int = 0,
    running: bool = False,
    calibrating: bool = False,
    full_forward: bool = False,
    full_backward: bool = False,
) -> dict:
    return {
        "position": position,
        "target": target,
        "running": running,
        "calibrating": calibrating,
        "fullForward": full_forward,
        "fullBackward": full_backward,
    }


@pytest.fixture
def make_motor():
    """Factory for inbound ``motorN`` payload objects."""
    return motor_payload
