"""WebSocket transport built on the ``websockets`` asyncio client."""

from __future__ import annotations

import asyncio
from functools import partial
from typing import Any, Callable

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from esplink.exceptions import TransportError
from esplink.transport.base import EventCallback, Transport, TransportEvent, TransportFactory
from esplink.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_OPEN_TIMEOUT_S = 10.0


class WebSocketTransport(Transport):
    """One WebSocket connection driven by a reader task and a writer task.

    ``open`` schedules the connection on the event loop. Outbound frames
    go through an in-memory outbox drained by the writer task, so
    ``send`` never blocks the caller.
    """

    def __init__(
        self,
        url: str,
        on_event: EventCallback,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        connect: Callable[..., Any] | None = None,
        open_timeout: float = DEFAULT_OPEN_TIMEOUT_S,
    ) -> None:
        super().__init__(url, on_event)
        self._loop = loop
        self._connect = connect or websockets.connect
        self._open_timeout = open_timeout
        self._task: asyncio.Task | None = None
        self._ws: Any = None
        self._outbox: asyncio.Queue[str] | None = None
        self._closing = False

    @classmethod
    def factory(cls, **kwargs: Any) -> TransportFactory:
        """Return a transport factory with fixed keyword options."""
        return partial(cls, **kwargs)

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closing

    def open(self) -> None:
        if self._task is not None:
            raise TransportError("WebSocket transport already opened")
        loop = self._loop or asyncio.get_running_loop()
        self._outbox = asyncio.Queue()
        logger.info("ws_connecting", url=self._url)
        self._task = loop.create_task(self._run())

    def send(self, text: str) -> None:
        if not self.is_open or self._outbox is None:
            raise TransportError("WebSocket is not open")
        self._outbox.put_nowait(text)

    def close(self) -> None:
        if self._closing:
            return
        self._closing = True
        self._ws = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.info("ws_close_requested", url=self._url)

    async def _run(self) -> None:
        close_code = None
        try:
            async with self._connect(self._url, open_timeout=self._open_timeout) as ws:
                self._ws = ws
                logger.info("ws_open", url=self._url)
                self._emit(TransportEvent.OPEN)
                writer = asyncio.ensure_future(self._drain(ws))
                try:
                    async for message in ws:
                        if self._closing:
                            break
                        self._emit(TransportEvent.MESSAGE, message)
                finally:
                    writer.cancel()
                close_code = getattr(ws, "close_code", None)
        except ConnectionClosed as exc:
            rcvd = getattr(exc, "rcvd", None)
            close_code = getattr(rcvd, "code", None)
        except (OSError, TimeoutError, WebSocketException) as exc:
            self._ws = None
            if not self._closing:
                logger.warning("ws_error", url=self._url, error=str(exc))
                self._emit(TransportEvent.ERROR, exc)
            return

        self._ws = None
        if not self._closing:
            logger.info("ws_closed", url=self._url, code=close_code)
            self._emit(TransportEvent.CLOSE, close_code)

    async def _drain(self, ws: Any) -> None:
        assert self._outbox is not None
        while True:
            text = await self._outbox.get()
            try:
                await ws.send(text)
            except ConnectionClosed:
                logger.debug("ws_send_after_close", url=self._url)
                return
            except Exception as exc:
                if not self._closing:
                    logger.warning("ws_send_failed", url=self._url, error=str(exc))
                    self._emit(TransportEvent.ERROR, exc)
                # Stop the reader as well.
                self.close()
                return
