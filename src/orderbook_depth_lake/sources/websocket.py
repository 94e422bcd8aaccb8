from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import StrEnum
from typing import Any

import websockets

from orderbook_depth_lake.core.errors import FeedTransportError

logger = logging.getLogger(__name__)


class FeedState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    RECONNECTING = "reconnecting"
    STOPPED = "stopped"


class ReconnectPolicy:
    """Connection state machine with capped exponential backoff.

    Only transport failures move the machine; message-level problems are
    handled by the consumer and never reach it.
    """

    def __init__(
        self,
        *,
        initial_backoff_seconds: float = 1.0,
        max_backoff_seconds: float = 30.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._initial_backoff = initial_backoff_seconds
        self._max_backoff = max(max_backoff_seconds, initial_backoff_seconds)
        self._sleep = sleep
        self._backoff = initial_backoff_seconds
        self._state = FeedState.DISCONNECTED

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def backoff_seconds(self) -> float:
        return self._backoff

    @property
    def stopped(self) -> bool:
        return self._state is FeedState.STOPPED

    def begin_connect(self) -> None:
        if self.stopped:
            return
        self._state = FeedState.CONNECTING

    def mark_streaming(self) -> None:
        if self.stopped:
            return
        self._state = FeedState.STREAMING
        self._backoff = self._initial_backoff

    def on_transport_error(self) -> None:
        if self.stopped:
            return
        self._state = FeedState.RECONNECTING

    async def wait_before_reconnect(self) -> None:
        if self._state is not FeedState.RECONNECTING:
            return
        delay = self._backoff
        await self._sleep(delay)
        self._backoff = min(self._backoff * 2, self._max_backoff)
        if not self.stopped:
            self._state = FeedState.CONNECTING

    def shutdown(self) -> None:
        self._state = FeedState.STOPPED


class BinanceDepthFeed:
    """Lazy, unbounded stream of raw depth frames from one websocket URL."""

    def __init__(
        self,
        *,
        url: str,
        policy: ReconnectPolicy,
        read_timeout_seconds: float = 30.0,
        connect: Callable[..., Any] = websockets.connect,
    ) -> None:
        self._url = url
        self._policy = policy
        self._read_timeout_seconds = read_timeout_seconds
        self._connect = connect

    @property
    def policy(self) -> ReconnectPolicy:
        return self._policy

    def request_shutdown(self) -> None:
        self._policy.shutdown()

    async def frames(self) -> AsyncIterator[str | bytes]:
        while not self._policy.stopped:
            self._policy.begin_connect()
            try:
                async with self._connect(
                    self._url,
                    ping_interval=20,
                    ping_timeout=20,
                    close_timeout=5,
                    max_size=2**22,
                ) as websocket:
                    self._policy.mark_streaming()
                    logger.info("Connected to depth stream %s", self._url, extra={"url": self._url})

                    while not self._policy.stopped:
                        yield await self._read(websocket)
            except websockets.ConnectionClosed as exc:
                logger.warning("Depth stream closed by peer: %s", exc, extra={"url": self._url})
                self._policy.on_transport_error()
            except (OSError, websockets.WebSocketException, FeedTransportError) as exc:
                logger.warning("Depth stream transport error: %s", exc, extra={"url": self._url})
                self._policy.on_transport_error()

            if self._policy.stopped:
                break
            logger.info(
                "Reconnecting to depth stream",
                extra={"url": self._url, "sleep_seconds": self._policy.backoff_seconds},
            )
            await self._policy.wait_before_reconnect()

    async def _read(self, websocket: Any) -> str | bytes:
        try:
            return await asyncio.wait_for(websocket.recv(), timeout=self._read_timeout_seconds)
        except TimeoutError as exc:
            raise FeedTransportError(
                f"no frame received within {self._read_timeout_seconds:.1f}s"
            ) from exc
