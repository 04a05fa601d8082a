"""Source connector framework.

Every source (streaming socket or periodic poll) runs the same reconnect
state machine:

    disconnected -> connecting -> connected -> (error | backoff -> connecting)

A failed session waits ``backoff_base ** attempt`` seconds before the next
attempt. After ``max_attempts`` consecutive failures the connector settles
in ``ERROR`` and only an explicit :meth:`SourceConnector.reconnect` revives it.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection

from token_sniper.ingestor.models import RawEvent

logger = logging.getLogger(__name__)

DEFAULT_BACKOFF_BASE = 2
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_HEARTBEAT_INTERVAL = 30  # seconds
DEFAULT_QUEUE_SIZE = 1000
DEFAULT_CONNECT_TIMEOUT = 10  # seconds

_STOP = object()


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    BACKOFF = "backoff"
    ERROR = "error"


@dataclass
class ConnectorStats:
    events_received: int = 0
    events_dropped: int = 0
    heartbeats_sent: int = 0
    reconnect_count: int = 0
    last_message_time: float | None = None
    connected_since: float | None = None
    last_error: str | None = None


class SourceError(Exception):
    """Base exception for source connector errors."""


class TransportError(SourceError):
    """Raised when a connector's transport fails (connect, receive, send, poll)."""


StateCallback = Callable[[str, ConnectionState], Awaitable[None]]


class SourceConnector(ABC):
    """Base class for all token sources.

    Subclasses implement :meth:`_session`, which runs one transport
    session until it fails (raise :class:`TransportError`) or the connector
    is stopped (return). They call :meth:`_mark_connected` once the provider
    confirms the subscription and :meth:`_emit` for each raw payload.

    Example:
        ```python
        connector = PumpPortalConnector(url="wss://pumpportal.fun/api/data")
        await connector.start()
        async for event in connector.events():
            handle(event)
        ```
    """

    name: str = "source"

    def __init__(
        self,
        *,
        backoff_base: int = DEFAULT_BACKOFF_BASE,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        on_state_change: StateCallback | None = None,
    ) -> None:
        self._backoff_base = backoff_base
        self._max_attempts = max_attempts
        self._on_state_change = on_state_change

        self._state = ConnectionState.DISCONNECTED
        self._stats = ConnectorStats()
        self._attempt = 0
        self._error_reason: str | None = None

        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=queue_size)
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def stats(self) -> ConnectorStats:
        return self._stats

    @property
    def attempt(self) -> int:
        """Consecutive failed sessions since the last confirmed connection."""
        return self._attempt

    @property
    def error_reason(self) -> str | None:
        return self._error_reason

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait before reconnect attempt ``attempt`` (zero-based)."""
        return float(self._backoff_base**attempt)

    async def _set_state(self, new_state: ConnectionState) -> None:
        if self._state != new_state:
            old = self._state
            self._state = new_state
            logger.info("%s connector state: %s -> %s", self.name, old.value, new_state.value)
            if self._on_state_change:
                try:
                    await self._on_state_change(self.name, new_state)
                except Exception as e:  # pragma: no cover
                    logger.error("Error in state change callback: %s", e)

    async def start(self) -> None:
        """Start the connector's receive loop in a background task."""
        if self.is_running:
            raise RuntimeError(f"{self.name} connector already running")
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name=f"connector-{self.name}")

    async def stop(self) -> None:
        """Cancel the receive loop and any pending backoff wait."""
        self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        await self._close_transport()
        await self._set_state(ConnectionState.DISCONNECTED)
        self._put_sentinel()

    async def reconnect(self) -> None:
        """Restart a connector that settled in the error state."""
        if self.is_running:
            logger.debug("%s connector already running; reconnect ignored", self.name)
            return
        self._attempt = 0
        self._error_reason = None
        await self.start()

    async def events(self) -> AsyncIterator[RawEvent]:
        """Yield raw payloads in arrival order until the connector stops."""
        while True:
            item = await self._queue.get()
            if item is _STOP:
                return
            yield item

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            await self._set_state(ConnectionState.CONNECTING)
            try:
                await self._session()
                if self._stop_event.is_set():
                    return
                raise TransportError("session ended unexpectedly")
            except Exception as e:
                if not isinstance(e, TransportError):
                    logger.exception("Unexpected %s session failure", self.name)
                self._stats.last_error = str(e)
                await self._close_transport()
                if self._attempt >= self._max_attempts:
                    self._error_reason = str(e)
                    logger.error(
                        "%s connector giving up after %d attempts: %s",
                        self.name,
                        self._attempt,
                        e,
                    )
                    await self._set_state(ConnectionState.ERROR)
                    return
                delay = self.backoff_delay(self._attempt)
                self._attempt += 1
                self._stats.reconnect_count += 1
                logger.warning(
                    "%s transport failure (%s); reconnect attempt %d in %.0fs",
                    self.name,
                    e,
                    self._attempt,
                    delay,
                )
                await self._set_state(ConnectionState.BACKOFF)
                await self._sleep_backoff(delay)

    async def _sleep_backoff(self, delay: float) -> None:
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)

    async def _mark_connected(self) -> None:
        if self._state != ConnectionState.CONNECTED:
            self._attempt = 0
            self._stats.connected_since = time.time()
            await self._set_state(ConnectionState.CONNECTED)

    def _emit(self, payload: dict[str, Any]) -> None:
        self._stats.events_received += 1
        self._stats.last_message_time = time.time()
        try:
            self._queue.put_nowait(RawEvent(source=self.name, payload=payload))
        except asyncio.QueueFull:
            self._stats.events_dropped += 1
            logger.warning("%s event queue full; dropping payload", self.name)

    def _put_sentinel(self) -> None:
        while True:
            try:
                self._queue.put_nowait(_STOP)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()

    @abstractmethod
    async def _session(self) -> None:
        """Run one transport session."""

    async def _close_transport(self) -> None:
        """Release transport resources held by the current session."""


class WebSocketConnector(SourceConnector):
    """Connector over a JSON WebSocket with subscribe requests and heartbeats."""

    def __init__(
        self,
        *,
        url: str,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._url = url
        self._heartbeat_interval = heartbeat_interval
        self._connect_timeout = connect_timeout
        self._ws: ClientConnection | None = None

    async def _connect(self) -> ClientConnection:
        try:
            return await websockets.connect(
                self._url,
                ping_interval=None,
                open_timeout=self._connect_timeout,
            )
        except (OSError, TimeoutError, websockets.WebSocketException) as e:
            raise TransportError(f"Failed to connect to {self.name}: {e}") from e

    async def _send(self, message: dict[str, Any]) -> None:
        if self._ws is None:
            raise TransportError(f"{self.name} is not connected")
        try:
            await self._ws.send(json.dumps(message))
        except (OSError, websockets.WebSocketException) as e:
            raise TransportError(f"{self.name} send failed: {e}") from e

    async def _session(self) -> None:
        self._ws = await self._connect()
        for request in self._subscription_requests():
            await self._send(request)
        await self._listen(self._ws)

    async def _listen(self, ws: ClientConnection) -> None:
        loop = asyncio.get_running_loop()
        last_heartbeat = loop.time()
        while not self._stop_event.is_set():
            try:
                message = await asyncio.wait_for(ws.recv(), timeout=1.0)
            except TimeoutError:
                message = None
            except websockets.ConnectionClosed as e:
                raise TransportError(f"{self.name} connection closed: {e}") from e
            except (OSError, websockets.WebSocketException) as e:
                raise TransportError(f"{self.name} receive failed: {e}") from e

            if isinstance(message, str):
                await self._handle_message(message)
            elif message is not None:
                logger.debug("Ignoring non-text %s frame", self.name)

            if self._state == ConnectionState.CONNECTED and loop.time() - last_heartbeat >= self._heartbeat_interval:
                await self._send(self._heartbeat_message())
                self._stats.heartbeats_sent += 1
                last_heartbeat = loop.time()

    async def _handle_message(self, message: str) -> None:
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.warning("Invalid JSON message on %s stream", self.name)
            return
        if not isinstance(data, dict):
            logger.debug("Ignoring non-object %s frame", self.name)
            return
        await self._handle_frame(data)

    async def _close_transport(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            with contextlib.suppress(Exception):
                await ws.close()

    @abstractmethod
    def _subscription_requests(self) -> Iterable[dict[str, Any]]:
        """Messages sent right after the socket opens."""

    @abstractmethod
    def _heartbeat_message(self) -> dict[str, Any]:
        """Message sent every ``heartbeat_interval`` seconds while connected."""

    @abstractmethod
    async def _handle_frame(self, data: dict[str, Any]) -> None:
        """Handle one decoded JSON object."""


class PollingConnector(SourceConnector):
    """Connector whose transport is a periodic HTTP poll.

    A successful poll counts as a confirmed connection; a failed poll goes
    through the same backoff machine as a dropped socket.
    """

    def __init__(self, *, poll_interval: float, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._poll_interval = poll_interval

    async def _session(self) -> None:
        while not self._stop_event.is_set():
            payloads = await self._poll_once()
            await self._mark_connected()
            for payload in payloads:
                self._emit(payload)
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)

    @abstractmethod
    async def _poll_once(self) -> list[dict[str, Any]]:
        """Fetch one batch of raw payloads; raise TransportError on failure."""


async def merge_events(connectors: Iterable[SourceConnector]) -> AsyncIterator[RawEvent]:
    """Merge the event streams of several connectors into one stream.

    Events from one connector keep their order; there is no ordering
    between connectors. The stream ends once every connector has stopped.
    """
    merged: asyncio.Queue[Any] = asyncio.Queue()

    async def forward(connector: SourceConnector) -> None:
        try:
            async for event in connector.events():
                await merged.put(event)
        finally:
            await merged.put(_STOP)

    tasks = [asyncio.create_task(forward(c), name=f"merge-{c.name}") for c in connectors]
    remaining = len(tasks)
    try:
        while remaining:
            item = await merged.get()
            if item is _STOP:
                remaining -= 1
                continue
            yield item
    finally:
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
