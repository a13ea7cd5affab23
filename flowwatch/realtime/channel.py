"""Consumer side of the realtime channel: a self-healing push connection.

State machine::

    CONNECTING -> OPEN -> RETRYING -> CONNECTING -> ...
         \\________________/
    (any state) -> DISPOSED   only via dispose()

A close or failed attempt schedules exactly one reconnect after
`reconnect_delay` seconds; any previously scheduled attempt is cancelled
first. All callbacks run on one event loop, so at most one connection is
ever live.
"""
from __future__ import annotations

import asyncio
import inspect
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union
from urllib.parse import urlsplit, urlunsplit

from pydantic import ValidationError

from flowwatch.ingestion_service.metrics import REALTIME_MALFORMED_FRAMES, REALTIME_RECONNECTS
from flowwatch.models import RealtimeEvent

logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAY = 3.0
DEFAULT_CONNECT_TIMEOUT = 3.0

EventHandler = Callable[[RealtimeEvent], Union[None, Awaitable[None]]]
Connector = Callable[[str], Awaitable[Any]]
Timer = Callable[[float, Callable[[], None]], asyncio.TimerHandle]


class ChannelState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    RETRYING = "retrying"
    DISPOSED = "disposed"


def endpoint_for_origin(origin: str, path: str = "/ws") -> str:
    """ws://host/ws for http origins, wss://host/ws for https ones."""
    parts = urlsplit(origin if "://" in origin else f"http://{origin}")
    scheme = "wss" if parts.scheme in ("https", "wss") else "ws"
    if not path.startswith("/"):
        path = "/" + path
    return urlunsplit((scheme, parts.netloc, path, "", ""))


async def _websockets_connect(url: str) -> Any:
    import websockets

    return await websockets.connect(url, ping_interval=20, ping_timeout=10)


def decode_frame(message: Union[str, bytes]) -> RealtimeEvent:
    """UTF-8 JSON text frame -> RealtimeEvent; raises ValueError when malformed."""
    if isinstance(message, (bytes, bytearray)):
        message = bytes(message).decode("utf-8")
    try:
        return RealtimeEvent.model_validate(json.loads(message))
    except ValidationError as e:
        raise ValueError(f"Unrecognised realtime event: {e.errors()[:1]}") from e


class RealtimeChannel:
    def __init__(
        self,
        url: str,
        on_event: EventHandler,
        *,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        connect_timeout: Optional[float] = DEFAULT_CONNECT_TIMEOUT,
        connector: Optional[Connector] = None,
        timer: Optional[Timer] = None,
    ) -> None:
        self.url = url
        self._on_event = on_event
        self._reconnect_delay = reconnect_delay
        self._connect_timeout = connect_timeout
        self._connector = connector or _websockets_connect
        self._timer = timer
        self._state = ChannelState.IDLE
        self._ws: Any = None
        self._retry_handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self.reconnects_scheduled = 0

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is ChannelState.OPEN

    def start(self) -> None:
        """Begin connecting. Must be called from inside the running loop."""
        if self._state is ChannelState.DISPOSED:
            raise RuntimeError("Channel has been disposed")
        if self._state is not ChannelState.IDLE:
            return
        self._begin_attempt()

    async def dispose(self) -> None:
        """Cancel any pending retry, close the live connection, stop for good."""
        if self._state is ChannelState.DISPOSED:
            return
        self._state = ChannelState.DISPOSED
        self._cancel_retry()
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug("Error closing realtime connection: %s", e)
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Realtime channel disposed")

    # ------------------------------------------------------------------
    # state transitions
    # ------------------------------------------------------------------

    def _begin_attempt(self) -> None:
        self._retry_handle = None
        if self._state is ChannelState.DISPOSED:
            return
        self._state = ChannelState.CONNECTING
        self._task = asyncio.get_running_loop().create_task(self._run_once())

    def _cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    def _schedule_reconnect(self) -> None:
        if self._state is ChannelState.DISPOSED:
            return
        self._cancel_retry()
        self._state = ChannelState.RETRYING
        timer = self._timer or asyncio.get_running_loop().call_later
        self._retry_handle = timer(self._reconnect_delay, self._begin_attempt)
        self.reconnects_scheduled += 1
        REALTIME_RECONNECTS.inc()
        logger.info("Realtime channel closed; reconnecting in %.1fs", self._reconnect_delay)

    async def _run_once(self) -> None:
        try:
            if self._connect_timeout:
                ws = await asyncio.wait_for(self._connector(self.url), timeout=self._connect_timeout)
            else:
                ws = await self._connector(self.url)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Realtime connect to %s failed: %s", self.url, e)
            self._schedule_reconnect()
            return

        if self._state is ChannelState.DISPOSED:
            await ws.close()
            return
        self._ws = ws
        self._state = ChannelState.OPEN
        logger.info("Realtime channel connected to %s", self.url)
        try:
            async for message in ws:
                await self._dispatch(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Realtime connection error: %s", e)
        finally:
            if self._ws is ws:
                self._ws = None
        self._schedule_reconnect()

    async def _dispatch(self, message: Union[str, bytes]) -> None:
        try:
            event = decode_frame(message)
        except (ValueError, UnicodeDecodeError) as e:
            REALTIME_MALFORMED_FRAMES.inc()
            logger.warning("Dropping malformed realtime frame: %s", e)
            return
        try:
            result = self._on_event(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Realtime event handler failed for %s", event.type)
