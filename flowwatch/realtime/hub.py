"""Producer side of the realtime channel.

Every accepted connection first receives an `initial_data` frame with the
recent-order snapshot, then one frame per published event. Delivery is
at-most-once per connection: there is no replay, and a connection whose send
fails is dropped.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Deque, List, Protocol, Set

from flowwatch.ingestion_service.metrics import REALTIME_CLIENTS, REALTIME_EVENTS_SENT
from flowwatch.models import OrderPayload, RealtimeEvent

logger = logging.getLogger(__name__)


class PushConnection(Protocol):
    async def accept(self) -> None: ...
    async def send_text(self, data: str) -> None: ...


class RealtimeHub:
    def __init__(self, *, snapshot_size: int = 50) -> None:
        self._clients: Set[PushConnection] = set()
        self._recent: Deque[OrderPayload] = deque(maxlen=snapshot_size)
        self._lock = asyncio.Lock()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def snapshot(self) -> List[OrderPayload]:
        return list(self._recent)

    async def connect(self, ws: PushConnection) -> None:
        await ws.accept()
        self._clients.add(ws)
        REALTIME_CLIENTS.set(len(self._clients))
        logger.info("Realtime client connected (%d open)", len(self._clients))
        initial = RealtimeEvent(type="initial_data", orders=self.snapshot())
        try:
            await ws.send_text(initial.to_frame())
            REALTIME_EVENTS_SENT.labels(type=initial.type).inc()
        except Exception as e:
            logger.warning("Initial snapshot send failed: %s", e)
            self.disconnect(ws)

    def disconnect(self, ws: PushConnection) -> None:
        if ws in self._clients:
            self._clients.discard(ws)
            REALTIME_CLIENTS.set(len(self._clients))
            logger.info("Realtime client disconnected (%d open)", len(self._clients))

    async def broadcast(self, event: RealtimeEvent) -> int:
        """Send `event` to every open connection; returns the delivery count."""
        frame = event.to_frame()
        delivered = 0
        async with self._lock:
            for ws in list(self._clients):
                try:
                    await ws.send_text(frame)
                    delivered += 1
                except Exception as e:
                    logger.warning("Dropping realtime client after send failure: %s", e)
                    self.disconnect(ws)
        if delivered:
            REALTIME_EVENTS_SENT.labels(type=event.type).inc(delivered)
        return delivered

    async def publish_new_order(self, order: OrderPayload) -> int:
        self._recent.append(order)
        return await self.broadcast(RealtimeEvent(type="new_order", order=order))

    async def publish_order_filled(self, order: OrderPayload) -> int:
        return await self.broadcast(RealtimeEvent(type="order_filled", order=order))

    async def publish_order_disappeared(self, order: OrderPayload) -> int:
        return await self.broadcast(RealtimeEvent(type="order_disappeared", order=order))
