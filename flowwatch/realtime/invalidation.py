"""Routes realtime events to user alerts and order-list cache invalidation."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Literal, Optional

from flowwatch.models import OrderPayload, RealtimeEvent
from flowwatch.realtime.query_cache import QueryCache, QueryKey

logger = logging.getLogger(__name__)

ORDERS_QUERY_KEY = "/api/orders"
INVALIDATING_EVENTS = frozenset({"initial_data", "new_order", "order_filled", "order_disappeared"})

Severity = Literal["info", "critical"]


@dataclass(frozen=True)
class Alert:
    severity: Severity
    title: str
    description: str
    duration_ms: int
    event_type: str


def format_price(price: float) -> str:
    """93000 -> '93,000'; 93000.125 -> '93,000.125' (at most 3 decimals)."""
    text = f"{price:,.3f}".rstrip("0").rstrip(".")
    return text


_TITLES = {
    ("new_order", "critical"): "MEGA WHALE ALERT - ACTIVE",
    ("new_order", "info"): "Large Whale Alert - ACTIVE",
    ("order_filled", "critical"): "MEGA WHALE - FILLED",
    ("order_filled", "info"): "Large Whale - FILLED",
}
_STATUS = {"new_order": "ACTIVE", "order_filled": "FILLED"}


class CacheInvalidationRouter:
    def __init__(
        self,
        cache: QueryCache,
        *,
        notify: Optional[Callable[[Alert], None]] = None,
        resource_key: str = ORDERS_QUERY_KEY,
        info_size: float = 100.0,
        critical_size: float = 1000.0,
        info_duration_ms: int = 7000,
        critical_duration_ms: int = 10000,
    ) -> None:
        self.cache = cache
        self._notify = notify
        self.resource_key = resource_key
        self.info_size = info_size
        self.critical_size = critical_size
        self.info_duration_ms = info_duration_ms
        self.critical_duration_ms = critical_duration_ms

    def alert_for(self, event: RealtimeEvent) -> Optional[Alert]:
        if event.type not in _STATUS or event.order is None:
            return None
        return self._order_alert(event.type, event.order)

    def _order_alert(self, event_type: str, order: OrderPayload) -> Optional[Alert]:
        if order.size >= self.critical_size:
            severity: Severity = "critical"
            duration = self.critical_duration_ms
        elif order.size >= self.info_size:
            severity = "info"
            duration = self.info_duration_ms
        else:
            return None
        price = order.price
        if event_type == "order_filled" and order.fill_price is not None:
            price = order.fill_price
        description = (
            f"{order.size:.2f} BTC {order.type.upper()} at ${format_price(price)} "
            f"on {order.exchange.upper()} | Status: {_STATUS[event_type]}"
        )
        return Alert(
            severity=severity,
            title=_TITLES[(event_type, severity)],
            description=description,
            duration_ms=duration,
            event_type=event_type,
        )

    async def handle(self, event: RealtimeEvent) -> Optional[Alert]:
        """Emit the alert (if any), then invalidate order lists; both always run."""
        alert = self.alert_for(event)
        if alert is not None and self._notify is not None:
            try:
                self._notify(alert)
            except Exception:
                logger.exception("Alert sink failed for %s", alert.title)
        if event.type in INVALIDATING_EVENTS:
            await self.invalidate_orders()
        return alert

    async def invalidate_orders(self) -> List[QueryKey]:
        refetched = await self.cache.invalidate((self.resource_key,), refetch="active")
        logger.debug("Invalidated %s; refetched %d active queries", self.resource_key, len(refetched))
        return refetched
