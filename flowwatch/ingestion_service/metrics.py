# flowwatch/ingestion_service/metrics.py
from __future__ import annotations
import time
from typing import Optional
from prometheus_client import Counter, Gauge, Histogram

from flowwatch.ingestion_service.utils import _METRICS_REGISTRY

# --- Request-level metrics (per route domain) ---
INGEST_REQUESTS = Counter(
    "ingest_requests_total",
    "Total requests by domain and final status.",
    labelnames=("domain", "status"),
    registry=_METRICS_REGISTRY,
)

INGEST_DURATION = Histogram(
    "ingest_duration_seconds",
    "Request duration seconds by domain.",
    labelnames=("domain",),
    buckets=(0.02, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
    registry=_METRICS_REGISTRY,
)

# --- Whale pipeline ---
WHALE_TX_CLASSIFIED = Counter(
    "whale_transactions_classified_total",
    "Whale transactions classified, by signal.",
    labelnames=("signal",),
    registry=_METRICS_REGISTRY,
)

# --- Realtime channel ---
REALTIME_CLIENTS = Gauge(
    "realtime_connected_clients",
    "Currently open realtime push connections.",
    registry=_METRICS_REGISTRY,
)
REALTIME_EVENTS_SENT = Counter(
    "realtime_events_sent_total",
    "Realtime frames delivered to clients, by event type.",
    labelnames=("type",),
    registry=_METRICS_REGISTRY,
)
REALTIME_RECONNECTS = Counter(
    "realtime_reconnects_scheduled_total",
    "Reconnect attempts scheduled by realtime consumers.",
    registry=_METRICS_REGISTRY,
)
REALTIME_MALFORMED_FRAMES = Counter(
    "realtime_malformed_frames_total",
    "Inbound realtime frames dropped because they could not be decoded.",
    registry=_METRICS_REGISTRY,
)


class ingest_span:
    """Times one request and counts it under its final status.

        with ingest_span("whales") as span:
            ...
            span.set_status("no_data")

    The status set by the route wins. Without one, the request counts as
    "error" if an exception left the block and "ok" otherwise.
    """

    __slots__ = ("domain", "status", "_start")

    def __init__(self, domain: str):
        self.domain = domain
        self.status: Optional[str] = None
        self._start = 0.0

    def set_status(self, status: str) -> None:
        self.status = status

    def __enter__(self) -> "ingest_span":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        final = self.status or ("error" if exc_type is not None else "ok")
        INGEST_REQUESTS.labels(domain=self.domain, status=final).inc()
        INGEST_DURATION.labels(domain=self.domain).observe(time.perf_counter() - self._start)
        return False


def record_classified(signal: str, n: int = 1) -> None:
    if n > 0:
        WHALE_TX_CLASSIFIED.labels(signal=signal).inc(n)
