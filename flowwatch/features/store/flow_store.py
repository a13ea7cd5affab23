"""Async Redis-backed snapshot store for whale flows.

Responsibilities
- Keys: {namespace}:whale_tx:{hash}, {namespace}:exchange_flow:{epoch_sec}
  and {namespace}:exchange_flow:latest
- Async write/read (+ pipelined batch write) with optional TTL
- Prometheus metrics: writes/reads/hits/misses + op latency
"""
from __future__ import annotations

from typing import Any, List, Optional, Sequence
import time
import logging
import os

from prometheus_client import Counter, Histogram
from redis import asyncio as aioredis  # redis>=4.5

from flowwatch.common.time_norm import epoch_seconds
from flowwatch.ingestion_service.config import settings
from flowwatch.ingestion_service.utils import _METRICS_REGISTRY
from flowwatch.models import ClassifiedTransaction, ExchangeFlowStats

logger = logging.getLogger(__name__)

# ------------------------------
# Metrics
# ------------------------------
FLOW_WRITES_TOTAL = Counter(
    "flow_store_writes_total",
    "Number of flow store write operations",
    labelnames=("kind",),
    registry=_METRICS_REGISTRY,
)
FLOW_READS_TOTAL = Counter(
    "flow_store_reads_total",
    "Number of flow store read operations",
    labelnames=("kind",),
    registry=_METRICS_REGISTRY,
)
FLOW_HITS_TOTAL = Counter(
    "flow_store_hits_total",
    "Number of cache hits on read",
    labelnames=("kind",),
    registry=_METRICS_REGISTRY,
)
FLOW_MISSES_TOTAL = Counter(
    "flow_store_misses_total",
    "Number of cache misses on read",
    labelnames=("kind",),
    registry=_METRICS_REGISTRY,
)
FLOW_OP_LATENCY = Histogram(
    "flow_store_op_latency_seconds",
    "Latency of flow store operations",
    labelnames=("op",),
    registry=_METRICS_REGISTRY,
)

TX_KIND = "whale_tx"
FLOW_KIND = "exchange_flow"


class FlowStore:
    """Async snapshot store wrapper around Redis."""

    def __init__(
        self,
        url: str,
        *,
        namespace: str = "flows",
        default_ttl: Optional[int] = None,
        redis_client: Optional[aioredis.Redis] = None,
    ) -> None:
        if not url:
            raise RuntimeError("REDIS_URL is not configured")
        self._url = url
        self._namespace = (namespace or "flows").strip()
        self._default_ttl = int(default_ttl) if (default_ttl not in (None, "", "None")) else None
        self._client: Optional[aioredis.Redis] = redis_client

    def _key(self, kind: str, suffix: Any) -> str:
        return f"{self._namespace}:{kind}:{suffix}"

    def _ensure_client(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.from_url(self._url, encoding="utf-8", decode_responses=True)
        return self._client

    async def write_transactions(
        self, transactions: Sequence[ClassifiedTransaction], ttl: Optional[int] = None
    ) -> List[str]:
        """Pipelined write keyed by tx hash; returns the keys written."""
        if not transactions:
            return []
        start = time.perf_counter()
        client = self._ensure_client()
        keys: List[str] = []
        async with client.pipeline(transaction=False) as pipe:
            for tx in transactions:
                key = self._key(TX_KIND, tx.hash)
                keys.append(key)
                # IMPORTANT: do NOT `await` individual pipeline commands
                pipe.set(key, tx.model_dump_json(), ex=ttl or self._default_ttl)
            await pipe.execute()
        FLOW_WRITES_TOTAL.labels(kind=TX_KIND).inc(len(keys))
        FLOW_OP_LATENCY.labels(op="write_transactions").observe(time.perf_counter() - start)
        return keys

    async def read_transaction(self, tx_hash: str) -> Optional[ClassifiedTransaction]:
        raw = await self._get(TX_KIND, self._key(TX_KIND, tx_hash))
        return ClassifiedTransaction.model_validate_json(raw) if raw is not None else None

    async def write_stats(
        self, stats: ExchangeFlowStats, ts: Any, ttl: Optional[int] = None
    ) -> str:
        """Store a stats snapshot at `ts` and move the `latest` pointer to it."""
        start = time.perf_counter()
        key = self._key(FLOW_KIND, epoch_seconds(ts))
        blob = stats.model_dump_json()
        client = self._ensure_client()
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.set(key, blob, ex=ttl or self._default_ttl)
                pipe.set(self._key(FLOW_KIND, "latest"), blob)
                await pipe.execute()
            FLOW_WRITES_TOTAL.labels(kind=FLOW_KIND).inc()
            return key
        finally:
            FLOW_OP_LATENCY.labels(op="write_stats").observe(time.perf_counter() - start)

    async def read_stats(self, ts: Any) -> Optional[ExchangeFlowStats]:
        raw = await self._get(FLOW_KIND, self._key(FLOW_KIND, epoch_seconds(ts)))
        return ExchangeFlowStats.model_validate_json(raw) if raw is not None else None

    async def latest_stats(self) -> Optional[ExchangeFlowStats]:
        raw = await self._get(FLOW_KIND, self._key(FLOW_KIND, "latest"))
        return ExchangeFlowStats.model_validate_json(raw) if raw is not None else None

    async def _get(self, kind: str, key: str) -> Optional[str]:
        start = time.perf_counter()
        client = self._ensure_client()
        try:
            FLOW_READS_TOTAL.labels(kind=kind).inc()
            raw = await client.get(key)
            if raw is None:
                FLOW_MISSES_TOTAL.labels(kind=kind).inc()
                return None
            FLOW_HITS_TOTAL.labels(kind=kind).inc()
            return raw
        finally:
            FLOW_OP_LATENCY.labels(op="read").observe(time.perf_counter() - start)

    async def aclose(self) -> None:
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                try:
                    await self._client.connection_pool.disconnect()
                except Exception:
                    logger.debug("Redis pool disconnect failed", exc_info=True)


# ------------------------------
# Singleton accessor for DI
# ------------------------------
_store_singleton: Optional[FlowStore] = None


def get_store() -> FlowStore:
    """Return a process-wide singleton store using settings/env values.

    settings/env keys:
      - REDIS_URL (str)                e.g. redis://redis:6379/0
      - REDIS_HOST/PORT/DB             used to synthesize URL if REDIS_URL missing
      - FLOW_TTL_SEC (int|None)        default TTL for writes
      - FLOW_NAMESPACE (str)           key namespace, default 'flows'
    """
    global _store_singleton
    if _store_singleton is None:
        url = getattr(settings, "REDIS_URL", None) or os.getenv("REDIS_URL")
        if not url:
            host = getattr(settings, "redis_host", None) or os.getenv("REDIS_HOST", "redis")
            port = getattr(settings, "redis_port", None) or os.getenv("REDIS_PORT", "6379")
            db = getattr(settings, "redis_db", None)
            if db is None:
                db = os.getenv("REDIS_DB", "0")
            url = f"redis://{host}:{port}/{db}"

        ttl = getattr(settings, "FLOW_TTL_SEC", None)
        ns = getattr(settings, "FLOW_NAMESPACE", None) or "flows"

        _store_singleton = FlowStore(url=url, namespace=ns, default_ttl=ttl)
        logger.info("FlowStore initialized: url=%s namespace=%s ttl=%s", url, ns, ttl)
    return _store_singleton


async def close_store() -> None:
    global _store_singleton
    if _store_singleton is not None:
        store, _store_singleton = _store_singleton, None
        await store.aclose()


__all__ = [
    "FlowStore",
    "get_store",
    "close_store",
    "FLOW_WRITES_TOTAL",
    "FLOW_READS_TOTAL",
    "FLOW_HITS_TOTAL",
    "FLOW_MISSES_TOTAL",
    "FLOW_OP_LATENCY",
]
