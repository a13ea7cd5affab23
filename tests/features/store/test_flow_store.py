import pytest
from prometheus_client import generate_latest

from flowwatch.features.store import flow_store as fs
from flowwatch.features.store.flow_store import FlowStore
from flowwatch.ingestion_service.utils import _METRICS_REGISTRY
from flowwatch.models import (
    ClassifiedTransaction,
    ExchangeFlowStats,
    ExchangeId,
    Sentiment,
    Signal,
)

fakeredis = pytest.importorskip("fakeredis.aioredis")  # ensures dev dep present
from fakeredis.aioredis import FakeRedis  # type: ignore


def _tx(tx_hash):
    return ClassifiedTransaction(
        hash=tx_hash,
        timestamp_ms=1_700_000_000_000,
        amount_btc=150.0,
        amount_usd=13_950_000.0,
        from_address="bc1qm34lsc65zpw79lxes69zkqmk6ee3ewf0j77s3h",
        to_address="w",
        from_exchange=ExchangeId.BINANCE,
        to_exchange=None,
        signal=Signal.WITHDRAWAL,
        sentiment=Sentiment.BULLISH,
    )


STATS = ExchangeFlowStats(
    total_deposits=10.0,
    total_withdrawals=150.0,
    net_flow=140.0,
    sentiment=Sentiment.BULLISH,
    deposits_by_exchange={ExchangeId.KRAKEN: 10.0},
    withdrawals_by_exchange={ExchangeId.BINANCE: 150.0},
)


@pytest.mark.asyncio
async def test_transactions_roundtrip_by_hash():
    store = FlowStore(url="redis://fake", namespace="flows", default_ttl=60, redis_client=FakeRedis(decode_responses=True))
    keys = await store.write_transactions([_tx("a"), _tx("b")])
    assert keys == ["flows:whale_tx:a", "flows:whale_tx:b"]
    assert await store.read_transaction("a") == _tx("a")
    assert await store.read_transaction("missing") is None
    assert await store.write_transactions([]) == []
    await store.aclose()


@pytest.mark.asyncio
async def test_stats_snapshot_and_latest_pointer():
    r = FakeRedis(decode_responses=True)
    store = FlowStore(url="redis://fake", redis_client=r)
    assert await store.latest_stats() is None

    key = await store.write_stats(STATS, 1_700_000_000_000)  # ms are normalized to seconds
    assert key == "flows:exchange_flow:1700000000"
    assert await store.read_stats(1_700_000_000) == STATS
    assert await store.latest_stats() == STATS

    newer = ExchangeFlowStats()
    await store.write_stats(newer, 1_700_000_060)
    assert await store.latest_stats() == newer
    assert await store.read_stats(1_700_000_000) == STATS
    await store.aclose()


@pytest.mark.asyncio
async def test_default_ttl_applied_to_transactions():
    r = FakeRedis(decode_responses=True)
    store = FlowStore(url="redis://fake", default_ttl=120, redis_client=r)
    await store.write_transactions([_tx("ttl")])
    ttl = await r.ttl("flows:whale_tx:ttl")
    assert 0 < ttl <= 120
    await store.aclose()


def test_missing_url_raises():
    with pytest.raises(RuntimeError):
        FlowStore(url="")


def test_get_store_synthesizes_url(monkeypatch):
    fs._store_singleton = None

    class Dummy:
        REDIS_URL = None
        redis_host = "myredis"
        redis_port = 6380
        redis_db = 2
        FLOW_TTL_SEC = 5
        FLOW_NAMESPACE = "flowns"

    monkeypatch.setattr(fs, "settings", Dummy())
    monkeypatch.delenv("REDIS_URL", raising=False)

    store = fs.get_store()
    assert isinstance(store, FlowStore)
    assert store._url == "redis://myredis:6380/2"
    assert store._namespace == "flowns"
    assert store._default_ttl == 5
    assert fs.get_store() is store

    fs._store_singleton = None


@pytest.mark.asyncio
async def test_metrics_exposed_after_ops():
    store = FlowStore(url="redis://fake", redis_client=FakeRedis(decode_responses=True))
    await store.write_stats(STATS, 0)
    await store.latest_stats()
    text = generate_latest(_METRICS_REGISTRY).decode("utf-8")
    assert "flow_store_writes_total" in text
    assert "flow_store_reads_total" in text
    assert "flow_store_hits_total" in text
    assert "flow_store_op_latency_seconds_bucket" in text
    await store.aclose()
