# flowwatch/features/jobs/whale_poll.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from flowwatch.common.time_norm import now_epoch_ms
from flowwatch.features.ingestion.blockchain_client import (
    DEFAULT_BTC_PRICE,
    DEFAULT_MIN_BTC,
    BlockchainClient,
)
from flowwatch.features.processors.flow_aggregator import DEFAULT_SENTIMENT_THRESHOLD_BTC, aggregate
from flowwatch.features.processors.frames import transactions_to_frame
from flowwatch.features.store.flow_store import FlowStore
from flowwatch.ingestion_service.metrics import record_classified
from flowwatch.ingestion_service.utils import write_partitioned

logger = logging.getLogger(__name__)


async def poll_whales_once(
    client: BlockchainClient,
    *,
    store: Optional[FlowStore] = None,
    min_btc: float = DEFAULT_MIN_BTC,
    btc_price: Optional[float] = None,
    fallback_price: float = DEFAULT_BTC_PRICE,
    threshold: float = DEFAULT_SENTIMENT_THRESHOLD_BTC,
    parquet_path: Optional[str] = None,
) -> Dict[str, Any]:
    """One polling cycle: classify current whales, snapshot stats, optionally persist.

    `btc_price=None` means look the price up (falling back to `fallback_price`).
    `error` joins the price-lookup and feed failures of this cycle, or is None.
    """
    errors = []
    if btc_price is not None:
        price = btc_price
    else:
        client.last_error = None
        price = await client.get_btc_price(fallback=fallback_price)
        if client.last_error:
            errors.append(f"price lookup: {client.last_error}")
    txs = await client.get_whale_transactions(min_btc=min_btc, btc_price=price)
    if client.last_error:
        errors.append(f"feed: {client.last_error}")
    stats = aggregate(txs, threshold=threshold)

    for tx in txs:
        record_classified(tx.signal.value)

    stats_key = None
    if store is not None:
        await store.write_transactions(txs)
        stats_key = await store.write_stats(stats, now_epoch_ms())

    files = []
    if parquet_path and txs:
        files = write_partitioned(transactions_to_frame(txs), parquet_path)

    summary = {
        "transactions": len(txs),
        "btc_price": price,
        "net_flow": stats.net_flow,
        "sentiment": stats.sentiment.value,
        "stats_key": stats_key,
        "files": files,
        "error": "; ".join(errors) or None,
    }
    logger.info("Whale poll: %d txs, net_flow=%.4f BTC (%s)", len(txs), stats.net_flow, stats.sentiment.value)
    return summary
