"""Exchange net-flow statistics over a batch of classified transactions.

The fold accumulates integer satoshis, so it is exactly commutative and
associative: partition results merged with `merge` equal `aggregate` over the
whole batch, whatever the partitioning or order.
"""
from __future__ import annotations

from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from flowwatch.models import (
    SATOSHIS_PER_BTC,
    ClassifiedTransaction,
    ExchangeFlowStats,
    ExchangeId,
    Sentiment,
    Signal,
)

DEFAULT_SENTIMENT_THRESHOLD_BTC = 100.0


def _to_sats(amount_btc: float) -> int:
    return int(round(amount_btc * SATOSHIS_PER_BTC))


def _to_btc(sats: int) -> float:
    return sats / SATOSHIS_PER_BTC


@dataclass
class _Partial:
    deposits: int = 0
    withdrawals: int = 0
    deposits_by_exchange: Dict[ExchangeId, int] = field(default_factory=dict)
    withdrawals_by_exchange: Dict[ExchangeId, int] = field(default_factory=dict)

    def add(self, tx: ClassifiedTransaction) -> None:
        if tx.signal is Signal.DEPOSIT and tx.to_exchange is not None:
            sats = _to_sats(tx.amount_btc)
            self.deposits += sats
            self.deposits_by_exchange[tx.to_exchange] = self.deposits_by_exchange.get(tx.to_exchange, 0) + sats
        elif tx.signal is Signal.WITHDRAWAL and tx.from_exchange is not None:
            sats = _to_sats(tx.amount_btc)
            self.withdrawals += sats
            self.withdrawals_by_exchange[tx.from_exchange] = (
                self.withdrawals_by_exchange.get(tx.from_exchange, 0) + sats
            )

    def absorb(self, stats: ExchangeFlowStats) -> None:
        self.deposits += _to_sats(stats.total_deposits)
        self.withdrawals += _to_sats(stats.total_withdrawals)
        for ex, amt in stats.deposits_by_exchange.items():
            self.deposits_by_exchange[ex] = self.deposits_by_exchange.get(ex, 0) + _to_sats(amt)
        for ex, amt in stats.withdrawals_by_exchange.items():
            self.withdrawals_by_exchange[ex] = self.withdrawals_by_exchange.get(ex, 0) + _to_sats(amt)

    def finish(self, threshold: float) -> ExchangeFlowStats:
        net = self.withdrawals - self.deposits
        net_btc = _to_btc(net)
        return ExchangeFlowStats(
            total_deposits=_to_btc(self.deposits),
            total_withdrawals=_to_btc(self.withdrawals),
            net_flow=net_btc,
            sentiment=flow_sentiment(net_btc, threshold),
            deposits_by_exchange={ex: _to_btc(v) for ex, v in self.deposits_by_exchange.items()},
            withdrawals_by_exchange={ex: _to_btc(v) for ex, v in self.withdrawals_by_exchange.items()},
        )


def flow_sentiment(net_flow: float, threshold: float = DEFAULT_SENTIMENT_THRESHOLD_BTC) -> Sentiment:
    """Exclusive thresholds: exactly +/-threshold stays neutral."""
    if net_flow > threshold:
        return Sentiment.BULLISH
    if net_flow < -threshold:
        return Sentiment.BEARISH
    return Sentiment.NEUTRAL


def aggregate(
    transactions: Iterable[ClassifiedTransaction],
    *,
    threshold: float = DEFAULT_SENTIMENT_THRESHOLD_BTC,
) -> ExchangeFlowStats:
    partial = _Partial()
    for tx in transactions:
        partial.add(tx)
    return partial.finish(threshold)


def merge(
    *stats: ExchangeFlowStats,
    threshold: float = DEFAULT_SENTIMENT_THRESHOLD_BTC,
) -> ExchangeFlowStats:
    """Combine partial results; sentiment is recomputed from the merged net flow."""
    partial = _Partial()
    for s in stats:
        partial.absorb(s)
    return partial.finish(threshold)


def _partitions(items: Sequence[ClassifiedTransaction], n: int) -> List[Sequence[ClassifiedTransaction]]:
    if not items:
        return [items]
    n = max(1, min(n, len(items)))
    size = -(-len(items) // n)  # ceil
    return [items[i:i + size] for i in range(0, len(items), size)]


def aggregate_parallel(
    transactions: Sequence[ClassifiedTransaction],
    *,
    partitions: int = 4,
    threshold: float = DEFAULT_SENTIMENT_THRESHOLD_BTC,
    executor: Optional[Executor] = None,
) -> ExchangeFlowStats:
    """Aggregate partitions on a worker pool and merge the partial stats."""
    items = list(transactions)
    chunks = _partitions(items, partitions)
    own = executor is None
    ex = executor or ThreadPoolExecutor(max_workers=len(chunks), thread_name_prefix="flow-agg")
    try:
        parts = list(ex.map(lambda chunk: aggregate(chunk, threshold=threshold), chunks))
    finally:
        if own:
            ex.shutdown(wait=True)
    return merge(*parts, threshold=threshold)
