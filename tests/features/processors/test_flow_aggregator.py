import itertools
import random
from concurrent.futures import ThreadPoolExecutor

import pytest

from flowwatch.features.processors.flow_aggregator import (
    aggregate,
    aggregate_parallel,
    flow_sentiment,
    merge,
)
from flowwatch.models import (
    ClassifiedTransaction,
    ExchangeFlowStats,
    ExchangeId,
    Sentiment,
    Signal,
)
from flowwatch.features.processors.classifier import sentiment_for


def _tx(signal, amount, from_ex=None, to_ex=None, n=0):
    return ClassifiedTransaction(
        hash=f"h{n}",
        timestamp_ms=n,
        amount_btc=amount,
        amount_usd=amount * 90_000,
        from_address="a",
        to_address="b",
        from_exchange=from_ex,
        to_exchange=to_ex,
        signal=signal,
        sentiment=sentiment_for(signal),
    )


def _sample():
    return [
        _tx(Signal.DEPOSIT, 120.5, to_ex=ExchangeId.BINANCE, n=1),
        _tx(Signal.DEPOSIT, 0.1, to_ex=ExchangeId.KRAKEN, n=2),
        _tx(Signal.WITHDRAWAL, 300.25, from_ex=ExchangeId.COINBASE, n=3),
        _tx(Signal.WITHDRAWAL, 0.2, from_ex=ExchangeId.BINANCE, n=4),
        _tx(Signal.TRANSFER, 999.0, from_ex=ExchangeId.OKEX, to_ex=ExchangeId.HUOBI, n=5),
        _tx(Signal.TRANSFER, 50.0, n=6),
        _tx(Signal.DEPOSIT, 0.3, to_ex=ExchangeId.BINANCE, n=7),
    ]


def test_empty_input_yields_zero_neutral_stats():
    stats = aggregate([])
    assert stats == ExchangeFlowStats()
    assert stats.sentiment is Sentiment.NEUTRAL
    assert stats.deposits_by_exchange == {}
    assert stats.withdrawals_by_exchange == {}


def test_totals_and_per_exchange_maps():
    stats = aggregate(_sample())
    assert stats.total_deposits == pytest.approx(120.9)
    assert stats.total_withdrawals == pytest.approx(300.45)
    assert stats.net_flow == pytest.approx(300.45 - 120.9)
    assert stats.sentiment is Sentiment.BULLISH
    assert stats.deposits_by_exchange == {
        ExchangeId.BINANCE: pytest.approx(120.8),
        ExchangeId.KRAKEN: pytest.approx(0.1),
    }
    assert stats.withdrawals_by_exchange == {
        ExchangeId.COINBASE: pytest.approx(300.25),
        ExchangeId.BINANCE: pytest.approx(0.2),
    }
    # transfers never show up, and absent exchanges are not zero-filled
    assert ExchangeId.OKEX not in stats.deposits_by_exchange
    assert ExchangeId.HUOBI not in stats.withdrawals_by_exchange


def test_order_independent():
    txs = _sample()
    expected = aggregate(txs)
    for perm in itertools.islice(itertools.permutations(txs), 200):
        assert aggregate(perm) == expected
    rng = random.Random(7)
    for _ in range(50):
        shuffled = txs[:]
        rng.shuffle(shuffled)
        assert aggregate(shuffled) == expected


def test_partition_merge_equals_whole():
    txs = _sample()
    whole = aggregate(txs)
    for cut in range(len(txs) + 1):
        left, right = txs[:cut], txs[cut:]
        assert merge(aggregate(left), aggregate(right)) == whole
    rng = random.Random(11)
    for _ in range(30):
        picks = [rng.random() < 0.5 for _ in txs]
        a = [t for t, p in zip(txs, picks) if p]
        b = [t for t, p in zip(txs, picks) if not p]
        assert merge(aggregate(b), aggregate(a)) == whole


def test_aggregate_parallel_matches_sequential():
    txs = _sample() * 5
    assert aggregate_parallel(txs, partitions=3) == aggregate(txs)
    with ThreadPoolExecutor(max_workers=2) as ex:
        assert aggregate_parallel(txs, partitions=8, executor=ex) == aggregate(txs)
    assert aggregate_parallel([], partitions=4) == aggregate([])


@pytest.mark.parametrize(
    "net,expected",
    [
        (150, Sentiment.BULLISH),
        (-150, Sentiment.BEARISH),
        (0, Sentiment.NEUTRAL),
        (100, Sentiment.NEUTRAL),
        (-100, Sentiment.NEUTRAL),
        (100.00000001, Sentiment.BULLISH),
    ],
)
def test_sentiment_thresholds_are_exclusive(net, expected):
    assert flow_sentiment(net) is expected


@pytest.mark.parametrize(
    "withdrawn,deposited,expected",
    [
        (150, 0, Sentiment.BULLISH),
        (0, 150, Sentiment.BEARISH),
        (100, 0, Sentiment.NEUTRAL),
        (0, 100, Sentiment.NEUTRAL),
        (50, 50, Sentiment.NEUTRAL),
    ],
)
def test_aggregate_sentiment_from_net_flow(withdrawn, deposited, expected):
    txs = []
    if withdrawn:
        txs.append(_tx(Signal.WITHDRAWAL, withdrawn, from_ex=ExchangeId.BITFINEX, n=1))
    if deposited:
        txs.append(_tx(Signal.DEPOSIT, deposited, to_ex=ExchangeId.BITSTAMP, n=2))
    stats = aggregate(txs)
    assert stats.net_flow == withdrawn - deposited
    assert stats.sentiment is expected


def test_threshold_is_configurable():
    txs = [_tx(Signal.WITHDRAWAL, 20, from_ex=ExchangeId.BINANCE)]
    assert aggregate(txs).sentiment is Sentiment.NEUTRAL
    assert aggregate(txs, threshold=10).sentiment is Sentiment.BULLISH
    assert merge(aggregate(txs), threshold=10).sentiment is Sentiment.BULLISH
