from __future__ import annotations

from typing import Iterable

import pandas as pd

from flowwatch.common.time_norm import add_dt_partition, to_utc_dt
from flowwatch.models import ClassifiedTransaction

WHALE_COLUMNS = [
    "timestamp",
    "hash",
    "amount_btc",
    "amount_usd",
    "from_address",
    "to_address",
    "from_exchange",
    "to_exchange",
    "signal",
    "sentiment",
]


def transactions_to_frame(transactions: Iterable[ClassifiedTransaction]) -> pd.DataFrame:
    """Tabular view of classified transactions (UTC `timestamp` + `dt` partition)."""
    rows = [
        {
            "timestamp": tx.timestamp_ms,
            "hash": tx.hash,
            "amount_btc": tx.amount_btc,
            "amount_usd": tx.amount_usd,
            "from_address": tx.from_address,
            "to_address": tx.to_address,
            "from_exchange": tx.from_exchange.value if tx.from_exchange else None,
            "to_exchange": tx.to_exchange.value if tx.to_exchange else None,
            "signal": tx.signal.value,
            "sentiment": tx.sentiment.value,
        }
        for tx in transactions
    ]
    if not rows:
        return pd.DataFrame(columns=WHALE_COLUMNS)
    df = pd.DataFrame(rows, columns=WHALE_COLUMNS)
    df["timestamp"] = to_utc_dt(df["timestamp"].astype("int64"), unit="ms")
    for col in ("hash", "from_address", "to_address", "from_exchange", "to_exchange", "signal", "sentiment"):
        df[col] = df[col].astype("string")
    df["amount_btc"] = df["amount_btc"].astype("float64")
    df["amount_usd"] = df["amount_usd"].astype("float64")
    add_dt_partition(df, ts_col="timestamp")
    return df
