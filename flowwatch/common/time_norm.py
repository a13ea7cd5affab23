from __future__ import annotations
"""UTC helpers shared by the whale pipeline and the Parquet sink.

- Feed timestamps arrive as Unix seconds; classified transactions carry
  epoch milliseconds.
- All datetime outputs are tz-aware UTC.
"""

from datetime import datetime, timezone
from typing import Any, Optional
import pandas as pd
from pandas.api.types import is_datetime64_any_dtype, is_integer_dtype, is_float_dtype

UTC_DTYPE = pd.DatetimeTZDtype(tz="UTC")


def now_epoch_ms() -> int:
    return int(datetime.now(tz=timezone.utc).timestamp() * 1000)


def epoch_seconds(ts: Any) -> int:
    """Coerce a timestamp (s, ms, datetime, ISO string) into epoch seconds."""
    if isinstance(ts, bool):
        raise ValueError(f"Not a timestamp: {ts!r}")
    if isinstance(ts, int):
        # Heuristic: ms vs s
        return int(ts // 1000) if ts > 10_000_000_000 else int(ts)
    if isinstance(ts, float):
        return int(ts // 1000) if ts > 10_000_000_000 else int(ts)
    if isinstance(ts, datetime):
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return int(ts.timestamp())
    t = pd.to_datetime(ts, utc=True, errors="coerce")
    if pd.isna(t):
        raise ValueError(f"Could not parse timestamp to UTC: {ts!r}")
    return int(t.timestamp())


def to_utc_dt(values: pd.Series, *, unit: Optional[str] = None) -> pd.Series:
    """Coerce a Series to tz-aware UTC datetimes (ns resolution).

    - Datetime w/ tz: converted to UTC.
    - Naive datetime: localized to UTC.
    - Numbers: parsed as epoch (`unit`, default milliseconds).
    - Strings/objects: parsed with `utc=True`.
    """
    if isinstance(values.dtype, pd.DatetimeTZDtype):
        out = values.dt.tz_convert("UTC")
    elif is_datetime64_any_dtype(values):
        out = values.dt.tz_localize("UTC")
    elif is_integer_dtype(values) or is_float_dtype(values):
        out = pd.to_datetime(values, unit=unit or "ms", utc=True)
    else:
        out = pd.to_datetime(values, utc=True, errors="coerce")
    return out.astype(UTC_DTYPE)


def add_dt_partition(df: pd.DataFrame, *, ts_col: str = "timestamp", out_col: str = "dt") -> None:
    """Add `dt=YYYY-MM-DD` partition column in-place from a timestamp column."""
    if ts_col not in df.columns:
        df[out_col] = pd.Series(dtype="string")
        return
    ts = df[ts_col]
    if not isinstance(ts.dtype, pd.DatetimeTZDtype):
        ts = to_utc_dt(ts)
    df[out_col] = ts.dt.tz_convert("UTC").dt.strftime("%Y-%m-%d").astype("string")


__all__ = [
    "UTC_DTYPE",
    "now_epoch_ms",
    "epoch_seconds",
    "to_utc_dt",
    "add_dt_partition",
]
