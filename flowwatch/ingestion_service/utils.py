import logging
import os
import time
from typing import Dict, List, Mapping, Optional

import fsspec
import pandas as pd
from prometheus_client import CollectorRegistry, Counter, Histogram

from flowwatch.common.time_norm import add_dt_partition
from flowwatch.ingestion_service.parquet_schemas import WHALE_TX_SCHEMA

# Every flowwatch metric registers here; /metrics serves only this registry.
_METRICS_REGISTRY = CollectorRegistry()
PARQUET_WRITES_TOTAL = Counter(
    'parquet_writes_total',
    'Total successful Parquet writes',
    registry=_METRICS_REGISTRY
)
PARQUET_WRITE_ERRORS = Counter(
    'parquet_write_errors_total',
    'Total failed Parquet writes',
    registry=_METRICS_REGISTRY
)
PARQUET_WRITE_LATENCY = Histogram(
    'parquet_write_latency_seconds',
    'Parquet write latency in seconds',
    registry=_METRICS_REGISTRY
)

logger = logging.getLogger(__name__)


def _sanitize_part(val) -> str:
    if val is None:
        return "unknown"
    return str(val).replace("/", "-").replace(" ", "_")


def validate_schema(df: pd.DataFrame, schema: Dict[str, str], coerce: bool = False) -> None:
    """Check (or with `coerce=True`, cast) each schema column's dtype in place.

    Raises ValueError for missing columns and for dtypes that differ and
    cannot be cast.
    """
    missing = [col for col in schema if col not in df.columns]
    if missing:
        raise ValueError(f"Missing columns: {missing}")

    for col, expected in schema.items():
        actual = str(df[col].dtype)
        if actual == expected:
            continue
        if not coerce:
            raise ValueError(f"Wrong dtype for column '{col}': actual={actual}, expected={expected}")
        try:
            df[col] = df[col].astype(expected)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Failed to coerce column '{col}' from {actual} to {expected}") from e


def _single_day(df: pd.DataFrame, ts_col: str) -> str:
    if "dt" not in df.columns:
        add_dt_partition(df, ts_col=ts_col)
    days = df["dt"].dropna().unique().tolist()
    if len(days) != 1:
        raise ValueError(f"Normalization error: multiple dt values in batch: {days}")
    return days[0]


def write_to_parquet(
    df: pd.DataFrame,
    base_path: str,
    partitions: Optional[Mapping[str, object]],
    filename: Optional[str] = None,
    ts_col: str = "timestamp",
) -> Optional[str]:
    """Write one single-day batch of whale transactions under hive-style partitions.

    Layout: {base_path}/{k=v}/.../dt=YYYY-MM-DD/part-<ms>.parquet. The file is
    written to `<name>.tmp` and moved into place, so readers never see a
    partial file. Returns the final path, or None for an empty frame.
    """
    if df.empty:
        logger.warning("Empty DataFrame, skipping Parquet write")
        return None

    day = _single_day(df, ts_col)
    validate_schema(df, WHALE_TX_SCHEMA, coerce=True)

    parts = dict(partitions or {})
    parts.setdefault("dt", day)
    fs, root = fsspec.core.url_to_fs(base_path)
    dir_path = os.path.join(root, *(f"{k}={_sanitize_part(v)}" for k, v in parts.items() if v is not None))
    fs.makedirs(dir_path, exist_ok=True)

    full_path = os.path.join(dir_path, filename or f"part-{int(time.time() * 1000)}.parquet")
    temp_path = f"{full_path}.tmp"
    start = time.time()
    try:
        with fs.open(temp_path, "wb") as f:
            df.sort_values(by=[ts_col]).to_parquet(f, compression="snappy", index=False, engine="pyarrow")
        fs.mv(temp_path, full_path)
    except Exception as e:
        PARQUET_WRITE_ERRORS.inc()
        logger.error("Failed writing Parquet to %s: %s", full_path, e)
        raise
    PARQUET_WRITES_TOTAL.inc()
    PARQUET_WRITE_LATENCY.observe(time.time() - start)
    return full_path


def write_partitioned(df: pd.DataFrame, base_path: str, partition_col: str = "signal") -> List[str]:
    """Split `df` by (partition_col, dt) and write each group; returns written paths."""
    if df is None or df.empty:
        logger.warning("Empty DataFrame, skipping Parquet write")
        return []
    if "dt" not in df.columns:
        add_dt_partition(df, ts_col="timestamp")
    paths = []
    for (part, day), group in df.groupby([partition_col, "dt"], sort=True):
        path = write_to_parquet(group.copy(), base_path, {partition_col: part, "dt": day})
        if path:
            paths.append(path)
    return paths
