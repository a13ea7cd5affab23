from datetime import datetime, timezone

import pandas as pd
import pytest
from flowwatch.common.time_norm import UTC_DTYPE, add_dt_partition, epoch_seconds, now_epoch_ms, to_utc_dt


def test_to_utc_dt_epoch_ms_vs_s():
    ms = pd.Series([1_700_000_000_000])  # milliseconds
    s = pd.Series([1_700_000_000])       # seconds
    dt_ms = to_utc_dt(ms)
    dt_s = to_utc_dt(s, unit="s")
    assert str(dt_ms.dtype).endswith("UTC]")
    assert str(dt_s.dtype).endswith("UTC]")
    assert dt_ms.iloc[0] == dt_s.iloc[0]


def test_to_utc_dt_naive_and_strings():
    naive = pd.Series(pd.to_datetime(["2025-08-01 00:00:00"]))
    iso = pd.Series(["2025-08-01T00:00:00Z"])
    assert to_utc_dt(naive).iloc[0] == to_utc_dt(iso).iloc[0]


def test_dt_partition():
    df = pd.DataFrame({"timestamp": [1_700_000_000_000, 1_700_000_060_000]})
    add_dt_partition(df, ts_col="timestamp")
    assert df["dt"].nunique() == 1
    assert df["dt"].iloc[0] == "2023-11-14"
    assert str(df["dt"].dtype) == "string"


def test_dt_partition_missing_column():
    df = pd.DataFrame({"x": [1]})
    add_dt_partition(df, ts_col="timestamp")
    assert "dt" in df


@pytest.mark.parametrize(
    "value,expected",
    [
        (1_700_000_000, 1_700_000_000),
        (1_700_000_000_000, 1_700_000_000),
        (1_700_000_000.9, 1_700_000_000),
        (datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc), 1_700_000_000),
        (datetime(2023, 11, 14, 22, 13, 20), 1_700_000_000),
        ("2023-11-14T22:13:20Z", 1_700_000_000),
    ],
)
def test_epoch_seconds(value, expected):
    assert epoch_seconds(value) == expected


def test_epoch_seconds_rejects_garbage():
    with pytest.raises(ValueError):
        epoch_seconds("not a time")
    with pytest.raises(ValueError):
        epoch_seconds(True)


def test_now_epoch_ms_is_milliseconds():
    assert now_epoch_ms() > 10_000_000_000


def test_to_utc_dt_always_returns_ns_utc_dtype():
    tz_berlin = pd.Series(pd.to_datetime(["2025-08-01 02:00:00"]).tz_localize("Europe/Berlin"))
    for values in (pd.Series([1_700_000_000_000]), pd.Series(["2025-08-01T00:00:00Z"]), tz_berlin):
        assert to_utc_dt(values).dtype == UTC_DTYPE
    assert to_utc_dt(tz_berlin).iloc[0] == pd.Timestamp("2025-08-01T00:00:00Z")
