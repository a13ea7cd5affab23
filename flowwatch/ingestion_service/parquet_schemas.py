from typing import Dict

# Canonical Parquet schema for classified whale transactions.
# Timestamps are tz-aware UTC; textual fields use pandas 'string' dtype.
WHALE_TX_SCHEMA: Dict[str, str] = {
    "timestamp": "datetime64[ns, UTC]",
    "hash": "string",
    "amount_btc": "float64",
    "amount_usd": "float64",
    "from_address": "string",
    "to_address": "string",
    "from_exchange": "string",   # null when not a known exchange
    "to_exchange": "string",
    "signal": "string",          # deposit | withdrawal | transfer
    "sentiment": "string",       # bearish | bullish | neutral
    "dt": "string",
}
