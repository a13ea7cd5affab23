"""Domain types shared by the whale pipeline and the realtime channel."""
from __future__ import annotations

from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SATOSHIS_PER_BTC = 100_000_000
# substituted when the feed omits an input/output address
UNKNOWN_ADDRESS = "Unknown"


class ExchangeId(str, Enum):
    BINANCE = "binance"
    COINBASE = "coinbase"
    KRAKEN = "kraken"
    BITFINEX = "bitfinex"
    HUOBI = "huobi"
    OKEX = "okex"
    BITSTAMP = "bitstamp"


class Signal(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRANSFER = "transfer"


class Sentiment(str, Enum):
    BEARISH = "bearish"
    BULLISH = "bullish"
    NEUTRAL = "neutral"


# ---------------------------------------------------------------------------
# Inbound feed schema (blockchain.info unconfirmed-transactions)
# ---------------------------------------------------------------------------

class RawPrevOut(BaseModel):
    model_config = ConfigDict(extra="ignore")
    addr: Optional[str] = None
    value: Optional[int] = None


class RawInput(BaseModel):
    model_config = ConfigDict(extra="ignore")
    prev_out: Optional[RawPrevOut] = None


class RawOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")
    addr: Optional[str] = None
    value: Optional[int] = None  # satoshis


class RawTransaction(BaseModel):
    """One loosely-typed record from the feed; every field may be absent or null."""

    model_config = ConfigDict(extra="ignore")

    hash: str = ""
    time: int = 0  # unix seconds
    inputs: List[RawInput] = Field(default_factory=list)
    out: List[RawOutput] = Field(default_factory=list)

    @field_validator("hash", "time", "inputs", "out", mode="before")
    @classmethod
    def _null_as_default(cls, v, info):
        if v is None:
            return cls.model_fields[info.field_name].get_default(call_default_factory=True)
        return v

    def total_satoshis(self) -> int:
        return sum(o.value or 0 for o in self.out)

    def first_input_address(self) -> str:
        if self.inputs and self.inputs[0].prev_out is not None and self.inputs[0].prev_out.addr:
            return self.inputs[0].prev_out.addr
        return UNKNOWN_ADDRESS

    def first_output_address(self) -> str:
        if self.out and self.out[0].addr:
            return self.out[0].addr
        return UNKNOWN_ADDRESS


# ---------------------------------------------------------------------------
# Classified output
# ---------------------------------------------------------------------------

class ClassifiedTransaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    hash: str
    timestamp_ms: int
    amount_btc: float
    amount_usd: float
    from_address: str
    to_address: str
    from_exchange: Optional[ExchangeId] = None
    to_exchange: Optional[ExchangeId] = None
    signal: Signal
    sentiment: Sentiment


class ExchangeFlowStats(BaseModel):
    """Net exchange flow over one batch. Positive net_flow = net withdrawal."""

    model_config = ConfigDict(frozen=True)

    total_deposits: float = 0.0
    total_withdrawals: float = 0.0
    net_flow: float = 0.0
    sentiment: Sentiment = Sentiment.NEUTRAL
    deposits_by_exchange: Dict[ExchangeId, float] = Field(default_factory=dict)
    withdrawals_by_exchange: Dict[ExchangeId, float] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Realtime events (wire format)
# ---------------------------------------------------------------------------

EventType = Literal["initial_data", "new_order", "order_filled", "order_disappeared"]


class OrderPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    size: float = Field(..., ge=0)
    type: Literal["long", "short"]
    price: float = Field(..., ge=0)
    exchange: str
    fill_price: Optional[float] = None
    id: Optional[str] = None
    leverage: Optional[float] = None
    timestamp: Optional[str] = None


class RealtimeEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: EventType
    order: Optional[OrderPayload] = None
    orders: Optional[List[OrderPayload]] = None

    def to_frame(self) -> str:
        return self.model_dump_json(exclude_none=True)
