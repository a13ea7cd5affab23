# flowwatch/ingestion_service/schemas.py
from __future__ import annotations
from pydantic import BaseModel, Field
from typing import List, Literal, Optional

from flowwatch.models import ClassifiedTransaction, ExchangeFlowStats, OrderPayload

class OrderEventRequest(BaseModel):
    status: Literal["new", "filled", "disappeared"] = "new"
    order: OrderPayload

class OrderEventResponse(BaseModel):
    type: str
    delivered: int

class WhaleTransactionsResponse(BaseModel):
    rows: int
    btc_price: float
    min_btc: float
    error: Optional[str] = None
    data: List[ClassifiedTransaction] = Field(default_factory=list)

class ExchangeFlowResponse(BaseModel):
    transactions: int
    btc_price: float
    error: Optional[str] = None
    stats: ExchangeFlowStats
