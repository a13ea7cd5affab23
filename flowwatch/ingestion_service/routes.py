from __future__ import annotations

import logging
from typing import Optional

from fastapi import (
    APIRouter,
    HTTPException,
    Depends,
    Query,
    Request,
    WebSocket,
    WebSocketDisconnect,
)

from flowwatch.ingestion_service.config import settings
from .schemas import (
    ExchangeFlowResponse,
    OrderEventRequest,
    OrderEventResponse,
    WhaleTransactionsResponse,
)
from flowwatch.features.ingestion.blockchain_client import BlockchainClient
from flowwatch.features.processors.flow_aggregator import aggregate
from flowwatch.features.store.flow_store import FlowStore, get_store
from flowwatch.ingestion_service.metrics import ingest_span, record_classified
from flowwatch.models import ExchangeFlowStats
from flowwatch.realtime.hub import RealtimeHub

logger = logging.getLogger(__name__)

router = APIRouter()
realtime_router = APIRouter()

# ---------------------------
# Providers (overridable in tests via app.dependency_overrides)
# ---------------------------

def provide_blockchain(request: Request) -> BlockchainClient:
    client = getattr(request.app.state, "blockchain_client", None)
    if client is None:
        client = BlockchainClient(api_base=settings.blockchain_api_base, timeout_sec=settings.http_timeout_sec)
        request.app.state.blockchain_client = client
    return client

def provide_hub(request: Request) -> RealtimeHub:
    return request.app.state.hub

def provide_store() -> FlowStore:
    return get_store()

# ---------------------------
# Whale flows
# ---------------------------

@router.get("/flows/whales", response_model=WhaleTransactionsResponse)
async def whale_transactions(
    min_btc: float = Query(settings.whale_min_btc, gt=0),
    btc_price: float = Query(settings.default_btc_price, gt=0),
    client: BlockchainClient = Depends(provide_blockchain),
):
    with ingest_span("whales") as span:
        txs = await client.get_whale_transactions(min_btc=min_btc, btc_price=btc_price)
        for tx in txs:
            record_classified(tx.signal.value)
        span.set_status("ok" if txs else "no_data")
        return WhaleTransactionsResponse(
            rows=len(txs), btc_price=btc_price, min_btc=min_btc, error=client.last_error, data=txs
        )

@router.get("/flows/exchange", response_model=ExchangeFlowResponse)
async def exchange_flow(
    min_btc: float = Query(settings.whale_min_btc, gt=0),
    btc_price: float = Query(settings.default_btc_price, gt=0),
    client: BlockchainClient = Depends(provide_blockchain),
):
    with ingest_span("exchange_flow") as span:
        txs = await client.get_whale_transactions(min_btc=min_btc, btc_price=btc_price)
        stats = aggregate(txs, threshold=settings.flow_sentiment_threshold_btc)
        span.set_status("ok" if txs else "no_data")
        return ExchangeFlowResponse(
            transactions=len(txs), btc_price=btc_price, error=client.last_error, stats=stats
        )

@router.get("/flows/exchange/latest", response_model=ExchangeFlowStats)
async def latest_exchange_flow(store: FlowStore = Depends(provide_store)):
    with ingest_span("exchange_flow_latest") as span:
        stats = await store.latest_stats()
        if stats is None:
            span.set_status("no_data")
            raise HTTPException(status_code=404, detail="No exchange flow snapshot yet")
        span.set_status("ok")
        return stats

# ---------------------------
# Realtime
# ---------------------------

@router.post("/ingest/orders", response_model=OrderEventResponse)
async def ingest_order_event(req: OrderEventRequest, hub: RealtimeHub = Depends(provide_hub)):
    with ingest_span("orders") as span:
        if req.status == "new":
            event_type, delivered = "new_order", await hub.publish_new_order(req.order)
        elif req.status == "filled":
            event_type, delivered = "order_filled", await hub.publish_order_filled(req.order)
        else:
            event_type, delivered = "order_disappeared", await hub.publish_order_disappeared(req.order)
        span.set_status("ok")
        return OrderEventResponse(type=event_type, delivered=delivered)

@realtime_router.websocket(settings.realtime_path)
async def realtime_ws(websocket: WebSocket):
    hub: RealtimeHub = websocket.app.state.hub
    await hub.connect(websocket)
    try:
        # inbound frames are ignored; receiving only detects disconnects
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(websocket)
