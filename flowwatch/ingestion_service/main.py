from fastapi import FastAPI, Request
import asyncio
from prometheus_client import make_asgi_app
from fastapi.middleware.cors import CORSMiddleware
import logging
from flowwatch.ingestion_service.config import settings
from contextlib import asynccontextmanager
from flowwatch.common.async_infra import get_http, close_http
from flowwatch.features.ingestion.blockchain_client import BlockchainClient
from flowwatch.features.jobs.whale_poll import poll_whales_once
from flowwatch.features.processors.address_registry import load_registry
from flowwatch.features.store.flow_store import get_store, close_store
from flowwatch.realtime.hub import RealtimeHub
from prometheus_client import Gauge
from flowwatch.ingestion_service.utils import _METRICS_REGISTRY

SERVICE_NAME = "flowwatch"
SERVICE_VERSION = "1.0.0"

# one “always present” metric so /metrics is never empty
SERVICE_INFO = Gauge(
    "service_info",
    "Service metadata",
    labelnames=("service", "version"),
    registry=_METRICS_REGISTRY,
)
SERVICE_INFO.labels(service=SERVICE_NAME, version=SERVICE_VERSION).set(1)

logger = logging.getLogger(__name__)


async def _whale_poll_loop(app: FastAPI):
    store = get_store()
    while True:
        try:
            await poll_whales_once(
                app.state.blockchain_client,
                store=store,
                min_btc=settings.whale_min_btc,
                btc_price=None if settings.price_lookup_enabled else settings.default_btc_price,
                fallback_price=settings.default_btc_price,
                threshold=settings.flow_sentiment_threshold_btc,
                parquet_path=settings.WHALE_PATH if settings.WHALE_PARQUET_ENABLED else None,
            )
        except Exception as e:
            logger.warning("Whale poll loop error: %s", e, exc_info=True)
        await asyncio.sleep(settings.WHALE_POLL_INTERVAL_SEC)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.http = get_http(timeout_sec=settings.http_timeout_sec)
    app.state.registry = load_registry(settings.exchange_addresses_file)
    app.state.blockchain_client = BlockchainClient(
        app.state.registry,
        http=app.state.http,
        api_base=settings.blockchain_api_base,
        timeout_sec=settings.http_timeout_sec,
    )
    app.state._bg_tasks = []
    if settings.WHALE_POLL_ENABLED:
        app.state._bg_tasks.append(asyncio.create_task(_whale_poll_loop(app)))
    logger.info("Starting %s (registry: %d addresses)", SERVICE_NAME, len(app.state.registry))
    try:
        yield
    finally:
        # Graceful shutdown
        tasks = app.state._bg_tasks
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await app.state.blockchain_client.aclose()
        await close_store()
        await close_http()
        logger.info("Shut down %s", SERVICE_NAME)

app = FastAPI(lifespan=lifespan)
logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s %(message)s")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)
# Push hub exists before lifespan so the websocket route works under any client
app.state.hub = RealtimeHub(snapshot_size=settings.realtime_snapshot_size)

# Expose Prometheus metrics
app.mount(settings.metrics_path, make_asgi_app(registry=_METRICS_REGISTRY))

@app.get("/")
async def root():
    return {"service": SERVICE_NAME, "version": SERVICE_VERSION}

@app.get("/health")
async def health(request: Request):
    return {"status": "ok", "realtime_clients": request.app.state.hub.client_count}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host=settings.ingest_host,
        port=settings.ingest_port,
    )

from .routes import router, realtime_router
app.include_router(router)
app.include_router(realtime_router)
