import httpx
from typing import Any, List, Optional
import logging
from prometheus_client import Counter
from pydantic import ValidationError

from flowwatch.common.async_infra import make_async_client, retry_httpx
from flowwatch.ingestion_service.utils import _METRICS_REGISTRY
from flowwatch.models import RawTransaction

DEFAULT_API_BASE = "https://blockchain.info"

FEED_CALLS = Counter('blockchain_feed_requests_total', 'Total blockchain feed requests', labelnames=("endpoint",), registry=_METRICS_REGISTRY)
FEED_PARSE_ERRORS = Counter('blockchain_feed_parse_errors_total', 'Total parse errors in blockchain adapter', registry=_METRICS_REGISTRY)
logger = logging.getLogger(__name__)


class BlockchainFeedError(RuntimeError):
    """The feed answered, but not with something we can use."""


@retry_httpx()
async def _get_json(client: httpx.AsyncClient, url: str, params: Optional[dict] = None) -> Any:
    resp = await client.get(url, params=params)
    resp.raise_for_status()
    try:
        return resp.json()
    except ValueError as e:
        FEED_PARSE_ERRORS.inc()
        raise BlockchainFeedError(f"Invalid JSON from {url}: {e}") from e


def parse_transactions(payload: Any) -> List[RawTransaction]:
    """Validate the `txs` array record by record; bad records are dropped."""
    if not isinstance(payload, dict) or not isinstance(payload.get("txs"), list):
        FEED_PARSE_ERRORS.inc()
        raise BlockchainFeedError("Feed payload has no 'txs' list")
    out: List[RawTransaction] = []
    for item in payload["txs"]:
        try:
            out.append(RawTransaction.model_validate(item))
        except ValidationError as e:
            FEED_PARSE_ERRORS.inc()
            logger.warning("Dropping malformed feed record: %s", e.errors()[:1])
    return out


async def fetch_unconfirmed_transactions(
    client: Optional[httpx.AsyncClient] = None,
    *,
    api_base: str = DEFAULT_API_BASE,
    timeout_sec: float = 10.0,
) -> List[RawTransaction]:
    """
    Pulls the current mempool sample from blockchain.info.
    Raises httpx errors (after retries) or BlockchainFeedError.
    """
    FEED_CALLS.labels(endpoint="unconfirmed").inc()
    url = f"{api_base.rstrip('/')}/unconfirmed-transactions"
    if client is not None:
        payload = await _get_json(client, url, params={"format": "json"})
    else:
        async with make_async_client(timeout_sec=timeout_sec) as own:
            payload = await _get_json(own, url, params={"format": "json"})
    return parse_transactions(payload)


async def fetch_btc_price(
    client: Optional[httpx.AsyncClient] = None,
    *,
    api_base: str = DEFAULT_API_BASE,
    currency: str = "USD",
    timeout_sec: float = 10.0,
) -> float:
    """Last spot price from the blockchain.info ticker."""
    FEED_CALLS.labels(endpoint="ticker").inc()
    url = f"{api_base.rstrip('/')}/ticker"
    if client is not None:
        data = await _get_json(client, url)
    else:
        async with make_async_client(timeout_sec=timeout_sec) as own:
            data = await _get_json(own, url)
    try:
        price = float(data[currency]["last"])
    except (KeyError, TypeError, ValueError) as e:
        FEED_PARSE_ERRORS.inc()
        raise BlockchainFeedError(f"Ticker has no {currency}.last: {e}") from e
    if price <= 0:
        raise BlockchainFeedError(f"Non-positive {currency} price: {price}")
    return price
