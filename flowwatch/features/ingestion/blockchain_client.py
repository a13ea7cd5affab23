from __future__ import annotations
from typing import List, Optional
import logging

import httpx

from flowwatch.adapters.blockchain_adapter import (
    DEFAULT_API_BASE,
    fetch_btc_price,
    fetch_unconfirmed_transactions,
)
from flowwatch.features.processors.address_registry import AddressRegistry
from flowwatch.features.processors.classifier import classify, is_whale
from flowwatch.features.processors.flow_aggregator import DEFAULT_SENTIMENT_THRESHOLD_BTC, aggregate
from flowwatch.models import ClassifiedTransaction, ExchangeFlowStats

DEFAULT_MIN_BTC = 100.0
DEFAULT_BTC_PRICE = 93000.0

logger = logging.getLogger(__name__)


class BlockchainClient:
    """
    Whale pipeline over the unconfirmed-transaction feed:
    fetch → whale filter → classify → newest first.

    Guarantees:
    - Never raises out of the getters; returns an EMPTY result on feed error.
    - Sets `self.last_error` with a brief message if an error occurred.
    """

    def __init__(
        self,
        registry: Optional[AddressRegistry] = None,
        *,
        http: Optional[httpx.AsyncClient] = None,
        api_base: str = DEFAULT_API_BASE,
        timeout_sec: float = 10.0,
    ) -> None:
        self.registry = registry or AddressRegistry.default()
        self._http = http
        self._api_base = api_base
        self._timeout_sec = timeout_sec
        self.last_error: Optional[str] = None

    async def aclose(self) -> None:
        """The shared http client is owned by the app lifespan; nothing to close here."""
        return None

    async def get_whale_transactions(
        self,
        min_btc: float = DEFAULT_MIN_BTC,
        btc_price: float = DEFAULT_BTC_PRICE,
    ) -> List[ClassifiedTransaction]:
        self.last_error = None
        try:
            raw = await fetch_unconfirmed_transactions(
                self._http, api_base=self._api_base, timeout_sec=self._timeout_sec
            )
        except Exception as e:  # one failed cycle is discarded, the next one starts clean
            logger.warning("Blockchain feed fetch failed: %s", e)
            self.last_error = str(e)
            return []

        whales = [classify(tx, self.registry, btc_price) for tx in raw if is_whale(tx, min_btc)]
        whales.sort(key=lambda tx: tx.timestamp_ms, reverse=True)
        logger.info("Classified %d whale transactions out of %d", len(whales), len(raw))
        return whales

    async def get_exchange_flow(
        self,
        min_btc: float = DEFAULT_MIN_BTC,
        btc_price: float = DEFAULT_BTC_PRICE,
        threshold: float = DEFAULT_SENTIMENT_THRESHOLD_BTC,
    ) -> ExchangeFlowStats:
        txs = await self.get_whale_transactions(min_btc=min_btc, btc_price=btc_price)
        return aggregate(txs, threshold=threshold)

    async def get_btc_price(self, fallback: float = DEFAULT_BTC_PRICE) -> float:
        """Spot price, or `fallback` when the ticker is unavailable."""
        try:
            return await fetch_btc_price(self._http, api_base=self._api_base, timeout_sec=self._timeout_sec)
        except Exception as e:
            logger.warning("BTC price lookup failed, using %.2f: %s", fallback, e)
            self.last_error = str(e)
            return fallback
