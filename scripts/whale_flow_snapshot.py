#!/usr/bin/env python3
from __future__ import annotations
import argparse
import asyncio
import json
import os
import sys
from typing import List, Optional

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from flowwatch.ingestion_service.config import settings
from flowwatch.common.async_infra import make_async_client
from flowwatch.features.ingestion.blockchain_client import BlockchainClient
from flowwatch.features.jobs.whale_poll import poll_whales_once
from flowwatch.features.processors.address_registry import load_registry


async def main_async(args) -> int:
    async with make_async_client(timeout_sec=settings.http_timeout_sec) as http:
        client = BlockchainClient(
            load_registry(args.addresses or settings.exchange_addresses_file),
            http=http,
            api_base=settings.blockchain_api_base,
        )
        summary = await poll_whales_once(
            client,
            min_btc=args.min_btc,
            btc_price=args.price,
            fallback_price=settings.default_btc_price,
            threshold=settings.flow_sentiment_threshold_btc,
            parquet_path=args.out,
        )
    print(json.dumps(summary, indent=2, default=str))
    return 1 if summary["error"] else 0


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Classify current mempool whales once and print exchange flow")
    ap.add_argument("--min-btc", type=float, default=settings.whale_min_btc)
    ap.add_argument("--price", type=float, default=None, help="BTC/USD; looked up when omitted")
    ap.add_argument("--addresses", default=None, help="JSON file of exchange -> addresses")
    ap.add_argument("--out", default=None, help="Parquet base path (e.g. data_lake/whales)")
    args = ap.parse_args(argv)
    return asyncio.run(main_async(args))


if __name__ == "__main__":
    raise SystemExit(main())
