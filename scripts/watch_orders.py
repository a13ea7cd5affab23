#!/usr/bin/env python3
from __future__ import annotations
import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import List, Optional

import httpx

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from flowwatch.ingestion_service.config import settings
from flowwatch.realtime.channel import RealtimeChannel, endpoint_for_origin
from flowwatch.realtime.invalidation import Alert, CacheInvalidationRouter
from flowwatch.realtime.query_cache import QueryCache

log = logging.getLogger("watch_orders")


def print_alert(alert: Alert) -> None:
    marker = "!!" if alert.severity == "critical" else "--"
    print(f"{marker} {alert.title}: {alert.description}", flush=True)


async def main_async(args) -> int:
    cache = QueryCache()
    stop = asyncio.Event()

    async def fetch_orders():
        # The order list is served by an external endpoint; it is optional here.
        async with httpx.AsyncClient(base_url=args.origin, timeout=10) as client:
            resp = await client.get(settings.orders_query_key, params={"minSize": args.min_size})
            resp.raise_for_status()
            data = resp.json()
        print(f"   order list refreshed: {len(data)} rows", flush=True)
        return data

    unobserve = None
    if args.follow_orders:
        unobserve = cache.observe((settings.orders_query_key, args.min_size), fetch_orders)

    router = CacheInvalidationRouter(
        cache,
        notify=print_alert,
        resource_key=settings.orders_query_key,
        info_size=settings.alert_info_size,
        critical_size=settings.alert_critical_size,
        info_duration_ms=settings.alert_info_duration_ms,
        critical_duration_ms=settings.alert_critical_duration_ms,
    )
    url = endpoint_for_origin(args.origin, settings.realtime_path)
    channel = RealtimeChannel(
        url,
        router.handle,
        reconnect_delay=settings.reconnect_delay_sec,
        connect_timeout=settings.connect_timeout_sec,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    log.info("Watching %s", url)
    channel.start()
    try:
        await stop.wait()
    finally:
        if unobserve is not None:
            unobserve()
        await channel.dispose()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Follow the realtime order channel and print whale alerts")
    ap.add_argument("--origin", default=f"http://localhost:{settings.ingest_port}")
    ap.add_argument("--follow-orders", action="store_true", help="refetch the order list on every update")
    ap.add_argument("--min-size", type=float, default=0.0)
    args = ap.parse_args(argv)
    logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s [watch] %(message)s")
    return asyncio.run(main_async(args))


if __name__ == "__main__":
    raise SystemExit(main())
