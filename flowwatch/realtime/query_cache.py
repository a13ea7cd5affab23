"""Client-side cache of fetched result sets, keyed by structured tuples.

A key's leading element names the resource (e.g. "/api/orders"); trailing
elements are filter parameters. Invalidation matches on a key prefix, marks
every match stale, and refetches only entries that currently have observers.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Literal, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

QueryKey = Tuple[Hashable, ...]
Fetcher = Callable[[], Awaitable[Any]]
RefetchType = Literal["active", "all", "none"]


@dataclass
class QueryEntry:
    key: QueryKey
    fetcher: Fetcher
    data: Any = None
    stale: bool = True
    observers: int = 0
    fetch_count: int = 0
    updated_at: Optional[float] = None
    error: Optional[str] = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return self.observers > 0


def key_matches(key: QueryKey, prefix: Sequence[Hashable]) -> bool:
    prefix = tuple(prefix)
    return len(key) >= len(prefix) and key[: len(prefix)] == prefix


class QueryCache:
    def __init__(self) -> None:
        self._entries: Dict[QueryKey, QueryEntry] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: Sequence[Hashable]) -> Optional[QueryEntry]:
        return self._entries.get(tuple(key))

    def entries(self) -> List[QueryEntry]:
        return list(self._entries.values())

    def _entry(self, key: Sequence[Hashable], fetcher: Optional[Fetcher]) -> QueryEntry:
        key = tuple(key)
        entry = self._entries.get(key)
        if entry is None:
            if fetcher is None:
                raise KeyError(f"No query registered for {key!r}")
            entry = QueryEntry(key=key, fetcher=fetcher)
            self._entries[key] = entry
        elif fetcher is not None:
            entry.fetcher = fetcher
        return entry

    async def fetch(self, key: Sequence[Hashable], fetcher: Optional[Fetcher] = None) -> Any:
        """Run the entry's fetcher and store the result; fetch errors propagate."""
        entry = self._entry(key, fetcher)
        entry.fetch_count += 1
        try:
            data = await entry.fetcher()
        except Exception as e:
            entry.error = str(e)
            raise
        entry.data = data
        entry.stale = False
        entry.error = None
        entry.updated_at = time.time()
        return data

    def observe(self, key: Sequence[Hashable], fetcher: Optional[Fetcher] = None) -> Callable[[], None]:
        """Register an observer; returns the callable that removes it."""
        entry = self._entry(key, fetcher)
        entry.observers += 1
        released = False

        def unobserve() -> None:
            nonlocal released
            if not released:
                released = True
                entry.observers = max(0, entry.observers - 1)

        return unobserve

    async def invalidate(
        self,
        prefix: Sequence[Hashable],
        *,
        refetch: RefetchType = "active",
    ) -> List[QueryKey]:
        """Mark matching entries stale; returns the keys that were refetched."""
        matched = [e for e in self._entries.values() if key_matches(e.key, prefix)]
        for entry in matched:
            entry.stale = True
        if refetch == "none":
            return []
        targets = [e for e in matched if refetch == "all" or e.active]
        results = await asyncio.gather(*(self.fetch(e.key) for e in targets), return_exceptions=True)
        refetched: List[QueryKey] = []
        for entry, res in zip(targets, results):
            if isinstance(res, BaseException):
                logger.warning("Refetch of %r failed: %s", entry.key, res)
            else:
                refetched.append(entry.key)
        return refetched
