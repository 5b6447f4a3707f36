"""Offer cache — explicit TTL cache with one in-flight fetch per key.

Used for: the storefront's bundle-offer lookups (GET /api/intelligence/bundle),
which every page render can trigger for the same shopper.

An OfferCache instance lives on app.state and is handed to the routes that
need it; there is no module-level cache. Concurrent misses for the same key
share one fetch: the first caller runs it, the rest await its result.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

log = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: Any
    fetched_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.fetched_at < self.ttl


class OfferCache:
    def __init__(self, ttl_seconds: float = 60, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl_seconds
        self.clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._inflight: dict[str, asyncio.Future] = {}

    def peek(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is not None and entry.is_fresh(self.clock()):
            return entry
        return None

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = CacheEntry(value=value, fetched_at=self.clock(), ttl=self.ttl)

    async def get_or_fetch(self, key: str, fetch: Callable[[], Awaitable[Any]]) -> Any:
        entry = self.peek(key)
        if entry is not None:
            return entry.value

        pending = self._inflight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            value = await fetch()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            future.exception()  # mark retrieved when nobody else was waiting
            raise
        else:
            self.set(key, value)
            future.set_result(value)
            return value
        finally:
            self._inflight.pop(key, None)

    def invalidate(self, key: str | None = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)
