"""Fast-path duplicate cache.

The cache is an optimisation only: a miss, an eviction or an outage never
causes a duplicate to be accepted, because the durable store remains the
authority.  ``InMemoryDedupCache`` serves single-process deployments and
tests; ``RedisDedupCache`` shares processed keys between replicas.
"""

from __future__ import annotations

import collections.abc as cabc
import time
import typing as typ

import redis.asyncio as aioredis

if typ.TYPE_CHECKING:
    import datetime as dt


class DedupCache(typ.Protocol):
    """Key/value store with per-key expiry."""

    async def contains(self, key: str) -> bool:
        """Return whether *key* is present and unexpired."""
        ...

    async def add(self, key: str, ttl: dt.timedelta) -> None:
        """Store *key* for *ttl*."""
        ...


class InMemoryDedupCache:
    """Process-local TTL cache bounded to ``max_entries`` keys."""

    def __init__(
        self,
        *,
        max_entries: int = 100_000,
        clock: cabc.Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialise an empty cache."""
        self._entries: dict[str, float] = {}
        self._max_entries = max_entries
        self._clock = clock

    def __len__(self) -> int:
        """Return the number of stored keys, expired ones included."""
        return len(self._entries)

    async def contains(self, key: str) -> bool:
        """Return whether *key* is present and unexpired."""
        expires_at = self._entries.get(key)
        if expires_at is None:
            return False
        if expires_at <= self._clock():
            self._entries.pop(key, None)
            return False
        return True

    async def add(self, key: str, ttl: dt.timedelta) -> None:
        """Store *key* until ``now + ttl``, evicting if over capacity."""
        self._entries.pop(key, None)
        self._entries[key] = self._clock() + ttl.total_seconds()
        if len(self._entries) > self._max_entries:
            self._evict()

    def _evict(self) -> None:
        now = self._clock()
        for key in [k for k, expiry in self._entries.items() if expiry <= now]:
            del self._entries[key]
        # Insertion order doubles as age order once expired keys are gone.
        while len(self._entries) > self._max_entries:
            del self._entries[next(iter(self._entries))]


class RedisDedupCache:
    """``DedupCache`` backed by Redis keys that expire on their own.

    Parameters
    ----------
    client
        A ``redis.asyncio`` client.  Any object with ``exists``, ``set``
        and ``aclose`` coroutines works.

    """

    def __init__(self, client: aioredis.Redis) -> None:
        """Store the client; no connection is opened until first use."""
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisDedupCache:
        """Create a cache from a ``redis://`` or ``rediss://`` URL."""
        return cls(aioredis.from_url(url))

    async def contains(self, key: str) -> bool:
        """Return whether *key* exists; Redis drops it once expired."""
        return bool(await self._client.exists(key))

    async def add(self, key: str, ttl: dt.timedelta) -> None:
        """Store *key* with ``SET key 1 EX ttl``."""
        await self._client.set(key, "1", ex=max(1, int(ttl.total_seconds())))

    async def aclose(self) -> None:
        """Release the client's connection pool."""
        await self._client.aclose()
