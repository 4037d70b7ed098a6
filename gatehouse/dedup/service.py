"""Two-layer duplicate detection for inbound envelopes."""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import datetime as dt
import logging
import typing as typ

from sqlalchemy import select

from gatehouse.common.env import parse_bool, parse_int, parse_str
from gatehouse.common.time import utcnow
from gatehouse.records.storage import InboundRecord, InboundStatus

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from gatehouse.dedup.cache import DedupCache

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 86_400


@dc.dataclass(frozen=True, slots=True)
class DedupConfig:
    """Configuration for duplicate detection.

    Attributes
    ----------
    cache_enabled
        Whether the fast-path cache is consulted and populated.
    cache_ttl
        How long a processed ``(source, id)`` stays in the cache.
    lookback
        Window for the store query.  ``None`` searches all history.  Rows
        older than the window are not found by the query, but the unique
        constraint still rejects them at insert time.
    redis_url
        Redis connection URL.  When set the fast-path cache is shared
        through Redis; otherwise each process keeps its own in memory.

    """

    cache_enabled: bool = True
    cache_ttl: dt.timedelta = dt.timedelta(hours=24)
    lookback: dt.timedelta | None = dt.timedelta(days=30)
    redis_url: str | None = None

    @classmethod
    def from_env(cls) -> DedupConfig:
        """Create configuration from environment variables.

        Reads ``GATEHOUSE_DEDUP_CACHE_ENABLED``,
        ``GATEHOUSE_DEDUP_CACHE_TTL_SECONDS``,
        ``GATEHOUSE_DEDUP_LOOKBACK_DAYS`` (``0`` disables the window) and
        ``GATEHOUSE_REDIS_URL``.
        """
        ttl_seconds = parse_int("GATEHOUSE_DEDUP_CACHE_TTL_SECONDS", _SECONDS_PER_DAY)
        lookback_days = parse_int("GATEHOUSE_DEDUP_LOOKBACK_DAYS", 30, minimum=0)
        return cls(
            cache_enabled=parse_bool("GATEHOUSE_DEDUP_CACHE_ENABLED", default=True),
            cache_ttl=dt.timedelta(seconds=ttl_seconds),
            lookback=dt.timedelta(days=lookback_days) if lookback_days else None,
            redis_url=parse_str("GATEHOUSE_REDIS_URL", "") or None,
        )


def cache_key(source: str, external_id: str) -> str:
    """Return the cache key for a ``(source, external_id)`` pair."""
    return f"idempotency:{source}:{external_id}"


class Deduplicator:
    """Detect resubmitted events using a cache and the audit table.

    The cache answers the common retry case cheaply.  A cache miss falls
    through to an existence query on ``inbound_records``.  Cache errors of
    any kind are logged and treated as a miss so a cache outage never
    blocks ingestion.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        cache: DedupCache | None = None,
        config: DedupConfig | None = None,
        clock: cabc.Callable[[], dt.datetime] = utcnow,
    ) -> None:
        """Store collaborators; ``cache=None`` disables the fast path."""
        self._session_factory = session_factory
        self._cache = cache
        self._config = config or DedupConfig()
        self._clock = clock

    @property
    def _cache_active(self) -> bool:
        return self._cache is not None and self._config.cache_enabled

    async def is_duplicate(self, source: str, external_id: str) -> bool:
        """Return whether ``(source, external_id)`` was already received."""
        if await self.seen_recently(source, external_id):
            logger.debug("Cache hit for event %s from %s", external_id, source)
            return True
        return await self.exists_in_store(source, external_id)

    async def seen_recently(self, source: str, external_id: str) -> bool:
        """Consult the cache; any cache failure counts as a miss."""
        if not self._cache_active or self._cache is None:
            return False
        try:
            return await self._cache.contains(cache_key(source, external_id))
        except Exception as exc:  # noqa: BLE001 - cache outages degrade to a miss
            logger.warning(
                "Dedup cache lookup failed for event %s from %s: %s",
                external_id,
                source,
                exc,
            )
            return False

    async def exists_in_store(self, source: str, external_id: str) -> bool:
        """Query the audit table for the pair within the lookback window.

        Rows still at RECEIVED belong to a request that has not finished and
        do not count, so a resubmission can complete them.
        """
        stmt = (
            select(InboundRecord.id)
            .where(
                InboundRecord.source == source,
                InboundRecord.external_event_id == external_id,
                InboundRecord.status != InboundStatus.RECEIVED,
            )
            .limit(1)
        )
        if self._config.lookback is not None:
            cutoff = self._clock() - self._config.lookback
            stmt = stmt.where(InboundRecord.received_at >= cutoff)

        async with self._session_factory() as session:
            return await session.scalar(stmt) is not None

    async def mark_processed(self, source: str, external_id: str) -> None:
        """Record the pair in the cache; failures are logged only."""
        if not self._cache_active or self._cache is None:
            return
        try:
            await self._cache.add(
                cache_key(source, external_id), self._config.cache_ttl
            )
        except Exception as exc:  # noqa: BLE001 - cache outages degrade to a miss
            logger.warning(
                "Dedup cache write failed for event %s from %s: %s",
                external_id,
                source,
                exc,
            )
