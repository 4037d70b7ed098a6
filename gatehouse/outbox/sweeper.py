"""Periodic task running the outbox retry sweep.

The sweeper is owned by the process lifecycle: ``start`` once the database
and broker are ready, ``stop`` on shutdown.  Stopping lets an in-flight
sweep finish and prevents a new one from starting.
"""

from __future__ import annotations

import asyncio
import logging
import typing as typ

if typ.TYPE_CHECKING:
    import datetime as dt

    from gatehouse.outbox.publisher import OutboxPublisher, SweepResult

logger = logging.getLogger(__name__)


class RetrySweeper:
    """Run ``OutboxPublisher.retry_sweep`` every ``interval``.

    Sweeps never overlap: the periodic loop and ``run_once`` share a lock.
    """

    def __init__(
        self,
        publisher: OutboxPublisher,
        *,
        interval: dt.timedelta | None = None,
    ) -> None:
        """Default the interval to the publisher's retry interval."""
        self._publisher = publisher
        self._interval = interval or publisher.config.retry_interval
        self._lock = asyncio.Lock()
        self._stopping = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        """Return whether the periodic loop is active."""
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the periodic loop; a no-op when already running."""
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name="gatehouse-retry-sweeper")
        logger.info(
            "Retry sweeper started (interval_seconds=%d)",
            int(self._interval.total_seconds()),
        )

    async def stop(self) -> None:
        """Stop the loop after any in-flight sweep completes."""
        task, self._task = self._task, None
        if task is None:
            return
        self._stopping.set()
        await task
        logger.info("Retry sweeper stopped")

    async def run_once(self) -> SweepResult:
        """Run one sweep, waiting for any sweep already in progress."""
        async with self._lock:
            return await self._publisher.retry_sweep()

    async def _wait_for_next_tick(self) -> bool:
        """Sleep one interval; return ``False`` if stopping was requested."""
        try:
            await asyncio.wait_for(
                self._stopping.wait(), timeout=self._interval.total_seconds()
            )
        except TimeoutError:
            return True
        return False

    async def _run(self) -> None:
        while await self._wait_for_next_tick():
            try:
                await self.run_once()
            except Exception:
                # Keep the loop alive; the next tick retries from the store.
                logger.exception("Outbox retry sweep failed")
