"""
Retention sweeper.

Periodically deletes events older than the configured retention horizon.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from prometheus_client import Counter

from auditlog.services.config_store import ConfigProvider
from auditlog.services.store import EventStore, StoreUnavailableError, utcnow

logger = logging.getLogger(__name__)

events_purged = Counter(
    'audit_events_purged_total',
    'Total events deleted by retention',
    ['trigger']
)


class RetentionSweeper:
    """Delete expired events on a fixed interval."""

    def __init__(
        self,
        store: EventStore,
        config: ConfigProvider,
        interval_seconds: float = 86400
    ):
        self.store = store
        self.config = config
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    def cutoff(self, now: Optional[datetime] = None) -> datetime:
        retention_days = self.config.current.retention.retention_days
        return (now or utcnow()) - timedelta(days=retention_days)

    async def purge_before(self, cutoff: datetime, trigger: str = "manual") -> int:
        """
        Delete every event older than ``cutoff``.

        Raises:
            StoreUnavailableError: If the store is not provisioned or unreachable
        """
        if not await self.store.exists():
            raise StoreUnavailableError("audit log table does not exist")

        deleted = await self.store.delete_older_than(cutoff)
        events_purged.labels(trigger=trigger).inc(deleted)
        logger.info(f"Deleted {deleted} events older than {cutoff.isoformat()} ({trigger})")
        return deleted

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """
        Delete events older than ``now - retention_days``.

        Returns:
            Number of events deleted (0 if the store is unavailable)
        """
        try:
            return await self.purge_before(self.cutoff(now), trigger="retention")
        except StoreUnavailableError as e:
            logger.warning(f"Retention sweep skipped, store unavailable: {e}")
            return 0

    async def _run(self) -> None:
        while True:
            try:
                await self.sweep()
            except Exception:
                # Retried on the next tick
                logger.exception("Retention sweep failed")
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        """Schedule the recurring sweep on the running event loop."""
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._run(), name="retention-sweeper")
        logger.info(f"Retention sweeper scheduled every {self.interval_seconds}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Retention sweeper stopped")
