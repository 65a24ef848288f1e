"""Retention purger.

Deletes audit records, RESOLVED violations, and access events older than
now - retention_days. OPEN violations are never deleted, whatever their
age. Dry run (the default) only counts what would be deleted.

A real purge deletes in id batches, each committed in its own transaction,
and checks the stop event between batches. Because every batch re-selects
from what is still eligible, running the purge again with the same cutoff
deletes nothing further.
"""

import asyncio
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clone_governance_engine.adapters.retention import PURGEABLE_COLLECTIONS, RetentionRepository
from clone_governance_engine.api.schemas import PurgeResult
from clone_governance_engine.core.types import Clock, utc_now
from clone_governance_engine.errors import ValidationError
from clone_governance_engine.metrics import PURGED_RECORDS_TOTAL
from clone_governance_engine.observability import get_logger

logger = get_logger(__name__)


class RetentionPurger:
    """Age-based deletion of closed audit data.

    Args:
        session_factory: Factory for per-batch units of work.
        clock: Injected wall clock.
        default_retention_days: Retention used when purge() gets none.
        batch_size: Rows deleted per transaction.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utc_now,
        default_retention_days: int = 365,
        batch_size: int = 500,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._default_retention_days = default_retention_days
        self._batch_size = batch_size
        self._running = asyncio.Lock()

    async def purge(
        self,
        retention_days: int | None = None,
        dry_run: bool = True,
        stop_event: asyncio.Event | None = None,
    ) -> PurgeResult:
        """Purge (or, in dry run, count) records older than the retention cutoff.

        Args:
            retention_days: Retention in days; the configured default if None.
            dry_run: Only count eligible rows when True.
            stop_event: Checked between delete batches; when set the purge
                stops with status CANCELLED and the counts deleted so far.

        Returns:
            PurgeResult with the cutoff and per-collection counts.

        Raises:
            ValidationError: If retention_days is not positive.
        """
        days = self._default_retention_days if retention_days is None else retention_days
        if days < 1:
            raise ValidationError("retention_days must be positive", field="retention_days")

        cutoff = self._clock() - timedelta(days=days)
        mode = "DRY_RUN" if dry_run else "EXECUTED"
        counts = {collection: 0 for collection in PURGEABLE_COLLECTIONS}

        if self._running.locked():
            logger.warning("Retention purge already running, skipping")
            return self._result("SKIPPED", mode, days, cutoff, counts, "A retention purge is already running")

        async with self._running:
            if dry_run:
                async with self._session_factory() as session:
                    repo = RetentionRepository(session)
                    for collection in PURGEABLE_COLLECTIONS:
                        counts[collection] = await repo.count_eligible(collection, cutoff)
                total = sum(counts.values())
                logger.info("Retention purge dry run", cutoff=cutoff.isoformat(), total=total, **counts)
                return self._result(
                    "SUCCESS",
                    mode,
                    days,
                    cutoff,
                    counts,
                    f"Dry run complete. {total} records would be deleted. Set dry_run=false to execute.",
                )

            cancelled = await self._delete_all(cutoff, counts, stop_event)

        total = sum(counts.values())
        logger.info(
            "Retention purge executed",
            cutoff=cutoff.isoformat(),
            cancelled=cancelled,
            total=total,
            **counts,
        )
        if cancelled:
            return self._result(
                "CANCELLED",
                mode,
                days,
                cutoff,
                counts,
                f"Purge cancelled. {total} records deleted before the stop signal.",
            )
        return self._result("SUCCESS", mode, days, cutoff, counts, f"Purge complete. {total} records deleted.")

    async def _delete_all(
        self,
        cutoff: datetime,
        counts: dict[str, int],
        stop_event: asyncio.Event | None,
    ) -> bool:
        """Delete every eligible row batch by batch. Returns True if stopped early."""
        for collection in PURGEABLE_COLLECTIONS:
            while True:
                if stop_event is not None and stop_event.is_set():
                    return True
                async with self._session_factory() as session, session.begin():
                    deleted = await RetentionRepository(session).delete_batch(collection, cutoff, self._batch_size)
                if deleted == 0:
                    break
                counts[collection] += deleted
                PURGED_RECORDS_TOTAL.labels(collection=collection).inc(deleted)
                if deleted < self._batch_size:
                    break
        return False

    @staticmethod
    def _result(
        status: str,
        mode: str,
        days: int,
        cutoff: datetime,
        counts: dict[str, int],
        message: str,
    ) -> PurgeResult:
        return PurgeResult(
            status=status,
            mode=mode,
            retention_days=days,
            cutoff_time=cutoff,
            records_affected={**counts, "total": sum(counts.values())},
            message=message,
        )
