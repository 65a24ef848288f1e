"""Retention repository: the only code path that deletes audit data.

Three collections are purgeable:
- audit_log: audit records older than the cutoff, unconditionally
- violations: violations older than the cutoff AND status RESOLVED
- access_log: access events older than the cutoff

OPEN violations are never selected, whatever their age.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from clone_governance_engine.core.models import CloneAccessRecord, CloneAuditRecord, PolicyViolation
from clone_governance_engine.core.types import ViolationStatus

AUDIT_LOG = "audit_log"
VIOLATIONS = "violations"
ACCESS_LOG = "access_log"

PURGEABLE_COLLECTIONS: tuple[str, ...] = (AUDIT_LOG, VIOLATIONS, ACCESS_LOG)


def _eligible(collection: str, cutoff: datetime) -> tuple[Any, list[Any]]:
    """Return (model, where-criteria) selecting the rows of a collection older than cutoff."""
    if collection == AUDIT_LOG:
        return CloneAuditRecord, [CloneAuditRecord.occurred_at < cutoff]
    if collection == VIOLATIONS:
        return PolicyViolation, [
            PolicyViolation.detected_at < cutoff,
            PolicyViolation.status == ViolationStatus.RESOLVED.value,
        ]
    if collection == ACCESS_LOG:
        return CloneAccessRecord, [CloneAccessRecord.accessed_at < cutoff]
    raise KeyError(collection)


class RetentionRepository:
    """Counts and batch-deletes rows past the retention cutoff.

    Args:
        session: The async session of the purger's current batch.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def count_eligible(self, collection: str, cutoff: datetime) -> int:
        """Count rows of a collection that the purger may delete."""
        model, criteria = _eligible(collection, cutoff)
        stmt = select(func.count()).select_from(model).where(*criteria)
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def delete_batch(self, collection: str, cutoff: datetime, batch_size: int) -> int:
        """Delete up to batch_size eligible rows.

        Args:
            collection: One of PURGEABLE_COLLECTIONS.
            cutoff: Rows strictly older than this are eligible.
            batch_size: Maximum rows deleted by this call.

        Returns:
            Number of rows deleted. Zero means the collection is exhausted.
        """
        model, criteria = _eligible(collection, cutoff)
        id_stmt = select(model.id).where(*criteria).limit(batch_size)
        ids = list((await self._session.execute(id_stmt)).scalars().all())
        if not ids:
            return 0
        await self._session.execute(
            delete(model).where(model.id.in_(ids)).execution_options(synchronize_session=False)
        )
        return len(ids)
