"""Append-only audit log repository.

AuditLogRepository has no update() or delete() methods: an audit record is
permanent once committed. The only code path that removes audit rows is the
retention purger, through RetentionRepository in adapters/retention.py.

Key exports:
- AuditLogRepository: append + read operations on cg_clone_audit_log
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clone_governance_engine.core.models import CloneAuditRecord
from clone_governance_engine.errors import NotFoundError
from clone_governance_engine.observability import get_logger

logger = get_logger(__name__)


class AuditLogRepository:
    """Append-only repository for CloneAuditRecord.

    Args:
        session: The async session of the caller's unit of work.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(
        self,
        operation: str,
        actor: str,
        status: str,
        occurred_at: datetime,
        resource_id: str | None = None,
        resource_name: str | None = None,
        resource_kind: str | None = None,
        scope: str | None = None,
        actor_role: str | None = None,
        session_id: str | None = None,
        client_ip: str | None = None,
        error_message: str | None = None,
        metadata: dict[str, Any] | None = None,
        violation_ids: list[uuid.UUID] | None = None,
        record_id: uuid.UUID | None = None,
    ) -> CloneAuditRecord:
        """Append one immutable audit record.

        This is the ONLY write operation on the audit log.

        Args:
            operation: OperationKind value.
            actor: Acting identity.
            status: OperationStatus value.
            occurred_at: Time of the operation (injected clock).
            resource_id: Target resource identifier.
            resource_name: Target resource display name.
            resource_kind: Target resource kind (DATABASE, SCHEMA, ...).
            scope: Environment tag.
            actor_role: The actor's active role.
            session_id: Caller session identifier.
            client_ip: Caller address, when known.
            error_message: Failure text for FAILURE/BLOCKED outcomes.
            metadata: Free-form operation metadata.
            violation_ids: Violations produced by this operation.
            record_id: Pre-allocated id, so violations can link to it.

        Returns:
            The flushed CloneAuditRecord.
        """
        record = CloneAuditRecord(
            id=record_id or uuid.uuid4(),
            operation=operation,
            resource_id=resource_id,
            resource_name=resource_name,
            resource_kind=resource_kind,
            scope=scope,
            actor=actor,
            actor_role=actor_role,
            session_id=session_id,
            client_ip=client_ip,
            status=status,
            error_message=error_message,
            extra_metadata=metadata or {},
            violation_ids=[str(v) for v in violation_ids or []],
            occurred_at=occurred_at,
        )
        self._session.add(record)
        await self._session.flush()

        logger.info(
            "Audit record written",
            audit_id=str(record.id),
            operation=operation,
            status=status,
            actor=actor,
            violations=len(record.violation_ids),
        )
        return record

    async def get_by_id(self, record_id: uuid.UUID) -> CloneAuditRecord:
        """Retrieve one audit record.

        Raises:
            NotFoundError: If no record has the id.
        """
        record = await self._session.get(CloneAuditRecord, record_id)
        if record is None:
            raise NotFoundError(resource="Audit record", resource_id=str(record_id))
        return record

    async def query(
        self,
        start_time: datetime,
        end_time: datetime | None = None,
        operation: str | None = None,
        actor: str | None = None,
        scope: str | None = None,
        status: str | None = None,
        limit: int = 1000,
    ) -> list[CloneAuditRecord]:
        """Query the audit log with filters, newest first.

        Args:
            start_time: Inclusive lower bound on occurred_at.
            end_time: Inclusive upper bound on occurred_at.
            operation: Exact OperationKind filter.
            actor: Exact actor filter.
            scope: Exact scope filter.
            status: Exact OperationStatus filter.
            limit: Maximum rows returned.

        Returns:
            Matching CloneAuditRecord rows ordered by occurred_at descending.
        """
        stmt = select(CloneAuditRecord).where(CloneAuditRecord.occurred_at >= start_time)

        if end_time:
            stmt = stmt.where(CloneAuditRecord.occurred_at <= end_time)
        if operation:
            stmt = stmt.where(CloneAuditRecord.operation == operation)
        if actor:
            stmt = stmt.where(CloneAuditRecord.actor == actor)
        if scope:
            stmt = stmt.where(CloneAuditRecord.scope == scope)
        if status:
            stmt = stmt.where(CloneAuditRecord.status == status)

        stmt = stmt.order_by(CloneAuditRecord.occurred_at.desc(), CloneAuditRecord.id).limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
