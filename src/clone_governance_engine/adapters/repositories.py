"""SQLAlchemy repositories for policies, violations, and access events.

Repositories:
- PolicyRepository: ClonePolicy CRUD and active-rule lookup
- ViolationRepository: PolicyViolation insert, lookup, resolution, queries
- AccessLogRepository: CloneAccessRecord append + query

NOTE: AuditLogRepository is in audit_log.py and has no mutation methods
beyond append(). Deletion of old rows lives only in retention.py.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import case, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from clone_governance_engine.core.models import CloneAccessRecord, ClonePolicy, PolicyViolation
from clone_governance_engine.core.types import Severity, ViolationCandidate, ViolationStatus
from clone_governance_engine.errors import NotFoundError
from clone_governance_engine.observability import get_logger

logger = get_logger(__name__)


def severity_rank(column: Any) -> ColumnElement[int]:
    """SQL expression ranking a severity column (CRITICAL highest)."""
    return case({s.value: s.rank for s in Severity}, value=column, else_=-1)


def _parse_uuid(value: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


class PolicyRepository:
    """Repository for ClonePolicy persistence.

    Args:
        session: The async session of the caller's unit of work.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        name: str,
        kind: str,
        definition: dict[str, Any],
        scope: str | None,
        severity: str,
        description: str | None,
        created_by: str,
        created_at: datetime,
        active: bool = True,
    ) -> ClonePolicy:
        """Create and flush a new policy.

        Returns:
            The persisted ClonePolicy.
        """
        policy = ClonePolicy(
            name=name,
            kind=kind,
            definition=definition,
            scope=scope,
            severity=severity,
            description=description,
            active=active,
            created_by=created_by,
            created_at=created_at,
        )
        self._session.add(policy)
        await self._session.flush()
        logger.info("Policy created in DB", policy_id=str(policy.id), name=name, kind=kind)
        return policy

    async def get_by_id(self, policy_id: uuid.UUID) -> ClonePolicy:
        """Retrieve a policy by id.

        Raises:
            NotFoundError: If not found.
        """
        policy = await self._session.get(ClonePolicy, policy_id)
        if policy is None:
            raise NotFoundError(resource="Policy", resource_id=str(policy_id))
        return policy

    async def get_by_name(self, name: str) -> ClonePolicy | None:
        """Retrieve a policy by its unique name, or None."""
        result = await self._session.execute(select(ClonePolicy).where(ClonePolicy.name == name))
        return result.scalar_one_or_none()

    async def get_by_ref(self, ref: str) -> ClonePolicy:
        """Retrieve a policy by id (UUID string) or unique name.

        Raises:
            NotFoundError: If neither matches.
        """
        policy_id = _parse_uuid(ref)
        if policy_id is not None:
            policy = await self._session.get(ClonePolicy, policy_id)
            if policy is not None:
                return policy
        policy = await self.get_by_name(ref)
        if policy is None:
            raise NotFoundError(resource="Policy", resource_id=ref)
        return policy

    async def list_policies(
        self,
        scope: str | None = None,
        kind: str | None = None,
        active_only: bool = False,
    ) -> list[ClonePolicy]:
        """List policies, highest severity first then by name.

        Args:
            scope: When given, policies for this scope plus global policies.
            kind: Exact PolicyKind filter.
            active_only: Exclude inactive policies.

        Returns:
            Matching ClonePolicy rows.
        """
        stmt = select(ClonePolicy)
        if scope:
            stmt = stmt.where(or_(ClonePolicy.scope == scope, ClonePolicy.scope.is_(None)))
        if kind:
            stmt = stmt.where(ClonePolicy.kind == kind)
        if active_only:
            stmt = stmt.where(ClonePolicy.active.is_(True))
        stmt = stmt.order_by(severity_rank(ClonePolicy.severity).desc(), ClonePolicy.name)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_active(self, scope: str | None = None, kind: str | None = None) -> list[ClonePolicy]:
        """Active policies applicable to one scope: global ones plus that scope's.

        Args:
            scope: The operation's scope. None selects only global policies.
            kind: Optional PolicyKind filter.

        Returns:
            Active ClonePolicy rows ordered by name.
        """
        stmt = select(ClonePolicy).where(ClonePolicy.active.is_(True))
        if scope is None:
            stmt = stmt.where(ClonePolicy.scope.is_(None))
        else:
            stmt = stmt.where(or_(ClonePolicy.scope == scope, ClonePolicy.scope.is_(None)))
        if kind:
            stmt = stmt.where(ClonePolicy.kind == kind)
        result = await self._session.execute(stmt.order_by(ClonePolicy.name))
        return list(result.scalars().all())

    async def list_active_by_kind(self, kind: str) -> list[ClonePolicy]:
        """Every active policy of one kind, across all scopes."""
        stmt = (
            select(ClonePolicy)
            .where(ClonePolicy.active.is_(True), ClonePolicy.kind == kind)
            .order_by(ClonePolicy.name)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def update(self, policy: ClonePolicy, updated_by: str, updated_at: datetime, **changes: Any) -> ClonePolicy:
        """Apply field changes to a policy and flush.

        Args:
            policy: The policy to change.
            updated_by: Acting identity.
            updated_at: Change time.
            **changes: Column values to set.

        Returns:
            The updated ClonePolicy.
        """
        for key, value in changes.items():
            setattr(policy, key, value)
        policy.updated_by = updated_by
        policy.updated_at = updated_at
        await self._session.flush()
        logger.info("Policy updated in DB", policy_id=str(policy.id), fields=sorted(changes))
        return policy

    async def delete(self, policy: ClonePolicy) -> None:
        """Delete a policy. Its violations are kept."""
        await self._session.delete(policy)
        await self._session.flush()
        logger.info("Policy deleted from DB", policy_id=str(policy.id), name=policy.name)


class ViolationRepository:
    """Repository for PolicyViolation persistence.

    Args:
        session: The async session of the caller's unit of work.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(
        self,
        candidate: ViolationCandidate,
        violator: str,
        detected_at: datetime,
        resource_id: str | None = None,
        resource_name: str | None = None,
        scope: str | None = None,
        audit_id: uuid.UUID | None = None,
    ) -> PolicyViolation:
        """Persist one OPEN violation from an evaluator candidate.

        Returns:
            The flushed PolicyViolation.
        """
        violation = PolicyViolation(
            id=uuid.uuid4(),
            policy_id=candidate.policy_id,
            policy_name=candidate.policy_name,
            policy_kind=candidate.policy_kind.value,
            resource_id=resource_id,
            resource_name=resource_name,
            scope=scope,
            violator=violator,
            details=candidate.to_details(),
            severity=candidate.severity.value,
            status=ViolationStatus.OPEN.value,
            detected_at=detected_at,
            audit_id=audit_id,
        )
        self._session.add(violation)
        await self._session.flush()
        return violation

    async def get_by_id(self, violation_id: uuid.UUID) -> PolicyViolation:
        """Retrieve one violation.

        Raises:
            NotFoundError: If not found.
        """
        violation = await self._session.get(PolicyViolation, violation_id)
        if violation is None:
            raise NotFoundError(resource="Violation", resource_id=str(violation_id))
        return violation

    async def find_open(self, policy_id: uuid.UUID, resource_id: str) -> PolicyViolation | None:
        """Return the OPEN violation of one policy against one resource, if any."""
        stmt = (
            select(PolicyViolation)
            .where(
                PolicyViolation.policy_id == policy_id,
                PolicyViolation.resource_id == resource_id,
                PolicyViolation.status == ViolationStatus.OPEN.value,
            )
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def resolve(
        self,
        violation: PolicyViolation,
        resolved_by: str,
        resolved_at: datetime,
        notes: str | None,
    ) -> PolicyViolation:
        """Move an OPEN violation to RESOLVED and flush."""
        violation.status = ViolationStatus.RESOLVED.value
        violation.resolved_by = resolved_by
        violation.resolved_at = resolved_at
        violation.resolution_notes = notes
        await self._session.flush()
        logger.info("Violation resolved in DB", violation_id=str(violation.id), resolved_by=resolved_by)
        return violation

    async def query(
        self,
        start_time: datetime,
        end_time: datetime | None = None,
        status: str | None = None,
        severity: str | None = None,
        actor: str | None = None,
        scope: str | None = None,
        policy_name: str | None = None,
        limit: int = 1000,
    ) -> list[PolicyViolation]:
        """Query violations, highest severity first then newest first.

        Args:
            start_time: Inclusive lower bound on detected_at.
            end_time: Inclusive upper bound on detected_at.
            status: ViolationStatus filter.
            severity: Severity filter.
            actor: Violator filter.
            scope: Scope filter.
            policy_name: Policy name filter.
            limit: Maximum rows returned.

        Returns:
            Matching PolicyViolation rows.
        """
        stmt = select(PolicyViolation).where(PolicyViolation.detected_at >= start_time)

        if end_time:
            stmt = stmt.where(PolicyViolation.detected_at <= end_time)
        if status:
            stmt = stmt.where(PolicyViolation.status == status)
        if severity:
            stmt = stmt.where(PolicyViolation.severity == severity)
        if actor:
            stmt = stmt.where(PolicyViolation.violator == actor)
        if scope:
            stmt = stmt.where(PolicyViolation.scope == scope)
        if policy_name:
            stmt = stmt.where(PolicyViolation.policy_name == policy_name)

        stmt = stmt.order_by(
            severity_rank(PolicyViolation.severity).desc(),
            PolicyViolation.detected_at.desc(),
        ).limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


class AccessLogRepository:
    """Append + read repository for CloneAccessRecord.

    Args:
        session: The async session of the caller's unit of work.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(
        self,
        actor: str,
        access_type: str,
        accessed_at: datetime,
        resource_id: str | None = None,
        resource_name: str | None = None,
        query_id: str | None = None,
        rows_accessed: int | None = None,
        session_id: str | None = None,
    ) -> CloneAccessRecord:
        """Append one access event."""
        record = CloneAccessRecord(
            id=uuid.uuid4(),
            resource_id=resource_id,
            resource_name=resource_name,
            actor=actor,
            access_type=access_type,
            query_id=query_id,
            rows_accessed=rows_accessed,
            session_id=session_id,
            accessed_at=accessed_at,
        )
        self._session.add(record)
        await self._session.flush()
        return record

    async def query(
        self,
        start_time: datetime,
        end_time: datetime | None = None,
        resource_id: str | None = None,
        actor: str | None = None,
        limit: int = 1000,
    ) -> list[CloneAccessRecord]:
        """Query access events, newest first."""
        stmt = select(CloneAccessRecord).where(CloneAccessRecord.accessed_at >= start_time)
        if end_time:
            stmt = stmt.where(CloneAccessRecord.accessed_at <= end_time)
        if resource_id:
            stmt = stmt.where(CloneAccessRecord.resource_id == resource_id)
        if actor:
            stmt = stmt.where(CloneAccessRecord.actor == actor)
        stmt = stmt.order_by(CloneAccessRecord.accessed_at.desc()).limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
