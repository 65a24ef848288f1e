"""Best-effort audit recorder.

AuditRecorder writes the outcome of every governed operation. It never
raises: any storage or evaluation failure is logged, counted in
clone_governance_recordings_total{outcome="not_recorded"}, and returned as
a RecordingResult with recorded=False, so the operation being described is
never aborted by its own audit trail.

The violations produced by one evaluation and the operation's audit record
are written in a single transaction. Readers never see violations without
the audit record that produced them.
"""

import uuid

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clone_governance_engine.adapters.audit_log import AuditLogRepository
from clone_governance_engine.adapters.repositories import AccessLogRepository, ViolationRepository
from clone_governance_engine.core.services import PolicyEvaluationService
from clone_governance_engine.core.types import (
    AccessInfo,
    Clock,
    Identity,
    OperationInfo,
    OperationKind,
    OperationStatus,
    PolicyVerdict,
    RecordingResult,
    normalize_tag,
    utc_now,
)
from clone_governance_engine.metrics import RECORDINGS_TOTAL, VIOLATIONS_DETECTED_TOTAL
from clone_governance_engine.observability import get_logger

logger = get_logger(__name__)


class AuditRecorder:
    """Records governed operations and access events.

    Args:
        session_factory: Factory for the recorder's own units of work.
        evaluation: Evaluation service used for successful CREATE operations.
            None records without evaluating.
        clock: Injected wall clock.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        evaluation: PolicyEvaluationService | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._evaluation = evaluation
        self._clock = clock

    async def record_operation(
        self,
        operation: OperationInfo,
        identity: Identity,
        verdict: PolicyVerdict | None = None,
    ) -> RecordingResult:
        """Record one governed operation.

        Successful CREATE operations are evaluated unless a verdict is
        supplied (the governed-operation gate passes the verdict it already
        computed). Every violation in the verdict is persisted OPEN and linked
        to the audit record.

        Args:
            operation: What happened and to which resource.
            identity: Who did it.
            verdict: A pre-computed verdict to persist instead of evaluating.

        Returns:
            RecordingResult. recorded=False means nothing was persisted.
        """
        metadata = dict(operation.metadata)
        try:
            if verdict is None and self._should_evaluate(operation):
                try:
                    verdict = await self._evaluation.evaluate(operation, identity)  # type: ignore[union-attr]
                except Exception as exc:
                    # The audit record is still written without violations
                    logger.exception(
                        "Policy evaluation failed during recording",
                        operation=operation.operation.value,
                        actor=identity.actor,
                    )
                    metadata["evaluation_error"] = str(exc)

            if verdict is not None:
                metadata["policy_check"] = {
                    "should_block": verdict.block,
                    "violations_count": len(verdict.violations),
                    "skipped_policies": list(verdict.skipped_policies),
                }

            now = self._clock()
            audit_id = uuid.uuid4()
            violation_ids: list[uuid.UUID] = []

            async with self._session_factory() as session, session.begin():
                violations = ViolationRepository(session)
                for candidate in verdict.violations if verdict is not None else ():
                    violation = await violations.add(
                        candidate,
                        violator=identity.actor,
                        detected_at=now,
                        resource_id=operation.resource_id,
                        resource_name=operation.resource_name,
                        scope=normalize_tag(operation.scope),
                        audit_id=audit_id,
                    )
                    violation_ids.append(violation.id)

                await AuditLogRepository(session).append(
                    record_id=audit_id,
                    operation=operation.operation.value,
                    actor=identity.actor,
                    status=operation.status.value,
                    occurred_at=now,
                    resource_id=operation.resource_id,
                    resource_name=operation.resource_name,
                    resource_kind=normalize_tag(operation.resource_kind),
                    scope=normalize_tag(operation.scope),
                    actor_role=identity.role,
                    session_id=identity.session_id,
                    client_ip=identity.client_ip,
                    error_message=operation.error_message,
                    metadata=metadata,
                    violation_ids=violation_ids,
                )
        except Exception as exc:
            logger.exception(
                "Failed to record operation",
                operation=operation.operation.value,
                status=operation.status.value,
                actor=identity.actor,
                resource_id=operation.resource_id,
            )
            RECORDINGS_TOTAL.labels(record_type="operation", outcome="not_recorded").inc()
            return RecordingResult(recorded=False, verdict=verdict, error=str(exc))

        RECORDINGS_TOTAL.labels(record_type="operation", outcome="recorded").inc()
        if verdict is not None:
            for candidate in verdict.violations:
                VIOLATIONS_DETECTED_TOTAL.labels(severity=candidate.severity.value, source="operation").inc()
        return RecordingResult(
            recorded=True,
            record_id=audit_id,
            violation_ids=tuple(violation_ids),
            verdict=verdict,
        )

    async def record_access(self, access: AccessInfo, identity: Identity) -> RecordingResult:
        """Record a read/use event. No policy evaluation takes place.

        Returns:
            RecordingResult. recorded=False means nothing was persisted.
        """
        try:
            async with self._session_factory() as session, session.begin():
                record = await AccessLogRepository(session).append(
                    actor=identity.actor,
                    access_type=access.access_type,
                    accessed_at=self._clock(),
                    resource_id=access.resource_id,
                    resource_name=access.resource_name,
                    query_id=access.query_id,
                    rows_accessed=access.rows_accessed,
                    session_id=identity.session_id,
                )
                record_id = record.id
        except Exception as exc:
            logger.exception(
                "Failed to record access",
                actor=identity.actor,
                resource_id=access.resource_id,
                access_type=access.access_type,
            )
            RECORDINGS_TOTAL.labels(record_type="access", outcome="not_recorded").inc()
            return RecordingResult(recorded=False, error=str(exc))

        RECORDINGS_TOTAL.labels(record_type="access", outcome="recorded").inc()
        return RecordingResult(recorded=True, record_id=record_id)

    def _should_evaluate(self, operation: OperationInfo) -> bool:
        return (
            self._evaluation is not None
            and operation.operation is OperationKind.CREATE
            and operation.status is OperationStatus.SUCCESS
        )
