"""Governed create operations with an atomic per-actor quota check.

The USER_QUOTA check reads the actor's live clone count, and the clone
workflow later adds to that count. GovernedOperationGate holds a per-actor
lock across the whole sequence: read count, evaluate, run the creation,
record. Two concurrent creates by the same actor therefore see each other's
result, and the quota cannot be overshot, provided the creation action
registers the new clone before it returns.

Callers that use PolicyEvaluationService.evaluate and
AuditRecorder.record_operation directly, without the gate, get advisory
quota semantics: concurrent creates may each pass the check.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from clone_governance_engine.core.interfaces import IActorLockManager, IAuditRecorder, IResourceRegistry
from clone_governance_engine.core.services import PolicyEvaluationService
from clone_governance_engine.core.types import (
    Identity,
    OperationInfo,
    OperationKind,
    OperationStatus,
    PolicyVerdict,
    RecordingResult,
)
from clone_governance_engine.errors import ValidationError
from clone_governance_engine.metrics import BLOCKED_OPERATIONS_TOTAL
from clone_governance_engine.observability import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Coroutine factory that materialises one clone
ResourceAction = Callable[[], Awaitable[T]]


@dataclass(frozen=True)
class GovernedOutcome(Generic[T]):
    """Result of a governed create.

    Attributes:
        allowed: False when a blocking policy refused the operation.
        verdict: The evaluation that decided it.
        recording: Outcome of the audit write.
        value: What the resource action returned; None when blocked.
    """

    allowed: bool
    verdict: PolicyVerdict
    recording: RecordingResult
    value: T | None = None


class GovernedOperationGate:
    """Evaluate, create, and record under one per-actor lock.

    Args:
        evaluation: Evaluation service (loads rules, runs the evaluator).
        recorder: Audit recorder.
        registry: Source of the actor's live count, read under the lock.
        locks: Per-actor lock manager.
    """

    def __init__(
        self,
        evaluation: PolicyEvaluationService,
        recorder: IAuditRecorder,
        registry: IResourceRegistry,
        locks: IActorLockManager,
    ) -> None:
        self._evaluation = evaluation
        self._recorder = recorder
        self._registry = registry
        self._locks = locks

    async def execute_create(
        self,
        operation: OperationInfo,
        identity: Identity,
        action: ResourceAction[T],
        resource_id_of: Callable[[T], str | None] | None = None,
    ) -> GovernedOutcome[T]:
        """Run a clone creation if the active policies allow it.

        Args:
            operation: The CREATE operation about to happen.
            identity: The acting identity.
            action: Coroutine factory that materialises the clone.
            resource_id_of: Extracts the created resource id from the
                action's return value, for the audit record.

        Returns:
            GovernedOutcome. When blocked, the action was never called.

        Raises:
            ValidationError: If the operation is not a CREATE.
            Exception: Whatever the action raised, after a FAILURE record.
        """
        if operation.operation is not OperationKind.CREATE:
            raise ValidationError("Only CREATE operations can be gated", field="operation")

        async with self._locks.hold(identity.actor):
            live_count = await self._registry.count_live_resources(identity.actor)
            verdict = await self._evaluation.evaluate(operation, identity, live_resource_count=live_count)

            if verdict.block:
                blocking = [v.policy_name for v in verdict.violations if v.blocks]
                logger.warning(
                    "Governed operation blocked",
                    actor=identity.actor,
                    resource_name=operation.resource_name,
                    policies=blocking,
                )
                BLOCKED_OPERATIONS_TOTAL.inc()
                recording = await self._recorder.record_operation(
                    operation.with_outcome(
                        OperationStatus.BLOCKED,
                        error_message=f"Blocked by policy: {', '.join(blocking)}",
                    ),
                    identity,
                    verdict=verdict,
                )
                return GovernedOutcome(allowed=False, verdict=verdict, recording=recording)

            try:
                value = await action()
            except Exception as exc:
                await self._recorder.record_operation(
                    operation.with_outcome(OperationStatus.FAILURE, error_message=str(exc)),
                    identity,
                )
                raise

            resource_id = resource_id_of(value) if resource_id_of is not None else None
            recording = await self._recorder.record_operation(
                operation.with_outcome(OperationStatus.SUCCESS, resource_id=resource_id),
                identity,
                verdict=verdict,
            )

        logger.info(
            "Governed operation completed",
            actor=identity.actor,
            resource_name=operation.resource_name,
            violations=len(verdict.violations),
        )
        return GovernedOutcome(allowed=True, verdict=verdict, recording=recording, value=value)
