"""Core business logic services for the clone governance engine.

Four service classes:
- PolicyEvaluationService: Load active rules, fill in the live count, run the pure evaluator
- PolicyService: Policy lifecycle: create, list, update, toggle, delete, default set
- ViolationService: Violation lookup, queries, and OPEN -> RESOLVED transitions
- AuditQueryService: Read-only queries over the audit log, access log, and actor activity

All services are async-first and framework-free. Each call opens its own unit
of work from the injected session factory. Identity and time are always
explicit: identity is a parameter, time comes from the injected clock.

Administrative operations return structured result documents. A missing
policy or violation is an ERROR result, not an exception; only malformed
policy input raises ValidationError.
"""

import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clone_governance_engine.adapters.audit_log import AuditLogRepository
from clone_governance_engine.adapters.repositories import (
    AccessLogRepository,
    PolicyRepository,
    ViolationRepository,
)
from clone_governance_engine.api.schemas import (
    AccessLogResponse,
    AccessRecordResponse,
    ActorActivityResponse,
    AuditLogResponse,
    AuditRecordResponse,
    AuditRecordResult,
    DefaultPoliciesResult,
    LiveResourceResponse,
    PolicyListResponse,
    PolicyResponse,
    PolicyResult,
    ViolationListResponse,
    ViolationResponse,
    ViolationResult,
)
from clone_governance_engine.core.evaluator import PolicyEvaluator
from clone_governance_engine.core.interfaces import IAuditRecorder, IResourceRegistry
from clone_governance_engine.core.models import ClonePolicy
from clone_governance_engine.core.policy_kinds import (
    PolicyRule,
    parse_definition,
    parse_kind,
    parse_severity,
)
from clone_governance_engine.core.types import (
    Clock,
    EvaluationContext,
    Identity,
    OperationInfo,
    OperationKind,
    OperationStatus,
    PolicyKind,
    PolicyVerdict,
    ViolationStatus,
    normalize_tag,
    utc_now,
)
from clone_governance_engine.errors import NotFoundError, ValidationError
from clone_governance_engine.metrics import EVALUATION_SKIPS_TOTAL
from clone_governance_engine.observability import get_logger

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Recommended default policy set (installed by seed_default_policies)
# ---------------------------------------------------------------------------

DEFAULT_POLICIES: list[dict[str, Any]] = [
    {
        "name": "PRD_MAX_CLONE_AGE_7_DAYS",
        "kind": "MAX_AGE",
        "scope": "PRD",
        "severity": "WARNING",
        "description": "Production clones should not exist for more than 7 days",
        "definition": {"max_age_days": 7, "action": "WARN_AND_LOG"},
    },
    {
        "name": "UAT_MAX_CLONE_AGE_14_DAYS",
        "kind": "MAX_AGE",
        "scope": "UAT",
        "severity": "WARNING",
        "description": "UAT clones should not exist for more than 14 days",
        "definition": {"max_age_days": 14, "action": "WARN_AND_LOG"},
    },
    {
        "name": "RESTRICT_PII_SCHEMA_CLONES",
        "kind": "SENSITIVE_DATA",
        "scope": None,
        "severity": "CRITICAL",
        "description": "Cloning schemas with sensitive data requires security approval",
        "definition": {
            "restricted_schemas": ["PII", "SENSITIVE", "CONFIDENTIAL", "PHI", "PCI"],
            "action": "REQUIRE_APPROVAL",
            "approvers": ["SRS_SECURITY_ADMIN", "SRS_ACCOUNT_ADMIN"],
        },
    },
    {
        "name": "NO_PRD_DATABASE_CLONES",
        "kind": "ENVIRONMENT_RESTRICTION",
        "scope": "PRD",
        "severity": "ERROR",
        "description": "Full database clones are not allowed in production",
        "definition": {"restricted_clone_types": ["DATABASE"], "action": "BLOCK"},
    },
    {
        "name": "PRD_BUSINESS_HOURS_ONLY",
        "kind": "TIME_RESTRICTION",
        "scope": "PRD",
        "severity": "ERROR",
        "description": "Production clones can only be created during business hours",
        "definition": {
            "allowed_hours_start": 8,
            "allowed_hours_end": 18,
            "allowed_days": ["MON", "TUE", "WED", "THU", "FRI"],
            "timezone": "America/New_York",
            "action": "BLOCK",
        },
    },
    {
        "name": "MAX_TOTAL_USER_CLONES_10",
        "kind": "USER_QUOTA",
        "scope": None,
        "severity": "ERROR",
        "description": "Users cannot have more than 10 total clones",
        "definition": {"max_total_clones": 10, "action": "BLOCK"},
    },
    {
        "name": "AUDIT_RETENTION_365_DAYS",
        "kind": "DATA_CLASSIFICATION",
        "scope": None,
        "severity": "INFO",
        "description": "Audit records must be retained for 365 days",
        "definition": {"retention_days": 365, "applies_to": "AUDIT_LOG", "action": "LOG"},
    },
]


def _store_definition(kind: PolicyKind, document: dict[str, Any]) -> dict[str, Any]:
    """Validate a definition and return its normalised stored form."""
    return parse_definition(kind, document).model_dump(mode="json", exclude_none=True)


def _compile_rules(policies: list[ClonePolicy]) -> tuple[list[PolicyRule], list[str]]:
    """Compile stored policies, skipping (and reporting) any that no longer validate."""
    rules: list[PolicyRule] = []
    skipped: list[str] = []
    for policy in policies:
        try:
            rules.append(
                PolicyRule.compile(
                    policy_id=policy.id,
                    name=policy.name,
                    kind=policy.kind,
                    scope=policy.scope,
                    severity=policy.severity,
                    definition=policy.definition,
                )
            )
        except ValidationError as exc:
            logger.warning(
                "Stored policy definition is invalid, skipping",
                policy_name=policy.name,
                policy_kind=policy.kind,
                reason=exc.message,
            )
            EVALUATION_SKIPS_TOTAL.labels(policy_kind=policy.kind).inc()
            skipped.append(policy.name)
    return rules, skipped


def _clamp_limit(limit: int | None, max_limit: int) -> int:
    if limit is None:
        return max_limit
    if limit < 1:
        raise ValidationError("limit must be positive", field="limit")
    return min(limit, max_limit)


class PolicyEvaluationService:
    """Evaluates operations against the active policies in the Policy Store.

    Args:
        session_factory: Factory for short read-only units of work.
        registry: Source of the actor's live resource count.
        evaluator: The pure evaluator. A default instance is created if None.
        clock: Injected wall clock.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: IResourceRegistry,
        evaluator: PolicyEvaluator | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._registry = registry
        self._evaluator = evaluator or PolicyEvaluator()
        self._clock = clock

    async def load_rules(self, scope: str | None) -> tuple[list[PolicyRule], list[str]]:
        """Compile the active policies that apply to one scope.

        Returns:
            Tuple of (compiled rules, names of policies skipped as invalid).
        """
        async with self._session_factory() as session:
            policies = await PolicyRepository(session).list_active(scope=scope)
        return _compile_rules(policies)

    async def load_age_rules(self) -> list[PolicyRule]:
        """Compile every active MAX_AGE policy, across all scopes."""
        async with self._session_factory() as session:
            policies = await PolicyRepository(session).list_active_by_kind(PolicyKind.MAX_AGE.value)
        rules, _ = _compile_rules(policies)
        return rules

    async def evaluate(
        self,
        operation: OperationInfo,
        identity: Identity,
        live_resource_count: int | None = None,
    ) -> PolicyVerdict:
        """Evaluate one operation against the active, scope-matching policies.

        The actor's live resource count is read from the registry only when
        a USER_QUOTA rule is in play and the caller did not supply it. If the
        registry is unavailable the quota rules are skipped, not failed.

        Args:
            operation: The operation to check.
            identity: The acting identity.
            live_resource_count: Pre-read live count (the gate reads it under lock).

        Returns:
            The PolicyVerdict.
        """
        scope = normalize_tag(operation.scope)
        rules, invalid = await self.load_rules(scope)

        if live_resource_count is None and any(r.kind is PolicyKind.USER_QUOTA for r in rules):
            try:
                live_resource_count = await self._registry.count_live_resources(identity.actor)
            except Exception:
                logger.exception("Resource registry unavailable for quota check", actor=identity.actor)

        context = EvaluationContext.for_operation(
            operation,
            identity,
            now=self._clock(),
            live_resource_count=live_resource_count,
        )
        verdict = self._evaluator.evaluate(context, rules)
        if invalid:
            verdict = replace(
                verdict,
                skipped_policies=tuple(sorted({*verdict.skipped_policies, *invalid})),
            )

        logger.info(
            "Operation evaluated",
            operation=operation.operation.value,
            actor=identity.actor,
            scope=scope,
            violations=len(verdict.violations),
            should_block=verdict.block,
        )
        return verdict


class PolicyService:
    """Policy lifecycle operations.

    Every change is written to the audit log as a POLICY_* operation through
    the injected recorder. Recording is best effort and never undoes the
    change.

    Args:
        session_factory: Factory for units of work.
        recorder: Audit recorder for POLICY_* records.
        clock: Injected wall clock.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        recorder: IAuditRecorder,
        clock: Clock = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._recorder = recorder
        self._clock = clock

    async def create_policy(
        self,
        name: str,
        kind: str,
        definition: dict[str, Any],
        identity: Identity,
        scope: str | None = None,
        description: str | None = None,
        severity: str = "WARNING",
    ) -> PolicyResult:
        """Create a new active policy.

        Args:
            name: Unique policy name.
            kind: PolicyKind value.
            definition: Kind-specific parameter document.
            identity: The administrator creating the policy.
            scope: Environment tag; None for a global policy.
            description: Optional free text.
            severity: Severity value, WARNING by default.

        Returns:
            PolicyResult with the created policy.

        Raises:
            ValidationError: Empty or duplicate name, unknown kind or severity,
                or a definition that does not match the kind.
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Policy name is required", field="name")
        parsed_kind = parse_kind(kind)
        parsed_severity = parse_severity(severity)
        stored = _store_definition(parsed_kind, definition)
        scope_tag = normalize_tag(scope)

        try:
            async with self._session_factory() as session, session.begin():
                repo = PolicyRepository(session)
                if await repo.get_by_name(name) is not None:
                    raise ValidationError(f"Policy '{name}' already exists", field="name")
                policy = await repo.create(
                    name=name,
                    kind=parsed_kind.value,
                    definition=stored,
                    scope=scope_tag,
                    severity=parsed_severity.value,
                    description=description,
                    created_by=identity.actor,
                    created_at=self._clock(),
                )
        except IntegrityError as exc:
            raise ValidationError(f"Policy '{name}' already exists", field="name") from exc

        logger.info(
            "Policy created",
            policy_id=str(policy.id),
            policy_name=name,
            kind=parsed_kind.value,
            scope=scope_tag,
            actor=identity.actor,
        )
        await self._record(OperationKind.POLICY_CREATE, policy, identity, {"definition": stored})
        return PolicyResult(
            status="SUCCESS",
            message=f"Policy {name} created successfully",
            policy=PolicyResponse.model_validate(policy),
        )

    async def list_policies(
        self,
        scope: str | None = None,
        kind: str | None = None,
        active_only: bool = False,
    ) -> PolicyListResponse:
        """List policies ordered by severity descending then name.

        Args:
            scope: When given, that scope's policies plus the global ones.
            kind: Optional PolicyKind filter.
            active_only: Exclude inactive policies.

        Raises:
            ValidationError: If kind is not a known PolicyKind.
        """
        kind_value = parse_kind(kind).value if kind else None
        async with self._session_factory() as session:
            policies = await PolicyRepository(session).list_policies(
                scope=normalize_tag(scope),
                kind=kind_value,
                active_only=active_only,
            )
        items = [PolicyResponse.model_validate(p) for p in policies]
        return PolicyListResponse(items=items, total=len(items))

    async def get_policy(self, ref: str) -> PolicyResult:
        """Look up a policy by id or name."""
        async with self._session_factory() as session:
            try:
                policy = await PolicyRepository(session).get_by_ref(ref)
            except NotFoundError as exc:
                return PolicyResult(status="ERROR", message=exc.message)
        return PolicyResult(status="SUCCESS", message="Policy found", policy=PolicyResponse.model_validate(policy))

    async def update_policy(
        self,
        ref: str,
        identity: Identity,
        definition: dict[str, Any] | None = None,
        severity: str | None = None,
        scope: str | None = None,
        description: str | None = None,
    ) -> PolicyResult:
        """Change a policy's definition, severity, scope, or description.

        None leaves a field unchanged; an empty-string scope makes the policy
        global. Existing violations keep the severity they were detected with.

        Raises:
            ValidationError: Unknown severity or a definition that does not
                match the policy's kind.
        """
        parsed_severity = parse_severity(severity) if severity is not None else None

        async with self._session_factory() as session, session.begin():
            repo = PolicyRepository(session)
            try:
                policy = await repo.get_by_ref(ref)
            except NotFoundError as exc:
                return PolicyResult(status="ERROR", message=exc.message)

            changes: dict[str, Any] = {}
            if definition is not None:
                changes["definition"] = _store_definition(parse_kind(policy.kind), definition)
            if parsed_severity is not None:
                changes["severity"] = parsed_severity.value
            if scope is not None:
                changes["scope"] = normalize_tag(scope)
            if description is not None:
                changes["description"] = description
            if not changes:
                return PolicyResult(
                    status="ERROR",
                    message="No changes supplied",
                    policy=PolicyResponse.model_validate(policy),
                )
            policy = await repo.update(policy, updated_by=identity.actor, updated_at=self._clock(), **changes)

        logger.info("Policy updated", policy_name=policy.name, fields=sorted(changes), actor=identity.actor)
        await self._record(OperationKind.POLICY_UPDATE, policy, identity, {"changes": sorted(changes)})
        return PolicyResult(
            status="SUCCESS",
            message=f"Policy {policy.name} updated successfully",
            policy=PolicyResponse.model_validate(policy),
        )

    async def set_policy_status(self, ref: str, active: bool, identity: Identity) -> PolicyResult:
        """Enable or disable a policy. Takes effect on the very next evaluation."""
        async with self._session_factory() as session, session.begin():
            repo = PolicyRepository(session)
            try:
                policy = await repo.get_by_ref(ref)
            except NotFoundError as exc:
                return PolicyResult(status="ERROR", message=exc.message)
            policy = await repo.update(policy, updated_by=identity.actor, updated_at=self._clock(), active=active)

        word = "enabled" if active else "disabled"
        logger.info(f"Policy {word}", policy_name=policy.name, actor=identity.actor)
        operation = OperationKind.POLICY_ENABLE if active else OperationKind.POLICY_DISABLE
        await self._record(operation, policy, identity, {})
        return PolicyResult(
            status="SUCCESS",
            message=f"Policy {policy.name} {word}",
            policy=PolicyResponse.model_validate(policy),
        )

    async def delete_policy(self, ref: str, identity: Identity) -> PolicyResult:
        """Delete a policy. Its violations survive with the policy name copied onto them."""
        async with self._session_factory() as session, session.begin():
            repo = PolicyRepository(session)
            try:
                policy = await repo.get_by_ref(ref)
            except NotFoundError as exc:
                return PolicyResult(status="ERROR", message=exc.message)
            snapshot = PolicyResponse.model_validate(policy)
            await repo.delete(policy)

        logger.info("Policy deleted", policy_name=snapshot.name, actor=identity.actor)
        await self._record(OperationKind.POLICY_DELETE, snapshot, identity, {"kind": snapshot.kind})
        return PolicyResult(status="SUCCESS", message=f"Policy {snapshot.name} deleted", policy=snapshot)

    async def seed_default_policies(self, identity: Identity) -> DefaultPoliciesResult:
        """Install the recommended default policy set, skipping names that exist.

        Returns:
            DefaultPoliciesResult listing created and skipped names.
        """
        created: list[str] = []
        skipped: list[str] = []
        for spec in DEFAULT_POLICIES:
            try:
                await self.create_policy(
                    name=spec["name"],
                    kind=spec["kind"],
                    definition=spec["definition"],
                    identity=identity,
                    scope=spec["scope"],
                    description=spec["description"],
                    severity=spec["severity"],
                )
            except ValidationError as exc:
                if exc.field != "name":
                    raise
                skipped.append(spec["name"])
            else:
                created.append(spec["name"])

        logger.info("Default policies seeded", created=len(created), skipped=len(skipped))
        return DefaultPoliciesResult(
            status="SUCCESS",
            message=f"{len(created)} default policies created, {len(skipped)} already present",
            created=created,
            skipped=skipped,
        )

    async def _record(
        self,
        operation: OperationKind,
        policy: ClonePolicy | PolicyResponse,
        identity: Identity,
        metadata: dict[str, Any],
    ) -> None:
        await self._recorder.record_operation(
            OperationInfo(
                operation=operation,
                status=OperationStatus.SUCCESS,
                resource_id=str(policy.id),
                resource_name=policy.name,
                resource_kind="POLICY",
                scope=policy.scope,
                metadata={"kind": policy.kind, "severity": policy.severity, **metadata},
            ),
            identity,
        )


class ViolationService:
    """Violation lookup, queries, and resolution.

    Args:
        session_factory: Factory for units of work.
        clock: Injected wall clock.
        window_days: Default look-back window for queries without a start time.
        max_limit: Hard cap on rows returned.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utc_now,
        window_days: int = 90,
        max_limit: int = 1000,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._window_days = window_days
        self._max_limit = max_limit

    async def get_violation(self, violation_id: uuid.UUID) -> ViolationResult:
        async with self._session_factory() as session:
            try:
                violation = await ViolationRepository(session).get_by_id(violation_id)
            except NotFoundError as exc:
                return ViolationResult(status="ERROR", message=exc.message)
        return ViolationResult(
            status="SUCCESS",
            message="Violation found",
            violation=ViolationResponse.model_validate(violation),
        )

    async def resolve_violation(
        self,
        violation_id: uuid.UUID,
        identity: Identity,
        notes: str | None = None,
    ) -> ViolationResult:
        """Move a violation from OPEN to RESOLVED.

        RESOLVED is terminal: resolving again returns an ERROR result and
        leaves the original resolver, time, and notes in place.

        Args:
            violation_id: The violation UUID.
            identity: The resolver.
            notes: Resolution notes.

        Returns:
            ViolationResult with the updated violation.
        """
        async with self._session_factory() as session, session.begin():
            repo = ViolationRepository(session)
            try:
                violation = await repo.get_by_id(violation_id)
            except NotFoundError as exc:
                return ViolationResult(status="ERROR", message=exc.message)
            if violation.status == ViolationStatus.RESOLVED.value:
                return ViolationResult(
                    status="ERROR",
                    message="Violation is already resolved",
                    violation=ViolationResponse.model_validate(violation),
                )
            violation = await repo.resolve(
                violation,
                resolved_by=identity.actor,
                resolved_at=self._clock(),
                notes=notes,
            )

        logger.info("Violation resolved", violation_id=str(violation_id), actor=identity.actor)
        return ViolationResult(
            status="SUCCESS",
            message="Violation resolved successfully",
            violation=ViolationResponse.model_validate(violation),
        )

    async def query_violations(
        self,
        status: str | None = None,
        severity: str | None = None,
        actor: str | None = None,
        scope: str | None = None,
        policy_name: str | None = None,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        limit: int | None = None,
    ) -> ViolationListResponse:
        """Query violations ordered by severity descending, then newest first.

        Without start_time the default look-back window applies.

        Raises:
            ValidationError: Unknown status or severity, or a non-positive limit.
        """
        if status is not None:
            try:
                status = ViolationStatus(status.upper()).value
            except ValueError:
                raise ValidationError("Invalid status. Valid values: OPEN, RESOLVED", field="status") from None
        severity_value = parse_severity(severity.upper()).value if severity else None
        start = start_time or self._clock() - timedelta(days=self._window_days)

        async with self._session_factory() as session:
            rows = await ViolationRepository(session).query(
                start_time=start,
                end_time=end_time,
                status=status,
                severity=severity_value,
                actor=actor,
                scope=normalize_tag(scope),
                policy_name=policy_name,
                limit=_clamp_limit(limit, self._max_limit),
            )
        items = [ViolationResponse.model_validate(v) for v in rows]
        return ViolationListResponse(items=items, total=len(items))


class AuditQueryService:
    """Read-only queries over the audit trail.

    Args:
        session_factory: Factory for read-only units of work.
        registry: Live resource source for activity summaries.
        clock: Injected wall clock.
        audit_window_days: Default look-back for audit and access queries.
        max_limit: Hard cap on rows returned (also the default limit).
        activity_window_days: Default look-back for actor activity.
    """

    RECENT_OPERATIONS_LIMIT = 50

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: IResourceRegistry,
        clock: Clock = utc_now,
        audit_window_days: int = 30,
        max_limit: int = 1000,
        activity_window_days: int = 30,
    ) -> None:
        self._session_factory = session_factory
        self._registry = registry
        self._clock = clock
        self._audit_window_days = audit_window_days
        self._max_limit = max_limit
        self._activity_window_days = activity_window_days

    async def query_audit_log(
        self,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        operation: str | None = None,
        actor: str | None = None,
        scope: str | None = None,
        status: str | None = None,
        limit: int | None = None,
    ) -> AuditLogResponse:
        """Query the audit log, newest first.

        Without start_time the default look-back window applies.
        """
        start = start_time or self._clock() - timedelta(days=self._audit_window_days)
        async with self._session_factory() as session:
            rows = await AuditLogRepository(session).query(
                start_time=start,
                end_time=end_time,
                operation=operation.upper() if operation else None,
                actor=actor,
                scope=normalize_tag(scope),
                status=status.upper() if status else None,
                limit=_clamp_limit(limit, self._max_limit),
            )
        items = [AuditRecordResponse.model_validate(r) for r in rows]
        return AuditLogResponse(items=items, total=len(items), start_time=start, end_time=end_time)

    async def get_audit_record(self, record_id: uuid.UUID) -> AuditRecordResult:
        async with self._session_factory() as session:
            try:
                record = await AuditLogRepository(session).get_by_id(record_id)
            except NotFoundError as exc:
                return AuditRecordResult(status="ERROR", message=exc.message)
        return AuditRecordResult(
            status="SUCCESS",
            message="Audit record found",
            record=AuditRecordResponse.model_validate(record),
        )

    async def query_access_log(
        self,
        resource_id: str | None = None,
        actor: str | None = None,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        limit: int | None = None,
    ) -> AccessLogResponse:
        """Query access events, newest first."""
        start = start_time or self._clock() - timedelta(days=self._audit_window_days)
        async with self._session_factory() as session:
            rows = await AccessLogRepository(session).query(
                start_time=start,
                end_time=end_time,
                resource_id=resource_id,
                actor=actor,
                limit=_clamp_limit(limit, self._max_limit),
            )
        items = [AccessRecordResponse.model_validate(r) for r in rows]
        return AccessLogResponse(items=items, total=len(items))

    async def get_actor_activity(self, actor: str, days_back: int | None = None) -> ActorActivityResponse:
        """Summarise one actor: live clones with age, recent operations, violations.

        Args:
            actor: The actor identity.
            days_back: Look-back window for operations and violations.

        Raises:
            ValidationError: If days_back is not positive.
        """
        days = days_back if days_back is not None else self._activity_window_days
        if days < 1:
            raise ValidationError("days_back must be positive", field="days_back")
        now = self._clock()
        since = now - timedelta(days=days)

        live = await self._registry.list_live_resources(actor=actor)
        async with self._session_factory() as session:
            operations = await AuditLogRepository(session).query(
                start_time=since,
                actor=actor,
                limit=self.RECENT_OPERATIONS_LIMIT,
            )
            violations = await ViolationRepository(session).query(
                start_time=since,
                actor=actor,
                limit=self._max_limit,
            )

        return ActorActivityResponse(
            actor=actor,
            days_back=days,
            active_clones=[
                LiveResourceResponse(
                    resource_id=r.resource_id,
                    name=r.name,
                    kind=r.kind,
                    scope=r.scope,
                    source_database=r.source_database,
                    source_schema=r.source_schema,
                    created_at=r.created_at,
                    age_days=r.age_days(now),
                )
                for r in live
            ],
            recent_operations=[AuditRecordResponse.model_validate(r) for r in operations],
            violations=[ViolationResponse.model_validate(v) for v in violations],
            open_violations=sum(1 for v in violations if v.status == ViolationStatus.OPEN.value),
        )
