"""Domain enumerations and value types shared by the evaluator, recorder, and services.

Everything here is framework-free: no SQLAlchemy, no FastAPI. Identity and
time are always passed explicitly; nothing in the engine reads a "current
user" or "current time" from ambient state.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default wall clock."""
    return datetime.now(UTC)


def normalize_tag(value: str | None) -> str | None:
    """Normalise a scope tag or resource kind: trimmed, upper-case, empty -> None."""
    if value is None:
        return None
    value = value.strip().upper()
    return value or None


class PolicyKind(str, Enum):
    """Closed set of policy kinds."""

    MAX_AGE = "MAX_AGE"
    RESTRICTED_SOURCE = "RESTRICTED_SOURCE"
    DATA_CLASSIFICATION = "DATA_CLASSIFICATION"
    USER_QUOTA = "USER_QUOTA"
    ENVIRONMENT_RESTRICTION = "ENVIRONMENT_RESTRICTION"
    TIME_RESTRICTION = "TIME_RESTRICTION"
    SENSITIVE_DATA = "SENSITIVE_DATA"
    APPROVAL_REQUIRED = "APPROVAL_REQUIRED"


class Severity(str, Enum):
    """Ordered severity: INFO < WARNING < ERROR < CRITICAL."""

    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK: dict[Severity, int] = {
    Severity.INFO: 0,
    Severity.WARNING: 1,
    Severity.ERROR: 2,
    Severity.CRITICAL: 3,
}


class PolicyAction(str, Enum):
    """What a policy asks for when it matches."""

    BLOCK = "BLOCK"
    REQUIRE_APPROVAL = "REQUIRE_APPROVAL"
    WARN = "WARN"
    WARN_AND_LOG = "WARN_AND_LOG"
    LOG = "LOG"


class OperationKind(str, Enum):
    """Governed operations written to the audit log."""

    CREATE = "CREATE"
    DELETE = "DELETE"
    REFRESH = "REFRESH"
    POLICY_CREATE = "POLICY_CREATE"
    POLICY_UPDATE = "POLICY_UPDATE"
    POLICY_ENABLE = "POLICY_ENABLE"
    POLICY_DISABLE = "POLICY_DISABLE"
    POLICY_DELETE = "POLICY_DELETE"


class OperationStatus(str, Enum):
    """Outcome of a governed operation."""

    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    BLOCKED = "BLOCKED"


class ViolationStatus(str, Enum):
    """Violation lifecycle: OPEN -> RESOLVED (terminal)."""

    OPEN = "OPEN"
    RESOLVED = "RESOLVED"


# ---------------------------------------------------------------------------
# Caller-supplied inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Identity:
    """Who is acting. Supplied by the caller, never derived internally."""

    actor: str
    role: str | None = None
    session_id: str | None = None
    client_ip: str | None = None


@dataclass(frozen=True)
class OperationInfo:
    """Description of one governed operation, as passed to the recorder."""

    operation: OperationKind
    status: OperationStatus
    resource_id: str | None = None
    resource_name: str | None = None
    resource_kind: str | None = None
    scope: str | None = None
    source_database: str | None = None
    source_schema: str | None = None
    data_classification: str | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def with_outcome(
        self,
        status: OperationStatus,
        resource_id: str | None = None,
        error_message: str | None = None,
    ) -> OperationInfo:
        """Return a copy with a final status (and optionally the created resource id)."""
        return replace(
            self,
            status=status,
            resource_id=resource_id if resource_id is not None else self.resource_id,
            error_message=error_message,
        )


@dataclass(frozen=True)
class AccessInfo:
    """A read/use event against a governed resource."""

    resource_id: str | None
    resource_name: str | None
    access_type: str
    query_id: str | None = None
    rows_accessed: int | None = None


@dataclass(frozen=True)
class LiveResource:
    """A live clone as reported by the resource registry."""

    resource_id: str
    name: str
    kind: str | None
    scope: str | None
    owner: str
    created_at: datetime
    source_database: str | None = None
    source_schema: str | None = None

    def age_days(self, now: datetime) -> int:
        """Whole days elapsed since creation."""
        return max((now - self.created_at).days, 0)


@dataclass(frozen=True)
class EvaluationContext:
    """Everything the evaluator may look at for one operation."""

    operation: OperationKind
    actor: str
    now: datetime
    resource_kind: str | None = None
    resource_name: str | None = None
    resource_id: str | None = None
    scope: str | None = None
    source_database: str | None = None
    source_schema: str | None = None
    data_classification: str | None = None
    actor_role: str | None = None
    live_resource_count: int | None = None

    @classmethod
    def for_operation(
        cls,
        operation: OperationInfo,
        identity: Identity,
        now: datetime,
        live_resource_count: int | None = None,
    ) -> EvaluationContext:
        return cls(
            operation=operation.operation,
            actor=identity.actor,
            actor_role=identity.role,
            now=now,
            resource_kind=normalize_tag(operation.resource_kind),
            resource_name=operation.resource_name,
            resource_id=operation.resource_id,
            scope=normalize_tag(operation.scope),
            source_database=operation.source_database,
            source_schema=operation.source_schema,
            data_classification=operation.data_classification,
            live_resource_count=live_resource_count,
        )


# ---------------------------------------------------------------------------
# Engine outputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ViolationCandidate:
    """One policy match, before it is persisted as a Violation."""

    policy_id: uuid.UUID
    policy_name: str
    policy_kind: PolicyKind
    severity: Severity
    action: PolicyAction
    message: str
    blocks: bool
    details: dict[str, Any] = field(default_factory=dict)

    def to_details(self) -> dict[str, Any]:
        """Structured explanation persisted with the violation."""
        return {
            "message": self.message,
            "action": self.action.value,
            "policy_kind": self.policy_kind.value,
            **self.details,
        }

    def sort_key(self) -> tuple[int, str]:
        return (-self.severity.rank, self.policy_name)


@dataclass(frozen=True)
class PolicyVerdict:
    """Evaluator output: ordered violations plus the block decision."""

    violations: tuple[ViolationCandidate, ...] = ()
    block: bool = False
    skipped_policies: tuple[str, ...] = ()

    @property
    def has_violations(self) -> bool:
        return bool(self.violations)

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_violations": self.has_violations,
            "should_block": self.block,
            "violations_count": len(self.violations),
            "violations": [
                {
                    "policy_id": str(v.policy_id),
                    "policy_name": v.policy_name,
                    "severity": v.severity.value,
                    **v.to_details(),
                }
                for v in self.violations
            ],
            "skipped_policies": list(self.skipped_policies),
        }


@dataclass(frozen=True)
class RecordingResult:
    """Best-effort outcome of a recorder call.

    A recorder never raises; callers inspect `recorded` (and metrics track
    the not-recorded rate) instead.
    """

    recorded: bool
    record_id: uuid.UUID | None = None
    violation_ids: tuple[uuid.UUID, ...] = ()
    verdict: PolicyVerdict | None = None
    error: str | None = None
