"""Pydantic request and response schemas for the clone governance API.

Service operations return these models directly, so the HTTP layer and
in-process callers see the same structured result documents. Every
administrative result carries `status` ("SUCCESS" or "ERROR") and a
human-readable `message`.

Resources:
- Policy: CRUD, toggling, default set
- Evaluation / recording: evaluate, record operation, record access
- Violation: query and resolution
- Audit: audit log, access log, per-actor activity
- Maintenance: compliance scan and retention purge
"""

import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from clone_governance_engine.core.types import (
    AccessInfo,
    OperationInfo,
    OperationKind,
    OperationStatus,
    PolicyVerdict,
    RecordingResult,
)

ResultStatus = Literal["SUCCESS", "ERROR"]


class StatusResult(BaseModel):
    """Minimal structured result."""

    status: ResultStatus = Field(description="SUCCESS or ERROR")
    message: str = Field(description="Human-readable outcome")


# ---------------------------------------------------------------------------
# Policy schemas
# ---------------------------------------------------------------------------


class PolicyCreateRequest(BaseModel):
    """Request body for creating a policy."""

    name: str = Field(min_length=1, max_length=255, description="Unique policy name")
    kind: str = Field(description="Policy kind, e.g. MAX_AGE, USER_QUOTA, TIME_RESTRICTION")
    definition: dict[str, Any] = Field(description="Kind-specific parameter document")
    scope: str | None = Field(default=None, description="Environment tag; omit for a global policy")
    description: str | None = Field(default=None)
    severity: str = Field(default="WARNING", description="INFO | WARNING | ERROR | CRITICAL")


class PolicyUpdateRequest(BaseModel):
    """Request body for changing a policy. Omitted fields are left unchanged.

    An empty-string scope makes the policy global.
    """

    definition: dict[str, Any] | None = None
    severity: str | None = None
    scope: str | None = None
    description: str | None = None


class PolicyResponse(BaseModel):
    """A stored policy."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    kind: str
    scope: str | None
    definition: dict[str, Any]
    severity: str
    active: bool
    description: str | None
    created_by: str
    created_at: datetime
    updated_by: str | None = None
    updated_at: datetime | None = None


class PolicyResult(StatusResult):
    """Outcome of a policy-authoring operation."""

    policy: PolicyResponse | None = None


class PolicyListResponse(BaseModel):
    """Policies ordered by severity descending, then name."""

    items: list[PolicyResponse]
    total: int


class DefaultPoliciesResult(StatusResult):
    """Outcome of installing the default policy set."""

    created: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list, description="Names that already existed")


# ---------------------------------------------------------------------------
# Evaluation and recording schemas
# ---------------------------------------------------------------------------


class OperationRequest(BaseModel):
    """A governed operation, for evaluation or recording."""

    operation: OperationKind = OperationKind.CREATE
    status: OperationStatus = OperationStatus.SUCCESS
    resource_id: str | None = None
    resource_name: str | None = None
    resource_kind: str | None = Field(default=None, description="DATABASE | SCHEMA | TABLE | ...")
    scope: str | None = None
    source_database: str | None = None
    source_schema: str | None = None
    data_classification: str | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_operation_info(self) -> OperationInfo:
        return OperationInfo(
            operation=self.operation,
            status=self.status,
            resource_id=self.resource_id,
            resource_name=self.resource_name,
            resource_kind=self.resource_kind,
            scope=self.scope,
            source_database=self.source_database,
            source_schema=self.source_schema,
            data_classification=self.data_classification,
            error_message=self.error_message,
            metadata=self.metadata,
        )


class EvaluateRequest(OperationRequest):
    """Pre-check request. live_resource_count overrides the registry count."""

    live_resource_count: int | None = Field(default=None, ge=0)


class ViolationCandidateResponse(BaseModel):
    """One policy match in a verdict."""

    policy_id: uuid.UUID
    policy_name: str
    policy_kind: str
    severity: str
    action: str
    message: str
    blocks: bool
    details: dict[str, Any]


class VerdictResponse(BaseModel):
    """Evaluator verdict: ordered violations and the block decision."""

    has_violations: bool
    should_block: bool
    violations_count: int
    violations: list[ViolationCandidateResponse]
    skipped_policies: list[str]

    @classmethod
    def from_verdict(cls, verdict: PolicyVerdict) -> "VerdictResponse":
        return cls(
            has_violations=verdict.has_violations,
            should_block=verdict.block,
            violations_count=len(verdict.violations),
            violations=[
                ViolationCandidateResponse(
                    policy_id=v.policy_id,
                    policy_name=v.policy_name,
                    policy_kind=v.policy_kind.value,
                    severity=v.severity.value,
                    action=v.action.value,
                    message=v.message,
                    blocks=v.blocks,
                    details=v.to_details(),
                )
                for v in verdict.violations
            ],
            skipped_policies=list(verdict.skipped_policies),
        )


class AccessRequest(BaseModel):
    """A read/use event against a governed resource."""

    resource_id: str | None = None
    resource_name: str | None = None
    access_type: str = Field(default="QUERY", min_length=1)
    query_id: str | None = None
    rows_accessed: int | None = Field(default=None, ge=0)

    def to_access_info(self) -> AccessInfo:
        return AccessInfo(
            resource_id=self.resource_id,
            resource_name=self.resource_name,
            access_type=self.access_type,
            query_id=self.query_id,
            rows_accessed=self.rows_accessed,
        )


class RecordingResponse(BaseModel):
    """Best-effort recording outcome."""

    recorded: bool
    record_id: uuid.UUID | None
    violation_ids: list[uuid.UUID]
    verdict: VerdictResponse | None
    error: str | None

    @classmethod
    def from_result(cls, result: RecordingResult) -> "RecordingResponse":
        return cls(
            recorded=result.recorded,
            record_id=result.record_id,
            violation_ids=list(result.violation_ids),
            verdict=VerdictResponse.from_verdict(result.verdict) if result.verdict else None,
            error=result.error,
        )


# ---------------------------------------------------------------------------
# Violation schemas
# ---------------------------------------------------------------------------


class ViolationResponse(BaseModel):
    """A stored violation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    policy_id: uuid.UUID
    policy_name: str
    policy_kind: str
    resource_id: str | None
    resource_name: str | None
    scope: str | None
    violator: str
    details: dict[str, Any]
    severity: str
    status: str
    detected_at: datetime
    audit_id: uuid.UUID | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    resolution_notes: str | None = None


class ViolationResult(StatusResult):
    """Outcome of a violation lookup or resolution."""

    violation: ViolationResponse | None = None


class ViolationListResponse(BaseModel):
    """Violations ordered by severity descending, then detection time descending."""

    items: list[ViolationResponse]
    total: int


class ResolveViolationRequest(BaseModel):
    """Request body for resolving a violation."""

    notes: str | None = Field(default=None, description="Resolution notes")


# ---------------------------------------------------------------------------
# Audit schemas
# ---------------------------------------------------------------------------


class AuditRecordResponse(BaseModel):
    """One immutable audit record."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    operation: str
    resource_id: str | None
    resource_name: str | None
    resource_kind: str | None
    scope: str | None
    actor: str
    actor_role: str | None
    session_id: str | None
    status: str
    error_message: str | None
    metadata: dict[str, Any] = Field(validation_alias=AliasChoices("extra_metadata", "metadata"))
    violation_ids: list[uuid.UUID]
    violation_count: int
    occurred_at: datetime


class AuditRecordResult(StatusResult):
    """Outcome of a single audit record lookup."""

    record: AuditRecordResponse | None = None


class AuditLogResponse(BaseModel):
    """Audit records, newest first."""

    items: list[AuditRecordResponse]
    total: int
    start_time: datetime
    end_time: datetime | None


class AccessRecordResponse(BaseModel):
    """One access event."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    resource_id: str | None
    resource_name: str | None
    actor: str
    access_type: str
    query_id: str | None
    rows_accessed: int | None
    session_id: str | None
    accessed_at: datetime


class AccessLogResponse(BaseModel):
    """Access events, newest first."""

    items: list[AccessRecordResponse]
    total: int


class LiveResourceResponse(BaseModel):
    """A live clone with its current age."""

    resource_id: str
    name: str
    kind: str | None
    scope: str | None
    source_database: str | None
    source_schema: str | None
    created_at: datetime
    age_days: int


class ActorActivityResponse(BaseModel):
    """One actor's live clones, recent operations, and violations."""

    actor: str
    days_back: int
    active_clones: list[LiveResourceResponse]
    recent_operations: list[AuditRecordResponse]
    violations: list[ViolationResponse]
    open_violations: int


# ---------------------------------------------------------------------------
# Maintenance schemas
# ---------------------------------------------------------------------------


class ScanRequest(BaseModel):
    """Request body for a compliance scan."""

    scope: str | None = Field(default=None, description="Scan one scope; omit to scan all")


class ScanFinding(BaseModel):
    """One resource that failed an age-bearing policy."""

    violation_id: uuid.UUID
    new: bool = Field(description="False when an existing OPEN violation was reused")
    resource_id: str
    resource_name: str
    owner: str
    scope: str | None
    policy_name: str
    severity: str
    message: str
    age_days: int


class ScanResult(BaseModel):
    """Outcome of a compliance scan."""

    status: Literal["SUCCESS", "SKIPPED", "CANCELLED"]
    message: str
    scope: str | None
    scanned_at: datetime
    scanned_resources: int = 0
    compliant_count: int = 0
    non_compliant_count: int = 0
    new_violations: int = 0
    violations: list[ScanFinding] = Field(default_factory=list)


class PurgeRequest(BaseModel):
    """Request body for a retention purge. dry_run defaults to true."""

    retention_days: int | None = Field(default=None, description="Defaults to the configured retention")
    dry_run: bool = True


class PurgeResult(BaseModel):
    """Outcome of a retention purge."""

    status: Literal["SUCCESS", "SKIPPED", "CANCELLED"]
    mode: Literal["DRY_RUN", "EXECUTED"]
    retention_days: int
    cutoff_time: datetime
    records_affected: dict[str, int] = Field(
        description="Rows counted (dry run) or deleted per collection, plus total",
    )
    message: str
