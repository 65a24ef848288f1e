"""API router for clone-governance-engine.

All endpoints are registered here and included in main.py under the /api/v1
prefix. Routes are thin: all business logic lives in the service layer.
Identity comes from the X-Actor-Id (required), X-Actor-Role, and
X-Session-Id headers.

Endpoints:
- POST/GET    /policies: Create / list policies
- POST        /policies/defaults: Install the default policy set
- GET/PATCH/DELETE /policies/{ref}: Get / update / delete by id or name
- POST        /policies/{ref}/enable: Enable a policy
- POST        /policies/{ref}/disable: Disable a policy
- POST        /evaluate: Pre-check an operation
- POST        /operations: Record a governed operation
- POST        /access: Record an access event
- GET         /audit-log: Query the audit log
- GET         /audit-log/{audit_id}: Get one audit record
- GET         /access-log: Query access events
- GET         /activity/{actor}: Per-actor activity summary
- GET         /violations: Query violations
- GET         /violations/{violation_id}: Get one violation
- POST        /violations/{violation_id}/resolve: Resolve a violation
- POST        /compliance/scan: Run a compliance scan
- POST        /maintenance/purge: Run a retention purge (dry run by default)
- GET         /metrics: Prometheus exposition
"""

import uuid
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Header, Query, Request, Response

from clone_governance_engine.api.schemas import (
    AccessLogResponse,
    AccessRequest,
    ActorActivityResponse,
    AuditLogResponse,
    AuditRecordResult,
    DefaultPoliciesResult,
    EvaluateRequest,
    OperationRequest,
    PolicyCreateRequest,
    PolicyListResponse,
    PolicyResult,
    PolicyUpdateRequest,
    PurgeRequest,
    PurgeResult,
    RecordingResponse,
    ResolveViolationRequest,
    ScanRequest,
    ScanResult,
    StatusResult,
    VerdictResponse,
    ViolationListResponse,
    ViolationResult,
)
from clone_governance_engine.container import GovernanceEngine
from clone_governance_engine.core.types import Identity
from clone_governance_engine.metrics import render_latest
from clone_governance_engine.observability import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["clone-governance"])


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_engine(request: Request) -> GovernanceEngine:
    """Return the engine wired by the application lifespan."""
    return request.app.state.governance


def get_identity(
    request: Request,
    x_actor_id: Annotated[str, Header(min_length=1, description="Acting identity")],
    x_actor_role: Annotated[str | None, Header(description="Actor's active role")] = None,
    x_session_id: Annotated[str | None, Header(description="Caller session id")] = None,
) -> Identity:
    """Build the caller identity from request headers."""
    return Identity(
        actor=x_actor_id,
        role=x_actor_role,
        session_id=x_session_id,
        client_ip=request.client.host if request.client else None,
    )


Engine = Annotated[GovernanceEngine, Depends(get_engine)]
Caller = Annotated[Identity, Depends(get_identity)]


def _apply_status(result: StatusResult, response: Response, payload: object | None) -> None:
    """ERROR without a payload is a missing record (404); with one, a conflict (409)."""
    if result.status == "ERROR":
        response.status_code = 404 if payload is None else 409


# ---------------------------------------------------------------------------
# Policy endpoints
# ---------------------------------------------------------------------------


@router.post("/policies", response_model=PolicyResult, status_code=201)
async def create_policy(request: PolicyCreateRequest, engine: Engine, identity: Caller) -> PolicyResult:
    """Create a new active policy. Malformed definitions are rejected with 422."""
    logger.info("POST /policies", actor=identity.actor, policy_name=request.name, kind=request.kind)
    return await engine.policies.create_policy(
        name=request.name,
        kind=request.kind,
        definition=request.definition,
        identity=identity,
        scope=request.scope,
        description=request.description,
        severity=request.severity,
    )


@router.get("/policies", response_model=PolicyListResponse)
async def list_policies(
    engine: Engine,
    scope: str | None = Query(default=None, description="Scope; global policies are always included"),
    kind: str | None = Query(default=None),
    active_only: bool = Query(default=False),
) -> PolicyListResponse:
    """List policies ordered by severity descending then name."""
    return await engine.policies.list_policies(scope=scope, kind=kind, active_only=active_only)


@router.post("/policies/defaults", response_model=DefaultPoliciesResult)
async def seed_default_policies(engine: Engine, identity: Caller) -> DefaultPoliciesResult:
    """Install the recommended default policies, skipping names that exist."""
    return await engine.policies.seed_default_policies(identity)


@router.get("/policies/{ref}", response_model=PolicyResult)
async def get_policy(ref: str, engine: Engine, response: Response) -> PolicyResult:
    """Get a policy by id or name."""
    result = await engine.policies.get_policy(ref)
    _apply_status(result, response, result.policy)
    return result


@router.patch("/policies/{ref}", response_model=PolicyResult)
async def update_policy(
    ref: str,
    request: PolicyUpdateRequest,
    engine: Engine,
    identity: Caller,
    response: Response,
) -> PolicyResult:
    """Update a policy's definition, severity, scope, or description."""
    result = await engine.policies.update_policy(
        ref,
        identity,
        definition=request.definition,
        severity=request.severity,
        scope=request.scope,
        description=request.description,
    )
    _apply_status(result, response, result.policy)
    return result


@router.post("/policies/{ref}/enable", response_model=PolicyResult)
async def enable_policy(ref: str, engine: Engine, identity: Caller, response: Response) -> PolicyResult:
    """Enable a policy. It is evaluated from the next call on."""
    result = await engine.policies.set_policy_status(ref, True, identity)
    _apply_status(result, response, result.policy)
    return result


@router.post("/policies/{ref}/disable", response_model=PolicyResult)
async def disable_policy(ref: str, engine: Engine, identity: Caller, response: Response) -> PolicyResult:
    """Disable a policy. It is kept for history but no longer evaluated."""
    result = await engine.policies.set_policy_status(ref, False, identity)
    _apply_status(result, response, result.policy)
    return result


@router.delete("/policies/{ref}", response_model=PolicyResult)
async def delete_policy(ref: str, engine: Engine, identity: Caller, response: Response) -> PolicyResult:
    """Delete a policy. Its violations remain."""
    result = await engine.policies.delete_policy(ref, identity)
    _apply_status(result, response, result.policy)
    return result


# ---------------------------------------------------------------------------
# Evaluation and recording endpoints
# ---------------------------------------------------------------------------


@router.post("/evaluate", response_model=VerdictResponse)
async def evaluate(request: EvaluateRequest, engine: Engine, identity: Caller) -> VerdictResponse:
    """Pre-check an operation without recording it."""
    verdict = await engine.evaluation.evaluate(
        request.to_operation_info(),
        identity,
        live_resource_count=request.live_resource_count,
    )
    return VerdictResponse.from_verdict(verdict)


@router.post("/operations", response_model=RecordingResponse, status_code=201)
async def record_operation(request: OperationRequest, engine: Engine, identity: Caller) -> RecordingResponse:
    """Record a governed operation. Successful CREATEs are evaluated first."""
    result = await engine.recorder.record_operation(request.to_operation_info(), identity)
    return RecordingResponse.from_result(result)


@router.post("/access", response_model=RecordingResponse, status_code=201)
async def record_access(request: AccessRequest, engine: Engine, identity: Caller) -> RecordingResponse:
    """Record a read/use event against a resource."""
    result = await engine.recorder.record_access(request.to_access_info(), identity)
    return RecordingResponse.from_result(result)


# ---------------------------------------------------------------------------
# Audit endpoints
# ---------------------------------------------------------------------------


@router.get("/audit-log", response_model=AuditLogResponse)
async def query_audit_log(
    engine: Engine,
    start_time: datetime | None = Query(default=None, description="Defaults to the configured window"),
    end_time: datetime | None = Query(default=None),
    operation: str | None = Query(default=None),
    actor: str | None = Query(default=None),
    scope: str | None = Query(default=None),
    status: str | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1),
) -> AuditLogResponse:
    """Query the immutable audit log, newest first."""
    return await engine.audit.query_audit_log(
        start_time=start_time,
        end_time=end_time,
        operation=operation,
        actor=actor,
        scope=scope,
        status=status,
        limit=limit,
    )


@router.get("/audit-log/{audit_id}", response_model=AuditRecordResult)
async def get_audit_record(audit_id: uuid.UUID, engine: Engine, response: Response) -> AuditRecordResult:
    """Get one audit record."""
    result = await engine.audit.get_audit_record(audit_id)
    _apply_status(result, response, result.record)
    return result


@router.get("/access-log", response_model=AccessLogResponse)
async def query_access_log(
    engine: Engine,
    resource_id: str | None = Query(default=None),
    actor: str | None = Query(default=None),
    start_time: datetime | None = Query(default=None),
    end_time: datetime | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1),
) -> AccessLogResponse:
    """Query access events, newest first."""
    return await engine.audit.query_access_log(
        resource_id=resource_id,
        actor=actor,
        start_time=start_time,
        end_time=end_time,
        limit=limit,
    )


@router.get("/activity/{actor}", response_model=ActorActivityResponse)
async def get_actor_activity(
    actor: str,
    engine: Engine,
    days_back: int | None = Query(default=None, ge=1),
) -> ActorActivityResponse:
    """Live clones, recent operations, and violations for one actor."""
    return await engine.audit.get_actor_activity(actor, days_back=days_back)


# ---------------------------------------------------------------------------
# Violation endpoints
# ---------------------------------------------------------------------------


@router.get("/violations", response_model=ViolationListResponse)
async def query_violations(
    engine: Engine,
    status: str | None = Query(default=None, description="OPEN | RESOLVED"),
    severity: str | None = Query(default=None),
    actor: str | None = Query(default=None),
    scope: str | None = Query(default=None),
    policy_name: str | None = Query(default=None),
    start_time: datetime | None = Query(default=None),
    end_time: datetime | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1),
) -> ViolationListResponse:
    """Query violations, highest severity first."""
    return await engine.violations.query_violations(
        status=status,
        severity=severity,
        actor=actor,
        scope=scope,
        policy_name=policy_name,
        start_time=start_time,
        end_time=end_time,
        limit=limit,
    )


@router.get("/violations/{violation_id}", response_model=ViolationResult)
async def get_violation(violation_id: uuid.UUID, engine: Engine, response: Response) -> ViolationResult:
    """Get one violation."""
    result = await engine.violations.get_violation(violation_id)
    _apply_status(result, response, result.violation)
    return result


@router.post("/violations/{violation_id}/resolve", response_model=ViolationResult)
async def resolve_violation(
    violation_id: uuid.UUID,
    engine: Engine,
    identity: Caller,
    response: Response,
    request: ResolveViolationRequest | None = None,
) -> ViolationResult:
    """Resolve an OPEN violation. Resolving twice returns 409."""
    notes = request.notes if request is not None else None
    result = await engine.violations.resolve_violation(violation_id, identity, notes=notes)
    _apply_status(result, response, result.violation)
    return result


# ---------------------------------------------------------------------------
# Maintenance endpoints
# ---------------------------------------------------------------------------


@router.post("/compliance/scan", response_model=ScanResult)
async def scan_compliance(
    engine: Engine,
    identity: Caller,
    request: ScanRequest | None = None,
) -> ScanResult:
    """Scan live clones for age violations."""
    scope = request.scope if request is not None else None
    logger.info("POST /compliance/scan", actor=identity.actor, scope=scope)
    return await engine.scanner.scan_compliance(scope=scope)


@router.post("/maintenance/purge", response_model=PurgeResult)
async def purge(
    engine: Engine,
    identity: Caller,
    request: PurgeRequest | None = None,
) -> PurgeResult:
    """Purge records past retention. Dry run unless dry_run is false."""
    request = request or PurgeRequest()
    logger.info(
        "POST /maintenance/purge",
        actor=identity.actor,
        retention_days=request.retention_days,
        dry_run=request.dry_run,
    )
    return await engine.purger.purge(retention_days=request.retention_days, dry_run=request.dry_run)


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus exposition of the engine's counters."""
    payload, content_type = render_latest()
    return Response(content=payload, media_type=content_type)
