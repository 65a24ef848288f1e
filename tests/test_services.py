"""Tests for the service layer over a real SQLite database.

Covers:
- PolicyService: create / list / get / update / enable / disable / delete / defaults
- PolicyEvaluationService: scope filtering, live counts, skipped policies
- ViolationService: lookup, resolution lifecycle, queries
- AuditQueryService: audit log, access log, actor activity
"""

import uuid
from collections.abc import Callable
from datetime import timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clone_governance_engine.adapters.registry import InMemoryResourceRegistry
from clone_governance_engine.adapters.repositories import PolicyRepository
from clone_governance_engine.container import GovernanceEngine
from clone_governance_engine.core.services import DEFAULT_POLICIES, PolicyEvaluationService
from clone_governance_engine.core.types import (
    AccessInfo,
    Identity,
    LiveResource,
    OperationInfo,
    OperationKind,
    OperationStatus,
)
from clone_governance_engine.errors import ValidationError


def _create_op(**overrides: Any) -> OperationInfo:
    values: dict[str, Any] = {
        "operation": OperationKind.CREATE,
        "status": OperationStatus.SUCCESS,
        "resource_id": "clone-1",
        "resource_name": "SALES_CLONE",
        "resource_kind": "DATABASE",
        "scope": "DEV",
        "source_database": "SALES",
        "source_schema": "PUBLIC",
    }
    values.update(overrides)
    return OperationInfo(**values)


async def _env_policy(governance: GovernanceEngine, admin: Identity, **overrides: Any) -> Any:
    values: dict[str, Any] = {
        "name": "NO_DATABASE_CLONES",
        "kind": "ENVIRONMENT_RESTRICTION",
        "definition": {"restricted_clone_types": ["database"], "action": "WARN"},
        "identity": admin,
        "severity": "ERROR",
    }
    values.update(overrides)
    result = await governance.policies.create_policy(**values)
    return result.policy


class TestPolicyService:
    """Tests for the policy lifecycle."""

    @pytest.mark.asyncio()
    async def test_create_policy_stores_normalised_definition(
        self, governance: GovernanceEngine, admin: Identity
    ) -> None:
        """Created policies are active, validated, and normalised."""
        result = await governance.policies.create_policy(
            name="NO_PRD_DATABASE_CLONES",
            kind="ENVIRONMENT_RESTRICTION",
            definition={"restricted_clone_types": ["database"], "action": "BLOCK"},
            identity=admin,
            scope="prd",
            severity="ERROR",
        )

        assert result.status == "SUCCESS"
        assert result.policy is not None
        assert result.policy.active is True
        assert result.policy.scope == "PRD"
        assert result.policy.created_by == "governance-admin"
        assert result.policy.definition == {"action": "BLOCK", "restricted_clone_types": ["DATABASE"]}

    @pytest.mark.asyncio()
    async def test_create_policy_is_audited(self, governance: GovernanceEngine, admin: Identity) -> None:
        """Policy creation writes a POLICY_CREATE audit record."""
        policy = await _env_policy(governance, admin)

        log = await governance.audit.query_audit_log(operation="POLICY_CREATE")

        assert log.total == 1
        record = log.items[0]
        assert record.resource_id == str(policy.id)
        assert record.resource_name == "NO_DATABASE_CLONES"
        assert record.actor == "governance-admin"
        assert record.metadata["kind"] == "ENVIRONMENT_RESTRICTION"

    @pytest.mark.asyncio()
    async def test_duplicate_name_rejected(self, governance: GovernanceEngine, admin: Identity) -> None:
        """Policy names are unique."""
        await _env_policy(governance, admin)

        with pytest.raises(ValidationError) as exc_info:
            await _env_policy(governance, admin)
        assert exc_info.value.field == "name"

    @pytest.mark.asyncio()
    @pytest.mark.parametrize(
        ("overrides", "field"),
        [
            ({"name": "   "}, "name"),
            ({"kind": "MAX_SPEED"}, "kind"),
            ({"severity": "FATAL"}, "severity"),
            ({"definition": {"max_age_days": 3}}, "definition"),
        ],
    )
    async def test_malformed_policy_rejected(
        self,
        governance: GovernanceEngine,
        admin: Identity,
        overrides: dict[str, Any],
        field: str,
    ) -> None:
        """Blank names, unknown kinds or severities, and mismatched definitions are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            await _env_policy(governance, admin, **overrides)
        assert exc_info.value.field == field

        listing = await governance.policies.list_policies()
        assert listing.total == 0

    @pytest.mark.asyncio()
    async def test_list_orders_by_severity_then_name(self, governance: GovernanceEngine, admin: Identity) -> None:
        """Listing is CRITICAL first, then alphabetical within a severity."""
        await _env_policy(governance, admin, name="B_ERROR", severity="ERROR")
        await _env_policy(governance, admin, name="A_INFO", severity="INFO")
        await _env_policy(governance, admin, name="C_CRITICAL", severity="CRITICAL")
        await _env_policy(governance, admin, name="A_ERROR", severity="ERROR")

        listing = await governance.policies.list_policies()

        assert [p.name for p in listing.items] == ["C_CRITICAL", "A_ERROR", "B_ERROR", "A_INFO"]

    @pytest.mark.asyncio()
    async def test_list_by_scope_includes_global_policies(
        self, governance: GovernanceEngine, admin: Identity
    ) -> None:
        """A scope filter returns that scope's policies and the global ones."""
        await _env_policy(governance, admin, name="GLOBAL")
        await _env_policy(governance, admin, name="PRD_ONLY", scope="PRD")
        await _env_policy(governance, admin, name="UAT_ONLY", scope="UAT")

        listing = await governance.policies.list_policies(scope="prd")

        assert sorted(p.name for p in listing.items) == ["GLOBAL", "PRD_ONLY"]

    @pytest.mark.asyncio()
    async def test_list_filters_kind_and_active(self, governance: GovernanceEngine, admin: Identity) -> None:
        """Kind and active_only filters narrow the listing."""
        await _env_policy(governance, admin, name="ENV")
        await governance.policies.create_policy(
            name="QUOTA", kind="USER_QUOTA", definition={"max_total_clones": 5}, identity=admin
        )
        await governance.policies.set_policy_status("ENV", False, admin)

        by_kind = await governance.policies.list_policies(kind="USER_QUOTA")
        active = await governance.policies.list_policies(active_only=True)

        assert [p.name for p in by_kind.items] == ["QUOTA"]
        assert [p.name for p in active.items] == ["QUOTA"]
        with pytest.raises(ValidationError):
            await governance.policies.list_policies(kind="BOGUS")

    @pytest.mark.asyncio()
    async def test_get_policy_by_id_or_name(self, governance: GovernanceEngine, admin: Identity) -> None:
        """Policies are addressable by UUID string or by name."""
        policy = await _env_policy(governance, admin)

        by_id = await governance.policies.get_policy(str(policy.id))
        by_name = await governance.policies.get_policy("NO_DATABASE_CLONES")
        missing = await governance.policies.get_policy("NOPE")

        assert by_id.policy == by_name.policy
        assert missing.status == "ERROR"
        assert missing.policy is None
        assert missing.message == "Policy not found"

    @pytest.mark.asyncio()
    async def test_update_policy(self, governance: GovernanceEngine, admin: Identity, clock: Any) -> None:
        """Updates change the given fields and stamp the updater."""
        await _env_policy(governance, admin)
        clock.advance(hours=1)

        result = await governance.policies.update_policy(
            "NO_DATABASE_CLONES",
            admin,
            definition={"restricted_clone_types": ["SCHEMA"], "action": "BLOCK"},
            severity="CRITICAL",
            scope="PRD",
        )

        assert result.status == "SUCCESS"
        assert result.policy is not None
        assert result.policy.severity == "CRITICAL"
        assert result.policy.scope == "PRD"
        assert result.policy.definition["restricted_clone_types"] == ["SCHEMA"]
        assert result.policy.updated_by == "governance-admin"
        assert result.policy.updated_at == clock.now

    @pytest.mark.asyncio()
    async def test_update_with_empty_scope_makes_policy_global(
        self, governance: GovernanceEngine, admin: Identity
    ) -> None:
        """An empty scope string clears the scope."""
        await _env_policy(governance, admin, scope="PRD")

        result = await governance.policies.update_policy("NO_DATABASE_CLONES", admin, scope="")

        assert result.policy is not None
        assert result.policy.scope is None

    @pytest.mark.asyncio()
    async def test_update_error_results(self, governance: GovernanceEngine, admin: Identity) -> None:
        """Missing policies and empty updates are ERROR results; bad definitions raise."""
        await _env_policy(governance, admin)

        missing = await governance.policies.update_policy("NOPE", admin, severity="INFO")
        empty = await governance.policies.update_policy("NO_DATABASE_CLONES", admin)

        assert missing.status == "ERROR"
        assert missing.policy is None
        assert empty.status == "ERROR"
        assert empty.policy is not None
        with pytest.raises(ValidationError):
            await governance.policies.update_policy("NO_DATABASE_CLONES", admin, definition={"max_age_days": 1})

    @pytest.mark.asyncio()
    async def test_disabled_policy_is_not_evaluated(
        self, governance: GovernanceEngine, admin: Identity, identity: Identity
    ) -> None:
        """Disabling takes effect on the next evaluation; enabling restores it."""
        await _env_policy(governance, admin)

        before = await governance.evaluation.evaluate(_create_op(), identity)
        disabled = await governance.policies.set_policy_status("NO_DATABASE_CLONES", False, admin)
        during = await governance.evaluation.evaluate(_create_op(), identity)
        await governance.policies.set_policy_status("NO_DATABASE_CLONES", True, admin)
        after = await governance.evaluation.evaluate(_create_op(), identity)

        assert disabled.policy is not None
        assert disabled.policy.active is False
        assert len(before.violations) == 1
        assert during.violations == ()
        assert len(after.violations) == 1

        toggles = await governance.audit.query_audit_log(actor="governance-admin")
        assert {"POLICY_DISABLE", "POLICY_ENABLE"} <= {r.operation for r in toggles.items}

    @pytest.mark.asyncio()
    async def test_delete_keeps_violations(
        self, governance: GovernanceEngine, admin: Identity, identity: Identity
    ) -> None:
        """Deleting a policy leaves its violations, which keep the policy name."""
        policy = await _env_policy(governance, admin)
        recording = await governance.recorder.record_operation(_create_op(), identity)

        deleted = await governance.policies.delete_policy(str(policy.id), admin)
        missing = await governance.policies.get_policy("NO_DATABASE_CLONES")
        violation = await governance.violations.get_violation(recording.violation_ids[0])

        assert deleted.status == "SUCCESS"
        assert missing.status == "ERROR"
        assert violation.violation is not None
        assert violation.violation.policy_name == "NO_DATABASE_CLONES"
        assert violation.violation.policy_id == policy.id

    @pytest.mark.asyncio()
    async def test_seed_default_policies_is_idempotent(
        self, governance: GovernanceEngine, admin: Identity
    ) -> None:
        """Seeding creates every default once and skips existing names afterwards."""
        first = await governance.policies.seed_default_policies(admin)
        second = await governance.policies.seed_default_policies(admin)

        assert len(first.created) == len(DEFAULT_POLICIES)
        assert first.skipped == []
        assert second.created == []
        assert sorted(second.skipped) == sorted(p["name"] for p in DEFAULT_POLICIES)


class TestPolicyEvaluationService:
    """Tests for evaluation against stored policies."""

    @pytest.mark.asyncio()
    async def test_quota_reads_live_count_from_registry(
        self,
        governance: GovernanceEngine,
        admin: Identity,
        identity: Identity,
        registry: InMemoryResourceRegistry,
        make_resource: Callable[..., LiveResource],
    ) -> None:
        """USER_QUOTA uses the registry count across every scope."""
        await governance.policies.create_policy(
            name="MAX_TWO", kind="USER_QUOTA", definition={"max_total_clones": 2, "action": "BLOCK"}, identity=admin
        )
        registry.add(make_resource("c1", scope="DEV"))
        registry.add(make_resource("c2", scope="UAT"))
        registry.add(make_resource("c3", owner="bob"))

        verdict = await governance.evaluation.evaluate(_create_op(resource_kind="SCHEMA"), identity)

        assert verdict.block is True
        assert verdict.violations[0].details["live_resource_count"] == 2

    @pytest.mark.asyncio()
    async def test_supplied_count_overrides_registry(
        self, governance: GovernanceEngine, admin: Identity, identity: Identity
    ) -> None:
        """An explicit live count is used as given."""
        await governance.policies.create_policy(
            name="MAX_TWO", kind="USER_QUOTA", definition={"max_total_clones": 2, "action": "BLOCK"}, identity=admin
        )

        verdict = await governance.evaluation.evaluate(_create_op(), identity, live_resource_count=1)

        assert verdict.block is False

    @pytest.mark.asyncio()
    async def test_registry_failure_skips_quota(
        self,
        governance: GovernanceEngine,
        session_factory: async_sessionmaker[AsyncSession],
        admin: Identity,
        identity: Identity,
        clock: Any,
    ) -> None:
        """An unavailable registry skips quota policies instead of failing evaluation."""
        await governance.policies.create_policy(
            name="MAX_TWO", kind="USER_QUOTA", definition={"max_total_clones": 2, "action": "BLOCK"}, identity=admin
        )
        await _env_policy(governance, admin)
        broken_registry = AsyncMock()
        broken_registry.count_live_resources.side_effect = RuntimeError("registry down")
        service = PolicyEvaluationService(session_factory, broken_registry, clock=clock)

        verdict = await service.evaluate(_create_op(), identity)

        assert verdict.skipped_policies == ("MAX_TWO",)
        assert [v.policy_name for v in verdict.violations] == ["NO_DATABASE_CLONES"]
        assert verdict.block is False

    @pytest.mark.asyncio()
    async def test_invalid_stored_policy_is_skipped(
        self,
        governance: GovernanceEngine,
        session_factory: async_sessionmaker[AsyncSession],
        admin: Identity,
        identity: Identity,
        clock: Any,
    ) -> None:
        """A stored definition that no longer validates is reported as skipped."""
        async with session_factory() as session, session.begin():
            await PolicyRepository(session).create(
                name="LEGACY_QUOTA",
                kind="USER_QUOTA",
                definition={"max_total_clones": "lots"},
                scope=None,
                severity="ERROR",
                description=None,
                created_by="migration",
                created_at=clock.now,
            )
        await _env_policy(governance, admin)

        verdict = await governance.evaluation.evaluate(_create_op(), identity)

        assert verdict.skipped_policies == ("LEGACY_QUOTA",)
        assert len(verdict.violations) == 1

    @pytest.mark.asyncio()
    async def test_scoped_policies_apply_only_to_their_scope(
        self, governance: GovernanceEngine, admin: Identity, identity: Identity
    ) -> None:
        """A PRD policy ignores DEV operations."""
        await _env_policy(governance, admin, scope="PRD")

        dev = await governance.evaluation.evaluate(_create_op(scope="dev"), identity)
        prd = await governance.evaluation.evaluate(_create_op(scope="prd"), identity)

        assert dev.violations == ()
        assert len(prd.violations) == 1


class TestViolationService:
    """Tests for violation lookup and resolution."""

    async def _violation_id(self, governance: GovernanceEngine, admin: Identity, identity: Identity) -> uuid.UUID:
        await _env_policy(governance, admin)
        recording = await governance.recorder.record_operation(_create_op(), identity)
        return recording.violation_ids[0]

    @pytest.mark.asyncio()
    async def test_resolve_violation(
        self, governance: GovernanceEngine, admin: Identity, identity: Identity, clock: Any
    ) -> None:
        """Resolution records resolver, time, and notes."""
        violation_id = await self._violation_id(governance, admin, identity)
        clock.advance(days=1)

        result = await governance.violations.resolve_violation(violation_id, admin, notes="Clone dropped")

        assert result.status == "SUCCESS"
        assert result.violation is not None
        assert result.violation.status == "RESOLVED"
        assert result.violation.resolved_by == "governance-admin"
        assert result.violation.resolved_at == clock.now
        assert result.violation.resolution_notes == "Clone dropped"

    @pytest.mark.asyncio()
    async def test_resolved_is_terminal(
        self, governance: GovernanceEngine, admin: Identity, identity: Identity, clock: Any
    ) -> None:
        """Resolving twice is an ERROR that keeps the first resolution."""
        violation_id = await self._violation_id(governance, admin, identity)
        await governance.violations.resolve_violation(violation_id, admin, notes="first")
        clock.advance(days=1)

        again = await governance.violations.resolve_violation(violation_id, identity, notes="second")

        assert again.status == "ERROR"
        assert again.violation is not None
        assert again.violation.resolved_by == "governance-admin"
        assert again.violation.resolution_notes == "first"

    @pytest.mark.asyncio()
    async def test_missing_violation(self, governance: GovernanceEngine, admin: Identity) -> None:
        """Unknown ids are ERROR results without a payload."""
        missing_id = uuid.uuid4()

        found = await governance.violations.get_violation(missing_id)
        resolved = await governance.violations.resolve_violation(missing_id, admin)

        assert found.status == "ERROR"
        assert found.violation is None
        assert resolved.status == "ERROR"
        assert resolved.message == "Violation not found"

    @pytest.mark.asyncio()
    async def test_query_filters(self, governance: GovernanceEngine, admin: Identity, identity: Identity) -> None:
        """Status, severity, actor, scope, and policy filters apply together."""
        violation_id = await self._violation_id(governance, admin, identity)
        await governance.recorder.record_operation(_create_op(resource_id="clone-2", scope="UAT"), identity)
        await governance.violations.resolve_violation(violation_id, admin)

        open_only = await governance.violations.query_violations(status="open")
        dev_only = await governance.violations.query_violations(scope="dev")
        by_actor = await governance.violations.query_violations(actor="alice", severity="error")
        by_other = await governance.violations.query_violations(actor="bob")
        by_policy = await governance.violations.query_violations(policy_name="NO_DATABASE_CLONES")

        assert [v.resource_id for v in open_only.items] == ["clone-2"]
        assert [v.resource_id for v in dev_only.items] == ["clone-1"]
        assert by_actor.total == 2
        assert by_other.total == 0
        assert by_policy.total == 2

    @pytest.mark.asyncio()
    async def test_query_window_and_limit(
        self, governance: GovernanceEngine, admin: Identity, identity: Identity, clock: Any
    ) -> None:
        """Without start_time only the default window is searched; limits are validated."""
        await self._violation_id(governance, admin, identity)
        clock.advance(days=120)

        recent = await governance.violations.query_violations()
        explicit = await governance.violations.query_violations(start_time=clock.now - timedelta(days=365))

        assert recent.total == 0
        assert explicit.total == 1
        with pytest.raises(ValidationError):
            await governance.violations.query_violations(limit=0)
        with pytest.raises(ValidationError):
            await governance.violations.query_violations(status="CLOSED")


class TestAuditQueryService:
    """Tests for audit, access, and activity queries."""

    @pytest.mark.asyncio()
    async def test_audit_log_newest_first_with_filters(
        self, governance: GovernanceEngine, identity: Identity, clock: Any
    ) -> None:
        """Audit queries return newest first and honour filters."""
        await governance.recorder.record_operation(_create_op(resource_id="c1"), identity)
        clock.advance(minutes=5)
        await governance.recorder.record_operation(
            _create_op(operation=OperationKind.DELETE, resource_id="c1"), identity
        )
        clock.advance(minutes=5)
        await governance.recorder.record_operation(
            _create_op(resource_id="c2", status=OperationStatus.FAILURE, error_message="warehouse offline"),
            Identity(actor="bob"),
        )

        everything = await governance.audit.query_audit_log()
        deletes = await governance.audit.query_audit_log(operation="delete")
        failures = await governance.audit.query_audit_log(status="FAILURE")
        alice = await governance.audit.query_audit_log(actor="alice", limit=1)

        assert [r.resource_id for r in everything.items] == ["c2", "c1", "c1"]
        assert [r.operation for r in deletes.items] == ["DELETE"]
        assert failures.items[0].error_message == "warehouse offline"
        assert alice.total == 1
        assert alice.items[0].operation == "DELETE"

    @pytest.mark.asyncio()
    async def test_get_audit_record(self, governance: GovernanceEngine, identity: Identity) -> None:
        """Records are fetched by id; unknown ids are ERROR results."""
        recording = await governance.recorder.record_operation(_create_op(), identity)
        assert recording.record_id is not None

        found = await governance.audit.get_audit_record(recording.record_id)
        missing = await governance.audit.get_audit_record(uuid.uuid4())

        assert found.record is not None
        assert found.record.session_id == "sess-1"
        assert found.record.actor_role == "DEVELOPER"
        assert missing.status == "ERROR"

    @pytest.mark.asyncio()
    async def test_access_log(self, governance: GovernanceEngine, identity: Identity) -> None:
        """Access events are queryable by resource and actor."""
        await governance.recorder.record_access(
            AccessInfo(resource_id="c1", resource_name="SALES_CLONE", access_type="QUERY", rows_accessed=42),
            identity,
        )
        await governance.recorder.record_access(
            AccessInfo(resource_id="c2", resource_name="HR_CLONE", access_type="EXPORT"),
            Identity(actor="bob"),
        )

        by_resource = await governance.audit.query_access_log(resource_id="c1")
        by_actor = await governance.audit.query_access_log(actor="bob")

        assert by_resource.total == 1
        assert by_resource.items[0].rows_accessed == 42
        assert [r.access_type for r in by_actor.items] == ["EXPORT"]

    @pytest.mark.asyncio()
    async def test_actor_activity(
        self,
        governance: GovernanceEngine,
        admin: Identity,
        identity: Identity,
        registry: InMemoryResourceRegistry,
        make_resource: Callable[..., LiveResource],
    ) -> None:
        """Activity lists live clones with age, recent operations, and violations."""
        await _env_policy(governance, admin)
        registry.add(make_resource("c1", age_days=3))
        registry.add(make_resource("c9", owner="bob"))
        await governance.recorder.record_operation(_create_op(resource_id="c1"), identity)

        activity = await governance.audit.get_actor_activity("alice")

        assert activity.days_back == 30
        assert [c.resource_id for c in activity.active_clones] == ["c1"]
        assert activity.active_clones[0].age_days == 3
        assert [r.operation for r in activity.recent_operations] == ["CREATE"]
        assert len(activity.violations) == 1
        assert activity.open_violations == 1
        with pytest.raises(ValidationError):
            await governance.audit.get_actor_activity("alice", days_back=0)
