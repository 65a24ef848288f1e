"""Tests for GovernedOperationGate and per-actor locking.

The gate evaluates, creates, and records under one per-actor lock, so
concurrent creates by one actor cannot overshoot a USER_QUOTA.
"""

import asyncio
import itertools
from collections.abc import Callable
from typing import Any

import pytest

from clone_governance_engine.adapters.actor_locks import ActorLockManager
from clone_governance_engine.adapters.registry import InMemoryResourceRegistry
from clone_governance_engine.container import GovernanceEngine
from clone_governance_engine.core.types import Identity, LiveResource, OperationInfo, OperationKind, OperationStatus
from clone_governance_engine.errors import ValidationError
from clone_governance_engine.metrics import REGISTRY


def _create(**overrides: Any) -> OperationInfo:
    values: dict[str, Any] = {
        "operation": OperationKind.CREATE,
        "status": OperationStatus.SUCCESS,
        "resource_name": "SALES_CLONE",
        "resource_kind": "SCHEMA",
        "scope": "DEV",
    }
    values.update(overrides)
    return OperationInfo(**values)


def _blocked() -> float:
    return REGISTRY.get_sample_value("clone_governance_blocked_operations_total") or 0.0


async def _quota(governance: GovernanceEngine, admin: Identity, max_total: int) -> None:
    await governance.policies.create_policy(
        name=f"MAX_{max_total}_CLONES",
        kind="USER_QUOTA",
        definition={"max_total_clones": max_total, "action": "BLOCK"},
        identity=admin,
        severity="ERROR",
    )


class TestExecuteCreate:
    """Tests for GovernedOperationGate.execute_create."""

    @pytest.mark.asyncio()
    async def test_allowed_create_runs_action_and_records_success(
        self,
        governance: GovernanceEngine,
        admin: Identity,
        identity: Identity,
        registry: InMemoryResourceRegistry,
        make_resource: Callable[..., LiveResource],
    ) -> None:
        """Non-blocking violations are recorded with the SUCCESS record."""
        await governance.policies.create_policy(
            name="WARN_ON_SCHEMA",
            kind="ENVIRONMENT_RESTRICTION",
            definition={"restricted_clone_types": ["SCHEMA"], "action": "WARN"},
            identity=admin,
        )

        async def materialise() -> LiveResource:
            resource = make_resource("clone-7")
            registry.add(resource)
            return resource

        outcome = await governance.gate.execute_create(
            _create(), identity, materialise, resource_id_of=lambda r: r.resource_id
        )

        assert outcome.allowed is True
        assert outcome.value is not None
        assert outcome.value.resource_id == "clone-7"
        assert outcome.recording.recorded is True
        assert len(outcome.recording.violation_ids) == 1

        record = await governance.audit.get_audit_record(outcome.recording.record_id)
        assert record.record is not None
        assert record.record.status == "SUCCESS"
        assert record.record.resource_id == "clone-7"
        assert record.record.violation_ids == list(outcome.recording.violation_ids)

    @pytest.mark.asyncio()
    async def test_blocked_create_never_runs_action(
        self,
        governance: GovernanceEngine,
        admin: Identity,
        identity: Identity,
        registry: InMemoryResourceRegistry,
        make_resource: Callable[..., LiveResource],
    ) -> None:
        """A blocking verdict refuses the create and records it as BLOCKED."""
        await _quota(governance, admin, max_total=1)
        registry.add(make_resource("existing"))
        before = _blocked()
        called = False

        async def materialise() -> None:
            nonlocal called
            called = True

        outcome = await governance.gate.execute_create(_create(), identity, materialise)

        assert outcome.allowed is False
        assert called is False
        assert outcome.verdict.block is True
        assert _blocked() == before + 1

        log = await governance.audit.query_audit_log(status="BLOCKED")
        assert log.total == 1
        assert log.items[0].error_message == "Blocked by policy: MAX_1_CLONES"
        assert log.items[0].violation_count == 1

    @pytest.mark.asyncio()
    async def test_failed_action_is_recorded_and_reraised(
        self, governance: GovernanceEngine, identity: Identity
    ) -> None:
        """An exception from the creation is recorded as FAILURE and propagated."""

        async def materialise() -> None:
            raise RuntimeError("warehouse offline")

        with pytest.raises(RuntimeError, match="warehouse offline"):
            await governance.gate.execute_create(_create(), identity, materialise)

        log = await governance.audit.query_audit_log(status="FAILURE")
        assert log.total == 1
        assert log.items[0].error_message == "warehouse offline"

    @pytest.mark.asyncio()
    async def test_only_create_operations_are_gated(self, governance: GovernanceEngine, identity: Identity) -> None:
        """Non-CREATE operations are rejected before anything runs."""

        async def materialise() -> None:
            return None

        with pytest.raises(ValidationError) as exc_info:
            await governance.gate.execute_create(_create(operation=OperationKind.DELETE), identity, materialise)
        assert exc_info.value.field == "operation"

    @pytest.mark.asyncio()
    async def test_concurrent_creates_cannot_overshoot_quota(
        self,
        governance: GovernanceEngine,
        admin: Identity,
        identity: Identity,
        registry: InMemoryResourceRegistry,
        make_resource: Callable[..., LiveResource],
    ) -> None:
        """Five simultaneous creates against a quota of two allow exactly two."""
        await _quota(governance, admin, max_total=2)
        ids = itertools.count()

        async def materialise() -> LiveResource:
            resource = make_resource(f"clone-{next(ids)}")
            await asyncio.sleep(0)
            registry.add(resource)
            return resource

        outcomes = await asyncio.gather(
            *(governance.gate.execute_create(_create(), identity, materialise) for _ in range(5))
        )

        assert sum(1 for o in outcomes if o.allowed) == 2
        assert await registry.count_live_resources("alice") == 2
        blocked = await governance.audit.query_audit_log(status="BLOCKED")
        assert blocked.total == 3


class TestActorLockManager:
    """Tests for per-actor serialisation."""

    @pytest.mark.asyncio()
    async def test_same_actor_is_serialised(self) -> None:
        """Two holders of one actor's lock never overlap."""
        locks = ActorLockManager()
        active = 0
        peak = 0

        async def hold() -> None:
            nonlocal active, peak
            async with locks.hold("alice"):
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0)
                active -= 1

        await asyncio.gather(hold(), hold(), hold())

        assert peak == 1

    @pytest.mark.asyncio()
    async def test_different_actors_do_not_wait_on_each_other(self) -> None:
        """Holding alice's lock does not block bob."""
        locks = ActorLockManager()

        async with locks.hold("alice"):
            await asyncio.wait_for(self._enter(locks, "bob"), timeout=1)

    @pytest.mark.asyncio()
    async def test_no_advisory_locks_without_postgres(self) -> None:
        """Without a PostgreSQL engine locking stays in-process."""
        assert ActorLockManager().uses_advisory_locks is False

    @pytest.mark.asyncio()
    async def test_advisory_lock_without_engine_raises(self) -> None:
        """Asking for a database lock with no engine fails with RuntimeError."""
        with pytest.raises(RuntimeError, match="database engine"):
            async with ActorLockManager()._advisory_lock("alice"):
                pass

    @staticmethod
    async def _enter(locks: ActorLockManager, actor: str) -> None:
        async with locks.hold(actor):
            return None
