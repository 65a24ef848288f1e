"""Composition root: wires repositories, services, and background jobs.

GovernanceEngine.build() is used by the FastAPI lifespan and by in-process
embedders (the clone workflow can call engine.gate.execute_create directly).
Tests build it over a temporary SQLite database with a fixed clock.
"""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from clone_governance_engine.adapters.actor_locks import ActorLockManager
from clone_governance_engine.adapters.registry import SqlCloneRegistry
from clone_governance_engine.adapters.scheduler import MaintenanceScheduler
from clone_governance_engine.core.evaluator import PolicyEvaluator
from clone_governance_engine.core.gate import GovernedOperationGate
from clone_governance_engine.core.interfaces import IResourceRegistry
from clone_governance_engine.core.recorder import AuditRecorder
from clone_governance_engine.core.retention import RetentionPurger
from clone_governance_engine.core.scanner import ComplianceScanner
from clone_governance_engine.core.services import (
    AuditQueryService,
    PolicyEvaluationService,
    PolicyService,
    ViolationService,
)
from clone_governance_engine.core.types import Clock, utc_now
from clone_governance_engine.settings import Settings


@dataclass
class GovernanceEngine:
    """Every engine component, fully wired."""

    settings: Settings
    registry: IResourceRegistry
    evaluation: PolicyEvaluationService
    recorder: AuditRecorder
    policies: PolicyService
    violations: ViolationService
    audit: AuditQueryService
    scanner: ComplianceScanner
    purger: RetentionPurger
    gate: GovernedOperationGate
    scheduler: MaintenanceScheduler

    @classmethod
    def build(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        engine: AsyncEngine | None = None,
        registry: IResourceRegistry | None = None,
        clock: Clock = utc_now,
    ) -> "GovernanceEngine":
        """Wire the engine.

        Args:
            settings: Service settings.
            session_factory: Factory every component opens units of work from.
            engine: Database engine, used to pick PostgreSQL advisory locks.
            registry: Live resource source. Defaults to the cg_clone_registry table.
            clock: Injected wall clock shared by every component.

        Returns:
            The wired GovernanceEngine.
        """
        if registry is None:
            registry = SqlCloneRegistry(session_factory)
        evaluator = PolicyEvaluator()
        evaluation = PolicyEvaluationService(session_factory, registry, evaluator=evaluator, clock=clock)
        recorder = AuditRecorder(session_factory, evaluation=evaluation, clock=clock)
        scanner = ComplianceScanner(
            session_factory,
            registry,
            evaluation,
            evaluator=evaluator,
            clock=clock,
            batch_size=settings.scan_batch_size,
        )
        purger = RetentionPurger(
            session_factory,
            clock=clock,
            default_retention_days=settings.default_retention_days,
            batch_size=settings.purge_batch_size,
        )
        return cls(
            settings=settings,
            registry=registry,
            evaluation=evaluation,
            recorder=recorder,
            policies=PolicyService(session_factory, recorder, clock=clock),
            violations=ViolationService(
                session_factory,
                clock=clock,
                window_days=settings.violation_query_window_days,
                max_limit=settings.query_max_limit,
            ),
            audit=AuditQueryService(
                session_factory,
                registry,
                clock=clock,
                audit_window_days=settings.audit_query_window_days,
                max_limit=settings.query_max_limit,
                activity_window_days=settings.activity_window_days,
            ),
            scanner=scanner,
            purger=purger,
            gate=GovernedOperationGate(evaluation, recorder, registry, ActorLockManager(engine)),
            scheduler=MaintenanceScheduler(
                scanner,
                purger,
                scan_interval_seconds=settings.scan_interval_seconds,
                purge_interval_seconds=settings.purge_interval_seconds,
                purge_dry_run=settings.scheduled_purge_dry_run,
            ),
        )
