"""Test fixtures for clone-governance-engine.

Provides:
- clock: A settable clock pinned to Tuesday 2024-01-02 15:00 UTC (10:00 in New York)
- db_engine / session_factory: A fresh SQLite database per test
- registry: An empty InMemoryResourceRegistry
- identity / admin: Caller identities
- governance: A fully wired GovernanceEngine over the test database
- make_rule: Factory for compiled PolicyRule objects
- make_resource: Factory for LiveResource objects aged against the clock
"""

import uuid
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from clone_governance_engine.adapters.registry import InMemoryResourceRegistry
from clone_governance_engine.container import GovernanceEngine
from clone_governance_engine.core.policy_kinds import PolicyRule
from clone_governance_engine.core.types import Identity, LiveResource
from clone_governance_engine.database import build_engine, build_session_factory, create_schema
from clone_governance_engine.settings import Settings

TUESDAY_MORNING_NY = datetime(2024, 1, 2, 15, 0, tzinfo=UTC)


class FakeClock:
    """Callable clock whose current time is set by the test."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


@pytest.fixture()
def clock() -> FakeClock:
    """Return a clock fixed on a Tuesday inside New York business hours.

    Returns:
        A FakeClock tests can move with advance() or by assigning .now.
    """
    return FakeClock(TUESDAY_MORNING_NY)


@pytest.fixture()
async def db_engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """Create an SQLite database with every governance table.

    Args:
        tmp_path: pytest temporary directory for the database file.

    Yields:
        The AsyncEngine, disposed after the test.
    """
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'governance.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Return a session factory bound to the test database."""
    return build_session_factory(db_engine)


@pytest.fixture()
def registry() -> InMemoryResourceRegistry:
    """Return an empty in-memory resource registry."""
    return InMemoryResourceRegistry()


@pytest.fixture()
def identity() -> Identity:
    """Return a developer identity for operation tests."""
    return Identity(actor="alice", role="DEVELOPER", session_id="sess-1", client_ip="10.0.0.5")


@pytest.fixture()
def admin() -> Identity:
    """Return an administrator identity for policy lifecycle tests."""
    return Identity(actor="governance-admin", role="SRS_SECURITY_ADMIN", session_id="sess-admin")


@pytest.fixture()
def settings() -> Settings:
    """Return settings for an in-test engine; the database URL is unused."""
    return Settings(
        database_url="sqlite+aiosqlite://",
        scheduler_enabled=False,
        scan_batch_size=2,
        purge_batch_size=2,
        log_json=False,
    )


@pytest.fixture()
def governance(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    db_engine: AsyncEngine,
    registry: InMemoryResourceRegistry,
    clock: FakeClock,
) -> GovernanceEngine:
    """Wire a GovernanceEngine over the test database, registry, and clock."""
    return GovernanceEngine.build(settings, session_factory, engine=db_engine, registry=registry, clock=clock)


@pytest.fixture()
def make_rule() -> Callable[..., PolicyRule]:
    """Return a factory for compiled rules.

    Returns:
        make(kind, definition, name=None, scope=None, severity="WARNING") -> PolicyRule
    """

    def _make(
        kind: str,
        definition: dict[str, Any],
        name: str | None = None,
        scope: str | None = None,
        severity: str = "WARNING",
    ) -> PolicyRule:
        return PolicyRule.compile(
            policy_id=uuid.uuid4(),
            name=name or f"{kind}_RULE",
            kind=kind,
            scope=scope,
            severity=severity,
            definition=definition,
        )

    return _make


@pytest.fixture()
def make_resource(clock: FakeClock) -> Callable[..., LiveResource]:
    """Return a factory for live clones created age_days before the clock."""

    def _make(
        resource_id: str,
        owner: str = "alice",
        age_days: float = 0,
        scope: str | None = "DEV",
        kind: str | None = "SCHEMA",
    ) -> LiveResource:
        return LiveResource(
            resource_id=resource_id,
            name=f"{resource_id.upper()}_CLONE",
            kind=kind,
            scope=scope,
            owner=owner,
            created_at=clock.now - timedelta(days=age_days),
            source_database="SALES",
            source_schema="PUBLIC",
        )

    return _make
