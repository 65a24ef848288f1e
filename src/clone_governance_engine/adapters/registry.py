"""Resource registry adapters.

The registry is owned by the workflow that materialises clones. The engine
only reads it: live counts for USER_QUOTA, batches for the compliance scan,
and per-actor listings for activity summaries.

Adapters:
- SqlCloneRegistry: reads cg_clone_registry
- InMemoryResourceRegistry: process-local registry for embedding and tests
"""

from collections.abc import AsyncIterator, Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql.elements import ColumnElement

from clone_governance_engine.core.models import CloneRegistryEntry
from clone_governance_engine.core.types import LiveResource, normalize_tag


def _scope_matches(scope: str) -> ColumnElement[bool]:
    # Rows are written by the clone workflow and may carry any casing
    return func.upper(func.trim(CloneRegistryEntry.scope)) == scope


def _to_live(entry: CloneRegistryEntry) -> LiveResource:
    return LiveResource(
        resource_id=entry.resource_id,
        name=entry.name,
        kind=entry.kind,
        scope=entry.scope,
        owner=entry.owner,
        created_at=entry.created_at,
        source_database=entry.source_database,
        source_schema=entry.source_schema,
    )


class SqlCloneRegistry:
    """IResourceRegistry backed by the cg_clone_registry table.

    Args:
        session_factory: Factory for short read-only sessions.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def count_live_resources(self, actor: str) -> int:
        stmt = select(func.count()).select_from(CloneRegistryEntry).where(CloneRegistryEntry.owner == actor)
        async with self._session_factory() as session:
            return int((await session.execute(stmt)).scalar_one())

    async def list_live_resources(
        self,
        actor: str | None = None,
        scope: str | None = None,
    ) -> list[LiveResource]:
        stmt = select(CloneRegistryEntry)
        if actor:
            stmt = stmt.where(CloneRegistryEntry.owner == actor)
        wanted_scope = normalize_tag(scope)
        if wanted_scope:
            stmt = stmt.where(_scope_matches(wanted_scope))
        stmt = stmt.order_by(CloneRegistryEntry.created_at.desc())
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_to_live(row) for row in rows]

    async def iter_live_resources(
        self,
        scope: str | None = None,
        batch_size: int = 200,
    ) -> AsyncIterator[list[LiveResource]]:
        """Keyset-paginate the registry by resource_id."""
        wanted_scope = normalize_tag(scope)
        last_id: str | None = None
        while True:
            stmt = select(CloneRegistryEntry)
            if wanted_scope:
                stmt = stmt.where(_scope_matches(wanted_scope))
            if last_id is not None:
                stmt = stmt.where(CloneRegistryEntry.resource_id > last_id)
            stmt = stmt.order_by(CloneRegistryEntry.resource_id).limit(batch_size)
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
            if not rows:
                return
            yield [_to_live(row) for row in rows]
            last_id = rows[-1].resource_id


class InMemoryResourceRegistry:
    """IResourceRegistry over an in-process dict keyed by resource id."""

    def __init__(self, resources: Iterable[LiveResource] = ()) -> None:
        self._resources: dict[str, LiveResource] = {r.resource_id: r for r in resources}

    def add(self, resource: LiveResource) -> None:
        self._resources[resource.resource_id] = resource

    def remove(self, resource_id: str) -> None:
        self._resources.pop(resource_id, None)

    async def count_live_resources(self, actor: str) -> int:
        return sum(1 for r in self._resources.values() if r.owner == actor)

    async def list_live_resources(
        self,
        actor: str | None = None,
        scope: str | None = None,
    ) -> list[LiveResource]:
        wanted_scope = normalize_tag(scope)
        matches = [
            r
            for r in self._resources.values()
            if (actor is None or r.owner == actor)
            and (wanted_scope is None or normalize_tag(r.scope) == wanted_scope)
        ]
        return sorted(matches, key=lambda r: r.created_at, reverse=True)

    async def iter_live_resources(
        self,
        scope: str | None = None,
        batch_size: int = 200,
    ) -> AsyncIterator[list[LiveResource]]:
        resources = sorted(await self.list_live_resources(scope=scope), key=lambda r: r.resource_id)
        for start in range(0, len(resources), batch_size):
            yield resources[start : start + batch_size]
