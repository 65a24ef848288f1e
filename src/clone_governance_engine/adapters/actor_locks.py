"""Per-actor locks for governed create operations.

Within one process an asyncio.Lock per actor serialises the quota check and
the clone creation. When the database is PostgreSQL a transaction-scoped
advisory lock keyed on the actor is taken as well, so several engine
processes sharing one database serialise on the same actor too.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from clone_governance_engine.observability import get_logger

logger = get_logger(__name__)

_ADVISORY_LOCK_SQL = text("SELECT pg_advisory_xact_lock(hashtext(:key))")


class ActorLockManager:
    """Hands out per-actor locks.

    Args:
        engine: Database engine. Advisory locks are used only when its
            dialect is PostgreSQL. None keeps locking in-process.
    """

    def __init__(self, engine: AsyncEngine | None = None) -> None:
        self._engine = engine
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @property
    def uses_advisory_locks(self) -> bool:
        return self._engine is not None and self._engine.dialect.name == "postgresql"

    @asynccontextmanager
    async def hold(self, actor: str) -> AsyncIterator[None]:
        """Hold the actor's lock for the duration of the block."""
        lock = self._locks.setdefault(actor, asyncio.Lock())
        self._waiters[actor] = self._waiters.get(actor, 0) + 1
        try:
            async with lock:
                if self.uses_advisory_locks:
                    async with self._advisory_lock(actor):
                        yield
                else:
                    yield
        finally:
            self._waiters[actor] -= 1
            if self._waiters[actor] == 0:
                del self._waiters[actor]
                self._locks.pop(actor, None)

    @asynccontextmanager
    async def _advisory_lock(self, actor: str) -> AsyncIterator[None]:
        if self._engine is None:
            raise RuntimeError("Advisory locks need a database engine")
        async with self._engine.connect() as conn:
            async with conn.begin():
                await conn.execute(_ADVISORY_LOCK_SQL, {"key": f"clone-governance:{actor}"})
                logger.debug("Advisory lock acquired", actor=actor)
                yield
