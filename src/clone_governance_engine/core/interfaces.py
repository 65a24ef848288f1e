"""Abstract interfaces (Protocol classes) for the clone governance engine.

Services depend on these protocols, never on concrete adapters, so tests can
substitute in-memory registries and mock recorders.

Protocols defined:
- IResourceRegistry: read access to live clones (quota counts, age scans)
- IAuditRecorder: best-effort operation and access recording
- IActorLockManager: per-actor serialisation for governed creates
"""

from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager
from typing import Protocol

from clone_governance_engine.core.types import (
    AccessInfo,
    Identity,
    LiveResource,
    OperationInfo,
    PolicyVerdict,
    RecordingResult,
)


class IResourceRegistry(Protocol):
    """Read-only view of the clones that currently exist."""

    async def count_live_resources(self, actor: str) -> int:
        """Count the actor's live clones across every scope.

        Args:
            actor: Owner identity.

        Returns:
            Number of live clones owned by the actor.
        """
        ...

    async def list_live_resources(
        self,
        actor: str | None = None,
        scope: str | None = None,
    ) -> list[LiveResource]:
        """List live clones, optionally filtered by owner and scope.

        Args:
            actor: Owner filter. None lists every owner.
            scope: Scope filter. None lists every scope.

        Returns:
            Live clones ordered by creation time, newest first.
        """
        ...

    def iter_live_resources(
        self,
        scope: str | None = None,
        batch_size: int = 200,
    ) -> AsyncIterator[list[LiveResource]]:
        """Iterate every live clone in batches.

        Args:
            scope: Scope filter. None iterates every scope.
            batch_size: Maximum clones per yielded batch.

        Yields:
            Non-empty batches of live clones.
        """
        ...


class IAuditRecorder(Protocol):
    """Best-effort recorder. Implementations never raise."""

    async def record_operation(
        self,
        operation: OperationInfo,
        identity: Identity,
        verdict: PolicyVerdict | None = None,
    ) -> RecordingResult:
        """Record one governed operation and the violations it produced."""
        ...

    async def record_access(self, access: AccessInfo, identity: Identity) -> RecordingResult:
        """Record a read/use event without policy evaluation."""
        ...


class IActorLockManager(Protocol):
    """Serialises governed creates per actor."""

    def hold(self, actor: str) -> AbstractAsyncContextManager[None]:
        """Return a context manager that holds the actor's lock while open."""
        ...
