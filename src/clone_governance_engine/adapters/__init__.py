"""Adapters: persistence and runtime integrations for the governance engine.

Contains:
- repositories.py: policy, violation, and access log repositories
- audit_log.py: append-only AuditLogRepository
- retention.py: RetentionRepository, the only delete path for audit data
- registry.py: resource registry adapters (SQL table, in-memory)
- actor_locks.py: per-actor locks for governed creates
- scheduler.py: background compliance scan and retention purge
"""

__all__: list[str] = []
