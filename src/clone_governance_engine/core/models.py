"""SQLAlchemy ORM models for the clone governance engine.

All tables use the `cg_` prefix.

Models:
- ClonePolicy: compliance policy with a kind-specific definition document
- PolicyViolation: detected violation, OPEN until explicitly resolved
- CloneAuditRecord: append-only record of one governed operation outcome
- CloneAccessRecord: read/use event against a governed resource
- CloneRegistryEntry: live clone, owned by the clone workflow (read-only here)

Violations carry no foreign key to their policy: the policy name is
denormalised so a violation stays meaningful after its policy is deleted.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Integer, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from clone_governance_engine.core.types import utc_now
from clone_governance_engine.database import Base, UTCDateTime

# Portable JSON column: JSONB on PostgreSQL, JSON elsewhere
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class ClonePolicy(Base):
    """Compliance policy evaluated against clone operations.

    Attributes:
        id: Policy UUID.
        name: Unique human-readable policy name.
        kind: PolicyKind value selecting the definition shape.
        scope: Environment tag (DEV, UAT, PRD, ...). NULL applies everywhere.
        definition: Kind-specific parameter document, validated on write.
        severity: Severity copied onto every violation at detection time.
        active: Inactive policies are kept for history but never evaluated.
        description: Optional free text.
        created_by: Actor that created the policy.
        updated_by: Actor that last changed the policy.
    """

    __tablename__ = "cg_clone_policies"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="Unique policy name",
    )
    kind: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    scope: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
        index=True,
        comment="Environment tag; NULL applies to every scope",
    )
    definition: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False, default=dict)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default="WARNING")
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)
    updated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class PolicyViolation(Base):
    """A detected policy violation.

    Severity and policy name are copied from the policy when the violation is
    detected and never follow later policy edits.

    Status transitions OPEN -> RESOLVED only; RESOLVED is terminal and carries
    the resolver, the resolution time, and notes.
    """

    __tablename__ = "cg_policy_violations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    policy_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    policy_name: Mapped[str] = mapped_column(String(255), nullable=False)
    policy_kind: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    resource_name: Mapped[str | None] = mapped_column(String(500), nullable=True)
    scope: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    violator: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False, default=dict)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="OPEN", index=True)
    detected_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utc_now,
        index=True,
    )
    audit_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        nullable=True,
        comment="Audit record of the operation that produced this violation; NULL for scan findings",
    )
    resolved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class CloneAuditRecord(Base):
    """IMMUTABLE record of one governed operation.

    Written only through AuditLogRepository.append and deleted only by the
    retention purger once older than the retention cutoff.
    """

    __tablename__ = "cg_clone_audit_log"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    operation: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    resource_name: Mapped[str | None] = mapped_column(String(500), nullable=True)
    resource_kind: Mapped[str | None] = mapped_column(String(50), nullable=True)
    scope: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    actor: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    actor_role: Mapped[str | None] = mapped_column(String(255), nullable=True)
    session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    extra_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONDocument,
        nullable=False,
        default=dict,
    )
    violation_ids: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    occurred_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utc_now,
        index=True,
    )

    @property
    def violation_count(self) -> int:
        return len(self.violation_ids or [])


class CloneAccessRecord(Base):
    """Read/use event against a governed resource. Never evaluated."""

    __tablename__ = "cg_clone_access_log"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    resource_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    resource_name: Mapped[str | None] = mapped_column(String(500), nullable=True)
    actor: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    access_type: Mapped[str] = mapped_column(String(50), nullable=False)
    query_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    rows_accessed: Mapped[int | None] = mapped_column(Integer, nullable=True)
    session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    accessed_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utc_now,
        index=True,
    )


class CloneRegistryEntry(Base):
    """Live clone as tracked by the clone workflow.

    The engine only reads this table (quota counts, age scans, activity).
    Rows are inserted and removed by the workflow that materialises clones.
    """

    __tablename__ = "cg_clone_registry"

    resource_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    kind: Mapped[str | None] = mapped_column(String(50), nullable=True)
    scope: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    owner: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    source_database: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source_schema: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)
