"""Initial clone governance schema.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-16

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | None = None
depends_on: str | None = None

_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
_TS = sa.DateTime(timezone=True)


def upgrade() -> None:
    op.create_table(
        "cg_clone_policies",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("kind", sa.String(50), nullable=False),
        sa.Column("scope", sa.String(50), nullable=True),
        sa.Column("definition", _JSON, nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("active", sa.Boolean, nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("created_by", sa.String(255), nullable=False),
        sa.Column("created_at", _TS, nullable=False),
        sa.Column("updated_by", sa.String(255), nullable=True),
        sa.Column("updated_at", _TS, nullable=True),
    )
    op.create_index("ix_cg_clone_policies_kind", "cg_clone_policies", ["kind"])
    op.create_index("ix_cg_clone_policies_scope", "cg_clone_policies", ["scope"])
    op.create_index("ix_cg_clone_policies_active", "cg_clone_policies", ["active"])

    op.create_table(
        "cg_policy_violations",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("policy_id", sa.Uuid, nullable=False),
        sa.Column("policy_name", sa.String(255), nullable=False),
        sa.Column("policy_kind", sa.String(50), nullable=False),
        sa.Column("resource_id", sa.String(255), nullable=True),
        sa.Column("resource_name", sa.String(500), nullable=True),
        sa.Column("scope", sa.String(50), nullable=True),
        sa.Column("violator", sa.String(255), nullable=False),
        sa.Column("details", _JSON, nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("detected_at", _TS, nullable=False),
        sa.Column("audit_id", sa.Uuid, nullable=True),
        sa.Column("resolved_by", sa.String(255), nullable=True),
        sa.Column("resolved_at", _TS, nullable=True),
        sa.Column("resolution_notes", sa.Text, nullable=True),
    )
    for column in ("policy_id", "resource_id", "scope", "violator", "severity", "status", "detected_at"):
        op.create_index(f"ix_cg_policy_violations_{column}", "cg_policy_violations", [column])

    op.create_table(
        "cg_clone_audit_log",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("operation", sa.String(50), nullable=False),
        sa.Column("resource_id", sa.String(255), nullable=True),
        sa.Column("resource_name", sa.String(500), nullable=True),
        sa.Column("resource_kind", sa.String(50), nullable=True),
        sa.Column("scope", sa.String(50), nullable=True),
        sa.Column("actor", sa.String(255), nullable=False),
        sa.Column("actor_role", sa.String(255), nullable=True),
        sa.Column("session_id", sa.String(255), nullable=True),
        sa.Column("client_ip", sa.String(64), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("metadata", _JSON, nullable=False),
        sa.Column("violation_ids", _JSON, nullable=False),
        sa.Column("occurred_at", _TS, nullable=False),
    )
    for column in ("operation", "resource_id", "scope", "actor", "status", "occurred_at"):
        op.create_index(f"ix_cg_clone_audit_log_{column}", "cg_clone_audit_log", [column])

    op.create_table(
        "cg_clone_access_log",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("resource_id", sa.String(255), nullable=True),
        sa.Column("resource_name", sa.String(500), nullable=True),
        sa.Column("actor", sa.String(255), nullable=False),
        sa.Column("access_type", sa.String(50), nullable=False),
        sa.Column("query_id", sa.String(255), nullable=True),
        sa.Column("rows_accessed", sa.Integer, nullable=True),
        sa.Column("session_id", sa.String(255), nullable=True),
        sa.Column("accessed_at", _TS, nullable=False),
    )
    for column in ("resource_id", "actor", "accessed_at"):
        op.create_index(f"ix_cg_clone_access_log_{column}", "cg_clone_access_log", [column])

    op.create_table(
        "cg_clone_registry",
        sa.Column("resource_id", sa.String(255), primary_key=True),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("kind", sa.String(50), nullable=True),
        sa.Column("scope", sa.String(50), nullable=True),
        sa.Column("owner", sa.String(255), nullable=False),
        sa.Column("source_database", sa.String(255), nullable=True),
        sa.Column("source_schema", sa.String(255), nullable=True),
        sa.Column("created_at", _TS, nullable=False),
    )
    op.create_index("ix_cg_clone_registry_scope", "cg_clone_registry", ["scope"])
    op.create_index("ix_cg_clone_registry_owner", "cg_clone_registry", ["owner"])


def downgrade() -> None:
    op.drop_table("cg_clone_registry")
    op.drop_table("cg_clone_access_log")
    op.drop_table("cg_clone_audit_log")
    op.drop_table("cg_policy_violations")
    op.drop_table("cg_clone_policies")
