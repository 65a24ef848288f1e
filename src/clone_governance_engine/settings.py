"""Service-specific settings for clone-governance-engine.

All settings use the CLONE_GOVERNANCE_ environment prefix and cover:
- Primary database connection (policies, violations, audit and access logs)
- Logging output
- Retention defaults for the purger
- Compliance scan / purge scheduling
- Read-query windows and limits
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for clone-governance-engine.

    Environment variable prefix: CLONE_GOVERNANCE_
    """

    service_name: str = "clone-governance-engine"
    host: str = Field(default="0.0.0.0", description="Bind address for the HTTP server")
    port: int = Field(default=8000, description="Bind port for the HTTP server")

    # -------------------------------------------------------------------------
    # Database
    # -------------------------------------------------------------------------

    database_url: str = Field(
        default="sqlite+aiosqlite:///./clone_governance.db",
        description="SQLAlchemy async URL. Use postgresql+asyncpg://... in production.",
    )
    db_pool_size: int = Field(
        default=5,
        description="Connection pool size. Ignored for SQLite URLs.",
    )
    db_max_overflow: int = Field(
        default=2,
        description="Max overflow connections above db_pool_size. Ignored for SQLite URLs.",
    )
    db_pool_timeout: int = Field(
        default=30,
        description="Seconds to wait for a connection before raising. Ignored for SQLite URLs.",
    )
    db_echo: bool = Field(
        default=False,
        description="Echo SQL statements. Never enable in production: audit payloads would be logged.",
    )
    auto_create_schema: bool = Field(
        default=False,
        description="Create tables at startup. Production deployments run Alembic migrations instead.",
    )

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------

    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(
        default=True,
        description="Render logs as JSON lines. Set false for human-readable console output.",
    )

    # -------------------------------------------------------------------------
    # Retention and maintenance
    # -------------------------------------------------------------------------

    default_retention_days: int = Field(
        default=365,
        gt=0,
        description="Retention used by purge when no explicit retention_days is given.",
    )
    scan_batch_size: int = Field(
        default=200,
        gt=0,
        description="Live resources fetched per compliance scan batch.",
    )
    purge_batch_size: int = Field(
        default=500,
        gt=0,
        description="Rows deleted per purge transaction.",
    )
    scheduler_enabled: bool = Field(
        default=False,
        description="Run the compliance scanner and retention purger in the background.",
    )
    scan_interval_seconds: int = Field(default=3600, gt=0)
    purge_interval_seconds: int = Field(default=86400, gt=0)
    scheduled_purge_dry_run: bool = Field(
        default=True,
        description="Scheduled purges only count eligible rows unless this is false.",
    )

    # -------------------------------------------------------------------------
    # Read queries
    # -------------------------------------------------------------------------

    audit_query_window_days: int = Field(
        default=30,
        description="Default look-back window for audit log queries without a start time.",
    )
    violation_query_window_days: int = Field(
        default=90,
        description="Default look-back window for violation queries without a start time.",
    )
    query_max_limit: int = Field(
        default=1000,
        description="Hard cap on rows returned by any read query.",
    )
    activity_window_days: int = Field(
        default=30,
        description="Default look-back window for per-actor activity summaries.",
    )

    model_config = SettingsConfigDict(env_prefix="CLONE_GOVERNANCE_")
