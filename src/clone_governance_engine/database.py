"""Database engine, session factory, and shared ORM base.

Key exports:
- Base: declarative base for all governance tables
- UTCDateTime: timezone-aware UTC timestamp column type
- init_database(...): call at startup to create the engine and session factory
- close_database(): call at shutdown to dispose the engine
- create_schema(...): create all tables (dev / tests; production uses Alembic)

Services never share a request-scoped session. Each service call opens its
own unit of work from the session factory so that a recording failure can be
rolled back and swallowed without poisoning the caller's transaction.
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import DateTime
from sqlalchemy.engine import Dialect
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from clone_governance_engine.observability import get_logger

logger = get_logger(__name__)

# Module-level engine, initialized by init_database()
_engine: AsyncEngine | None = None


class Base(DeclarativeBase):
    """Declarative base for all clone governance tables."""


class UTCDateTime(TypeDecorator[datetime]):
    """Timestamp column that always round-trips as an aware UTC datetime.

    Naive values are taken to be UTC on the way in. SQLite drops tzinfo on
    storage, so results are re-tagged with UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


def build_engine(
    database_url: str,
    pool_size: int = 5,
    max_overflow: int = 2,
    pool_timeout: int = 30,
    echo: bool = False,
) -> AsyncEngine:
    """Create an async engine, applying pool options only where they are supported.

    Args:
        database_url: SQLAlchemy async URL.
        pool_size: Connection pool size (non-SQLite only).
        max_overflow: Max overflow connections (non-SQLite only).
        pool_timeout: Seconds to wait for a pooled connection (non-SQLite only).
        echo: Echo SQL statements.

    Returns:
        The configured AsyncEngine.
    """
    kwargs: dict[str, Any] = {"echo": echo}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"timeout": 30}
    else:
        kwargs.update(
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_pre_ping=True,
        )
    return create_async_engine(database_url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the session factory used by every service unit of work."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_database(
    database_url: str,
    pool_size: int = 5,
    max_overflow: int = 2,
    pool_timeout: int = 30,
    echo: bool = False,
) -> async_sessionmaker[AsyncSession]:
    """Initialize the process-wide engine and session factory.

    Must be called once at application startup before any service is used.

    Returns:
        The initialized session factory.
    """
    global _engine  # noqa: PLW0603

    logger.info("Initializing database engine", pool_size=pool_size, max_overflow=max_overflow)
    _engine = build_engine(database_url, pool_size, max_overflow, pool_timeout, echo)
    logger.info("Database engine initialized", dialect=_engine.dialect.name)
    return build_session_factory(_engine)


async def create_schema(engine: AsyncEngine | None = None) -> None:
    """Create all governance tables if they do not exist.

    Args:
        engine: Engine to use. Defaults to the engine from init_database().
    """
    # Import for side effects: registers every mapped table on Base.metadata
    from clone_governance_engine.core import models  # noqa: F401

    target = engine or _engine
    if target is None:
        raise RuntimeError("Database has not been initialized. Call init_database() first.")
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_database() -> None:
    """Dispose the engine. Must be called at application shutdown."""
    global _engine  # noqa: PLW0603

    if _engine is not None:
        logger.info("Disposing database engine")
        await _engine.dispose()
        _engine = None


def get_engine() -> AsyncEngine:
    """Return the process-wide engine.

    Raises:
        RuntimeError: If init_database() has not been called yet.
    """
    if _engine is None:
        raise RuntimeError("Database has not been initialized. Call init_database() first.")
    return _engine

