"""clone-governance-engine service entry point.

Initializes the FastAPI application with:
- Structured logging
- Database engine and session factory (policies, violations, audit and access logs)
- The wired GovernanceEngine on app.state.governance
- The maintenance scheduler (compliance scan + retention purge) when enabled
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from clone_governance_engine.api.router import router
from clone_governance_engine.container import GovernanceEngine
from clone_governance_engine.database import close_database, create_schema, get_engine, init_database
from clone_governance_engine.errors import ValidationError
from clone_governance_engine.observability import configure_logging, get_logger
from clone_governance_engine.settings import Settings

logger = get_logger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Service settings. Read from the environment if None.

    Returns:
        The configured FastAPI app.
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Initialize the database and engine on startup; stop jobs and close on shutdown."""
        configure_logging(settings.log_level, json_output=settings.log_json)

        logger.info("Initializing database", service=settings.service_name)
        session_factory = await init_database(
            settings.database_url,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
            echo=settings.db_echo,
        )
        if settings.auto_create_schema:
            await create_schema()

        governance = GovernanceEngine.build(settings, session_factory, engine=get_engine())
        app.state.governance = governance
        app.state.settings = settings

        if settings.scheduler_enabled:
            governance.scheduler.start()

        logger.info("Clone governance engine startup complete", scheduler_enabled=settings.scheduler_enabled)

        yield

        logger.info("Shutting down clone governance engine")
        await governance.scheduler.stop()
        await close_database()
        logger.info("Clone governance engine shutdown complete")

    app = FastAPI(title=settings.service_name, version="0.1.0", lifespan=lifespan)
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.include_router(router, prefix="/api/v1")

    @app.get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.service_name}

    return app


async def validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render ValidationError as a 422 structured error result."""
    field = getattr(exc, "field", None)
    message = getattr(exc, "message", str(exc))
    logger.info("Request rejected", path=request.url.path, field=field, message=message)
    return JSONResponse(status_code=422, content={"status": "ERROR", "message": message, "field": field})


app: FastAPI = create_app()


def run() -> None:
    """Console entry point: serve the application with uvicorn."""
    settings = Settings()
    uvicorn.run("clone_governance_engine.main:app", host=settings.host, port=settings.port)
