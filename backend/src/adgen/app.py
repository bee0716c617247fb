"""FastAPI application factory."""

from contextlib import asynccontextmanager
from pathlib import Path

import httpx
import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text

from adgen.api.routes import jobs, n8n
from adgen.container import build_services

# Import timezone enforcement (sets TZ=UTC)
from adgen.core import timezone  # noqa: F401
from adgen.core.config import Settings, configure_logging
from adgen.core.database import dispose_db_session, setup_db_session
from adgen.uow import create_uow_factory
from adgen.workers.recovery import recover_orphaned_jobs

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: settings, logging, database session factory, shared HTTP
      client, service wiring, recovery of orphaned jobs
    - Shutdown: drain or cancel in-flight generation tasks, close the HTTP
      client and the connection pool
    """
    # Load settings
    settings = Settings()  # type: ignore[call-arg]

    # Configure logging
    configure_logging(settings)

    # Setup database session factory
    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    # One client for the provider and the workflow engine
    http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    services = build_services(settings, uow_factory, http_client)

    # Store in app.state for access in routes
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.services = services

    # Settle jobs whose in-process units died with the previous process
    if settings.recover_orphaned_jobs:
        try:
            result = await recover_orphaned_jobs(
                services.job_store, stale_after_seconds=settings.orphan_stale_after_seconds
            )
            if result.recovered_job_ids:
                logger.info(
                    "startup.recovery_completed",
                    recovered=len(result.recovered_job_ids),
                    abandoned_units=result.abandoned_units,
                )
            else:
                logger.debug("startup.recovery_no_orphans")
        except Exception as e:
            # Log error but don't prevent startup
            logger.error(
                "startup.recovery_failed",
                error=str(e),
                error_type=type(e).__name__,
            )

    logger.info(
        "application.startup",
        db_url=settings.database_url.split("@")[-1],
        submission_mode=settings.submission_mode,
    )

    yield

    logger.info("application.shutdown", in_flight=services.supervisor.active_count)
    await services.supervisor.shutdown()
    await http_client.aclose()
    await dispose_db_session(session_factory)


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="AdGen Backend API",
        description="Campaign media generation jobs",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register API routers
    app.include_router(jobs.router)
    app.include_router(n8n.router)

    # Generated and uploaded assets
    Path(settings.media_root).mkdir(parents=True, exist_ok=True)
    app.mount(
        settings.media_url_prefix,
        StaticFiles(directory=settings.media_root),
        name="media",
    )

    # Health check endpoint with database validation
    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy"} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            logger.debug("health_check.success")
            return {"status": "healthy"}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app


# Create app instance for uvicorn
app = create_app()
