"""FastAPI application entry point."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from transit_feed.config import get_settings
from transit_feed.database import check_database_connection, close_database
from transit_feed.logging import (
    bind_log_context,
    clear_log_context,
    get_logger,
    setup_logging,
)
from transit_feed.routers.admin import router as admin_router
from transit_feed.routers.feeds import router as feeds_router
from transit_feed.services.feed.worker import FeedWorker

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler: owns the feed worker."""
    setup_logging()
    settings = get_settings()
    logger.info("Starting Transit Feed Generator", version=settings.app_version)

    worker = FeedWorker(settings)
    app.state.worker = worker
    if settings.feed_auto_start:
        await worker.start()

    yield

    if worker.is_running:
        await worker.stop()
    app.state.worker = None

    logger.info("Shutting down Transit Feed Generator")
    await close_database()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="GTFS-Realtime trip update feeds built from rail and bus/tram realtime sources",
        lifespan=lifespan,
        docs_url="/docs" if settings.environment != "production" else None,
        redoc_url="/redoc" if settings.environment != "production" else None,
    )
    app.state.worker = None

    # Request ID middleware
    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next: Any) -> Any:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        bind_log_context(request_id=request_id, path=request.url.path)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        clear_log_context()
        return response

    app.include_router(feeds_router)
    app.include_router(admin_router)

    @app.get("/health", tags=["meta"])
    async def health_check(request: Request) -> dict[str, Any]:
        """Health check endpoint returning application status."""
        settings = get_settings()
        missing_env = settings.missing_required_env()
        db_healthy = await check_database_connection()

        worker: FeedWorker | None = getattr(request.app.state, "worker", None)
        worker_status = await worker.get_status() if worker is not None else None
        worker_healthy = worker_status is not None and (
            worker_status["running"] or not settings.feed_auto_start
        )

        status = (
            "unhealthy"
            if missing_env
            else "healthy"
            if (db_healthy and worker_healthy)
            else "degraded"
        )

        issues: list[str] = []
        if missing_env:
            issues.append("Missing required environment variables: " + ", ".join(missing_env))
        if worker_status is None:
            issues.append("Feed worker is not initialised")
        elif settings.feed_auto_start and not worker_status["running"]:
            issues.append("Feed worker is not running")
        if not db_healthy:
            issues.append("Database is not reachable")

        return {
            "service": settings.app_name,
            "status": status,
            "version": settings.app_version,
            "environment": settings.environment,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": {
                "database": db_healthy,
                "feedWorker": worker_status,
            },
            "issues": issues,
        }

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled exception", exc_info=exc, path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            },
        )

    return app


app = create_app()
