"""
Event Analytics API Server

Entry point for the FastAPI application.
"""

from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from analytics import __version__
from analytics.api.v1 import router as api_v1_router
from analytics.core.config import Settings, get_settings
from analytics.core.database import async_session_factory, ping
from analytics.core.exceptions import AnalyticsError, CacheBackendError
from analytics.core.logging import configure_logging
from analytics.core.redis import close_redis
from analytics.services.container import AnalyticsServices, build_services

log = structlog.get_logger()


def error_response(code: str, message: str, status: int) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content={"error": {"code": code, "message": message, "status": status}},
    )


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[AnalyticsServices] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_format)

    app = FastAPI(
        title="Event Analytics",
        description="Cursor-paged event queries, cached aggregations and async query jobs.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.settings = settings
    app.state.services = services or build_services(settings, async_session_factory)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.exception_handler(AnalyticsError)
    async def analytics_error_handler(request: Request, exc: AnalyticsError):
        if exc.status >= 500:
            log.error("request.failed", path=request.url.path, code=exc.code, error=str(exc))
        return error_response(exc.code, str(exc) or exc.code, exc.status)

    # API routes
    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        """Readiness: the database must answer; a dead cache only degrades."""
        container: AnalyticsServices = app.state.services
        try:
            await ping(container.session_factory)
        except Exception as exc:
            log.warning("ready.database_unavailable", error=str(exc))
            return error_response("DATABASE_UNAVAILABLE", "Database is not reachable.", 503)

        cache_status = "ok"
        try:
            await container.cache.backend.ping()
        except CacheBackendError as exc:
            log.warning("ready.cache_unavailable", error=str(exc))
            cache_status = "unavailable"
        return {
            "status": "ready",
            "database": "ok",
            "cache": cache_status,
            "breaker": container.cache.breaker.state.value,
        }

    @app.on_event("startup")
    async def on_startup():
        log.info("Event Analytics starting", cache_backend=settings.cache_backend)
        if settings.scheduler_enabled:
            app.state.services.scheduler.start()

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("Event Analytics shutting down")
        await app.state.services.scheduler.stop()
        await close_redis()

    return app


app = create_app()
