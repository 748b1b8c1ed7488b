"""
FastAPI application entry point for the Minno server.

This module sets up the FastAPI application with CORS, request logging,
error handlers, health endpoints, and routes for the Slack webhooks and the
OAuth installation flows.
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from minno_server import __version__
from minno_server.config import Settings
from minno_server.context import AppContext, build_context, get_context
from minno_server.database import check_database_health
from minno_server.errors import MinnoError
from minno_server.modules.auth.routes import oauth_router
from minno_server.modules.slack_gateway.handlers import slack_router
from minno_server.utils.logging import get_logger, log_request, setup_logging

logger = get_logger("main")

SERVICE_NAME = "minno-server"

health_router = APIRouter()


# Health check endpoints
@health_router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@health_router.get("/health/detailed")
async def detailed_health_check(context: AppContext = Depends(get_context)):
    """Detailed health check with service dependencies."""
    database_ok = await check_database_health(context.session_maker)

    return JSONResponse(
        status_code=200 if database_ok else 503,
        content={
            "status": "ok" if database_ok else "degraded",
            "service": SERVICE_NAME,
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "dependencies": {
                "database": "healthy" if database_ok else "unreachable",
            },
            "dispatcher": context.dispatcher.stats(),
        },
    )


@health_router.get("/")
async def root():
    return {
        "service": SERVICE_NAME,
        "version": __version__,
        "endpoints": {
            "health": "/health",
            "slack_events": "/slack/events",
            "slack_interactive": "/slack/interactive",
            "oauth_install": "/oauth/{provider}/install",
            "oauth_callback": "/oauth/{provider}/callback",
        },
    }


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to run with; read from the environment when omitted

    Raises:
        ConfigError: If required configuration is missing in production
    """
    settings = settings or Settings()
    settings.validate_for_startup()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup and shutdown tasks."""
        # Startup
        setup_logging(settings.log_level, json_logs=settings.is_production)
        logger.info("Starting Minno server", environment=settings.environment)

        context = build_context(settings)
        await context.start()
        app.state.context = context

        yield

        # Shutdown
        logger.info("Shutting down Minno server")
        await context.close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="Minno Server",
        description="Slack assistant backend with thread sessions and Notion integration",
        version=__version__,
        lifespan=lifespan,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_logging(request: Request, call_next):
        started = time.monotonic()
        response = await call_next(request)
        log_request(
            request.method,
            request.url.path,
            response.status_code,
            time.monotonic() - started,
            user_agent=request.headers.get("user-agent"),
            client=request.client.host if request.client else None,
        )
        return response

    @app.exception_handler(MinnoError)
    async def minno_error_handler(request: Request, exc: MinnoError):
        if exc.status_code >= 500:
            logger.error("Request failed", path=request.url.path, error=exc.error, message=exc.message)
        else:
            logger.warning("Request rejected", path=request.url.path, error=exc.error, message=exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler for unhandled errors."""
        logger.error("Unhandled exception", path=request.url.path, error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_error",
                "message": "Internal server error" if settings.is_production else str(exc),
            },
        )

    # Include routers
    app.include_router(health_router, tags=["health"])
    app.include_router(slack_router, prefix="/slack", tags=["slack"])
    app.include_router(oauth_router, prefix="/oauth", tags=["oauth"])

    app.state.settings = settings
    return app


if __name__ == "__main__":
    import uvicorn

    runtime_settings = Settings()
    uvicorn.run(
        "minno_server.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=runtime_settings.port,
        reload=not runtime_settings.is_production,
        log_level=runtime_settings.log_level.lower(),
    )
