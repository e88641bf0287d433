"""
FastAPI Application Entry Point

This module creates and configures the FastAPI application.

Key Concepts:
=============

1. Application Factory Pattern
   - create_app() returns a configured app; tests build their own

2. Lifespan Events
   - startup/shutdown logging; the connection registry lives in-process

3. Middleware Stack
   - slowapi rate limiting
   - CORS

4. Exception Handlers
   - ReadingGroupError subclasses → their HTTP status with {"detail": ...}
   - Database errors → 500 without internals
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from readalong.config import get_settings
from readalong.routers import reading_groups_router, websocket_router
from readalong.services.exceptions import ReadingGroupError
from readalong.services.rate_limiter import limiter, rate_limit_exceeded_handler
from readalong.services.websocket import get_connection_manager

# =============================================================================
# Logging Configuration
# =============================================================================
settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# =============================================================================
# Lifespan Events
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan context manager.

    Code before yield runs on startup, code after yield on shutdown.
    """
    logger.info(f"Starting {settings.app_name}...")
    logger.info(f"Debug mode: {settings.debug}")
    logger.info(f"API version: {settings.api_version}")
    logger.info(f"WebSocket authentication grace window: {settings.ws_auth_timeout_seconds}s")

    yield

    ws_stats = get_connection_manager().get_stats()
    logger.info(
        f"Shutting down {settings.app_name} "
        f"({ws_stats['total_connections']} WebSocket connections open)"
    )


# =============================================================================
# Application Factory
# =============================================================================
def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title=settings.app_name,
        description="""
## ReadAlong API

Reading groups with live progress updates.

### Features
- **Reading groups**: create, join, leave, admin roles and ownership transfer
- **Progress**: members report the page they reached; everyone online sees it
- **Chat**: a per-group message log with system entries for membership changes

### Authentication
Bearer JWT on every endpoint. The WebSocket channel at `/ws` accepts the
token as `?token=` or through an `authenticate` message.
        """,
        version=settings.api_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # -------------------------------------------------------------------------
    # Rate Limiting
    # -------------------------------------------------------------------------
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # -------------------------------------------------------------------------
    # CORS Middleware
    # -------------------------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -------------------------------------------------------------------------
    # Exception Handlers
    # -------------------------------------------------------------------------
    @app.exception_handler(ReadingGroupError)
    async def reading_group_exception_handler(
        request: Request,
        exc: ReadingGroupError,
    ) -> JSONResponse:
        """Map domain errors to their HTTP status."""
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message},
            headers=headers,
        )

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_exception_handler(
        request: Request,
        exc: SQLAlchemyError,
    ) -> JSONResponse:
        """
        Handle SQLAlchemy database errors.

        Logs the actual error while hiding details from users.
        """
        logger.error(f"Database error: {exc}")
        return JSONResponse(
            status_code=500,
            content={"detail": "A database error occurred. Please try again later."},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """Catch-all handler. Details are only exposed in debug mode."""
        logger.error(f"Unhandled error: {exc}", exc_info=True)

        if settings.debug:
            return JSONResponse(status_code=500, content={"detail": str(exc)})

        return JSONResponse(
            status_code=500,
            content={"detail": "An internal error occurred."},
        )

    # -------------------------------------------------------------------------
    # Register Routers
    # -------------------------------------------------------------------------
    api_prefix = f"/api/{settings.api_version}"

    app.include_router(reading_groups_router, prefix=api_prefix)
    app.include_router(websocket_router)

    # -------------------------------------------------------------------------
    # Health Check Endpoint
    # -------------------------------------------------------------------------
    @app.get(
        "/health",
        tags=["Health"],
        summary="Health check",
        description="Check if the API is running and healthy.",
    )
    async def health_check() -> dict:
        """
        Health check endpoint for load balancers and monitoring.

        Includes rate limiting settings and live WebSocket counts.
        """
        ws_stats = get_connection_manager().get_stats()

        return {
            "status": "healthy",
            "app": settings.app_name,
            "version": settings.api_version,
            "rate_limiting": {
                "enabled": settings.rate_limit_enabled,
                "default_limit": settings.rate_limit_default,
                "write_limit": settings.rate_limit_write,
            },
            "websocket": {
                "enabled": True,
                "endpoint": "/ws",
                "connections": ws_stats["total_connections"],
                "authenticated_users": ws_stats["authenticated_users"],
                "rooms": len(ws_stats["rooms"]),
            },
        }

    @app.get(
        "/",
        tags=["Root"],
        summary="API root",
        description="Welcome message and API information.",
    )
    async def root() -> dict:
        """Root endpoint with API information."""
        return {
            "message": f"Welcome to {settings.app_name}",
            "version": settings.api_version,
            "docs": "/docs",
            "health": "/health",
            "websocket": "/ws",
        }

    return app


# =============================================================================
# Application Instance
# =============================================================================
# This is what uvicorn imports: uvicorn readalong.main:app

app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "readalong.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
