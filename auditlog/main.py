"""
FastAPI Application Entry Point

This is the main application module that sets up the FastAPI app,
configures middleware, and includes all routers.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from auditlog.config import Settings, get_settings
from auditlog.container import build_container
from auditlog.logging_config import configure_logging
from auditlog.routers import admin, auth, events, health

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events:
    - Startup: Connect storage, load runtime configuration, start the
      notification dispatcher and the retention sweeper
    - Shutdown: Stop background tasks, flush pending notifications and
      close database connections gracefully
    """
    # Startup
    logger.info("Starting Audit Log Service...")
    container = build_container(app.state.settings)
    app.state.container = container
    await container.start()
    logger.info("Audit Log Service started successfully")

    yield

    # Shutdown
    logger.info("Shutting down Audit Log Service...")
    await container.stop()
    logger.info("Audit Log Service stopped")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application for the given (or environment) settings."""
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="""
        # SecurePress Audit Log API

        Security event log for the SecurePress site-protection suite:

        - **Event Writer**: records events with client address and actor
        - **Query Engine**: filter by type, severity, text and date; paginated
        - **Retention**: daily deletion of events past the retention horizon
        - **Alerts**: email, webhook or Slack notifications above a severity threshold
        """,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan
    )
    app.state.settings = settings

    # ========================================================================
    # Middleware
    # ========================================================================

    # CORS (configure appropriately for production)
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def add_request_timing(request: Request, call_next):
        """Add request timing header for monitoring."""
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        return response

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all incoming requests."""
        logger.debug(f"{request.method} {request.url.path}")
        response = await call_next(request)
        return response

    # ========================================================================
    # Exception Handlers
    # ========================================================================

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Global exception handler.

        Returns generic error responses to prevent information leakage.
        Detailed errors are logged internally.
        """
        logger.exception(f"Unhandled exception: {exc}")

        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"}
        )

    # ========================================================================
    # Routers
    # ========================================================================

    # Event write, query and purge
    app.include_router(events.router)

    # Operator login
    app.include_router(auth.router)

    # Runtime settings, retention, stats
    app.include_router(admin.router)

    # Health check and monitoring
    app.include_router(health.router)

    @app.get("/", tags=["root"])
    async def root():
        """
        Root endpoint.

        Returns basic service information.
        """
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "status": "running"
        }

    return app


app = create_app()


# ============================================================================
# Development Server
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "auditlog.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.workers
    )
