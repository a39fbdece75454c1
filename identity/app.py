"""
Identity Backend - FastAPI Application Entrypoint

Thin HTTP adapter over the identity runtime:
- CORS and security middleware
- Authentication and registration routes
- Runtime lifecycle (database, background drivers)
- IdentityError to JSON error mapping

Run locally:
    uvicorn identity.app:app --reload
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from identity.auth.routes import router as auth_router
from identity.config import Settings, settings as default_settings
from identity.errors import IdentityError
from identity.logging import configure_logging, get_logger
from identity.middleware import SecurityMiddleware
from identity.registration.routes import router as registration_router
from identity.runtime import Runtime

logger = get_logger(__name__)

VERSION = "0.1.0"


async def identity_error_handler(request: Request, exc: IdentityError) -> JSONResponse:
    """Map core errors to {detail, error_code} with the error's status."""
    logger.info(
        "request_rejected",
        path=request.url.path,
        error_code=exc.error_code,
        kind=exc.kind.value,
        status_code=exc.status_code,
    )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.message,
            "error_code": exc.error_code,
            "request_id": getattr(request.state, "request_id", None),
        },
        headers=headers,
    )


def create_app(settings: Optional[Settings] = None, runtime: Optional[Runtime] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Configuration (defaults to environment settings)
        runtime: Pre-built runtime, e.g. bound to a test database
    """
    settings = settings or (runtime.settings if runtime else default_settings)
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup:
            - Build the runtime (creates tables) unless one was supplied
            - Start background drivers
        Shutdown:
            - Stop drivers and dispose the engine
        """
        app.state.runtime = runtime or Runtime(settings)
        await app.state.runtime.start()
        logger.info("app_started", name=settings.APP_NAME, version=VERSION)

        yield

        await app.state.runtime.stop()
        logger.info("app_stopped", name=settings.APP_NAME)

    app = FastAPI(
        title=settings.APP_NAME,
        description="Identity and session lifecycle service",
        version=VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "PUT", "PATCH"],
        allow_headers=["Authorization", "Content-Type", "X-Session-ID"],
    )
    app.add_middleware(SecurityMiddleware)
    app.add_exception_handler(IdentityError, identity_error_handler)

    app.include_router(auth_router, prefix="/api/v1")
    app.include_router(registration_router, prefix="/api/v1")

    @app.get("/health")
    async def health_check():
        """Health check with background driver states."""
        state = app.state.runtime
        return {
            "status": "healthy",
            "version": VERSION,
            "background": {
                "availability_sweep": state.availability.sweeping,
                "session_reaper": state.reaper.running,
                "daily_cleanup": state.cleanup_driver.running,
            },
        }

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "name": settings.APP_NAME,
            "version": VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    return app


app = create_app()
