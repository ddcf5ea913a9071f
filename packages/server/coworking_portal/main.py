"""
Coworking Portal API Server

Entry point for the FastAPI application.
"""

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from coworking_portal.api.v1 import router as api_v1_router
from coworking_portal.core.config import get_settings
from coworking_portal.core.logging_config import configure_logging
from coworking_portal.core.middleware import RequestContextMiddleware
from coworking_portal.core.storage import build_store
from coworking_portal.services.collections import build_collections
from coworking_portal.services.tasks import build_task_service

settings = get_settings()
log = structlog.get_logger()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging(settings.log_level, settings.log_format)

    app = FastAPI(
        title="Coworking Portal",
        description="Branch operations for coworking spaces: tasks, fines and recurring work.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # Middleware
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-User-Id", "X-User-Name"],
    )

    # Storage backend is chosen once, here, and shared by every accessor
    store = build_store(settings)
    app.state.task_service = build_task_service(settings, store)
    app.state.collections = build_collections(store)

    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        """Readiness check endpoint for startup probes."""
        return {"status": "ready", "storage": app.state.task_service.store.name}

    @app.on_event("startup")
    async def on_startup():
        log.info("portal.starting", storage=settings.storage_backend)

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("portal.shutting_down")

    return app


app = create_app()
