"""FastAPI application entry point and lifecycle management."""

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from photo_entitlements.logging_config import configure_logging, get_logger
from photo_entitlements.middleware import ContextMiddleware, RequestLoggingMiddleware

VERSION = "0.1.0"

# Initialize logger
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager.

    Opens the entitlement store on startup and releases it on shutdown.
    """
    from photo_entitlements.config import get_config
    from photo_entitlements.repositories.entitlement_store import (
        get_entitlement_store,
        reset_entitlement_store,
    )

    logger.info("service_starting", version=VERSION)

    try:
        config = get_config()
        store = get_entitlement_store()
        logger.info(
            "service_started",
            status="ready",
            store_backend=store.backend_name,
            assets_root=str(config.assets_root),
            signature_required=bool(config.notifications.signing_secret),
        )
        yield
    finally:
        logger.info("service_shutting_down")
        reset_entitlement_store()
        logger.info("service_stopped")


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    # Configure logging
    log_level = os.getenv("LOG_LEVEL", "INFO")
    json_format = os.getenv("LOG_FORMAT", "json").lower() == "json"
    configure_logging(log_level=log_level, json_format=json_format)

    app = FastAPI(
        title="Photo Entitlements",
        description="Purchase entitlements and one-time download fulfillment for the photo store",
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Download links are opened from the storefront origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "Content-Length", "X-Request-ID"],
    )

    include_request_details = os.getenv("LOG_REQUEST_DETAILS", "true").lower() == "true"
    app.add_middleware(RequestLoggingMiddleware, include_request_details=include_request_details)
    app.add_middleware(ContextMiddleware)

    # Register routers
    from photo_entitlements.api.downloads import router as downloads_router
    from photo_entitlements.api.webhook import router as webhook_router

    app.include_router(webhook_router)
    app.include_router(downloads_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Liveness endpoint."""
        logger.debug("root_endpoint_called")
        return {
            "service": "photo-entitlements",
            "status": "running",
            "version": VERSION,
        }

    @app.get("/health")
    async def health() -> Any:
        """Detailed health check, including entitlement store reachability."""
        from starlette.concurrency import run_in_threadpool

        from photo_entitlements.repositories.entitlement_store import (
            EntitlementStoreError,
            get_entitlement_store,
        )

        store = get_entitlement_store()
        try:
            records = await run_in_threadpool(store.count)
        except EntitlementStoreError as e:
            logger.error("health_store_unavailable", error=str(e))
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "store": store.backend_name, "error": str(e)},
            )

        return {
            "status": "healthy",
            "store": store.backend_name,
            "records": records,
        }

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            },
        )

    logger.info("app_created", endpoints=len(app.routes))
    return app


# Create app instance
app = create_app()
