"""
FastAPI application entry point.

``create_app`` builds the storage handles and services once, from an explicit
Settings object, and wires them into the app. Handle construction fails fast:
a malformed endpoint or credential prevents the app from being created.

Run with:
    uvicorn blob_gateway.main:create_app --factory
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from blob_gateway import __version__
from blob_gateway.api.router import api_router
from blob_gateway.config import Settings, get_settings
from blob_gateway.middleware.metrics_middleware import MetricsMiddleware
from blob_gateway.storage.azure_client import close_handles, open_async_handle, open_sync_handle
from blob_gateway.storage.blob_service import BlobService
from blob_gateway.storage.upload_tracker import UploadTracker
from blob_gateway.utils.logging import configure_logging


def create_app(
    settings: Optional[Settings] = None,
    sync_client=None,
    async_client=None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Settings to use; read from the environment when omitted
        sync_client: Pre-built synchronous storage handle (tests)
        async_client: Pre-built asynchronous storage handle (tests)

    Raises:
        StorageConfigurationError: If the storage handles cannot be built
    """
    settings = settings or get_settings()

    configure_logging(
        'blob-gateway',
        settings.log_level,
        secrets=[settings.azure_client_secret.get_secret_value()],
    )

    sync_client = sync_client if sync_client is not None else open_sync_handle(settings)
    async_client = async_client if async_client is not None else open_async_handle(settings)
    tracker = UploadTracker(max_entries=settings.upload_tracker_max_entries)
    blob_service = BlobService(settings, sync_client, async_client, tracker)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Lifespan context manager for startup/shutdown events.
        - Shutdown: let background uploads finish, then close storage handles
        """
        yield
        await tracker.shutdown()
        await close_handles(sync_client, async_client)

    app = FastAPI(
        title="Azure Blob Gateway",
        description="REST API over an Azure Blob Storage account",
        version=__version__,
        lifespan=lifespan
    )

    app.state.settings = settings
    app.state.blob_service = blob_service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "X-Upload-Id"],
    )

    # Metrics middleware (must be after CORS to track all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "message": "Azure Blob Gateway",
            "version": __version__,
            "environment": settings.environment
        }

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(
            content=generate_latest(),
            media_type=CONTENT_TYPE_LATEST
        )

    return app
