"""
FastAPI dependencies for the storage components.

The components are built once by ``create_app`` and stored on ``app.state``;
these dependencies hand them to route functions.
"""
from fastapi import Request

from blob_gateway.config import Settings
from blob_gateway.storage.blob_service import BlobService


def get_app_settings(request: Request) -> Settings:
    """Settings the application was built with."""
    return request.app.state.settings


def get_blob_service(request: Request) -> BlobService:
    """
    FastAPI dependency returning the shared BlobService.

    Usage: blob_service: BlobService = Depends(get_blob_service)
    """
    return request.app.state.blob_service
