"""
Health check endpoint.
Verifies the storage account and default container are reachable.
"""
from azure.core.exceptions import AzureError
from fastapi import APIRouter, Depends, HTTPException

from blob_gateway.api.dependencies import get_app_settings, get_blob_service
from blob_gateway.config import Settings
from blob_gateway.storage.blob_service import BlobService

router = APIRouter()


@router.get("")
def health_check(
    settings: Settings = Depends(get_app_settings),
    blob_service: BlobService = Depends(get_blob_service),
):
    """
    Health check endpoint.
    Returns status of the storage connection.
    """
    health_status = {
        "status": "healthy",
        "storage": "unknown",
    }

    try:
        if blob_service.container_exists(settings.azure_storage_container):
            health_status["storage"] = "connected"
        else:
            health_status["storage"] = "container missing"
            health_status["status"] = "unhealthy"
    except AzureError as e:
        health_status["storage"] = f"error: {type(e).__name__}"
        health_status["status"] = "unhealthy"

    if health_status["status"] == "unhealthy":
        raise HTTPException(status_code=503, detail=health_status)

    return health_status
