"""
API router aggregator.
Includes all route modules.
"""
from fastapi import APIRouter
from blob_gateway.api import blobs, health

api_router = APIRouter()

# Include route modules
api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(blobs.router, tags=["blobs"])
