"""
Pydantic schemas for API request/response validation.
"""
from blob_gateway.schemas.blob import (
    BlobDescriptor,
    BlobPageResponse,
    SasResponse,
    UploadStatusResponse,
)

__all__ = [
    "BlobDescriptor",
    "BlobPageResponse",
    "SasResponse",
    "UploadStatusResponse",
]
