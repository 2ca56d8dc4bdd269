"""
Blob-related request/response schemas.
"""
import enum
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class UploadStatus(str, enum.Enum):
    """State of a background upload."""
    PENDING = "pending"        # Transfer scheduled or in progress
    SUCCEEDED = "succeeded"    # Storage acknowledged every block
    FAILED = "failed"          # Transfer raised; see error


class CamelModel(BaseModel):
    """Base schema serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BlobDescriptor(CamelModel):
    """Read-only projection of a stored blob's metadata."""
    name: str = Field(..., description="Blob name, including any virtual directories")
    size: Optional[int] = Field(None, description="Size in bytes")
    last_modified: Optional[datetime] = Field(None, description="Last modification time")
    etag: Optional[str] = Field(None, description="Entity tag reported by the service")
    content_type: Optional[str] = Field(None, description="Stored content type")

    @classmethod
    def from_blob_properties(cls, blob) -> "BlobDescriptor":
        content_settings = getattr(blob, "content_settings", None)
        return cls(
            name=blob.name,
            size=blob.size,
            last_modified=blob.last_modified,
            etag=blob.etag,
            content_type=content_settings.content_type if content_settings else None,
        )


class BlobPageResponse(CamelModel):
    """A single page of a blob listing."""
    items: List[BlobDescriptor] = Field(default_factory=list)
    continuation_token: Optional[str] = Field(
        None, description="Pass back to fetch the next page; absent on the last page"
    )


class SasResponse(CamelModel):
    """Response schema for delegated access link generation."""
    file_name: Optional[str] = None
    sas_url: Optional[str] = None
    message: Optional[str] = None
    expires_on: Optional[datetime] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "fileName": "report.csv",
                "sasUrl": "https://account.blob.core.windows.net/reports/report.csv?sv=...&sig=...",
                "message": "Generated",
                "expiresOn": "2026-10-21T12:00:00Z",
            }
        }
    )


class UploadStatusResponse(CamelModel):
    """Status of a background upload."""
    upload_id: str
    container: str
    blob_name: str
    status: UploadStatus
    size: int
    bytes_transferred: int
    error: Optional[str] = None
    created_at: datetime
    finished_at: Optional[datetime] = None

    @classmethod
    def from_handle(cls, handle) -> "UploadStatusResponse":
        return cls(
            upload_id=handle.upload_id,
            container=handle.container,
            blob_name=handle.blob_name,
            status=handle.status,
            size=handle.size,
            bytes_transferred=handle.bytes_transferred,
            error=handle.error,
            created_at=handle.created_at,
            finished_at=handle.finished_at,
        )
