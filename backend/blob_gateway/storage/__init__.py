"""
Storage module for Azure Blob Storage.

The client factory binds endpoint, credentials and retry policy; the blob
service builds the listing, upload, download and delegated-link operations on
top of it.
"""
from blob_gateway.storage.azure_client import open_async_handle, open_sync_handle
from blob_gateway.storage.blob_service import BlobService, DelegatedLink, BlobListing, ListOutcome
from blob_gateway.storage.upload_tracker import UploadTracker, UploadHandle, UploadStatus

__all__ = [
    "open_sync_handle",
    "open_async_handle",
    "BlobService",
    "DelegatedLink",
    "BlobListing",
    "ListOutcome",
    "UploadTracker",
    "UploadHandle",
    "UploadStatus",
]
