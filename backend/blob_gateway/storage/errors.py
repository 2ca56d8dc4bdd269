"""
Error taxonomy for storage operations.

The API layer maps these to HTTP status codes; nothing here carries
credentials or signed URLs in its message.
"""


class StorageGatewayError(Exception):
    """Base class for storage gateway failures."""


class StorageConfigurationError(StorageGatewayError):
    """Endpoint or credentials are unusable. Fatal at startup."""


class InvalidBlobRequestError(StorageGatewayError, ValueError):
    """Request rejected before any network call (empty name, null payload)."""


class BlobNotFoundError(StorageGatewayError):
    """The requested blob does not exist."""

    def __init__(self, container: str, blob_name: str):
        self.container = container
        self.blob_name = blob_name
        super().__init__(f"Blob '{blob_name}' not found in container '{container}'")


class StorageQueryError(StorageGatewayError):
    """The provider failed while listing blobs."""


class DelegationKeyError(StorageGatewayError):
    """The storage service did not issue a user delegation key."""


class LinkSigningError(StorageGatewayError):
    """Signing the delegated access grant failed."""
