"""
Azure Blob Storage client factory.

Builds the synchronous and asynchronous BlobServiceClient handles used by the
rest of the application. Both share the same endpoint, service principal
credentials and retry policy:

- Exponential backoff, bounded by attempt count and by the longest single delay
- Uploads above the block size are staged in blocks of that size

The retry loop itself, connection pooling and request signing all live inside
the Azure SDK; this module only binds configuration to it.
"""
import logging
from typing import Any, Dict
from urllib.parse import urlparse

from azure.identity import ClientSecretCredential
from azure.identity.aio import ClientSecretCredential as AsyncClientSecretCredential
from azure.storage.blob import BlobServiceClient, ExponentialRetry
from azure.storage.blob.aio import BlobServiceClient as AsyncBlobServiceClient
from azure.storage.blob.aio import ExponentialRetry as AsyncExponentialRetry

from blob_gateway.config import Settings
from blob_gateway.storage.errors import StorageConfigurationError

logger = logging.getLogger(__name__)


class _BoundedBackoff:
    """Caps the SDK's exponential backoff at ``max_backoff`` seconds."""

    def __init__(self, max_backoff: float, **kwargs):
        self.max_backoff = max_backoff
        super().__init__(**kwargs)

    def get_backoff_time(self, settings: Dict[str, Any]) -> float:
        return min(super().get_backoff_time(settings), self.max_backoff)


class BoundedExponentialRetry(_BoundedBackoff, ExponentialRetry):
    """Exponential retry for the synchronous pipeline."""


class AsyncBoundedExponentialRetry(_BoundedBackoff, AsyncExponentialRetry):
    """Exponential retry for the asynchronous pipeline."""


def _retry_kwargs(settings: Settings) -> Dict[str, Any]:
    return {
        "max_backoff": settings.retry_max_backoff,
        "initial_backoff": settings.retry_initial_backoff,
        "increment_base": settings.retry_increment_base,
        "retry_total": settings.retry_total,
    }


def _client_kwargs(settings: Settings) -> Dict[str, Any]:
    return {
        "max_block_size": settings.upload_block_size,
        "max_single_put_size": settings.upload_block_size,
    }


def _validate(settings: Settings) -> str:
    """Check endpoint and credential fields, returning the account URL."""
    missing = [
        name
        for name, value in (
            ("azure_tenant_id", settings.azure_tenant_id),
            ("azure_client_id", settings.azure_client_id),
            ("azure_client_secret", settings.azure_client_secret.get_secret_value()),
            ("azure_storage_id", settings.azure_storage_id),
        )
        if not value or not value.strip()
    ]
    if missing:
        raise StorageConfigurationError(f"Missing Azure settings: {', '.join(missing)}")

    account_url = settings.storage_endpoint
    parsed = urlparse(account_url)
    # Token credentials are only accepted over HTTPS
    if parsed.scheme != "https" or not parsed.netloc:
        raise StorageConfigurationError(f"Invalid storage endpoint: {account_url}")
    return account_url


def open_sync_handle(settings: Settings) -> BlobServiceClient:
    """
    Build the synchronous BlobServiceClient.

    Args:
        settings: Application settings

    Returns:
        Configured BlobServiceClient

    Raises:
        StorageConfigurationError: If the endpoint or credentials are malformed
    """
    account_url = _validate(settings)
    try:
        credential = ClientSecretCredential(
            tenant_id=settings.azure_tenant_id,
            client_id=settings.azure_client_id,
            client_secret=settings.azure_client_secret.get_secret_value(),
        )
        client = BlobServiceClient(
            account_url,
            credential=credential,
            retry_policy=BoundedExponentialRetry(**_retry_kwargs(settings)),
            **_client_kwargs(settings),
        )
    except (ValueError, TypeError) as e:
        raise StorageConfigurationError(f"Failed to build blob service client: {e}") from e

    logger.info(f"Blob service client initialized for account: {settings.azure_storage_id}")
    return client


def open_async_handle(settings: Settings) -> AsyncBlobServiceClient:
    """
    Build the asynchronous BlobServiceClient.

    Used for uploads and delegation key requests.
    """
    account_url = _validate(settings)
    try:
        credential = AsyncClientSecretCredential(
            tenant_id=settings.azure_tenant_id,
            client_id=settings.azure_client_id,
            client_secret=settings.azure_client_secret.get_secret_value(),
        )
        client = AsyncBlobServiceClient(
            account_url,
            credential=credential,
            retry_policy=AsyncBoundedExponentialRetry(**_retry_kwargs(settings)),
            **_client_kwargs(settings),
        )
    except (ValueError, TypeError) as e:
        raise StorageConfigurationError(f"Failed to build async blob service client: {e}") from e

    logger.info(f"Async blob service client initialized for account: {settings.azure_storage_id}")
    return client


async def close_handles(sync_handle, async_handle) -> None:
    """Close both handles and the async credential they were built with."""
    sync_handle.close()
    await async_handle.close()
    credential = getattr(async_handle, "credential", None)
    if isinstance(credential, AsyncClientSecretCredential):
        await credential.close()
