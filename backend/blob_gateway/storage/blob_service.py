"""
Blob operations service.

Exposes the four storage operations the API needs, built on the handles from
``azure_client``:

- List blobs by prefix (lazy pages, or drained into one listing)
- Upload bytes in the background, chunked with bounded concurrency
- Stream a blob back to a caller
- Generate a read-only delegated access (SAS) link

Pagination, retries, block staging and SAS signing are provider features;
this service configures and sequences them.
"""
import enum
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import BinaryIO, Iterator, List, Optional
from urllib.parse import quote

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.storage.blob import BlobSasPermissions, generate_blob_sas

from blob_gateway.config import Settings
from blob_gateway.schemas.blob import BlobDescriptor
from blob_gateway.storage.errors import (
    BlobNotFoundError,
    DelegationKeyError,
    InvalidBlobRequestError,
    LinkSigningError,
    StorageQueryError,
)
from blob_gateway.storage.upload_tracker import ProgressHook, UploadHandle, UploadTracker
from blob_gateway.utils.logging import log_event, log_storage_failure
from blob_gateway.utils.metrics import storage_operation_duration_seconds, storage_operations_total

logger = logging.getLogger(__name__)


class ListOutcome(str, enum.Enum):
    """Distinguishes an empty listing from a failed one."""
    MATCHED = "matched"
    NO_MATCHES = "no_matches"
    FAILED = "failed"


@dataclass
class BlobPage:
    """One page of a listing and the token for the next one."""
    items: List[BlobDescriptor]
    continuation_token: Optional[str] = None


@dataclass
class BlobListing:
    """Complete listing result. Never partial: on failure items is empty."""
    items: List[BlobDescriptor] = field(default_factory=list)
    outcome: ListOutcome = ListOutcome.NO_MATCHES
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.outcome is ListOutcome.FAILED


@dataclass
class DelegatedLink:
    """A signed, read-only URL valid until the delegation key expires."""
    blob_name: str
    url: str
    expires_on: datetime
    message: str = "Generated"

    def __repr__(self) -> str:
        # The URL is a bearer credential
        return f"DelegatedLink(blob_name={self.blob_name!r}, expires_on={self.expires_on.isoformat()})"

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_on


class BlobDownload:
    """An opened blob download whose first range has already been fetched."""

    def __init__(self, blob_name: str, downloader):
        self.blob_name = blob_name
        self._downloader = downloader

    @property
    def size(self) -> Optional[int]:
        return getattr(self._downloader, "size", None)

    def chunks(self) -> Iterator[bytes]:
        return self._downloader.chunks()

    def readinto(self, stream: BinaryIO) -> int:
        return self._downloader.readinto(stream)


def _require(value: Optional[str], what: str) -> str:
    if value is None or not value.strip():
        raise InvalidBlobRequestError(f"{what} must not be empty")
    return value


class BlobService:
    """
    Service for blob storage operations.

    Responsibilities:
    - Validate requests before any network call
    - Page through listings
    - Schedule and track background uploads
    - Open downloads
    - Issue delegation keys and sign access links
    """

    def __init__(self, settings: Settings, sync_client, async_client, tracker: UploadTracker):
        self._settings = settings
        self._sync_client = sync_client
        self._async_client = async_client
        self._tracker = tracker

    @property
    def tracker(self) -> UploadTracker:
        return self._tracker

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def iter_blob_pages(
        self,
        container: str,
        prefix: Optional[str],
        continuation_token: Optional[str] = None,
    ) -> Iterator[BlobPage]:
        """
        Lazily yield pages of blobs whose names start with ``prefix``.

        Restartable: pass the token of the last consumed page to resume after it.
        Iteration ends when the service returns no continuation token.

        Raises:
            StorageQueryError: If the service fails while fetching a page
        """
        _require(container, "Container name")
        container_client = self._sync_client.get_container_client(container)
        pager = container_client.list_blobs(
            name_starts_with=prefix or None,
            results_per_page=self._settings.list_page_size,
            timeout=self._settings.list_timeout,
        )
        pages = pager.by_page(continuation_token=continuation_token)
        try:
            for page in pages:
                items = [BlobDescriptor.from_blob_properties(blob) for blob in page]
                yield BlobPage(items=items, continuation_token=pages.continuation_token or None)
        except AzureError as e:
            raise StorageQueryError(f"Failed to list blobs with prefix '{prefix}': {e}") from e

    def list_by_prefix(self, container: str, prefix: Optional[str]) -> BlobListing:
        """
        List every blob whose name starts with ``prefix``, in arrival order.

        On provider failure the listing is empty with outcome FAILED, never a
        partial list.
        """
        start_time = time.time()
        items: List[BlobDescriptor] = []
        try:
            for page in self.iter_blob_pages(container, prefix):
                items.extend(page.items)
        except StorageQueryError as e:
            storage_operations_total.labels(operation="list", status="error").inc()
            log_storage_failure(
                logger,
                operation="list",
                error=str(e),
                container=container,
                prefix=prefix,
                duration_ms=(time.time() - start_time) * 1000,
            )
            return BlobListing(outcome=ListOutcome.FAILED, error=str(e))
        finally:
            storage_operation_duration_seconds.labels(operation="list").observe(time.time() - start_time)

        storage_operations_total.labels(operation="list", status="success").inc()
        outcome = ListOutcome.MATCHED if items else ListOutcome.NO_MATCHES
        log_event(
            logger,
            event="blobs_listed",
            message=f"Listed {len(items)} blob(s) with prefix: {prefix}",
            container=container,
            prefix=prefix,
            count=len(items),
        )
        return BlobListing(items=items, outcome=outcome)

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def upload(self, container: str, blob_name: Optional[str], data: Optional[bytes]) -> UploadHandle:
        """
        Start a background upload, overwriting any blob with the same name.

        Must be called from a running event loop. Returns immediately; use
        ``await handle.wait()`` or the tracker to learn the outcome.

        Raises:
            InvalidBlobRequestError: Empty container/blob name or null payload
        """
        _require(container, "Container name")
        _require(blob_name, "Blob name")
        if data is None:
            raise InvalidBlobRequestError("Upload payload must not be null")

        blob_client = self._async_client.get_blob_client(container=container, blob=blob_name)

        async def transfer(progress_hook: ProgressHook):
            return await blob_client.upload_blob(
                data,
                length=len(data),
                overwrite=True,
                max_concurrency=self._settings.upload_max_concurrency,
                progress_hook=progress_hook,
            )

        return self._tracker.submit(container, blob_name, len(data), transfer)

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    def open_download(self, container: str, blob_name: Optional[str]) -> BlobDownload:
        """
        Open a streaming download.

        The first range is fetched here, so a missing blob fails before any
        bytes are handed to the caller.

        Raises:
            BlobNotFoundError: If the blob does not exist
        """
        _require(container, "Container name")
        _require(blob_name, "Blob name")
        blob_client = self._sync_client.get_blob_client(container=container, blob=blob_name)
        try:
            downloader = blob_client.download_blob(retry_total=self._settings.download_max_retries)
        except ResourceNotFoundError as e:
            storage_operations_total.labels(operation="download", status="not_found").inc()
            raise BlobNotFoundError(container, blob_name) from e
        storage_operations_total.labels(operation="download", status="opened").inc()
        return BlobDownload(blob_name, downloader)

    def download_stream(self, container: str, blob_name: Optional[str], sink: BinaryIO) -> int:
        """
        Write a blob into ``sink``. The sink is closed on every exit path.

        Returns:
            Number of bytes written
        """
        start_time = time.time()
        try:
            written = self.open_download(container, blob_name).readinto(sink)
            if hasattr(sink, "flush"):
                sink.flush()
        finally:
            sink.close()
            storage_operation_duration_seconds.labels(operation="download").observe(time.time() - start_time)
        log_event(
            logger,
            event="blob_downloaded",
            message=f"Downloaded {blob_name} ({written} bytes)",
            container=container,
            blob_name=blob_name,
            duration_ms=(time.time() - start_time) * 1000,
        )
        return written

    # ------------------------------------------------------------------
    # Delegated access links
    # ------------------------------------------------------------------

    async def generate_delegated_link(self, container: str, blob_name: Optional[str]) -> DelegatedLink:
        """
        Generate a read-only, HTTPS-only SAS URL for a blob.

        Two steps, both required:
        1. Request a user delegation key valid for the configured window
        2. Sign a blob SAS against that key and compose the URL

        Raises:
            DelegationKeyError: If the key could not be issued
            LinkSigningError: If signing failed
        """
        _require(container, "Container name")
        _require(blob_name, "Blob name")

        key_start = datetime.now(timezone.utc)
        key_expiry = key_start + timedelta(days=self._settings.delegation_key_validity_days)

        try:
            delegation_key = await self._async_client.get_user_delegation_key(
                key_start_time=key_start,
                key_expiry_time=key_expiry,
            )
        except AzureError as e:
            storage_operations_total.labels(operation="delegation_key", status="error").inc()
            log_storage_failure(
                logger,
                operation="delegation_key",
                error=str(e),
                container=container,
                blob_name=blob_name,
            )
            raise DelegationKeyError(f"Failed to create User Delegation Key: {e}") from e
        if delegation_key is None:
            raise DelegationKeyError("Failed to create User Delegation Key: empty response")
        logger.info(f"UserDelegationKey created for {blob_name}")

        try:
            sas_token = generate_blob_sas(
                account_name=self._settings.azure_storage_id,
                container_name=container,
                blob_name=blob_name,
                user_delegation_key=delegation_key,
                permission=BlobSasPermissions(read=True),
                expiry=key_expiry,
                protocol="https",
                # Unique per link, so two links for the same blob never collide
                correlation_id=str(uuid.uuid4()),
            )
        except (ValueError, TypeError, AttributeError) as e:
            storage_operations_total.labels(operation="sas", status="error").inc()
            log_storage_failure(logger, operation="sas", error=str(e), container=container, blob_name=blob_name)
            raise LinkSigningError(f"Exception occurred while creating SAS Url: {e}") from e

        url = f"{self._settings.storage_endpoint}/{container}/{quote(blob_name, safe='/~')}?{sas_token}"
        storage_operations_total.labels(operation="sas", status="success").inc()
        log_event(
            logger,
            event="sas_generated",
            message=f"Generated SAS link for {blob_name}",
            container=container,
            blob_name=blob_name,
            expires_on=key_expiry.isoformat(),
        )
        return DelegatedLink(blob_name=blob_name, url=url, expires_on=key_expiry)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def container_exists(self, container: str) -> bool:
        """Check that the container is reachable. Raises AzureError on failure."""
        return self._sync_client.get_container_client(container).exists()
