"""
Test configuration and fixtures.

Azure is replaced by in-memory fakes that follow the SDK surface the
application uses: paged listings with continuation tokens, chunked uploads
with bounded concurrency, streaming downloads and user delegation keys.
"""
import asyncio
import base64
import hashlib
import os
from collections import OrderedDict
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import AsyncGenerator, Dict, List, Optional

import pytest
from azure.core.exceptions import HttpResponseError, ResourceNotFoundError
from azure.storage.blob import UserDelegationKey
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport

from blob_gateway.config import Settings
from blob_gateway.storage.blob_service import BlobService
from blob_gateway.storage.upload_tracker import UploadTracker

TEST_CONTAINER = "test-container"
TEST_STORAGE_ID = "teststorage"
TEST_SECRET = "super-secret-value"


def make_settings(**overrides) -> Settings:
    values = dict(
        azure_tenant_id="00000000-0000-0000-0000-000000000000",
        azure_client_id="11111111-1111-1111-1111-111111111111",
        azure_client_secret=TEST_SECRET,
        azure_storage_id=TEST_STORAGE_ID,
        azure_storage_container=TEST_CONTAINER,
        upload_block_size=1024,
        list_page_size=3,
        environment="test",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


# ============================================================================
# In-memory storage
# ============================================================================

class FakeBlob:
    def __init__(self, name: str, data: bytes, content_type: Optional[str] = None):
        self.name = name
        self.data = data
        self.content_type = content_type
        self.last_modified = datetime.now(timezone.utc)
        self.etag = f'"0x{hashlib.md5(data).hexdigest()[:16].upper()}"'

    def properties(self):
        return SimpleNamespace(
            name=self.name,
            size=len(self.data),
            last_modified=self.last_modified,
            etag=self.etag,
            content_settings=SimpleNamespace(content_type=self.content_type),
        )


class FakeStore:
    """Containers of blobs shared by the sync and async fakes."""

    def __init__(self):
        self.containers: Dict[str, "OrderedDict[str, FakeBlob]"] = {}

    def container(self, name: str) -> "OrderedDict[str, FakeBlob]":
        return self.containers.setdefault(name, OrderedDict())

    def put(self, container: str, name: str, data: bytes, content_type: Optional[str] = None):
        self.container(container)[name] = FakeBlob(name, data, content_type)

    def get(self, container: str, name: str) -> Optional[FakeBlob]:
        return self.containers.get(container, {}).get(name)


class FakePageIterator:
    """Mimics ItemPaged.by_page(): iterates pages, exposes continuation_token."""

    def __init__(self, blobs: List[FakeBlob], page_size: int, token: Optional[str], fail_on_page: Optional[int]):
        self._blobs = blobs
        self._page_size = page_size
        self._fail_on_page = fail_on_page
        self._pages_served = 0
        self._done = False
        self.continuation_token = token

    def __iter__(self):
        return self

    def __next__(self):
        if self._done:
            raise StopIteration
        if self._fail_on_page is not None and self._pages_served == self._fail_on_page:
            raise HttpResponseError(message="Server failed to authenticate the request")
        start = int(self.continuation_token or 0)
        end = start + self._page_size
        page = [blob.properties() for blob in self._blobs[start:end]]
        self.continuation_token = str(end) if end < len(self._blobs) else None
        self._done = self.continuation_token is None
        self._pages_served += 1
        return iter(page)


class FakeSyncContainerClient:
    def __init__(self, service: "FakeSyncServiceClient", name: str):
        self._service = service
        self.container_name = name

    def list_blobs(self, name_starts_with=None, results_per_page=None, timeout=None, **kwargs):
        self._service.list_calls.append(
            {"name_starts_with": name_starts_with, "results_per_page": results_per_page, "timeout": timeout}
        )
        blobs = sorted(
            (b for b in self._service.store.container(self.container_name).values()
             if not name_starts_with or b.name.startswith(name_starts_with)),
            key=lambda b: b.name,
        )
        service = self._service
        return SimpleNamespace(
            by_page=lambda continuation_token=None: FakePageIterator(
                blobs, results_per_page or 5000, continuation_token, service.fail_list_on_page
            )
        )

    def exists(self, **kwargs) -> bool:
        if self._service.unreachable:
            raise HttpResponseError(message="unreachable")
        return self.container_name in self._service.store.containers


class FakeDownloader:
    def __init__(self, blob: FakeBlob, chunk_size: int, fail_after_chunks: Optional[int]):
        self._blob = blob
        self._chunk_size = chunk_size
        self._fail_after_chunks = fail_after_chunks
        self.size = len(blob.data)
        self.properties = blob.properties()

    def chunks(self):
        data = self._blob.data
        for index, start in enumerate(range(0, len(data), self._chunk_size)):
            if self._fail_after_chunks is not None and index >= self._fail_after_chunks:
                raise HttpResponseError(message="connection reset")
            yield data[start:start + self._chunk_size]

    def readinto(self, stream) -> int:
        written = 0
        for chunk in self.chunks():
            stream.write(chunk)
            written += len(chunk)
        return written


class FakeSyncBlobClient:
    def __init__(self, service: "FakeSyncServiceClient", container: str, blob: str):
        self._service = service
        self.container_name = container
        self.blob_name = blob

    def download_blob(self, **kwargs):
        self._service.download_calls.append(kwargs)
        blob = self._service.store.get(self.container_name, self.blob_name)
        if blob is None:
            raise ResourceNotFoundError(message="The specified blob does not exist.")
        return FakeDownloader(blob, self._service.chunk_size, self._service.fail_download_after_chunks)


class FakeSyncServiceClient:
    def __init__(self, store: FakeStore):
        self.store = store
        self.list_calls: List[dict] = []
        self.download_calls: List[dict] = []
        self.fail_list_on_page: Optional[int] = None
        self.fail_download_after_chunks: Optional[int] = None
        self.unreachable = False
        self.chunk_size = 1024
        self.closed = False

    def get_container_client(self, container: str) -> FakeSyncContainerClient:
        return FakeSyncContainerClient(self, container)

    def get_blob_client(self, container: str, blob: str) -> FakeSyncBlobClient:
        return FakeSyncBlobClient(self, container, blob)

    def close(self):
        self.closed = True


class FakeAsyncBlobClient:
    def __init__(self, service: "FakeAsyncServiceClient", container: str, blob: str):
        self._service = service
        self.container_name = container
        self.blob_name = blob

    async def upload_blob(self, data, length=None, overwrite=False, max_concurrency=1, progress_hook=None, **kwargs):
        service = self._service
        service.upload_calls.append(
            {"blob": self.blob_name, "length": length, "overwrite": overwrite, "max_concurrency": max_concurrency}
        )
        if service.upload_gate is not None:
            await service.upload_gate.wait()
        if service.fail_uploads:
            raise HttpResponseError(message="Upload rejected by service")

        block_size = service.block_size
        blocks = [data[i:i + block_size] for i in range(0, len(data), block_size)] or [b""]
        staged: Dict[int, bytes] = {}
        semaphore = asyncio.Semaphore(max_concurrency)
        transferred = 0

        async def stage(index: int, block: bytes):
            nonlocal transferred
            async with semaphore:
                service.active_transfers += 1
                service.peak_transfers = max(service.peak_transfers, service.active_transfers)
                await asyncio.sleep(0)
                staged[index] = block
                transferred += len(block)
                service.active_transfers -= 1
            if progress_hook is not None:
                await progress_hook(transferred, length)

        await asyncio.gather(*(stage(i, b) for i, b in enumerate(blocks)))
        service.blocks_staged += len(blocks)
        service.store.put(self.container_name, self.blob_name, b"".join(staged[i] for i in range(len(blocks))))
        return {"etag": service.store.get(self.container_name, self.blob_name).etag}


class FakeAsyncServiceClient:
    def __init__(self, store: FakeStore, block_size: int = 1024):
        self.store = store
        self.block_size = block_size
        self.upload_calls: List[dict] = []
        self.upload_gate: Optional[asyncio.Event] = None
        self.fail_uploads = False
        self.fail_delegation_key = False
        self.active_transfers = 0
        self.peak_transfers = 0
        self.blocks_staged = 0
        self.delegation_key_requests: List[tuple] = []
        self.closed = False

    def get_blob_client(self, container: str, blob: str) -> FakeAsyncBlobClient:
        return FakeAsyncBlobClient(self, container, blob)

    async def get_user_delegation_key(self, key_start_time, key_expiry_time, **kwargs):
        self.delegation_key_requests.append((key_start_time, key_expiry_time))
        if self.fail_delegation_key:
            raise HttpResponseError(message="This request is not authorized to perform this operation.")
        key = UserDelegationKey()
        key.signed_oid = "22222222-2222-2222-2222-222222222222"
        key.signed_tid = "00000000-0000-0000-0000-000000000000"
        key.signed_start = key_start_time.strftime("%Y-%m-%dT%H:%M:%SZ")
        key.signed_expiry = key_expiry_time.strftime("%Y-%m-%dT%H:%M:%SZ")
        key.signed_service = "b"
        key.signed_version = "2021-08-06"
        key.value = base64.b64encode(os.urandom(32)).decode()
        return key

    async def close(self):
        self.closed = True


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store() -> FakeStore:
    store = FakeStore()
    store.container(TEST_CONTAINER)
    return store


@pytest.fixture
def sync_client(store: FakeStore) -> FakeSyncServiceClient:
    return FakeSyncServiceClient(store)


@pytest.fixture
def async_client(store: FakeStore, settings: Settings) -> FakeAsyncServiceClient:
    return FakeAsyncServiceClient(store, block_size=settings.upload_block_size)


@pytest.fixture
def blob_service(settings, sync_client, async_client) -> BlobService:
    tracker = UploadTracker(max_entries=settings.upload_tracker_max_entries)
    return BlobService(settings, sync_client, async_client, tracker)


@pytest.fixture
def app(settings, sync_client, async_client) -> FastAPI:
    from blob_gateway.main import create_app
    return create_app(settings, sync_client=sync_client, async_client=async_client)


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
