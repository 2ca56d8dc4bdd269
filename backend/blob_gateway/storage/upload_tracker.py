"""
Background upload tracking.

Uploads run as asyncio tasks so the HTTP request can return as soon as the
body has been read. Each task is registered here under an upload id, which
clients can poll to learn whether the transfer actually finished.

Lifecycle:
1. Endpoint reads the multipart body -> status="pending"
2. Transfer task stages blocks to storage, progress is recorded
3. Task ends -> status="succeeded" or status="failed" with the error message
"""
import asyncio
import logging
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from blob_gateway.schemas.blob import UploadStatus
from blob_gateway.utils.logging import (
    log_upload_completed,
    log_upload_failed,
    log_upload_started,
)
from blob_gateway.utils.metrics import (
    storage_operation_duration_seconds,
    storage_operations_total,
    upload_bytes_total,
    uploads_in_flight,
)

logger = logging.getLogger(__name__)

ProgressHook = Callable[[int, Optional[int]], Awaitable[None]]
Transfer = Callable[[ProgressHook], Awaitable[object]]


@dataclass
class UploadHandle:
    """Retrievable result of a background upload."""
    upload_id: str
    container: str
    blob_name: str
    size: int
    status: UploadStatus = UploadStatus.PENDING
    bytes_transferred: int = 0
    error: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    _task: Optional[asyncio.Task] = field(default=None, repr=False, compare=False)

    @property
    def done(self) -> bool:
        return self.status is not UploadStatus.PENDING

    async def wait(self) -> "UploadHandle":
        """
        Wait for the transfer to reach a terminal state.

        Cancelling the waiter does not cancel the transfer.
        """
        if self._task is not None:
            await asyncio.shield(self._task)
        return self


class UploadTracker:
    """
    Registry of background uploads.

    Holds strong references to running tasks (the event loop only keeps weak
    ones) and prunes the oldest finished entries beyond ``max_entries``.
    """

    def __init__(self, max_entries: int = 1000):
        self._max_entries = max_entries
        self._uploads: "OrderedDict[str, UploadHandle]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._uploads)

    def submit(self, container: str, blob_name: str, size: int, transfer: Transfer) -> UploadHandle:
        """
        Schedule ``transfer`` on the running event loop.

        Args:
            container: Target container
            blob_name: Target blob name
            size: Payload size in bytes
            transfer: Coroutine function receiving a progress hook

        Returns:
            UploadHandle in pending state
        """
        handle = UploadHandle(
            upload_id=str(uuid.uuid4()),
            container=container,
            blob_name=blob_name,
            size=size,
        )
        handle._task = asyncio.get_running_loop().create_task(
            self._run(handle, transfer),
            name=f"upload-{handle.upload_id}",
        )
        self._uploads[handle.upload_id] = handle
        self._prune()
        return handle

    def get(self, upload_id: str) -> Optional[UploadHandle]:
        return self._uploads.get(upload_id)

    async def shutdown(self) -> None:
        """Wait for transfers still in flight."""
        pending = [h._task for h in self._uploads.values() if h._task is not None and not h._task.done()]
        if pending:
            logger.info(f"Waiting for {len(pending)} upload(s) to finish")
            await asyncio.gather(*pending, return_exceptions=True)

    async def _run(self, handle: UploadHandle, transfer: Transfer) -> None:
        start_time = time.time()
        uploads_in_flight.inc()
        log_upload_started(
            logger,
            upload_id=handle.upload_id,
            container=handle.container,
            blob_name=handle.blob_name,
            size_bytes=handle.size,
        )

        async def on_progress(current: int, total: Optional[int]) -> None:
            handle.bytes_transferred = current
            logger.debug(f"Uploading bytes:{current}/{total} for {handle.blob_name}")

        try:
            await transfer(on_progress)
        except asyncio.CancelledError:
            handle.status = UploadStatus.FAILED
            handle.error = "Upload cancelled"
            raise
        except Exception as e:
            # Nobody awaits this task from the request; the handle is the only reporter
            handle.status = UploadStatus.FAILED
            handle.error = str(e)
            storage_operations_total.labels(operation="upload", status="error").inc()
            log_upload_failed(
                logger,
                upload_id=handle.upload_id,
                container=handle.container,
                blob_name=handle.blob_name,
                error=str(e),
                duration_ms=(time.time() - start_time) * 1000,
            )
        else:
            handle.status = UploadStatus.SUCCEEDED
            handle.bytes_transferred = handle.size
            storage_operations_total.labels(operation="upload", status="success").inc()
            upload_bytes_total.inc(handle.size)
            log_upload_completed(
                logger,
                upload_id=handle.upload_id,
                container=handle.container,
                blob_name=handle.blob_name,
                duration_ms=(time.time() - start_time) * 1000,
            )
        finally:
            handle.finished_at = datetime.now(timezone.utc)
            uploads_in_flight.dec()
            storage_operation_duration_seconds.labels(operation="upload").observe(time.time() - start_time)

    def _prune(self) -> None:
        overflow = len(self._uploads) - self._max_entries
        if overflow <= 0:
            return
        finished = [upload_id for upload_id, h in self._uploads.items() if h.done]
        for upload_id in finished[:overflow]:
            del self._uploads[upload_id]
