"""
Blob endpoints.

Thin mapping from HTTP to BlobService:
1. POST /upload - read a multipart file and start a background upload
2. GET /upload/{upload_id} - poll a background upload
3. GET /list/{prefix} - every blob whose name starts with prefix
4. GET /pages/{prefix} - one page of the same listing
5. GET /generate/sasToken/{fileName} - read-only delegated access link
6. GET /download/{fileName} - stream a blob as an attachment

Errors are returned as free-text messages; stack traces and signed URLs are
never included in responses or logs.
"""
import logging
import posixpath
from typing import Iterator, List, Optional
from urllib.parse import quote

from azure.core.exceptions import AzureError
from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

from blob_gateway.api.dependencies import get_app_settings, get_blob_service
from blob_gateway.config import Settings
from blob_gateway.schemas.blob import (
    BlobDescriptor,
    BlobPageResponse,
    SasResponse,
    UploadStatus,
    UploadStatusResponse,
)
from blob_gateway.storage.blob_service import BlobDownload, BlobService
from blob_gateway.storage.errors import (
    BlobNotFoundError,
    InvalidBlobRequestError,
    StorageGatewayError,
    StorageQueryError,
)
from blob_gateway.utils.logging import log_storage_failure
from blob_gateway.utils.metrics import storage_operations_total

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# Upload
# ============================================================================

@router.post("/upload", response_class=PlainTextResponse)
async def upload_file(
    file: UploadFile = File(...),
    wait: bool = Query(False, description="Respond only after the transfer finishes"),
    settings: Settings = Depends(get_app_settings),
    blob_service: BlobService = Depends(get_blob_service),
):
    """
    Upload a file to the default container.

    By default the transfer runs in the background and the response is sent
    once the request body has been read; poll GET /upload/{id} using the
    X-Upload-Id header to learn the outcome. With ?wait=true the response
    reflects the transfer's terminal state.
    """
    logger.info(f"Received file:{file.filename}")
    try:
        data = await file.read()
    except OSError as e:
        logger.error(f"Exception occurred while uploading:{file.filename}:ex:{e}")
        return PlainTextResponse(str(e), status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    try:
        handle = blob_service.upload(settings.azure_storage_container, file.filename, data)
    except InvalidBlobRequestError as e:
        return PlainTextResponse(str(e), status_code=status.HTTP_400_BAD_REQUEST)

    headers = {"X-Upload-Id": handle.upload_id}
    if wait:
        await handle.wait()
        if handle.status is UploadStatus.FAILED:
            return PlainTextResponse(
                handle.error or "Upload failed",
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                headers=headers,
            )

    return PlainTextResponse("Uploaded", headers=headers)


@router.get("/upload/{upload_id}", response_model=UploadStatusResponse)
async def get_upload_status(
    upload_id: str,
    blob_service: BlobService = Depends(get_blob_service),
):
    """Report the state of a background upload."""
    handle = blob_service.tracker.get(upload_id)
    if handle is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Upload {upload_id} not found"
        )
    return UploadStatusResponse.from_handle(handle)


# ============================================================================
# Listing
# ============================================================================

@router.get("/list/{prefix:path}", response_model=List[BlobDescriptor])
def list_files(
    prefix: str,
    settings: Settings = Depends(get_app_settings),
    blob_service: BlobService = Depends(get_blob_service),
):
    """
    List files starting with prefix.

    Responds 500 with an empty array when the storage query fails, so a
    failure is never mistaken for "no matches".
    """
    logger.info(f"List files starting with:{prefix}")
    listing = blob_service.list_by_prefix(settings.azure_storage_container, prefix)
    if listing.failed:
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=[])
    return listing.items


@router.get("/pages/{prefix:path}", response_model=BlobPageResponse)
def list_files_page(
    prefix: str,
    continuation_token: Optional[str] = Query(None, alias="continuationToken"),
    settings: Settings = Depends(get_app_settings),
    blob_service: BlobService = Depends(get_blob_service),
):
    """
    Fetch one page of files starting with prefix.

    Pass the returned continuationToken back to fetch the next page; it is
    absent on the last page.
    """
    pages = blob_service.iter_blob_pages(
        settings.azure_storage_container, prefix, continuation_token
    )
    try:
        page = next(pages, None)
    except StorageQueryError as e:
        logger.error(f"Exception occurred:ex:{e}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=BlobPageResponse().model_dump(by_alias=True, mode="json"),
        )
    finally:
        pages.close()

    if page is None:
        return BlobPageResponse()
    return BlobPageResponse(items=page.items, continuation_token=page.continuation_token)


# ============================================================================
# Delegated access links
# ============================================================================

@router.get("/generate/sasToken/{file_name:path}", response_model=SasResponse)
async def generate_sas_token(
    file_name: str,
    settings: Settings = Depends(get_app_settings),
    blob_service: BlobService = Depends(get_blob_service),
):
    """Generate a read-only SAS URL, valid until the delegation key expires."""
    logger.info(f"Generating SAS Token for:{file_name}")
    try:
        link = await blob_service.generate_delegated_link(settings.azure_storage_container, file_name)
    except StorageGatewayError as e:
        logger.error(f"Exception occurred:ex:{e}")
        body = SasResponse(file_name=file_name, message=str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=body.model_dump(by_alias=True, mode="json"),
        )

    return SasResponse(
        file_name=file_name,
        sas_url=link.url,
        message=link.message,
        expires_on=link.expires_on,
    )


# ============================================================================
# Download
# ============================================================================

def _stream_chunks(download: BlobDownload, container: str) -> Iterator[bytes]:
    """
    Yield blob chunks to the response body.

    Headers are already sent once this runs, so a failure can only be logged.
    """
    sent = 0
    try:
        for chunk in download.chunks():
            sent += len(chunk)
            yield chunk
    except AzureError as e:
        storage_operations_total.labels(operation="download", status="error").inc()
        log_storage_failure(
            logger,
            operation="download",
            error=str(e),
            container=container,
            blob_name=download.blob_name,
            bytes_sent=sent,
        )
        return
    storage_operations_total.labels(operation="download", status="success").inc()


@router.get("/download/{file_name:path}")
def download_blob(
    file_name: str,
    settings: Settings = Depends(get_app_settings),
    blob_service: BlobService = Depends(get_blob_service),
):
    """
    Stream a blob as an attachment.

    A missing blob is detected before streaming starts and answered with 404.
    """
    logger.info(f"Downloading file:{file_name}")
    container = settings.azure_storage_container
    try:
        download = blob_service.open_download(container, file_name)
    except BlobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidBlobRequestError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except AzureError as e:
        log_storage_failure(logger, operation="download", error=str(e), container=container, blob_name=file_name)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Download failed"
        )

    headers = {
        "Content-Disposition": f"attachment;filename={quote(posixpath.basename(file_name))}",
    }
    if download.size is not None:
        headers["Content-Length"] = str(download.size)

    return StreamingResponse(
        _stream_chunks(download, container),
        media_type="application/octet-stream",
        headers=headers,
    )
