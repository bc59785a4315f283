"""
Service layer between the FastAPI routes and the bucket.

These helpers call the (synchronous) storage client, keep the file store in
step with what was uploaded, and translate storage failures into HTTP errors
so the routes can stay thin.
"""
from __future__ import annotations

import itertools
import logging
import mimetypes
import uuid
from datetime import datetime, timezone
from typing import Iterator, Optional, Tuple

from fastapi import HTTPException

from .file_store import FileStore
from .listing import format_file_size, is_image, size_limit_message
from .models import (
    FileListResponse,
    FileRecord,
    PresignedUrlResponse,
    UploadResponse,
)
from .storage_client import ObjectNotFound, StorageClient, StorageError, unique_object_key

logger = logging.getLogger(__name__)

PRESIGN_METHODS = {"GET", "PUT"}


def upload_file(
    client: StorageClient,
    store: FileStore,
    filename: Optional[str],
    data: bytes,
    content_type: Optional[str] = None,
    max_bytes: Optional[int] = None,
) -> UploadResponse:
    """
    Store ``data`` in the bucket under a unique key and add the new record to
    the store without waiting for the next listing refresh.
    """
    if not filename:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if max_bytes is not None and len(data) > max_bytes:
        raise HTTPException(status_code=400, detail=size_limit_message(max_bytes))

    key = unique_object_key(filename)
    content_type = content_type or mimetypes.guess_type(filename)[0]
    upload_id = uuid.uuid4().hex
    store.start_upload(upload_id, key, len(data))

    def on_progress(sent: int, total: int) -> None:
        store.record_progress(upload_id, sent, total)

    try:
        url = client.upload(key, data, content_type=content_type, progress=on_progress)
    except StorageError as exc:
        logger.error("Storage upload error for %s: %s", key, exc)
        store.finish_upload(upload_id, error=str(exc))
        raise HTTPException(status_code=502, detail="Failed to upload file")
    store.finish_upload(upload_id)

    store.add_file(
        FileRecord(
            name=key,
            url=url,
            last_modified=datetime.now(timezone.utc),
            size=len(data),
            thumbnail_url=url if is_image(key) else None,
        )
    )
    logger.info("File uploaded successfully: %s", key)
    return UploadResponse(
        message="File uploaded successfully",
        file_name=key,
        file_url=client.public_object_url(key),
    )


def list_files(store: FileStore) -> FileListResponse:
    total = store.total_size
    return FileListResponse(
        files=store.files,
        total_size=total,
        total_size_label=format_file_size(total),
        loading=store.loading,
        error=store.error,
    )


def open_download(client: StorageClient, key: str) -> Tuple[Iterator[bytes], str]:
    """
    Start streaming ``key`` and return the chunks plus a media type.

    The first chunk is read eagerly so a missing object surfaces as a 404
    before any response bytes are sent.
    """
    chunks = client.iter_download(key)
    try:
        first = next(chunks, b"")
    except ObjectNotFound:
        raise HTTPException(status_code=404, detail="File not found")
    except StorageError as exc:
        logger.error("Download error for %s: %s", key, exc)
        raise HTTPException(status_code=502, detail="Download failed")
    media_type = mimetypes.guess_type(key)[0] or "application/octet-stream"
    return itertools.chain([first], chunks), media_type


def presign(
    client: StorageClient, key: str, method: str = "GET", expires: Optional[int] = None
) -> PresignedUrlResponse:
    method = method.upper()
    if method not in PRESIGN_METHODS:
        raise HTTPException(status_code=400, detail=f"Unsupported method: {method}")
    expires_in = int(expires or client.config.presign_expires)
    if expires_in <= 0 or expires_in > 7 * 24 * 3600:
        raise HTTPException(status_code=400, detail="expires must be between 1 second and 7 days")
    return PresignedUrlResponse(
        key=key,
        url=client.presigned_url(key, method=method, expires=expires_in),
        method=method,
        expires_in=expires_in,
    )
