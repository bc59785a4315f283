"""
FastAPI entrypoint for the bucket front-end.

Routes delegate to bucketdrop.services so this module focuses on HTTP
concerns (CORS, form parsing, streaming, background polling).
"""
from typing import Optional
from urllib.parse import quote
import logging
import os

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from bucketdrop import services, storage_client
from bucketdrop.config import ALLOWED_ORIGINS, LOG_LEVEL, ConfigurationError
from bucketdrop.file_store import FileStore, ListingPoller
from bucketdrop.models import (
    FileListResponse,
    PresignedUrlResponse,
    UploadListResponse,
    UploadResponse,
)

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="Bucket Drop API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.store = FileStore()
app.state.poller = None


def get_store(request: Request) -> FileStore:
    return request.app.state.store


def get_storage_client() -> storage_client.StorageClient:
    try:
        return storage_client.get_client()
    except ConfigurationError as exc:
        raise HTTPException(status_code=500, detail=str(exc))


def _fetch_listing():
    return storage_client.get_client().list_objects()


@app.on_event("startup")
async def startup_event():
    if os.getenv("POLLER_DISABLED") == "1":
        return
    store = app.state.store
    try:
        interval = storage_client.get_client().config.refresh_interval
    except ConfigurationError as exc:
        logger.error("%s", exc)
        store.set_error(str(exc))
        return
    poller = ListingPoller(store, _fetch_listing, interval)
    poller.start()
    app.state.poller = poller


@app.on_event("shutdown")
async def shutdown_event():
    poller = app.state.poller
    if poller is not None:
        await poller.stop()
        app.state.poller = None
    storage_client.close_client()


@app.get("/files", response_model=FileListResponse)
async def list_files(store: FileStore = Depends(get_store)):
    """Return the most recently fetched bucket listing."""
    return services.list_files(store)


@app.post("/files/refresh", response_model=FileListResponse)
async def refresh_files(store: FileStore = Depends(get_store)):
    """Fetch the listing now instead of waiting for the next poll."""
    poller = app.state.poller or ListingPoller(store, _fetch_listing, 0)
    await run_in_threadpool(poller.refresh_once)
    return services.list_files(store)


@app.post("/upload", response_model=UploadResponse)
async def upload(
    file: Optional[UploadFile] = File(default=None),
    store: FileStore = Depends(get_store),
    client: storage_client.StorageClient = Depends(get_storage_client),
):
    """Upload a file to the bucket under a unique, timestamp-prefixed key."""
    if file is None:
        raise HTTPException(status_code=400, detail="No file uploaded")
    # one byte past the limit is enough to detect an oversized file
    data = await file.read(client.config.max_upload_bytes + 1)
    return await run_in_threadpool(
        services.upload_file,
        client,
        store,
        file.filename,
        data,
        file.content_type,
        client.config.max_upload_bytes,
    )


@app.get("/uploads", response_model=UploadListResponse)
async def list_uploads(store: FileStore = Depends(get_store)):
    """Progress of uploads started since the last cleanup."""
    return UploadListResponse(uploads=store.uploads)


@app.delete("/uploads")
async def clear_uploads(store: FileStore = Depends(get_store)):
    return {"cleared": store.clear_finished_uploads()}


@app.get("/files/{key:path}/download")
async def download_file(
    key: str,
    client: storage_client.StorageClient = Depends(get_storage_client),
):
    """Stream an object from the bucket as an attachment."""
    chunks, media_type = await run_in_threadpool(services.open_download, client, key)
    filename = key.rsplit("/", 1)[-1]
    return StreamingResponse(
        chunks,
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"},
    )


@app.get("/files/{key:path}/url", response_model=PresignedUrlResponse)
async def presigned_url(
    key: str,
    method: str = "GET",
    expires: Optional[int] = None,
    client: storage_client.StorageClient = Depends(get_storage_client),
):
    """Return a time-limited signed URL for an object."""
    return services.presign(client, key, method, expires)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
