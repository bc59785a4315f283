"""
HTTP client for the configured S3-compatible bucket.

Requests go straight to the bucket endpoint with httpx. Depending on the
configured keys they carry an ``x-api-key`` header, a SigV4 ``Authorization``
header produced by botocore, or nothing at all.
"""
from __future__ import annotations

import logging
import time
from functools import lru_cache
from pathlib import PurePosixPath
from typing import Callable, Dict, Iterator, List, Optional
from urllib.parse import quote

import httpx
from botocore.auth import S3SigV4Auth, S3SigV4QueryAuth
from botocore.awsrequest import AWSRequest
from botocore.credentials import Credentials

from .config import StorageConfig
from .listing import parse_listing, sort_by_recency
from .models import FileRecord

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
DEFAULT_TIMEOUT = 30.0
DEFAULT_CONTENT_TYPE = "application/octet-stream"

ProgressCallback = Callable[[int, int], None]


class StorageError(Exception):
    """A bucket request failed or could not be sent."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ObjectNotFound(StorageError):
    pass


def unique_object_key(filename: str, now: Optional[float] = None) -> str:
    """Prefix the file's base name with the current epoch milliseconds."""
    name = PurePosixPath(filename.replace("\\", "/")).name
    millis = int((time.time() if now is None else now) * 1000)
    return f"{millis}-{name}"


class StorageClient:
    def __init__(self, config: StorageConfig, http_client: Optional[httpx.Client] = None):
        self.config = config
        self._http = http_client or httpx.Client(timeout=DEFAULT_TIMEOUT)

    def __enter__(self) -> "StorageClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    # URL construction

    def object_url(self, key: str) -> str:
        return f"{self.config.bucket_url}/{quote(key, safe='/~')}"

    def public_object_url(self, key: str) -> str:
        """URL handed back to users after an upload."""
        if self.config.public_url:
            return f"{self.config.public_url}/{quote(key, safe='/~')}"
        return self.object_url(key)

    def listing_url(self, continuation_token: Optional[str] = None) -> str:
        url = f"{self.config.bucket_url}/?list-type=2"
        if continuation_token:
            url += f"&continuation-token={quote(continuation_token, safe='')}"
        return url

    def _credentials(self) -> Credentials:
        return Credentials(self.config.access_key, self.config.secret_key)

    def presigned_url(self, key: str, method: str = "GET", expires: Optional[int] = None) -> str:
        """
        Return a query-string signed URL for ``key``.

        Without a secret key there is nothing to sign with, so the plain
        object URL is returned.
        """
        url = self.object_url(key)
        if self.config.auth_mode != "sigv4":
            return url
        request = AWSRequest(method=method.upper(), url=url)
        S3SigV4QueryAuth(
            self._credentials(),
            "s3",
            self.config.region,
            expires=int(expires or self.config.presign_expires),
        ).add_auth(request)
        return request.url

    def auth_headers(
        self,
        method: str,
        url: str,
        body: bytes = b"",
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, str]:
        """Headers authenticating a request; includes ``headers`` when signing."""
        mode = self.config.auth_mode
        if mode == "api-key":
            return {"x-api-key": self.config.access_key}
        if mode != "sigv4":
            return {}
        request = AWSRequest(method=method.upper(), url=url, data=body, headers=dict(headers or {}))
        S3SigV4Auth(self._credentials(), "s3", self.config.region).add_auth(request)
        return dict(request.headers.items())

    def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return self._http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("%s %s failed: %s", method, url, exc)
            raise StorageError(f"Request to storage failed: {exc}") from exc

    # Operations

    def upload(
        self,
        key: str,
        data: bytes,
        content_type: Optional[str] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> str:
        """
        PUT ``data`` under ``key`` and return the object URL.

        ``progress(sent, total)`` is called once before the first chunk and
        after every chunk handed to the transport.
        """
        url = self.object_url(key)
        total = len(data)
        headers = {"Content-Type": content_type or DEFAULT_CONTENT_TYPE}
        headers.update(self.auth_headers("PUT", url, data, headers))
        headers["Content-Length"] = str(total)

        logger.info("Uploading %s (%s bytes) to %s", key, total, url)
        response = self._send("PUT", url, content=self._chunks(data, progress), headers=headers)
        if not response.is_success:
            raise StorageError(
                f"Upload failed: {response.status_code} {response.text}",
                response.status_code,
            )
        logger.info("Uploaded %s", key)
        return url

    @staticmethod
    def _chunks(data: bytes, progress: Optional[ProgressCallback]) -> Iterator[bytes]:
        total = len(data)
        sent = 0
        if progress:
            progress(0, total)
        for start in range(0, total, CHUNK_SIZE):
            chunk = data[start:start + CHUNK_SIZE]
            yield chunk
            sent += len(chunk)
            if progress:
                progress(sent, total)

    def list_objects(self) -> List[FileRecord]:
        """Fetch every page of the bucket listing, newest first."""
        records: List[FileRecord] = []
        token = None
        while True:
            url = self.listing_url(token)
            response = self._send("GET", url, headers=self.auth_headers("GET", url))
            if not response.is_success:
                raise StorageError(
                    f"Failed to fetch files: {response.status_code} {response.text}",
                    response.status_code,
                )
            page = parse_listing(response.content, self.object_url)
            records.extend(page.records)
            if not page.is_truncated or not page.next_token or page.next_token == token:
                break
            token = page.next_token

        logger.debug("Listed %s objects from %s", len(records), self.config.bucket_url)
        return sort_by_recency(records)

    def _check_download(self, key: str, response: httpx.Response) -> None:
        if response.status_code == 404:
            raise ObjectNotFound(f"Object not found: {key}", 404)
        if not response.is_success:
            raise StorageError(
                f"Download failed: {response.status_code} {response.text}",
                response.status_code,
            )

    def download(self, key: str) -> bytes:
        url = self.object_url(key)
        response = self._send("GET", url, headers=self.auth_headers("GET", url))
        self._check_download(key, response)
        return response.content

    def iter_download(self, key: str, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
        url = self.object_url(key)
        try:
            with self._http.stream("GET", url, headers=self.auth_headers("GET", url)) as response:
                if not response.is_success:
                    response.read()
                    self._check_download(key, response)
                yield from response.iter_bytes(chunk_size)
        except httpx.HTTPError as exc:
            logger.error("Download of %s failed: %s", key, exc)
            raise StorageError(f"Request to storage failed: {exc}") from exc


@lru_cache(maxsize=1)
def get_client() -> StorageClient:
    return StorageClient(StorageConfig.from_env())


def close_client() -> None:
    """Close the cached client, if one was created, and forget it."""
    if get_client.cache_info().currsize:
        get_client().close()
    get_client.cache_clear()
