from datetime import datetime, timezone

import pytest
from fastapi import HTTPException

from bucketdrop import services
from bucketdrop.config import StorageConfig
from bucketdrop.file_store import FileStore
from bucketdrop.models import FileRecord
from bucketdrop.storage_client import ObjectNotFound, StorageError


class FakeClient:
    def __init__(self, fail_uploads: bool = False):
        self.config = StorageConfig(
            storage_url="http://storage.test",
            bucket_name="uploads",
            access_key="AKIDEXAMPLE",
            secret_key="secret",
        )
        self.objects = {}
        self.fail_uploads = fail_uploads

    def object_url(self, key):
        return f"http://storage.test/uploads/{key}"

    def public_object_url(self, key):
        return f"https://cdn.test/{key}"

    def upload(self, key, data, content_type=None, progress=None):
        if self.fail_uploads:
            raise StorageError("Upload failed: 500 boom", 500)
        if progress:
            progress(0, len(data))
            progress(len(data), len(data))
        self.objects[key] = (data, content_type)
        return self.object_url(key)

    def iter_download(self, key, chunk_size=4):
        if key not in self.objects:
            raise ObjectNotFound(f"Object not found: {key}", 404)
        data = self.objects[key][0]
        for start in range(0, len(data), chunk_size):
            yield data[start:start + chunk_size]

    def presigned_url(self, key, method="GET", expires=None):
        return f"{self.object_url(key)}?method={method}&expires={expires}"


def test_upload_file_stores_object_and_updates_store():
    client = FakeClient()
    store = FileStore()

    response = services.upload_file(client, store, "report.pdf", b"%PDF-1.4", max_bytes=1024)

    assert response.message == "File uploaded successfully"
    assert response.file_name.endswith("-report.pdf")
    assert response.file_url == f"https://cdn.test/{response.file_name}"
    data, content_type = client.objects[response.file_name]
    assert data == b"%PDF-1.4"
    assert content_type == "application/pdf"

    (record,) = store.files
    assert record.name == response.file_name
    assert record.size == len(b"%PDF-1.4")
    assert record.thumbnail_url is None
    (upload,) = store.uploads
    assert upload.status == "done"
    assert upload.sent == upload.total == len(b"%PDF-1.4")


def test_upload_response_uses_camel_case_aliases():
    response = services.upload_file(FakeClient(), FileStore(), "a.png", b"png")
    payload = response.model_dump(by_alias=True)
    assert set(payload) == {"message", "fileName", "fileUrl"}


def test_upload_file_requires_filename():
    with pytest.raises(HTTPException) as excinfo:
        services.upload_file(FakeClient(), FileStore(), "", b"data")

    assert excinfo.value.status_code == 400
    assert excinfo.value.detail == "No file uploaded"


def test_upload_file_enforces_size_limit():
    client = FakeClient()
    with pytest.raises(HTTPException) as excinfo:
        services.upload_file(client, FileStore(), "big.bin", b"x" * 1025, max_bytes=1024)

    assert excinfo.value.status_code == 400
    assert excinfo.value.detail == "File size is too large. Max size is 1KB."
    assert client.objects == {}


def test_upload_file_storage_failure():
    store = FileStore()
    with pytest.raises(HTTPException) as excinfo:
        services.upload_file(FakeClient(fail_uploads=True), store, "a.txt", b"data")

    assert excinfo.value.status_code == 502
    assert excinfo.value.detail == "Failed to upload file"
    assert store.files == []
    (upload,) = store.uploads
    assert upload.status == "failed"
    assert "500" in upload.error


def test_list_files_reports_totals_and_state():
    store = FileStore()
    store.update_files(
        [
            FileRecord(
                name="a.txt",
                url="http://storage.test/uploads/a.txt",
                last_modified=datetime(2024, 1, 1, tzinfo=timezone.utc),
                size=1024,
            ),
            FileRecord(
                name="b.txt",
                url="http://storage.test/uploads/b.txt",
                last_modified=datetime(2023, 1, 1, tzinfo=timezone.utc),
                size=512,
            ),
        ]
    )

    response = services.list_files(store)

    assert response.total_size == 1536
    assert response.total_size_label == "1.5 KB"
    assert response.loading is False
    assert response.error is None
    assert [record.name for record in response.files] == ["a.txt", "b.txt"]


def test_open_download_streams_object():
    client = FakeClient()
    client.objects["notes/readme.txt"] = (b"hello world", "text/plain")

    chunks, media_type = services.open_download(client, "notes/readme.txt")

    assert media_type == "text/plain"
    assert b"".join(chunks) == b"hello world"


def test_open_download_missing_object():
    with pytest.raises(HTTPException) as excinfo:
        services.open_download(FakeClient(), "missing.txt")
    assert excinfo.value.status_code == 404


def test_open_download_storage_failure(monkeypatch):
    client = FakeClient()

    def broken(key, chunk_size=4):
        raise StorageError("Download failed: 500 broken", 500)
        yield b""

    monkeypatch.setattr(client, "iter_download", broken)

    with pytest.raises(HTTPException) as excinfo:
        services.open_download(client, "a.txt")
    assert excinfo.value.status_code == 502


def test_presign_validates_method_and_expiry():
    client = FakeClient()

    response = services.presign(client, "a.txt", "get", 60)
    assert response.method == "GET"
    assert response.expires_in == 60
    assert response.url.endswith("?method=GET&expires=60")

    default = services.presign(client, "a.txt")
    assert default.expires_in == client.config.presign_expires

    with pytest.raises(HTTPException) as excinfo:
        services.presign(client, "a.txt", "DELETE")
    assert excinfo.value.status_code == 400

    with pytest.raises(HTTPException):
        services.presign(client, "a.txt", "GET", 8 * 24 * 3600)
