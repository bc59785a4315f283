"""
Shared Pydantic models describing listing records and API payloads.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .listing import FileRecord

__all__ = [
    "FileListResponse",
    "FileRecord",
    "PresignedUrlResponse",
    "UploadListResponse",
    "UploadProgress",
    "UploadResponse",
]


class FileListResponse(BaseModel):
    files: List[FileRecord]
    total_size: int
    total_size_label: str
    loading: bool
    error: Optional[str] = None


class UploadResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    file_name: str = Field(alias="fileName")
    file_url: str = Field(alias="fileUrl")


class UploadProgress(BaseModel):
    upload_id: str
    name: str
    sent: int = 0
    total: int = 0
    status: str = "uploading"
    error: Optional[str] = None

    @computed_field
    @property
    def percent(self) -> float:
        if self.total <= 0:
            return 100.0 if self.status == "done" else 0.0
        return round(min(self.sent, self.total) * 100.0 / self.total, 1)


class UploadListResponse(BaseModel):
    uploads: List[UploadProgress]


class PresignedUrlResponse(BaseModel):
    key: str
    url: str
    method: str
    expires_in: int
