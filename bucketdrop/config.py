"""
Centralized configuration for the bucket front-end.

Environment variables point the service at one bucket on an S3-compatible
endpoint and tune polling/upload limits without changing code. Documented
defaults are safe for local development; deployments override them in the
environment or a ``.env`` file.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv(".env", override=False)

# CORS behaviour
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DEFAULT_REGION = "us-east-1"
DEFAULT_REFRESH_INTERVAL = 10.0
DEFAULT_MAX_UPLOAD_BYTES = 5 * 1024 * 1024
DEFAULT_PRESIGN_EXPIRES = 3600


class ConfigurationError(Exception):
    """Raised when required storage settings are absent."""


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {value!r}")


@dataclass(frozen=True)
class StorageConfig:
    """Everything needed to talk to the bucket."""

    storage_url: str
    bucket_name: str
    access_key: str = ""
    secret_key: str = ""
    region: str = DEFAULT_REGION
    public_url: Optional[str] = None
    refresh_interval: float = DEFAULT_REFRESH_INTERVAL
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    presign_expires: int = DEFAULT_PRESIGN_EXPIRES

    def __post_init__(self):
        if not self.storage_url or not self.bucket_name:
            raise ConfigurationError(
                "Storage configuration is missing: "
                f"Storage URL: {'OK' if self.storage_url else 'Missing'}, "
                f"Bucket Name: {'OK' if self.bucket_name else 'Missing'}"
            )
        # frozen dataclass, so normalise through object.__setattr__
        object.__setattr__(self, "storage_url", self.storage_url.rstrip("/"))
        if self.public_url:
            object.__setattr__(self, "public_url", self.public_url.rstrip("/"))

    @property
    def auth_mode(self) -> str:
        if self.access_key and self.secret_key:
            return "sigv4"
        if self.access_key:
            return "api-key"
        return "anonymous"

    @property
    def bucket_url(self) -> str:
        return f"{self.storage_url}/{self.bucket_name}"

    @classmethod
    def from_env(cls) -> "StorageConfig":
        return cls(
            storage_url=os.getenv("STORAGE_URL", ""),
            bucket_name=os.getenv("BUCKET_NAME", ""),
            access_key=os.getenv("ACCESS_KEY", ""),
            secret_key=os.getenv("SECRET_KEY", ""),
            region=os.getenv("STORAGE_REGION") or DEFAULT_REGION,
            public_url=os.getenv("STORAGE_PUBLIC_URL") or None,
            refresh_interval=_env_float("REFRESH_INTERVAL_SECONDS", DEFAULT_REFRESH_INTERVAL),
            max_upload_bytes=_env_int("MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES),
            presign_expires=_env_int("PRESIGN_EXPIRES_SECONDS", DEFAULT_PRESIGN_EXPIRES),
        )
