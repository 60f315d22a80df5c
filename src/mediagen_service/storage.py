"""Object storage helpers: upload bytes, sign download URLs.

Objects are addressed by canonical ``gs://bucket/key`` URIs; the MinIO client
talks to the bucket through its S3-compatible endpoint.
"""

from __future__ import annotations

import io
import threading
from datetime import timedelta
from typing import Optional, Tuple
from urllib.parse import urlparse

from minio import Minio

from .config import Settings, StorageSettings, get_settings

_client_lock = threading.Lock()
_storage: "ObjectStorage | None" = None


def _build_client(settings: StorageSettings) -> Minio:
    parsed = urlparse(settings.endpoint)
    netloc = parsed.netloc or parsed.path
    return Minio(
        netloc,
        access_key=settings.access_key,
        secret_key=settings.secret_key,
        secure=settings.secure if settings.secure is not None else parsed.scheme == "https",
        region=settings.region,
    )


def parse_storage_uri(uri: str) -> Tuple[str, str]:
    parsed = urlparse(uri)
    key = parsed.path.lstrip("/")
    if not parsed.scheme or not parsed.netloc or not key:
        raise ValueError(f"Not a storage URI: {uri}")
    return parsed.netloc, key


class ObjectStorage:
    def __init__(self, client: Minio, bucket: str, *, uri_scheme: str = "gs") -> None:
        self._client = client
        self.bucket = bucket
        self.uri_scheme = uri_scheme

    def build_uri(self, object_key: str, bucket: Optional[str] = None) -> str:
        return f"{self.uri_scheme}://{bucket or self.bucket}/{object_key.lstrip('/')}"

    def upload(self, data: bytes, object_key: str, content_type: str = "application/octet-stream") -> str:
        self._client.put_object(
            self.bucket,
            object_key,
            io.BytesIO(data),
            length=len(data),
            content_type=content_type,
        )
        return self.build_uri(object_key)

    def sign_url(self, uri: str, ttl_sec: int) -> str:
        bucket, key = parse_storage_uri(uri)
        return self._client.presigned_get_object(bucket, key, expires=timedelta(seconds=ttl_sec))


def job_object_key(job_id: str, filename: str, settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    return f"{settings.jobs_prefix}/{job_id}/{filename}"


def build_storage(settings: Settings) -> ObjectStorage:
    return ObjectStorage(
        _build_client(settings.minio),
        settings.minio.bucket,
        uri_scheme=settings.minio.uri_scheme,
    )


def get_storage() -> ObjectStorage:
    global _storage
    if _storage is not None:
        return _storage
    with _client_lock:
        if _storage is None:
            _storage = build_storage(get_settings())
        return _storage


__all__ = [
    "ObjectStorage",
    "build_storage",
    "get_storage",
    "job_object_key",
    "parse_storage_uri",
]
