"""Shared pytest fixtures for the job service tests."""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

import pytest

from mediagen_service import storage as storage_module
from mediagen_service.config import (
    JobTimings,
    LLMSettings,
    Settings,
    StoreSettings,
    VertexSettings,
    reload_settings,
)
from mediagen_service.store import MemoryJobStore

T0 = 1_700_000_000_000


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    monkeypatch.delenv("MEDIAGEN_CONFIG_FILE", raising=False)
    monkeypatch.setenv("MEDIAGEN_STORE__BACKEND", "memory")
    monkeypatch.setenv("MEDIAGEN_VERTEX__PROJECT", "demo-project")
    monkeypatch.setenv("MEDIAGEN_VERTEX__ACCESS_TOKEN", "vertex-token")
    monkeypatch.setenv("MEDIAGEN_LLM__API_KEY", "llm-key")
    monkeypatch.setenv("MEDIAGEN_MINIO__BUCKET", "test-bucket")
    reload_settings()
    yield
    reload_settings()


@pytest.fixture()
def test_settings() -> Settings:
    return Settings(
        service_name="mediagen-service-test",
        environment="test",
        api_version="v1",
        base_url="/api/v1",
        store=StoreSettings(backend="memory"),
        llm=LLMSettings(api_key="llm-key"),
        vertex=VertexSettings(project="demo-project", access_token="vertex-token"),
    )


@pytest.fixture()
def timings() -> JobTimings:
    return JobTimings(
        ttl_ms=90 * 60 * 1000,
        poll_interval_ms=5000,
        max_poll_attempts=5,
        signed_url_ttl_sec=3600,
        dispatch_deadline_sec=60,
    )


class FakeClock:
    def __init__(self, start: int = T0) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def memory_store() -> MemoryJobStore:
    return MemoryJobStore("mediagen-jobs")


class RecordingQueue:
    def __init__(self) -> None:
        self.calls: List[Tuple[Dict[str, Any], int, int]] = []

    def enqueue(self, payload: Dict[str, Any], *, delay_seconds: int, dispatch_deadline_seconds: int) -> None:
        self.calls.append((payload, delay_seconds, dispatch_deadline_seconds))


@pytest.fixture()
def recording_queue() -> RecordingQueue:
    return RecordingQueue()


class FakeStorage:
    """Stands in for ``ObjectStorage``: keeps uploads in memory, signs deterministically."""

    bucket = "test-bucket"

    def __init__(self) -> None:
        self.uploads: Dict[str, Tuple[bytes, str]] = {}
        self.signed: List[Tuple[str, int]] = []

    def build_uri(self, object_key: str) -> str:
        return f"gs://{self.bucket}/{object_key}"

    def upload(self, data: bytes, object_key: str, content_type: str = "application/octet-stream") -> str:
        self.uploads[object_key] = (data, content_type)
        return self.build_uri(object_key)

    def sign_url(self, uri: str, ttl_sec: int) -> str:
        self.signed.append((uri, ttl_sec))
        return f"https://signed.example/{uri[len('gs://'):]}?ttl={ttl_sec}"


@pytest.fixture()
def fake_storage(monkeypatch) -> FakeStorage:
    fake = FakeStorage()
    monkeypatch.setattr(storage_module, "_storage", fake)
    return fake
