"""Service settings (env + optional YAML file) and the job timing windows derived from them."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class JobSettings(BaseModel):
    ttl_sec: int = Field(90 * 60, ge=1)
    poll_interval_sec: int = Field(5, ge=1)
    max_poll_attempts: int = Field(1200, ge=1)
    signed_url_ttl_sec: int = Field(24 * 60 * 60, ge=60, le=7 * 24 * 60 * 60)
    dispatch_deadline_sec: int = Field(60, ge=1)


class StoreSettings(BaseModel):
    backend: Literal["redis", "memory"] = "redis"
    url: str = "redis://localhost:6379/3"
    channel: str = "mediagen-jobs:events"
    max_cas_retries: int = Field(10, ge=1)


class LoggingSettings(BaseModel):
    level: str = "INFO"
    log_dir: str = "./logs"
    max_log_file_size_mb: int = 100
    backup_count: int = 7


class MonitoringSettings(BaseModel):
    prometheus_port: int = 9095
    enabled: bool = True


class StorageSettings(BaseModel):
    # GCS buckets are reached through their S3-compatible XML endpoint with HMAC keys.
    endpoint: str = "https://storage.googleapis.com"
    access_key: str = "access_key"
    secret_key: str = "secret_key"
    bucket: str = "mediagen-outputs"
    region: Optional[str] = "auto"
    secure: Optional[bool] = None
    uri_scheme: str = "gs"


class CeleryQueueSettings(BaseModel):
    broker_url: str = "redis://localhost:6379/0"
    result_backend: str = "redis://localhost:6379/1"
    default_queue: str = "mediagen"
    task_time_limit_sec: int = 300
    prefetch_multiplier: int = 4


class LLMSettings(BaseModel):
    api_key: Optional[str] = None
    api_base: str = "https://generativelanguage.googleapis.com/v1beta/openai"
    model: str = "gemini-2.5-flash"
    request_timeout_sec: int = 60
    strict_schema: bool = True
    seed: int = 0


class VertexSettings(BaseModel):
    project: str = "my-project"
    location: str = "us-central1"
    api_base: Optional[str] = None
    access_token: Optional[str] = None
    api_key: Optional[str] = None
    # Kept below jobs.dispatch_deadline_sec (checked on Settings).
    request_timeout_sec: int = Field(45, ge=1)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MEDIAGEN_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow",
    )

    service_name: str = "mediagen-service"
    environment: str = "dev"
    api_version: str = "v1"
    base_url: str = "/api/v1"
    jobs_prefix: str = "mediagen-jobs"

    jobs: JobSettings = JobSettings()
    store: StoreSettings = StoreSettings()
    logging: LoggingSettings = LoggingSettings()
    monitoring: MonitoringSettings = MonitoringSettings()
    minio: StorageSettings = StorageSettings()
    celery: CeleryQueueSettings = CeleryQueueSettings()
    llm: LLMSettings = LLMSettings()
    vertex: VertexSettings = VertexSettings()

    @model_validator(mode="after")
    def _check_poll_deadline(self) -> "Settings":
        if self.vertex.request_timeout_sec >= self.jobs.dispatch_deadline_sec:
            raise ValueError(
                f"vertex.request_timeout_sec ({self.vertex.request_timeout_sec}) must be below "
                f"jobs.dispatch_deadline_sec ({self.jobs.dispatch_deadline_sec})"
            )
        return self

    @classmethod
    def from_source(cls, *, config_file: str | Path | None = None, **overrides: Any) -> "Settings":
        """YAML values first, then ``overrides``; env vars fill whatever neither sets."""

        data = _read_yaml(Path(config_file)) if config_file else {}
        data.update(overrides)
        return cls(**data)


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        raise FileNotFoundError(f"Settings file {path} does not exist")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a mapping at the top level")
    return data


@dataclass(frozen=True)
class JobTimings:
    """Time windows handed to the orchestrator and poll scheduler.

    All values are milliseconds except ``max_poll_attempts``, matching the
    epoch-millisecond timestamps stored on job records.
    """

    ttl_ms: int
    poll_interval_ms: int
    max_poll_attempts: int
    signed_url_ttl_sec: int
    dispatch_deadline_sec: int

    @classmethod
    def from_settings(cls, settings: Settings) -> "JobTimings":
        jobs = settings.jobs
        return cls(
            ttl_ms=jobs.ttl_sec * 1000,
            poll_interval_ms=jobs.poll_interval_sec * 1000,
            max_poll_attempts=jobs.max_poll_attempts,
            signed_url_ttl_sec=jobs.signed_url_ttl_sec,
            dispatch_deadline_sec=jobs.dispatch_deadline_sec,
        )

    @property
    def poll_delay_sec(self) -> int:
        return max(1, -(-self.poll_interval_ms // 1000))


DEFAULT_CONFIG_FILE = Path("config") / "settings.yaml"


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings: ``MEDIAGEN_CONFIG_FILE``, else ./config/settings.yaml, else env only."""

    explicit = os.getenv("MEDIAGEN_CONFIG_FILE")
    if explicit:
        return Settings.from_source(config_file=explicit)
    if DEFAULT_CONFIG_FILE.is_file():
        return Settings.from_source(config_file=DEFAULT_CONFIG_FILE)
    return Settings()


def reload_settings() -> None:
    get_settings.cache_clear()


def settings_dependency() -> Settings:
    return get_settings()
