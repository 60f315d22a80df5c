"""Prometheus metrics for the job lifecycle and dependency probes for /monitor/health."""

from __future__ import annotations

import logging
from typing import Callable, Dict

from minio.error import S3Error
from prometheus_client import Counter, Gauge, start_http_server
import redis
from redis.exceptions import RedisError

from .config import Settings
from .storage import _build_client

logger = logging.getLogger(__name__)

JOBS_CREATED = Counter(
    "mediagen_jobs_created_total",
    "Job records created through the API",
    labelnames=("mode",),
)
JOBS_FINISHED = Counter(
    "mediagen_jobs_finished_total",
    "Jobs that reached a terminal status, by status and error code",
    labelnames=("status", "code"),
)
POLL_OUTCOMES = Counter(
    "mediagen_poll_ticks_total",
    "Poll ticks by outcome label",
    labelnames=("outcome",),
)
QUEUE_DEPTH = Gauge(
    "mediagen_queue_depth",
    "Messages waiting in the job queue on the broker",
)
CELERY_WORKERS = Gauge(
    "mediagen_active_celery_workers",
    "Celery workers answering ping",
)

PROBE_TIMEOUT_SEC = 2

_metrics_started = False


def ensure_metrics_server(port: int) -> None:
    global _metrics_started
    if _metrics_started:
        return
    start_http_server(port)
    _metrics_started = True
    logger.info("Metrics endpoint listening on :%s", port)


def record_job_created(mode: str) -> None:
    JOBS_CREATED.labels(mode=mode).inc()


def record_job_finished(status: str, code: str | None = None) -> None:
    JOBS_FINISHED.labels(status=status, code=code or "").inc()


def record_poll_outcome(outcome: str) -> None:
    POLL_OUTCOMES.labels(outcome=outcome).inc()


def _error(exc: BaseException) -> str:
    return f"error:{exc.__class__.__name__}"


def _redis_client(url: str) -> redis.Redis:
    return redis.Redis.from_url(url, socket_connect_timeout=PROBE_TIMEOUT_SEC, socket_timeout=PROBE_TIMEOUT_SEC)


def _check_redis(settings: Settings) -> str:
    """Broker reachability; also samples the job queue length."""

    try:
        client = _redis_client(settings.celery.broker_url)
        client.ping()
        QUEUE_DEPTH.set(client.llen(settings.celery.default_queue))
    except RedisError as exc:
        QUEUE_DEPTH.set(float("nan"))
        logger.warning("Broker probe failed: %s", exc)
        return _error(exc)
    return "ok"


def _check_store(settings: Settings) -> str:
    if settings.store.backend == "memory":
        return "memory"
    try:
        _redis_client(settings.store.url).ping()
    except RedisError as exc:
        logger.warning("Job store probe failed: %s", exc)
        return _error(exc)
    return "ok"


def _check_minio(settings: Settings) -> str:
    try:
        found = _build_client(settings.minio).bucket_exists(settings.minio.bucket)
    except S3Error as exc:
        logger.warning("Output bucket probe failed: %s", exc)
        return f"error:{exc.code}"
    except Exception as exc:  # pragma: no cover
        logger.exception("Output bucket probe crashed")
        return _error(exc)
    return "ok" if found else "missing-bucket"


def _check_celery_workers(celery_app) -> str:
    try:
        replies = celery_app.control.ping(timeout=1) or []
    except Exception as exc:  # pragma: no cover
        CELERY_WORKERS.set(0)
        logger.warning("Worker ping failed: %s", exc)
        return _error(exc)
    CELERY_WORKERS.set(len(replies))
    return "ok" if replies else "no-worker"


def collect_dependency_status(settings: Settings, celery_app) -> Dict[str, str]:
    """Run every probe and update the gauges; values are ``ok`` or a short error label."""

    probes: Dict[str, Callable[[], str]] = {
        "redis": lambda: _check_redis(settings),
        "store": lambda: _check_store(settings),
        "minio": lambda: _check_minio(settings),
        "celery": lambda: _check_celery_workers(celery_app),
    }
    return {name: probe() for name, probe in probes.items()}
