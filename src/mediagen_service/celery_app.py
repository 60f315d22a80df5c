"""Celery app running the job trigger handlers."""

from __future__ import annotations

import errno
import logging

from celery import Celery, signals

from .config import get_settings
from .logging import configure_logging
from .monitoring import ensure_metrics_server

logger = logging.getLogger(__name__)

settings = get_settings()

mediagen_celery = Celery(
    settings.service_name,
    broker=settings.celery.broker_url,
    backend=settings.celery.result_backend,
)

mediagen_celery.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_default_queue=settings.celery.default_queue,
    task_routes={"jobs.*": {"queue": settings.celery.default_queue}},
    task_time_limit=settings.celery.task_time_limit_sec,
    worker_prefetch_multiplier=settings.celery.prefetch_multiplier,
    task_acks_late=True,
)

mediagen_celery.autodiscover_tasks(["mediagen_service"])


@signals.worker_process_init.connect
def _on_worker_process_init(**_kwargs) -> None:
    configure_logging(settings.logging, component="worker")


@signals.worker_ready.connect
def _on_worker_ready(sender=None, **kwargs) -> None:  # type: ignore[override]
    if not settings.monitoring.enabled:
        return
    try:
        ensure_metrics_server(settings.monitoring.prometheus_port + 1)
    except OSError as exc:  # pragma: no cover
        if exc.errno != errno.EADDRINUSE:
            raise
        logger.debug("Worker metrics server already running", exc_info=exc)
