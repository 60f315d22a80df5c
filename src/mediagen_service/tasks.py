"""Celery tasks: the record-created trigger and the delayed poll tick."""

from __future__ import annotations

import threading
from typing import Any, Dict, Optional

import structlog

from .celery_app import mediagen_celery
from .config import JobTimings, get_settings
from .monitoring import record_poll_outcome
from .orchestrator import JobOrchestrator
from .poller import PollScheduler
from .storage import get_storage
from .store import JobStore, build_job_store

logger = structlog.get_logger(__name__)

_lock = threading.Lock()
_store: Optional[JobStore] = None


def get_job_store() -> JobStore:
    global _store
    if _store is not None:
        return _store
    with _lock:
        if _store is None:
            _store = build_job_store(get_settings())
        return _store


def get_timings() -> JobTimings:
    return JobTimings.from_settings(get_settings())


# Seconds between the soft limit a tick can handle and the hard kill.
HARD_LIMIT_GRACE_SEC = 10


class CeleryTaskQueue:
    """Delayed-task queue backed by the ``jobs.poll`` Celery task.

    The dispatch deadline becomes the soft time limit, so an overrunning tick
    sees ``SoftTimeLimitExceeded`` and reschedules itself before the hard kill.
    """

    def enqueue(self, payload: Dict[str, Any], *, delay_seconds: int, dispatch_deadline_seconds: int) -> None:
        poll_job.apply_async(
            args=[payload],
            countdown=delay_seconds,
            soft_time_limit=dispatch_deadline_seconds,
            time_limit=dispatch_deadline_seconds + HARD_LIMIT_GRACE_SEC,
        )


def build_orchestrator() -> JobOrchestrator:
    return JobOrchestrator(get_job_store(), CeleryTaskQueue(), get_storage(), get_timings())


def build_scheduler() -> PollScheduler:
    return PollScheduler(get_job_store(), CeleryTaskQueue(), get_storage(), get_timings())


@mediagen_celery.task(name="jobs.on_created")
def on_job_created(job_path: str) -> Dict[str, Any]:
    orchestrator = build_orchestrator()
    job_id = orchestrator.store.job_id_from_path(job_path)
    with structlog.contextvars.bound_contextvars(job_id=job_id):
        logger.info("job_created_trigger")
        orchestrator.handle_created(job_id)
        record = orchestrator.store.get(job_id) or {}
        logger.info("job_created_handled", status=record.get("status"))
    return {"jobId": job_id, "status": record.get("status")}


@mediagen_celery.task(name="jobs.poll", acks_late=True, reject_on_worker_lost=True)
def poll_job(payload: Dict[str, Any]) -> Dict[str, Any]:
    job_path = payload.get("jobPath") if isinstance(payload, dict) else None
    if not job_path:
        logger.warning("poll_payload_invalid", payload=payload)
        record_poll_outcome("invalid")
        return {"outcome": "invalid"}

    outcome = build_scheduler().poll_tick(job_path)
    record_poll_outcome(outcome)
    logger.bind(job_path=job_path).debug("poll_tick", outcome=outcome)
    return {"jobPath": job_path, "outcome": outcome}


__all__ = [
    "CeleryTaskQueue",
    "build_orchestrator",
    "build_scheduler",
    "get_job_store",
    "get_timings",
    "on_job_created",
    "poll_job",
]
