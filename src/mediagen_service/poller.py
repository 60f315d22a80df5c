"""Poll scheduler: one tick per delayed task for jobs with an outstanding operation.

Each tick re-reads the record, applies the two circuit breakers (absolute TTL
and attempt ceiling), asks the adapter for the operation status and either
writes a terminal status or bumps ``metadata/attempt`` and schedules the next
tick. The bump is conditional on the attempt the tick observed, so a duplicate
delivery that loses the race stops instead of forking a second poll chain.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

from celery.exceptions import SoftTimeLimitExceeded

from .config import JobTimings
from .errors import GENERATION_FAILED, POLL_ATTEMPTS_EXHAUSTED, JobFailure
from .files import build_files
from .models import get_model_adapter
from .monitoring import record_job_finished
from .schemas import JobStatus, is_terminal, moves_to, terminal_updates
from .storage import ObjectStorage
from .store import JobStore, Record
from .utils import now_ms, strip_inline_bytes

logger = logging.getLogger(__name__)


class PollQueue(Protocol):
    def enqueue(self, payload: Dict[str, Any], *, delay_seconds: int, dispatch_deadline_seconds: int) -> None:
        ...


def enqueue_poll_task(queue: PollQueue, job_path: str, timings: JobTimings) -> None:
    queue.enqueue(
        {"jobPath": job_path},
        delay_seconds=timings.poll_delay_sec,
        dispatch_deadline_seconds=timings.dispatch_deadline_sec,
    )


def is_job_terminal(record: Mapping[str, Any]) -> bool:
    return is_terminal(record.get("status"))


def is_job_expired(record: Mapping[str, Any], now: int) -> bool:
    ttl = (record.get("metadata") or {}).get("ttl")
    return ttl is not None and now > int(ttl)


def _running_at_attempt(attempt: int) -> Callable[[Record], bool]:
    def _predicate(record: Record) -> bool:
        metadata = record.get("metadata") or {}
        return record.get("status") == JobStatus.RUNNING.value and int(metadata.get("attempt") or 0) == attempt

    return _predicate


class PollScheduler:
    def __init__(
        self,
        store: JobStore,
        queue: PollQueue,
        storage: ObjectStorage,
        timings: JobTimings,
        *,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.store = store
        self.queue = queue
        self.storage = storage
        self.timings = timings
        self.clock = clock

    def _finish(self, job_id: str, status: JobStatus, fields: Optional[Dict[str, Any]] = None) -> bool:
        written = self.store.update_if(
            job_id, moves_to(status, JobStatus.RUNNING), terminal_updates(status, self.clock(), fields)
        )
        if written is None:
            logger.info("Job %s left running state before %s could be written", job_id, status.value)
            return False
        code = ((fields or {}).get("error") or {}).get("code")
        record_job_finished(status.value, code)
        logger.info("Job %s finished with status %s", job_id, status.value)
        return True

    def _fail(self, job_id: str, error: Dict[str, Any]) -> str:
        self._finish(job_id, JobStatus.FAILED, {"error": error})
        return "failed"

    def _reschedule(self, job_id: str, job_path: str, attempt: int, *, transient: bool) -> str:
        now = self.clock()
        updates: Dict[str, Any] = {
            "metadata/attempt": attempt + 1,
            "metadata/nextPoll": now + self.timings.poll_interval_ms,
            "metadata/updatedAt": now,
        }
        if transient:
            updates["metadata/lastError"] = now
        if self.store.update_if(job_id, _running_at_attempt(attempt), updates) is None:
            logger.info("Job %s attempt %s already advanced or job stopped; dropping tick", job_id, attempt)
            return "duplicate"
        enqueue_poll_task(self.queue, job_path, self.timings)
        return "transient" if transient else "pending"

    def poll_tick(self, job_path: str) -> str:
        """Advance one job by one tick; returns a short outcome label."""

        job_id = self.store.job_id_from_path(job_path)
        record = self.store.get(job_id)
        if record is None:
            logger.warning("Poll tick for missing job %s", job_path)
            return "missing"
        if is_job_terminal(record):
            return "terminal"
        if record.get("status") != JobStatus.RUNNING.value:
            logger.debug("Job %s is %s; nothing to poll", job_id, record.get("status"))
            return "not-running"

        metadata = record.get("metadata") or {}
        attempt = int(metadata.get("attempt") or 0)
        if is_job_expired(record, self.clock()):
            self._finish(job_id, JobStatus.EXPIRED)
            return "expired"
        if attempt >= self.timings.max_poll_attempts:
            self._fail(
                job_id,
                {
                    "code": POLL_ATTEMPTS_EXHAUSTED,
                    "message": f"Operation did not finish after {attempt} poll attempts",
                    "details": {"attempts": attempt},
                },
            )
            return "exhausted"

        operation = metadata.get("operation")
        if not operation:
            return self._fail(job_id, {"code": GENERATION_FAILED, "message": "Running job has no operation handle"})

        try:
            adapter = get_model_adapter(record.get("modelId") or "")
            result = adapter.poll(operation)
            if not result.done:
                return self._reschedule(job_id, job_path, attempt, transient=False)
            if result.error:
                code = result.error.get("code")
                return self._fail(
                    job_id,
                    {
                        "code": str(code) if code is not None else GENERATION_FAILED,
                        "message": str(result.error.get("message") or "Generation failed"),
                    },
                )
            data = result.data or {}
            output = adapter.extract_output(data, job_id, self.storage)
            files = build_files(output, self.storage, self.timings.signed_url_ttl_sec)
        except SoftTimeLimitExceeded:
            logger.warning("Poll tick for job %s hit its time limit (attempt %s); rescheduling", job_id, attempt)
            return self._reschedule(job_id, job_path, attempt, transient=True)
        except JobFailure as exc:
            logger.warning("Job %s failed while finishing operation %s: %s", job_id, operation, exc)
            return self._fail(job_id, exc.to_error())
        except Exception as exc:  # noqa: BLE001
            logger.warning("Transient poll failure for job %s (attempt %s): %s", job_id, attempt, exc)
            return self._reschedule(job_id, job_path, attempt, transient=True)

        fields: Dict[str, Any] = {"response": {"raw": strip_inline_bytes(data), "output": output.to_wire()}}
        if files:
            fields["files"] = files
        if not self._finish(job_id, JobStatus.SUCCEEDED, fields):
            return "duplicate"
        return "succeeded"


__all__ = ["PollQueue", "PollScheduler", "enqueue_poll_task", "is_job_expired", "is_job_terminal"]
