"""Job lifecycle: claim a requested job, start it, branch into sync or async.

Every status write is conditional on the status the writer expects, so a
duplicate trigger or a concurrent cancel never overwrites a newer state.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from .analyzer import AnalyzedRequest, analyze_prompt
from .config import JobTimings
from .errors import (
    AI_ANALYSIS_FAILED,
    START_FAILED,
    AnalysisError,
    JobFailure,
    RequestValidationError,
    UnknownModelError,
)
from .files import build_files
from .models import get_model_adapter, is_valid_model_id
from .monitoring import record_job_finished
from .poller import PollQueue, enqueue_poll_task
from .schemas import JobStatus, moves_to, terminal_updates, validate_request
from .storage import ObjectStorage
from .store import JobStore, Record, status_in
from .utils import now_ms
from .version import SERVICE_VERSION

logger = logging.getLogger(__name__)

Analyzer = Callable[[str], AnalyzedRequest]


def new_job_record(
    owner_id: str,
    *,
    model_id: Optional[str] = None,
    request: Optional[Dict[str, Any]] = None,
    prompt: Optional[str] = None,
    now: Optional[int] = None,
) -> Dict[str, Any]:
    """Wire-format record for a freshly submitted job (structured or free text)."""

    if (request is None) == (prompt is None):
        raise ValueError("Provide exactly one of request or prompt")
    created = now if now is not None else now_ms()
    record: Dict[str, Any] = {
        "ownerId": owner_id,
        "status": JobStatus.REQUESTED.value,
        "metadata": {"version": SERVICE_VERSION, "createdAt": created, "updatedAt": created},
    }
    if request is not None:
        record["modelId"] = model_id
        record["request"] = dict(request)
    else:
        record["assisted"] = {"prompt": prompt, "reasons": []}
    return record


def _start_failure(exc: JobFailure) -> Dict[str, Any]:
    error = exc.to_error()
    if exc.code != START_FAILED:
        error["details"] = {**(exc.details or {}), "cause": exc.code}
    error["code"] = START_FAILED
    return error


def _unclaimed_free_text(record: Record) -> bool:
    assisted = record.get("assisted") or {}
    metadata = record.get("metadata") or {}
    return (
        record.get("status") == JobStatus.REQUESTED.value
        and record.get("request") is None
        and bool(assisted.get("prompt"))
        and not metadata.get("analysisStartedAt")
    )


class JobOrchestrator:
    def __init__(
        self,
        store: JobStore,
        queue: PollQueue,
        storage: ObjectStorage,
        timings: JobTimings,
        *,
        clock: Callable[[], int] = now_ms,
        analyzer: Analyzer = analyze_prompt,
    ) -> None:
        self.store = store
        self.queue = queue
        self.storage = storage
        self.timings = timings
        self.clock = clock
        self.analyzer = analyzer

    # -- entry points -----------------------------------------------------

    def handle_created(self, job_id: str) -> None:
        """Route a newly created record to analysis or straight to start."""

        record = self.store.get(job_id)
        if record is None:
            logger.warning("Created trigger for missing job %s", job_id)
            return
        if record.get("status") != JobStatus.REQUESTED.value:
            logger.debug("Job %s already %s; ignoring created trigger", job_id, record.get("status"))
            return
        if record.get("request") is None and (record.get("assisted") or {}).get("prompt"):
            self.analyze_and_transform_job(job_id)
        else:
            self.start_job(job_id)

    def start_job(self, job_id: str) -> None:
        now = self.clock()
        claimed = self.store.update_if(
            job_id,
            moves_to(JobStatus.STARTING, JobStatus.REQUESTED),
            {"status": JobStatus.STARTING.value, "metadata/updatedAt": now},
        )
        if claimed is None:
            logger.info("Job %s not startable (missing or already claimed)", job_id)
            return

        try:
            self._start_claimed(job_id, claimed)
        except RequestValidationError as exc:
            logger.warning("Job %s request is invalid: %s", job_id, exc)
            self._fail(job_id, exc.to_error(), expected=(JobStatus.STARTING, JobStatus.RUNNING))
        except JobFailure as exc:
            logger.warning("Job %s failed to start: %s", job_id, exc)
            self._fail(job_id, _start_failure(exc), expected=(JobStatus.STARTING, JobStatus.RUNNING))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Job %s failed to start", job_id)
            self._fail(
                job_id,
                {"code": START_FAILED, "message": str(exc) or "Start failed"},
                expected=(JobStatus.STARTING, JobStatus.RUNNING),
            )

    def analyze_and_transform_job(self, job_id: str) -> None:
        now = self.clock()
        claimed = self.store.update_if(
            job_id,
            _unclaimed_free_text,
            {"metadata/analysisStartedAt": now, "metadata/updatedAt": now},
        )
        if claimed is None:
            logger.info("Job %s not eligible for analysis (missing or already claimed)", job_id)
            return

        prompt = claimed["assisted"]["prompt"]
        logger.info("Analyzing free-text job %s (%s chars)", job_id, len(prompt))
        try:
            analyzed = self.analyzer(prompt)
        except RequestValidationError as exc:
            logger.warning("Job %s analysis produced an invalid request: %s", job_id, exc)
            self._fail(job_id, exc.to_error(), expected=(JobStatus.REQUESTED,))
            return
        except AnalysisError as exc:
            logger.warning("Job %s analysis failed: %s", job_id, exc)
            self._fail(job_id, self._analysis_error(exc.message), expected=(JobStatus.REQUESTED,))
            return
        except Exception as exc:  # noqa: BLE001
            logger.exception("Job %s analysis crashed", job_id)
            self._fail(job_id, self._analysis_error(str(exc)), expected=(JobStatus.REQUESTED,))
            return

        transformed = self.store.update_if(
            job_id,
            status_in(JobStatus.REQUESTED),
            {
                "modelId": analyzed.model_id,
                "request": analyzed.request,
                "assisted/reasons": list(analyzed.reasons),
                "metadata/updatedAt": self.clock(),
            },
        )
        if transformed is None:
            logger.info("Job %s changed during analysis; not starting", job_id)
            return
        logger.info("Job %s transformed to %s request", job_id, analyzed.model_id)
        self.start_job(job_id)

    def cancel_job(self, job_id: str) -> Optional[Record]:
        """Cancel a non-terminal job; returns the written record or ``None``."""

        written = self.store.update_if(
            job_id, moves_to(JobStatus.CANCELED), terminal_updates(JobStatus.CANCELED, self.clock())
        )
        if written is not None:
            record_job_finished(JobStatus.CANCELED.value)
            logger.info("Job %s canceled", job_id)
        return written

    # -- helpers ------------------------------------------------------------

    @staticmethod
    def _analysis_error(message: str) -> Dict[str, Any]:
        return {"code": AI_ANALYSIS_FAILED, "message": f"AI analysis failed: {message}"}

    def _fail(self, job_id: str, error: Dict[str, Any], *, expected: tuple) -> None:
        written = self.store.update_if(
            job_id,
            moves_to(JobStatus.FAILED, *expected),
            terminal_updates(JobStatus.FAILED, self.clock(), {"error": error}),
        )
        if written is None:
            logger.info("Job %s moved on before failure could be recorded", job_id)
            return
        record_job_finished(JobStatus.FAILED.value, error.get("code"))

    def _start_claimed(self, job_id: str, claimed: Record) -> None:
        model_id = claimed.get("modelId")
        if not is_valid_model_id(model_id):
            raise UnknownModelError(f"Unknown model ID: {model_id}" if model_id else "Job has no model ID")
        adapter = get_model_adapter(model_id)
        request = validate_request(model_id, claimed.get("request"))

        result = adapter.start(request, job_id, self.storage)
        result.check()

        if result.operation_name:
            now = self.clock()
            running = self.store.update_if(
                job_id,
                moves_to(JobStatus.RUNNING, JobStatus.STARTING),
                {
                    "status": JobStatus.RUNNING.value,
                    "metadata/updatedAt": now,
                    "metadata/operation": result.operation_name,
                    "metadata/ttl": now + self.timings.ttl_ms,
                    "metadata/attempt": 0,
                    "metadata/nextPoll": now + self.timings.poll_interval_ms,
                },
            )
            if running is None:
                logger.info("Job %s left starting state before operation %s was recorded", job_id, result.operation_name)
                return
            enqueue_poll_task(self.queue, self.store.job_path(job_id), self.timings)
            logger.info("Job %s started (async) operation=%s", job_id, result.operation_name)
            return

        output = result.output
        files = build_files(output, self.storage, self.timings.signed_url_ttl_sec)
        fields: Dict[str, Any] = {"response": {"raw": result.raw or {}, "output": output.to_wire()}}
        if files:
            fields["files"] = files
        written = self.store.update_if(
            job_id,
            moves_to(JobStatus.SUCCEEDED, JobStatus.STARTING),
            terminal_updates(JobStatus.SUCCEEDED, self.clock(), fields),
        )
        if written is None:
            logger.info("Job %s left starting state before its output was recorded", job_id)
            return
        record_job_finished(JobStatus.SUCCEEDED.value)
        if output.media is not None:
            logger.info("Job %s completed (sync) uri=%s", job_id, output.media.uri)
        else:
            logger.info("Job %s completed (sync) text_length=%s", job_id, len(output.text or ""))


__all__ = ["JobOrchestrator", "new_job_record"]
