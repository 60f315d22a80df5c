"""Error code registry, job failure exceptions and API error helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status


@dataclass(frozen=True)
class ErrorCodeSpec:
    code: str
    en: str
    http_status: int
    terminal: bool = True


class ErrorRegistry:
    def __init__(self) -> None:
        self._codes: Dict[str, ErrorCodeSpec] = {}

    def register(self, spec: ErrorCodeSpec) -> None:
        if spec.code in self._codes:
            raise ValueError(f"Error code {spec.code} already registered")
        self._codes[spec.code] = spec

    def get(self, code: str) -> ErrorCodeSpec:
        if code not in self._codes:
            raise KeyError(f"Unknown error code: {code}")
        return self._codes[code]

    def __contains__(self, code: object) -> bool:
        return code in self._codes


ERRORS = ErrorRegistry()

# Codes written to job records.
VALIDATION_ERROR = "VALIDATION_ERROR"
START_FAILED = "START_FAILED"
AI_ANALYSIS_FAILED = "AI_ANALYSIS_FAILED"
POLL_ATTEMPTS_EXHAUSTED = "POLL_ATTEMPTS_EXHAUSTED"
GENERATION_FAILED = "GENERATION_FAILED"


DEFAULT_ERROR_SPECS = (
    ErrorCodeSpec(VALIDATION_ERROR, "Request failed schema validation", status.HTTP_422_UNPROCESSABLE_ENTITY),
    ErrorCodeSpec(START_FAILED, "Start failed", status.HTTP_502_BAD_GATEWAY),
    ErrorCodeSpec(AI_ANALYSIS_FAILED, "AI analysis failed", status.HTTP_502_BAD_GATEWAY),
    ErrorCodeSpec(
        POLL_ATTEMPTS_EXHAUSTED,
        "Backend operation did not finish within the poll attempt limit",
        status.HTTP_504_GATEWAY_TIMEOUT,
    ),
    ErrorCodeSpec(GENERATION_FAILED, "Backend generation failed", status.HTTP_502_BAD_GATEWAY),
    # API responses only
    ErrorCodeSpec("ERR_UNKNOWN_MODEL", "Unknown model identifier", status.HTTP_400_BAD_REQUEST, terminal=False),
    ErrorCodeSpec("ERR_JOB_NOT_FOUND", "Job not found", status.HTTP_404_NOT_FOUND, terminal=False),
    ErrorCodeSpec(
        "ERR_JOB_TERMINAL", "Job already reached a terminal state", status.HTTP_409_CONFLICT, terminal=False
    ),
    ErrorCodeSpec(
        "ERR_ENQUEUE_FAILED",
        "Failed to schedule job processing",
        status.HTTP_503_SERVICE_UNAVAILABLE,
        terminal=False,
    ),
)

for _spec in DEFAULT_ERROR_SPECS:
    ERRORS.register(_spec)


class JobFailure(Exception):
    """Failure that ends a job; ``code`` goes to ``error.code`` on the record."""

    code = START_FAILED

    def __init__(self, message: str, *, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        if code:
            self.code = code
        self.message = message
        self.details = details

    def to_error(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            error["details"] = self.details
        return error


class UnknownModelError(JobFailure):
    code = START_FAILED


class AdapterContractError(JobFailure):
    code = START_FAILED


class RequestValidationError(JobFailure):
    code = VALIDATION_ERROR

    def __init__(self, problems: List[str]) -> None:
        super().__init__(f"Validation failed: {', '.join(problems)}", details={"problems": problems})
        self.problems = problems


class AnalysisError(JobFailure):
    code = AI_ANALYSIS_FAILED


class GenerationError(JobFailure):
    """Backend finished the operation but produced nothing usable."""

    code = GENERATION_FAILED


class BackendError(Exception):
    """Backend HTTP call failed; callers decide whether it is transient."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LLMError(Exception):
    """Language-model call failed or returned unusable content."""


def raise_error(code: str, *, detail: Optional[str] = None) -> None:
    spec = ERRORS.get(code)
    raise HTTPException(
        status_code=spec.http_status,
        detail={
            "status": "failure",
            "error_code": spec.code,
            "message": detail or spec.en,
        },
    )
