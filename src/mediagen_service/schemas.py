"""Job status graph, terminal writes and per-media request shapes."""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Literal, Mapping, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from .errors import RequestValidationError, UnknownModelError


class JobStatus(str, Enum):
    REQUESTED = "requested"
    STARTING = "starting"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELED = "canceled"


TERMINAL_STATUSES: FrozenSet[JobStatus] = frozenset(
    {JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.EXPIRED, JobStatus.CANCELED}
)

ALLOWED_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.REQUESTED: frozenset({JobStatus.STARTING, JobStatus.FAILED, JobStatus.CANCELED}),
    JobStatus.STARTING: frozenset(
        {JobStatus.RUNNING, JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELED}
    ),
    JobStatus.RUNNING: frozenset(
        {JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.EXPIRED, JobStatus.CANCELED}
    ),
}


def is_terminal(status: str | JobStatus | None) -> bool:
    try:
        return JobStatus(status) in TERMINAL_STATUSES
    except ValueError:
        return False


def can_transition(current: str | JobStatus | None, target: str | JobStatus) -> bool:
    try:
        src = JobStatus(current)
    except ValueError:
        return False
    return JobStatus(target) in ALLOWED_TRANSITIONS.get(src, frozenset())


def moves_to(target: JobStatus, *sources: JobStatus) -> Callable[[Mapping[str, Any]], bool]:
    """Write guard for a status change: the graph allows it and, if given, the record is in ``sources``."""

    expected = {source.value for source in sources}

    def _predicate(record: Mapping[str, Any]) -> bool:
        current = record.get("status")
        if expected and current not in expected:
            return False
        return can_transition(current, target)

    return _predicate


# ---------------------------------------------------------------------------
# Request shapes
# ---------------------------------------------------------------------------


class RequestShape(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


STORAGE_URI_PATTERN = r"^gs://[a-z0-9][a-z0-9._-]*[a-z0-9]/.+$"
MIME_TYPE_PATTERN = r"^[a-z]+/[A-Za-z0-9.+-]+$"


class MediaRef(RequestShape):
    uri: str = Field(..., pattern=STORAGE_URI_PATTERN)
    mime_type: Optional[str] = Field(None, pattern=MIME_TYPE_PATTERN)


class ReferenceImage(RequestShape):
    image: MediaRef
    reference_type: Literal["asset", "style"] = "asset"


class VideoRequest(RequestShape):
    type: Literal["video"]
    prompt: str = Field(..., min_length=1, max_length=4000)
    negative_prompt: Optional[str] = Field(None, max_length=2000)
    duration_seconds: Literal[4, 6, 8] = 8
    aspect_ratio: Literal["16:9", "9:16"] = "16:9"
    resolution: Literal["720p", "1080p"] = "720p"
    generate_audio: bool = True
    seed: Optional[int] = Field(None, ge=0, le=4294967295)
    image: Optional[MediaRef] = None
    last_frame: Optional[MediaRef] = None
    video: Optional[MediaRef] = None
    reference_images: List[ReferenceImage] = Field(default_factory=list, max_length=3)

    @model_validator(mode="after")
    def _check_media_combinations(self) -> "VideoRequest":
        if self.image and self.video:
            raise ValueError("image and video cannot be combined")
        if self.last_frame and not (self.image or self.video):
            raise ValueError("lastFrame requires image or video")
        if self.reference_images:
            if self.image or self.video:
                raise ValueError("referenceImages cannot be combined with image or video")
            if self.duration_seconds != 8:
                raise ValueError("referenceImages require durationSeconds=8")
        return self


class ImageRequest(RequestShape):
    type: Literal["image"]
    prompt: str = Field(..., min_length=1, max_length=8000)
    aspect_ratio: Optional[
        Literal["1:1", "2:3", "3:2", "3:4", "4:3", "4:5", "5:4", "9:16", "16:9", "21:9"]
    ] = None
    images: List[MediaRef] = Field(default_factory=list, max_length=3)


TTS_VOICES = (
    "Zephyr", "Puck", "Charon", "Kore", "Fenrir", "Leda", "Orus", "Aoede",
    "Callirrhoe", "Autonoe", "Enceladus", "Iapetus", "Umbriel", "Algieba",
    "Despina", "Erinome", "Algenib", "Rasalgethi", "Laomedeia", "Achernar",
    "Alnilam", "Schedar", "Gacrux", "Pulcherrima", "Achird", "Zubenelgenubi",
    "Vindemiatrix", "Sadachbia", "Sadaltager", "Sulafat",
)

Voice = Literal[TTS_VOICES]  # type: ignore[valid-type]


class AudioRequest(RequestShape):
    type: Literal["audio"]
    text: str = Field(..., min_length=1, max_length=5000)
    voice: Voice = "Kore"
    style_prompt: Optional[str] = Field(None, max_length=1000)


class TextRequest(RequestShape):
    type: Literal["text"]
    prompt: str = Field(..., min_length=1)
    system_instruction: Optional[str] = None
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0)
    max_output_tokens: Optional[int] = Field(None, ge=1, le=65536)
    attachments: List[MediaRef] = Field(default_factory=list, max_length=10)


def format_validation_problems(exc: ValidationError) -> List[str]:
    problems: List[str] = []
    for err in exc.errors():
        path = ".".join(str(part) for part in err.get("loc", ()))
        msg = err.get("msg", "invalid value")
        problems.append(f"{path}: {msg}" if path else msg)
    return problems


def request_shape_for(model_id: str) -> Type[RequestShape]:
    from .models import get_model_adapter, is_valid_model_id

    if not is_valid_model_id(model_id):
        raise UnknownModelError(f"Unknown model ID: {model_id}")
    return get_model_adapter(model_id).request_model


def validate_request(model_id: str, payload: Mapping[str, Any] | None) -> RequestShape:
    """Validate ``payload`` against the request shape that ``model_id`` accepts."""

    shape = request_shape_for(model_id)
    if not isinstance(payload, Mapping):
        raise RequestValidationError(["request: must be an object"])
    try:
        return shape.model_validate(dict(payload))
    except ValidationError as exc:
        raise RequestValidationError(format_validation_problems(exc)) from exc


POLLING_FIELDS = ("operation", "ttl", "attempt", "nextPoll", "lastError")


def terminal_updates(status: JobStatus, now: int, fields: Mapping[str, Any] | None = None) -> Dict[str, Any]:
    """Field-path updates for a terminal write; polling metadata is cleared."""

    if status not in TERMINAL_STATUSES:
        raise ValueError(f"{status} is not a terminal status")
    updates: Dict[str, Any] = {"status": status.value, "metadata/updatedAt": now}
    for name in POLLING_FIELDS:
        updates[f"metadata/{name}"] = None
    updates.update(fields or {})
    return updates


__all__ = [
    "ALLOWED_TRANSITIONS",
    "POLLING_FIELDS",
    "AudioRequest",
    "ImageRequest",
    "JobStatus",
    "MediaRef",
    "ReferenceImage",
    "RequestShape",
    "TERMINAL_STATUSES",
    "TextRequest",
    "VideoRequest",
    "can_transition",
    "format_validation_problems",
    "is_terminal",
    "moves_to",
    "request_shape_for",
    "terminal_updates",
    "validate_request",
]
