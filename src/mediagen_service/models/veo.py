"""Veo 3.1 video adapters (long-running predict operations)."""

from __future__ import annotations

import base64
import logging
from typing import Any, Dict

from ..errors import GenerationError
from ..schemas import MediaRef, VideoRequest
from ..storage import ObjectStorage, job_object_key
from ..utils import guess_mime_type
from . import vertex
from .base import MediaOutput, ModelAdapter, ModelOutput, OperationResult, StartResult
from .registry import REGISTRY

logger = logging.getLogger(__name__)


def _media(ref: MediaRef) -> Dict[str, str]:
    media = {"gcsUri": ref.uri}
    mime_type = ref.mime_type or guess_mime_type(ref.uri)
    if mime_type:
        media["mimeType"] = mime_type
    return media


class Veo31Adapter(ModelAdapter):
    media_type = "video"
    asynchronous = True
    request_model = VideoRequest

    def __init__(self, model_id: str, description: str) -> None:
        self.model_id = model_id
        self.description = description

    def build_body(self, request: VideoRequest, storage_uri: str) -> Dict[str, Any]:
        instance: Dict[str, Any] = {"prompt": request.prompt}
        if request.image:
            instance["image"] = _media(request.image)
        if request.video:
            instance["video"] = _media(request.video)
        if request.last_frame:
            instance["lastFrame"] = _media(request.last_frame)
        if request.reference_images:
            instance["referenceImages"] = [
                {"image": _media(ref.image), "referenceType": ref.reference_type}
                for ref in request.reference_images
            ]

        parameters: Dict[str, Any] = {
            "durationSeconds": request.duration_seconds,
            "aspectRatio": request.aspect_ratio,
            "resolution": request.resolution,
            "generateAudio": request.generate_audio,
            "sampleCount": 1,
            "storageUri": storage_uri,
        }
        if request.negative_prompt:
            parameters["negativePrompt"] = request.negative_prompt
        if request.seed is not None:
            parameters["seed"] = request.seed
        return {"instances": [instance], "parameters": parameters}

    def start(self, request: VideoRequest, job_id: str, storage: ObjectStorage) -> StartResult:  # type: ignore[override]
        # Veo writes the clip straight into the job folder.
        storage_uri = storage.build_uri(job_object_key(job_id, ""))
        operation_name = vertex.predict_long_running(self.model_id, self.build_body(request, storage_uri))
        logger.debug("Veo operation %s submitted for job %s", operation_name, job_id)
        return StartResult(operation_name=operation_name)

    def poll(self, operation_name: str) -> OperationResult:
        data = vertex.fetch_predict_operation(self.model_id, operation_name)
        if not data.get("done"):
            return OperationResult(done=False)
        error = data.get("error")
        if error:
            return OperationResult(
                done=True,
                error={"code": error.get("code"), "message": error.get("message") or "Video generation failed"},
            )
        return OperationResult(done=True, data=data.get("response") or {})

    def extract_output(self, data: Dict[str, Any], job_id: str, storage: ObjectStorage) -> ModelOutput:
        videos = data.get("videos") or []
        if not videos:
            filtered = data.get("raiMediaFilteredCount") or 0
            reasons = data.get("raiMediaFilteredReasons") or []
            if filtered:
                raise GenerationError(
                    "Video was blocked by safety filters",
                    details={"filteredCount": filtered, "reasons": reasons},
                )
            raise GenerationError("Operation finished without a video")

        video = videos[0]
        mime_type = video.get("mimeType") or "video/mp4"
        if video.get("gcsUri"):
            return ModelOutput(media=MediaOutput(uri=video["gcsUri"], mime_type=mime_type))

        encoded = video.get("bytesBase64Encoded")
        if not encoded:
            raise GenerationError("Video entry has neither gcsUri nor inline bytes")
        payload = base64.b64decode(encoded)
        uri = storage.upload(payload, job_object_key(job_id, "video-0.mp4"), content_type=mime_type)
        return ModelOutput(media=MediaOutput(uri=uri, mime_type=mime_type, size=len(payload)))


REGISTRY.register(
    Veo31Adapter(
        "veo-3.1-generate-preview",
        "Highest-quality video with audio; text-to-video, image-to-video, first/last frame, "
        "video extension and up to 3 subject reference images.",
    )
)
REGISTRY.register(
    Veo31Adapter(
        "veo-3.1-fast-generate-preview",
        "Faster, cheaper Veo 3.1 variant with the same inputs; prefer for drafts and quick clips.",
    )
)
