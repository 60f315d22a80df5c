"""Gemini native image generation and editing (synchronous)."""

from __future__ import annotations

import base64
from typing import Any, Dict, List

from ..errors import GenerationError
from ..schemas import ImageRequest
from ..storage import ObjectStorage, job_object_key
from ..utils import file_extension, guess_mime_type, strip_inline_bytes
from . import vertex
from .base import MediaOutput, ModelAdapter, ModelOutput, StartResult
from .registry import REGISTRY


class GeminiImageAdapter(ModelAdapter):
    model_id = "gemini-2.5-flash-image"
    media_type = "image"
    asynchronous = False
    request_model = ImageRequest
    description = (
        "Image generation and editing; accepts up to 3 input images to edit, blend or "
        "restyle. Use for any still picture, logo, portrait or photo edit."
    )

    def build_body(self, request: ImageRequest) -> Dict[str, Any]:
        parts: List[Dict[str, Any]] = [{"text": request.prompt}]
        for ref in request.images:
            parts.append(
                {
                    "fileData": {
                        "mimeType": ref.mime_type or guess_mime_type(ref.uri) or "image/png",
                        "fileUri": ref.uri,
                    }
                }
            )
        generation_config: Dict[str, Any] = {"responseModalities": ["IMAGE"]}
        if request.aspect_ratio:
            generation_config["imageConfig"] = {"aspectRatio": request.aspect_ratio}
        return {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": generation_config,
        }

    def start(self, request: ImageRequest, job_id: str, storage: ObjectStorage) -> StartResult:  # type: ignore[override]
        data = vertex.generate_content(self.model_id, self.build_body(request))

        feedback = data.get("promptFeedback") or {}
        if feedback.get("blockReason"):
            raise GenerationError(f"Prompt blocked: {feedback['blockReason']}")

        candidates = data.get("candidates") or []
        parts = ((candidates[0].get("content") or {}).get("parts") or []) if candidates else []
        for part in parts:
            inline = part.get("inlineData")
            if not inline or not inline.get("data"):
                continue
            mime_type = inline.get("mimeType") or "image/png"
            payload = base64.b64decode(inline["data"])
            filename = f"image-{self.model_id}{file_extension(mime_type=mime_type) or '.png'}"
            uri = storage.upload(payload, job_object_key(job_id, filename), content_type=mime_type)
            return StartResult(
                output=ModelOutput(media=MediaOutput(uri=uri, mime_type=mime_type, size=len(payload))),
                raw=strip_inline_bytes(data),
            )

        texts = [part.get("text") for part in parts if part.get("text")]
        finish = candidates[0].get("finishReason") if candidates else None
        message = "Model returned no image"
        if texts:
            message = f"{message}: {' '.join(texts)[:200]}"
        raise GenerationError(message, details={"finishReason": finish} if finish else None)


REGISTRY.register(GeminiImageAdapter())
