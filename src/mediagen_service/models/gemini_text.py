"""Gemini text generation adapters; outputs stay inline on the record."""

from __future__ import annotations

from typing import Any, Dict, List

from ..errors import GenerationError
from ..schemas import TextRequest
from ..storage import ObjectStorage
from ..utils import guess_mime_type
from . import vertex
from .base import ModelAdapter, ModelOutput, StartResult
from .registry import REGISTRY


class GeminiTextAdapter(ModelAdapter):
    media_type = "text"
    asynchronous = False
    request_model = TextRequest

    def __init__(self, model_id: str, description: str) -> None:
        self.model_id = model_id
        self.description = description

    def build_body(self, request: TextRequest) -> Dict[str, Any]:
        parts: List[Dict[str, Any]] = [{"text": request.prompt}]
        for ref in request.attachments:
            parts.append(
                {
                    "fileData": {
                        "mimeType": ref.mime_type or guess_mime_type(ref.uri) or "application/octet-stream",
                        "fileUri": ref.uri,
                    }
                }
            )
        body: Dict[str, Any] = {"contents": [{"role": "user", "parts": parts}]}
        if request.system_instruction:
            body["systemInstruction"] = {"parts": [{"text": request.system_instruction}]}
        config: Dict[str, Any] = {}
        if request.temperature is not None:
            config["temperature"] = request.temperature
        if request.max_output_tokens is not None:
            config["maxOutputTokens"] = request.max_output_tokens
        if config:
            body["generationConfig"] = config
        return body

    def start(self, request: TextRequest, job_id: str, storage: ObjectStorage) -> StartResult:  # type: ignore[override]
        data = vertex.generate_content(self.model_id, self.build_body(request))
        feedback = data.get("promptFeedback") or {}
        if feedback.get("blockReason"):
            raise GenerationError(f"Prompt blocked: {feedback['blockReason']}")

        candidates = data.get("candidates") or []
        parts = ((candidates[0].get("content") or {}).get("parts") or []) if candidates else []
        text = "".join(part.get("text", "") for part in parts if not part.get("thought"))
        if not text:
            raise GenerationError("Model returned no text")
        return StartResult(output=ModelOutput(text=text), raw=data)


REGISTRY.register(
    GeminiTextAdapter(
        "gemini-2.5-flash",
        "General text generation, summaries, captions and analysis of attached media.",
    )
)
REGISTRY.register(
    GeminiTextAdapter(
        "gemini-2.5-pro",
        "Stronger reasoning for long or complex text tasks and detailed media analysis.",
    )
)
