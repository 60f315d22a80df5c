"""Gemini text-to-speech adapters; raw PCM is wrapped into a WAV container."""

from __future__ import annotations

import base64
import io
import re
import wave
from typing import Any, Dict

from ..errors import GenerationError
from ..schemas import AudioRequest
from ..storage import ObjectStorage, job_object_key
from ..utils import strip_inline_bytes
from . import vertex
from .base import MediaOutput, ModelAdapter, ModelOutput, StartResult
from .registry import REGISTRY

_RATE_RE = re.compile(r"rate=(\d+)")
DEFAULT_SAMPLE_RATE = 24000


def pcm_to_wav(pcm: bytes, sample_rate: int = DEFAULT_SAMPLE_RATE, channels: int = 1, sample_width: int = 2) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(sample_width)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buffer.getvalue()


class GeminiTTSAdapter(ModelAdapter):
    media_type = "audio"
    asynchronous = False
    request_model = AudioRequest

    def __init__(self, model_id: str, description: str) -> None:
        self.model_id = model_id
        self.description = description

    def build_body(self, request: AudioRequest) -> Dict[str, Any]:
        text = request.text
        if request.style_prompt:
            text = f"{request.style_prompt.strip()}: {text}"
        return {
            "contents": [{"role": "user", "parts": [{"text": text}]}],
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {
                    "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": request.voice}},
                },
            },
        }

    def start(self, request: AudioRequest, job_id: str, storage: ObjectStorage) -> StartResult:  # type: ignore[override]
        data = vertex.generate_content(self.model_id, self.build_body(request))
        candidates = data.get("candidates") or []
        parts = ((candidates[0].get("content") or {}).get("parts") or []) if candidates else []
        inline = next((p["inlineData"] for p in parts if p.get("inlineData", {}).get("data")), None)
        if inline is None:
            raise GenerationError("Model returned no audio")

        mime_type = inline.get("mimeType") or ""
        pcm = base64.b64decode(inline["data"])
        if mime_type.startswith("audio/wav"):
            audio = pcm
        else:
            match = _RATE_RE.search(mime_type)
            audio = pcm_to_wav(pcm, int(match.group(1)) if match else DEFAULT_SAMPLE_RATE)

        uri = storage.upload(audio, job_object_key(job_id, f"audio-{self.model_id}.wav"), content_type="audio/wav")
        return StartResult(
            output=ModelOutput(media=MediaOutput(uri=uri, mime_type="audio/wav", size=len(audio))),
            raw=strip_inline_bytes(data),
        )


REGISTRY.register(
    GeminiTTSAdapter(
        "gemini-2.5-flash-preview-tts",
        "Text-to-speech with prebuilt voices; fast default for narration and spoken lines.",
    )
)
REGISTRY.register(
    GeminiTTSAdapter(
        "gemini-2.5-pro-preview-tts",
        "Higher-fidelity text-to-speech for expressive or long-form narration.",
    )
)
