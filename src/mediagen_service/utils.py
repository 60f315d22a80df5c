"""Small helpers shared by the orchestrator, adapters and analyzer."""

from __future__ import annotations

import re
import time
from pathlib import PurePosixPath
from typing import Any, Dict, Optional

MIME_TYPES_BY_EXTENSION: Dict[str, str] = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "gif": "image/gif",
    "heic": "image/heic",
    "mp4": "video/mp4",
    "mov": "video/quicktime",
    "webm": "video/webm",
    "mkv": "video/x-matroska",
    "avi": "video/x-msvideo",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    "flac": "audio/flac",
    "m4a": "audio/mp4",
    "aac": "audio/aac",
    "pdf": "application/pdf",
    "txt": "text/plain",
}

EXTENSIONS_BY_MIME_TYPE: Dict[str, str] = {
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
    "video/webm": ".webm",
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
    "audio/wav": ".wav",
    "audio/mpeg": ".mp3",
    "audio/ogg": ".ogg",
    "text/plain": ".txt",
}

_EXTENSION_RE = re.compile(r"\.([a-z0-9]+)$", re.IGNORECASE)


def now_ms() -> int:
    return int(time.time() * 1000)


def guess_mime_type(path: str) -> Optional[str]:
    suffix = PurePosixPath(path.split("?", 1)[0]).suffix.lower().lstrip(".")
    return MIME_TYPES_BY_EXTENSION.get(suffix)


def file_extension(uri: Optional[str] = None, mime_type: Optional[str] = None) -> str:
    """Extension (with dot) taken from the URI, falling back to the mime type."""

    if uri:
        match = _EXTENSION_RE.search(uri)
        if match:
            return f".{match.group(1)}"
    if mime_type:
        return EXTENSIONS_BY_MIME_TYPE.get(mime_type.split(";", 1)[0].strip().lower(), "")
    return ""


_BINARY_KEYS = {"data", "bytesBase64Encoded"}


def strip_inline_bytes(payload: Any) -> Any:
    """Copy of a backend payload with base64 media blobs replaced by a size note."""

    if isinstance(payload, dict):
        cleaned: Dict[str, Any] = {}
        for key, value in payload.items():
            if key in _BINARY_KEYS and isinstance(value, str) and len(value) > 256:
                cleaned[key] = f"<{len(value)} base64 chars omitted>"
            else:
                cleaned[key] = strip_inline_bytes(value)
        return cleaned
    if isinstance(payload, list):
        return [strip_inline_bytes(item) for item in payload]
    return payload
