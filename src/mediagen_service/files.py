"""Turn a normalized model output into the ``files`` entries of a job record."""

from __future__ import annotations

from typing import Any, Dict, List

from .models.base import ModelOutput
from .storage import ObjectStorage
from .utils import file_extension


def build_files(output: ModelOutput, storage: ObjectStorage, signed_url_ttl_sec: int) -> List[Dict[str, Any]]:
    """One signed entry per media reference; text-only outputs produce none.

    ``mimeType`` and ``size`` are written only when the backend reported them.
    """

    if output.media is None:
        return []
    media = output.media
    entry: Dict[str, Any] = {
        "name": f"file0{file_extension(media.uri, media.mime_type)}",
        "gs": media.uri,
        "https": storage.sign_url(media.uri, signed_url_ttl_sec),
    }
    if media.mime_type:
        entry["mimeType"] = media.mime_type
    if media.size is not None:
        entry["size"] = media.size
    return [entry]


__all__ = ["build_files"]
