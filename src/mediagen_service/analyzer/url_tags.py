"""Detect storage references in free text and swap them for placeholder tokens.

Both ``gs://bucket/key`` URIs and the HTTPS forms of the same objects
(``storage.googleapis.com``, virtual-host buckets, Firebase download links)
are recognized and canonicalized to ``gs://``. Each distinct object gets one
token ``[[ref{n}:{mime}]]``; after inference the tokens are resolved back into
URIs, with the mime type reattached to media references.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import unquote, urlparse

from ..errors import AnalysisError
from ..utils import guess_mime_type

DEFAULT_MIME_TYPE = "application/octet-stream"

_URL_RE = re.compile(r"(?:gs|https?)://[^\s\"'<>\[\]{}]+", re.IGNORECASE)
_TOKEN_RE = re.compile(r"\[\[ref(\d+):([a-z]+/[A-Za-z0-9.+-]+)\]\]")
_TRAILING_PUNCTUATION = ".,;:!?"

_PATH_STYLE_HOSTS = {"storage.googleapis.com", "storage.cloud.google.com"}
_VHOST_SUFFIX = ".storage.googleapis.com"
_FIREBASE_HOST = "firebasestorage.googleapis.com"
_FIREBASE_PATH_RE = re.compile(r"^/v0/b/([^/]+)/o/(.+)$")


def canonicalize_storage_url(url: str) -> Optional[str]:
    """``gs://bucket/key`` for a storage URL, ``None`` for anything else."""

    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    host = parsed.netloc.lower()
    path = parsed.path

    if scheme == "gs":
        key = path.lstrip("/")
        return f"gs://{parsed.netloc}/{key}" if parsed.netloc and key else None
    if scheme not in {"http", "https"}:
        return None

    if host in _PATH_STYLE_HOSTS:
        bucket, _, key = path.lstrip("/").partition("/")
        if bucket and key:
            return f"gs://{bucket}/{unquote(key)}"
        return None
    if host.endswith(_VHOST_SUFFIX):
        bucket = host[: -len(_VHOST_SUFFIX)]
        key = path.lstrip("/")
        if bucket and key:
            return f"gs://{bucket}/{unquote(key)}"
        return None
    if host == _FIREBASE_HOST:
        match = _FIREBASE_PATH_RE.match(path)
        if match:
            return f"gs://{match.group(1)}/{unquote(match.group(2))}"
    return None


def _split_trailing(raw: str) -> tuple[str, str]:
    """Separate sentence punctuation and an unbalanced closing paren from a matched URL."""

    url = raw
    while url:
        if url[-1] in _TRAILING_PUNCTUATION:
            url = url[:-1]
        elif url.endswith(")") and url.count(")") > url.count("("):
            url = url[:-1]
        else:
            break
    return url, raw[len(url):]


def placeholder_for(index: int, mime_type: Optional[str]) -> str:
    return f"[[ref{index}:{mime_type or DEFAULT_MIME_TYPE}]]"


@dataclass(frozen=True)
class TaggedReference:
    index: int
    uri: str
    mime_type: Optional[str]
    original: str

    @property
    def placeholder(self) -> str:
        return placeholder_for(self.index, self.mime_type)


@dataclass
class TaggedText:
    text: str
    references: List[TaggedReference] = field(default_factory=list)

    def lookup(self, index: int) -> TaggedReference:
        if 0 <= index < len(self.references):
            return self.references[index]
        raise AnalysisError(f"Unknown reference placeholder ref{index}")


def tag_references(text: str) -> TaggedText:
    """Replace every storage reference in ``text`` with its placeholder token."""

    by_uri: Dict[str, TaggedReference] = {}
    references: List[TaggedReference] = []

    def _substitute(match: re.Match) -> str:
        raw = match.group(0)
        url, trailing = _split_trailing(raw)
        canonical = canonicalize_storage_url(url)
        if canonical is None:
            return raw
        ref = by_uri.get(canonical)
        if ref is None:
            ref = TaggedReference(
                index=len(references),
                uri=canonical,
                mime_type=guess_mime_type(canonical),
                original=url,
            )
            by_uri[canonical] = ref
            references.append(ref)
        return ref.placeholder + trailing

    return TaggedText(text=_URL_RE.sub(_substitute, text), references=references)


def _resolve_string(value: str, tagged: TaggedText) -> str:
    return _TOKEN_RE.sub(lambda m: tagged.lookup(int(m.group(1))).uri, value)


def _exact_token(value: Any, tagged: TaggedText) -> Optional[TaggedReference]:
    if not isinstance(value, str):
        return None
    match = _TOKEN_RE.fullmatch(value.strip())
    return tagged.lookup(int(match.group(1))) if match else None


def resolve_placeholders(value: Any, tagged: TaggedText) -> Any:
    """Walk an inferred request and turn tokens back into storage URIs.

    A ``{"uri": token}`` object gets the reference's mime type unless the model
    already supplied one.
    """

    if isinstance(value, dict):
        ref = _exact_token(value.get("uri"), tagged)
        resolved = {key: resolve_placeholders(item, tagged) for key, item in value.items()}
        if ref is not None:
            resolved["uri"] = ref.uri
            if ref.mime_type and not resolved.get("mimeType"):
                resolved["mimeType"] = ref.mime_type
        return resolved
    if isinstance(value, list):
        return [resolve_placeholders(item, tagged) for item in value]
    if isinstance(value, str):
        return _resolve_string(value, tagged)
    return value


__all__ = [
    "TaggedReference",
    "TaggedText",
    "canonicalize_storage_url",
    "placeholder_for",
    "resolve_placeholders",
    "tag_references",
]
