"""OpenAI-compatible chat-completion client used by the request analyzer."""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Dict, List, Optional

import requests

from .config import get_settings
from .errors import LLMError

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL)


def _get_api_key() -> str:
    api_key = os.getenv("MEDIAGEN_LLM__API_KEY") or get_settings().llm.api_key or os.getenv("GEMINI_API_KEY")
    if not api_key:
        raise LLMError("MEDIAGEN_LLM__API_KEY is required")
    return api_key


def _normalize_endpoint() -> str:
    base = (os.getenv("MEDIAGEN_LLM__API_BASE") or get_settings().llm.api_base).rstrip("/")
    if base.endswith("/chat/completions"):
        return base
    return f"{base}/chat/completions"


def _extract_content(result: Dict[str, Any]) -> str:
    choices = result.get("choices") or []
    if not choices:
        raise LLMError("LLM response contained no choices")
    message = choices[0].get("message") or {}
    content = message.get("content")
    if isinstance(content, list):
        content = "".join(part.get("text", "") for part in content if isinstance(part, dict))
    if not content or not str(content).strip():
        raise LLMError("LLM response was empty")
    return str(content)


def infer(
    messages: List[Dict[str, Any]],
    *,
    deterministic: bool = True,
    response_format: Optional[Dict[str, Any]] = None,
    model: Optional[str] = None,
) -> str:
    """Send ``messages`` and return the assistant text.

    ``deterministic`` pins temperature to zero and sends a fixed seed so the
    same input yields the same candidate.
    """

    settings = get_settings().llm
    payload: Dict[str, Any] = {
        "model": model or settings.model,
        "messages": messages,
    }
    if deterministic:
        payload["temperature"] = 0
        payload["top_p"] = 1
        payload["seed"] = settings.seed
    if response_format is not None:
        payload["response_format"] = response_format

    headers = {"Authorization": f"Bearer {_get_api_key()}"}
    try:
        resp = requests.post(
            _normalize_endpoint(),
            json=payload,
            timeout=settings.request_timeout_sec,
            headers=headers,
        )
        resp.raise_for_status()
        result = resp.json()
    except requests.RequestException as exc:
        raise LLMError(f"LLM request failed: {exc}") from exc
    except ValueError as exc:
        raise LLMError("LLM returned a non-JSON HTTP body") from exc
    return _extract_content(result)


def parse_json_content(raw: str) -> Dict[str, Any]:
    text = raw.strip()
    match = _FENCE_RE.match(text)
    if match:
        text = match.group(1)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.debug("Unparseable LLM content: %s", raw[:500])
        raise LLMError(f"LLM output is not valid JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise LLMError("LLM output must be a JSON object")
    return data


def infer_json(
    messages: List[Dict[str, Any]],
    *,
    deterministic: bool = True,
    response_format: Optional[Dict[str, Any]] = None,
    model: Optional[str] = None,
) -> Dict[str, Any]:
    raw = infer(
        messages,
        deterministic=deterministic,
        response_format=response_format or {"type": "json_object"},
        model=model,
    )
    return parse_json_content(raw)


__all__ = ["infer", "infer_json", "parse_json_content"]
