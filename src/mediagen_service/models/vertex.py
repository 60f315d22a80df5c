"""Thin HTTP helpers for Vertex AI publisher-model endpoints."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict

import requests

from ..config import get_settings
from ..errors import BackendError

logger = logging.getLogger(__name__)


def _endpoint(model_id: str, method: str) -> str:
    vertex = get_settings().vertex
    base = (vertex.api_base or f"https://{vertex.location}-aiplatform.googleapis.com/v1").rstrip("/")
    return (
        f"{base}/projects/{vertex.project}/locations/{vertex.location}"
        f"/publishers/google/models/{model_id}:{method}"
    )


def _headers() -> Dict[str, str]:
    vertex = get_settings().vertex
    token = os.getenv("MEDIAGEN_VERTEX__ACCESS_TOKEN") or vertex.access_token
    if token:
        return {"Authorization": f"Bearer {token}"}
    api_key = os.getenv("MEDIAGEN_VERTEX__API_KEY") or vertex.api_key
    if api_key:
        return {"x-goog-api-key": api_key}
    raise BackendError("Vertex credentials missing: set MEDIAGEN_VERTEX__ACCESS_TOKEN or MEDIAGEN_VERTEX__API_KEY")


def _error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:300]
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return resp.text[:300]


def post_json(model_id: str, method: str, body: Dict[str, Any]) -> Dict[str, Any]:
    url = _endpoint(model_id, method)
    try:
        resp = requests.post(
            url,
            json=body,
            headers=_headers(),
            timeout=get_settings().vertex.request_timeout_sec,
        )
    except requests.RequestException as exc:
        raise BackendError(f"{method} request failed: {exc}") from exc
    if resp.status_code >= 400:
        message = _error_message(resp)
        logger.warning("Vertex %s for %s returned %s: %s", method, model_id, resp.status_code, message)
        raise BackendError(f"{method} failed ({resp.status_code}): {message}", status_code=resp.status_code)
    return resp.json()


def predict_long_running(model_id: str, body: Dict[str, Any]) -> str:
    data = post_json(model_id, "predictLongRunning", body)
    name = data.get("name")
    if not name:
        raise BackendError("predictLongRunning response has no operation name")
    return str(name)


def fetch_predict_operation(model_id: str, operation_name: str) -> Dict[str, Any]:
    return post_json(model_id, "fetchPredictOperation", {"operationName": operation_name})


def generate_content(model_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
    return post_json(model_id, "generateContent", body)
