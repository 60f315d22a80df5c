"""Free-text prompt -> validated structured request.

Passes: reference tagging, model selection, structured generation, then
placeholder resolution and schema validation. Nothing here writes to the job
record; the orchestrator persists the outcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..config import get_settings
from ..errors import AnalysisError, LLMError
from ..llm import infer_json
from ..models import get_model_adapter, is_valid_model_id, list_models
from ..schemas import validate_request
from .prompts import selection_messages, structured_messages
from .url_tags import TaggedText, resolve_placeholders, tag_references

logger = logging.getLogger(__name__)


@dataclass
class AnalyzedRequest:
    model_id: str
    request: Dict[str, Any]
    reasons: List[str] = field(default_factory=list)


def _request_schema(model_id: str) -> Dict[str, Any]:
    return get_model_adapter(model_id).request_model.model_json_schema(by_alias=True)


def _structured_response_format(schema: Dict[str, Any]) -> Dict[str, Any]:
    if not get_settings().llm.strict_schema:
        return {"type": "json_object"}
    request_schema = dict(schema)
    defs = request_schema.pop("$defs", None)
    envelope: Dict[str, Any] = {
        "type": "object",
        "properties": {"request": request_schema, "reasoning": {"type": "string"}},
        "required": ["request", "reasoning"],
    }
    if defs:
        envelope["$defs"] = defs
    return {"type": "json_schema", "json_schema": {"name": "job_request", "schema": envelope}}


def _reason(data: Dict[str, Any]) -> Optional[str]:
    reasoning = data.get("reasoning")
    if isinstance(reasoning, str) and reasoning.strip():
        return reasoning.strip()
    return None


def select_model(tagged: TaggedText) -> Dict[str, Any]:
    try:
        data = infer_json(selection_messages(tagged, list_models()), deterministic=True)
    except LLMError as exc:
        raise AnalysisError(f"Model selection failed: {exc}") from exc
    model_id = data.get("model")
    if not isinstance(model_id, str) or not is_valid_model_id(model_id.strip()):
        raise AnalysisError(f"Model selection returned unsupported model: {model_id!r}")
    data["model"] = model_id.strip()
    return data


def generate_request(tagged: TaggedText, model_id: str, sketch: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    adapter = get_model_adapter(model_id)
    schema = _request_schema(model_id)
    messages = structured_messages(
        tagged,
        model_id=model_id,
        media_type=adapter.media_type,
        schema=schema,
        sketch=sketch,
    )
    try:
        data = infer_json(messages, deterministic=True, response_format=_structured_response_format(schema))
    except LLMError as exc:
        raise AnalysisError(f"Request generation failed: {exc}") from exc
    request = data.get("request")
    if not isinstance(request, dict):
        raise AnalysisError("Request generation returned no request object")
    request.setdefault("type", adapter.media_type)
    return data


def analyze_prompt(prompt: str) -> AnalyzedRequest:
    """Turn ``prompt`` into a validated request for one registered model.

    Raises ``AnalysisError`` for LLM failures or malformed output and
    ``RequestValidationError`` when the generated request fails its schema.
    """

    if not prompt or not prompt.strip():
        raise AnalysisError("Prompt is empty")

    tagged = tag_references(prompt)
    logger.debug("Tagged %s reference(s) in prompt", len(tagged.references))

    selection = select_model(tagged)
    model_id = selection["model"]
    sketch = selection.get("sketch") if isinstance(selection.get("sketch"), dict) else None

    generated = generate_request(tagged, model_id, sketch)
    resolved = resolve_placeholders(generated["request"], tagged)
    validated = validate_request(model_id, resolved)

    reasons = [reason for reason in (_reason(selection), _reason(generated)) if reason]
    if not reasons:
        reasons.append(f"Selected {model_id} for the requested output")
    logger.info("Prompt analyzed: model=%s references=%s", model_id, len(tagged.references))
    return AnalyzedRequest(model_id=model_id, request=validated.to_wire(), reasons=reasons)


__all__ = ["AnalyzedRequest", "analyze_prompt", "generate_request", "select_model"]
