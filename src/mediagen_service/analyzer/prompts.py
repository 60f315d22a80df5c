"""Prompt templates for the model-selection and structured-generation passes."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Sequence

from jinja2 import Template

from .url_tags import TaggedText

SELECTION_SYSTEM_TEMPLATE = Template(
    """
You route generative-media requests to exactly one model.
Available models:
{% for model in models -%}
- {{ model.modelId }} ({{ model.type }}, {{ model.mode }}): {{ model.description }}
{% endfor %}
Rules:
1) Pick the single model whose output type matches what the user wants to receive.
2) Prefer the faster variant unless the user asks for top quality or long, complex work.
3) Reference tokens such as [[ref0:image/jpeg]] stand for user-supplied media; the mime type tells you what each one is.
4) Put every concrete parameter you can infer (duration, aspect ratio, voice, which reference plays which role) into "sketch".
Respond with a JSON object only:
{"model": "<model id>", "reasoning": "<one or two sentences>", "sketch": {...}}
    """
)

STRUCTURED_SYSTEM_TEMPLATE = Template(
    """
You fill in a request for the model {{ model_id }}.
The request must validate against this JSON schema:
{{ schema }}
Rules:
1) Copy reference tokens such as [[ref0:image/jpeg]] verbatim into "uri" fields; never invent URLs.
2) Remove reference tokens from prose fields such as "prompt" and describe the reference in words instead.
3) Omit optional fields the user did not ask for.
4) "type" must be "{{ media_type }}".
{% if sketch -%}
Parameters suggested by the routing step: {{ sketch }}
{% endif -%}
Respond with a JSON object only:
{"request": {...}, "reasoning": "<one or two sentences>"}
    """
)

USER_TEMPLATE = Template(
    """{{ text }}
{% if references %}
References:
{% for ref in references -%}
- {{ ref.placeholder }}
{% endfor %}{% endif %}"""
)


def render_user_message(tagged: TaggedText) -> str:
    return USER_TEMPLATE.render(text=tagged.text.strip(), references=tagged.references).strip()


def selection_messages(tagged: TaggedText, models: Sequence[Dict[str, Any]]) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": SELECTION_SYSTEM_TEMPLATE.render(models=models).strip()},
        {"role": "user", "content": render_user_message(tagged)},
    ]


def structured_messages(
    tagged: TaggedText,
    *,
    model_id: str,
    media_type: str,
    schema: Dict[str, Any],
    sketch: Dict[str, Any] | None = None,
) -> List[Dict[str, str]]:
    system = STRUCTURED_SYSTEM_TEMPLATE.render(
        model_id=model_id,
        media_type=media_type,
        schema=json.dumps(schema, ensure_ascii=False),
        sketch=json.dumps(sketch, ensure_ascii=False) if sketch else "",
    )
    return [
        {"role": "system", "content": system.strip()},
        {"role": "user", "content": render_user_message(tagged)},
    ]


__all__ = ["render_user_message", "selection_messages", "structured_messages"]
