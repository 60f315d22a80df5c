"""Tests for the free-text analysis passes with the language model stubbed."""

from __future__ import annotations

import pytest

from mediagen_service.analyzer import pipeline
from mediagen_service.analyzer.pipeline import analyze_prompt
from mediagen_service.errors import AnalysisError, LLMError, RequestValidationError


class _ScriptedLLM:
    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.calls: list[dict] = []

    def __call__(self, messages, *, deterministic=True, response_format=None, model=None):
        self.calls.append({"messages": messages, "deterministic": deterministic, "response_format": response_format})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture()
def llm(monkeypatch):
    def _install(*responses) -> _ScriptedLLM:
        scripted = _ScriptedLLM(*responses)
        monkeypatch.setattr(pipeline, "infer_json", scripted)
        return scripted

    return _install


def test_sunset_prompt_becomes_video_request(llm):
    scripted = llm(
        {
            "model": "veo-3.1-fast-generate-preview",
            "reasoning": "The user wants a short video clip.",
            "sketch": {"durationSeconds": 4},
        },
        {
            "request": {"type": "video", "prompt": "A sunset over the sea with gentle waves", "durationSeconds": 4},
            "reasoning": "Duration taken from the prompt.",
        },
    )

    analyzed = analyze_prompt("Create a 4 second sunset video with gentle waves")

    assert analyzed.model_id == "veo-3.1-fast-generate-preview"
    assert analyzed.request["durationSeconds"] == 4
    assert analyzed.request["type"] == "video"
    assert analyzed.reasons == ["The user wants a short video clip.", "Duration taken from the prompt."]
    assert all(call["deterministic"] for call in scripted.calls)
    catalog_prompt = scripted.calls[0]["messages"][0]["content"]
    assert "veo-3.1-generate-preview" in catalog_prompt
    assert "gemini-2.5-flash-preview-tts" in catalog_prompt
    assert scripted.calls[1]["response_format"]["type"] == "json_schema"


def test_storage_uri_round_trips_through_placeholders(llm):
    scripted = llm(
        {"model": "veo-3.1-generate-preview", "reasoning": "Animate the supplied image."},
        {
            "request": {
                "type": "video",
                "prompt": "The character walks through a futuristic city",
                "image": {"uri": "[[ref0:image/jpeg]]"},
            },
            "reasoning": "Image used as the first frame.",
        },
    )

    analyzed = analyze_prompt(
        "Generate a video: show this character walking through a futuristic city gs://example/characters/hero-01.jpg"
    )

    assert analyzed.request["image"] == {"uri": "gs://example/characters/hero-01.jpg", "mimeType": "image/jpeg"}
    user_message = scripted.calls[0]["messages"][1]["content"]
    assert "gs://" not in user_message
    assert "[[ref0:image/jpeg]]" in user_message


def test_https_storage_link_is_canonicalized(llm):
    llm(
        {"model": "gemini-2.5-flash-image", "reasoning": "Photo edit."},
        {"request": {"prompt": "make it snowy", "images": [{"uri": "[[ref0:image/jpeg]]"}]}, "reasoning": "ok"},
    )

    analyzed = analyze_prompt("Edit https://storage.googleapis.com/my-bucket/images/landscape.jpg to look snowy")

    assert analyzed.request["type"] == "image"
    assert analyzed.request["images"] == [{"uri": "gs://my-bucket/images/landscape.jpg", "mimeType": "image/jpeg"}]


def test_unsupported_model_selection_fails(llm):
    llm({"model": "dall-e-3", "reasoning": "image"})

    with pytest.raises(AnalysisError) as exc:
        analyze_prompt("draw a cat")
    assert "dall-e-3" in exc.value.message


def test_llm_failure_becomes_analysis_error(llm):
    llm(LLMError("LLM output is not valid JSON: Expecting value"))

    with pytest.raises(AnalysisError):
        analyze_prompt("draw a cat")


def test_missing_request_object_is_malformed(llm):
    llm({"model": "gemini-2.5-flash", "reasoning": "text"}, {"reasoning": "forgot the request"})

    with pytest.raises(AnalysisError):
        analyze_prompt("write a poem")


def test_invalid_generated_request_is_validation_error(llm):
    llm(
        {"model": "veo-3.1-generate-preview", "reasoning": "video"},
        {"request": {"type": "video", "prompt": "waves", "durationSeconds": 30}, "reasoning": "long"},
    )

    with pytest.raises(RequestValidationError) as exc:
        analyze_prompt("a 30 second video of waves")
    assert any(problem.startswith("durationSeconds") for problem in exc.value.problems)


def test_reasons_never_empty(llm):
    llm({"model": "gemini-2.5-flash"}, {"request": {"type": "text", "prompt": "a haiku about rain"}})

    analyzed = analyze_prompt("write a haiku about rain")
    assert analyzed.reasons == ["Selected gemini-2.5-flash for the requested output"]


def test_json_object_mode_when_strict_schema_disabled(llm, monkeypatch):
    monkeypatch.setenv("MEDIAGEN_LLM__STRICT_SCHEMA", "false")
    from mediagen_service.config import reload_settings

    reload_settings()
    scripted = llm(
        {"model": "gemini-2.5-flash", "reasoning": "text"},
        {"request": {"type": "text", "prompt": "hi"}, "reasoning": "ok"},
    )

    analyze_prompt("say hi")
    assert scripted.calls[1]["response_format"] == {"type": "json_object"}


def test_empty_prompt_rejected():
    with pytest.raises(AnalysisError):
        analyze_prompt("   ")
