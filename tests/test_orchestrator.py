"""Tests for starting jobs: claiming, sync completion, async hand-off, failures."""

from __future__ import annotations

import pytest

from mediagen_service.analyzer import AnalyzedRequest
from mediagen_service.errors import AnalysisError, GenerationError, RequestValidationError
from mediagen_service.models import REGISTRY, vertex
from mediagen_service.models.base import MediaOutput, ModelAdapter, ModelOutput, StartResult
from mediagen_service.orchestrator import JobOrchestrator, new_job_record
from mediagen_service.schemas import TextRequest
from mediagen_service.version import __version__

VIDEO_REQUEST = {"type": "video", "prompt": "waves at dusk", "durationSeconds": 8, "resolution": "1080p"}


@pytest.fixture()
def orchestrator(memory_store, recording_queue, fake_storage, timings, clock) -> JobOrchestrator:
    return JobOrchestrator(memory_store, recording_queue, fake_storage, timings, clock=clock)


@pytest.fixture()
def veo_submissions(monkeypatch):
    calls: list[tuple[str, dict]] = []

    def fake_predict(model_id, body):
        calls.append((model_id, body))
        return f"operations/op-{len(calls)}"

    monkeypatch.setattr(vertex, "predict_long_running", fake_predict)
    return calls


def _create(store, clock, **kwargs) -> str:
    return store.create(new_job_record("user-1", now=clock(), **kwargs))


def test_new_job_record_shapes():
    structured = new_job_record("u", model_id="gemini-2.5-flash", request={"type": "text", "prompt": "hi"}, now=5)
    assert structured["status"] == "requested"
    assert structured["metadata"] == {"version": __version__, "createdAt": 5, "updatedAt": 5}
    assert "assisted" not in structured

    assisted = new_job_record("u", prompt="make a video", now=5)
    assert assisted["assisted"] == {"prompt": "make a video", "reasons": []}
    assert "request" not in assisted

    with pytest.raises(ValueError):
        new_job_record("u", now=5)


def test_async_start_moves_job_to_running(orchestrator, memory_store, recording_queue, clock, timings, veo_submissions):
    job_id = _create(memory_store, clock, model_id="veo-3.1-generate-preview", request=VIDEO_REQUEST)
    created_at = clock()

    orchestrator.handle_created(job_id)

    record = memory_store.get(job_id)
    assert record["status"] == "running"
    meta = record["metadata"]
    assert meta["operation"] == "operations/op-1"
    assert meta["ttl"] == created_at + 90 * 60 * 1000
    assert meta["attempt"] == 0
    assert meta["nextPoll"] == created_at + timings.poll_interval_ms
    assert recording_queue.calls == [({"jobPath": f"mediagen-jobs/{job_id}"}, 5, 60)]


def test_duplicate_created_trigger_submits_once(orchestrator, memory_store, clock, veo_submissions):
    job_id = _create(memory_store, clock, model_id="veo-3.1-generate-preview", request=VIDEO_REQUEST)

    orchestrator.handle_created(job_id)
    orchestrator.handle_created(job_id)
    orchestrator.start_job(job_id)

    assert len(veo_submissions) == 1
    assert memory_store.get(job_id)["status"] == "running"


def test_unknown_model_fails_without_backend_call(orchestrator, memory_store, clock, veo_submissions):
    job_id = _create(memory_store, clock, model_id="veo-9-ultra", request=VIDEO_REQUEST)

    orchestrator.start_job(job_id)

    record = memory_store.get(job_id)
    assert record["status"] == "failed"
    assert record["error"]["code"] == "START_FAILED"
    assert "veo-9-ultra" in record["error"]["message"]
    assert veo_submissions == []


def test_invalid_request_fails_with_validation_error(orchestrator, memory_store, clock, veo_submissions):
    job_id = _create(
        memory_store,
        clock,
        model_id="veo-3.1-generate-preview",
        request={"type": "video", "prompt": "x", "durationSeconds": 7},
    )

    orchestrator.start_job(job_id)

    record = memory_store.get(job_id)
    assert record["status"] == "failed"
    assert record["error"]["code"] == "VALIDATION_ERROR"
    assert record["error"]["message"].startswith("Validation failed: durationSeconds")
    assert veo_submissions == []


def test_backend_error_fails_with_start_failed(orchestrator, memory_store, clock, monkeypatch):
    def boom(model_id, body):
        raise RuntimeError("backend unavailable")

    monkeypatch.setattr(vertex, "predict_long_running", boom)
    job_id = _create(memory_store, clock, model_id="veo-3.1-generate-preview", request=VIDEO_REQUEST)

    orchestrator.start_job(job_id)

    record = memory_store.get(job_id)
    assert record["status"] == "failed"
    assert record["error"] == {"code": "START_FAILED", "message": "backend unavailable"}
    assert "ttl" not in record["metadata"]


@pytest.mark.parametrize(
    "fields, code",
    [
        ({"request": {"type": "video", "prompt": "waves"}}, "START_FAILED"),
        ({"modelId": "veo-3.1-generate-preview", "request": "make a video"}, "VALIDATION_ERROR"),
        ({}, "START_FAILED"),
    ],
)
def test_malformed_requested_record_fails(orchestrator, memory_store, clock, veo_submissions, fields, code):
    job_id = memory_store.create(
        {"ownerId": "user-1", "status": "requested", "metadata": {"createdAt": clock(), "updatedAt": clock()}, **fields}
    )

    orchestrator.handle_created(job_id)

    record = memory_store.get(job_id)
    assert record["status"] == "failed"
    assert record["error"]["code"] == code
    assert veo_submissions == []


def test_blocked_sync_generation_fails_with_start_failed(orchestrator, memory_store, clock, monkeypatch):
    monkeypatch.setattr(vertex, "generate_content", lambda model_id, body: {"promptFeedback": {"blockReason": "SAFETY"}})
    job_id = _create(memory_store, clock, model_id="gemini-2.5-flash-image", request={"type": "image", "prompt": "p"})

    orchestrator.start_job(job_id)

    record = memory_store.get(job_id)
    assert record["status"] == "failed"
    assert record["error"] == {
        "code": "START_FAILED",
        "message": "Prompt blocked: SAFETY",
        "details": {"cause": "GENERATION_FAILED"},
    }


class _ScriptedAdapter(ModelAdapter):
    media_type = "text"
    request_model = TextRequest

    def __init__(self, model_id: str, result) -> None:
        self.model_id = model_id
        self.result = result
        self.storages: list = []

    def start(self, request, job_id, storage):
        self.storages.append(storage)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


@pytest.fixture()
def scripted(monkeypatch):
    def _register(model_id: str, result) -> _ScriptedAdapter:
        adapter = _ScriptedAdapter(model_id, result)
        monkeypatch.setitem(REGISTRY._registry, model_id, adapter)
        return adapter

    return _register


def test_sync_media_output_writes_signed_file(orchestrator, memory_store, fake_storage, clock, scripted):
    adapter = scripted(
        "scripted-image",
        StartResult(
            output=ModelOutput(media=MediaOutput(uri="gs://test-bucket/out/pic.png", mime_type="image/png", size=12)),
            raw={"candidates": []},
        ),
    )
    job_id = _create(memory_store, clock, model_id="scripted-image", request={"type": "text", "prompt": "p"})

    orchestrator.start_job(job_id)

    record = memory_store.get(job_id)
    assert record["status"] == "succeeded"
    assert record["files"] == [
        {
            "name": "file0.png",
            "gs": "gs://test-bucket/out/pic.png",
            "https": "https://signed.example/test-bucket/out/pic.png?ttl=3600",
            "mimeType": "image/png",
            "size": 12,
        }
    ]
    assert record["response"]["output"] == {"uri": "gs://test-bucket/out/pic.png", "mimeType": "image/png", "size": 12}
    assert record["response"]["raw"] == {"candidates": []}
    assert adapter.storages == [fake_storage]


def test_sync_media_without_size_omits_field(orchestrator, memory_store, clock, scripted):
    scripted("scripted-noinfo", StartResult(output=ModelOutput(media=MediaOutput(uri="gs://test-bucket/out/clip"))))
    job_id = _create(memory_store, clock, model_id="scripted-noinfo", request={"type": "text", "prompt": "p"})

    orchestrator.start_job(job_id)

    files = memory_store.get(job_id)["files"]
    assert files[0]["name"] == "file0"
    assert "size" not in files[0]
    assert "mimeType" not in files[0]


def test_sync_text_output_has_no_files(orchestrator, memory_store, clock, scripted):
    scripted("scripted-text", StartResult(output=ModelOutput(text="a haiku")))
    job_id = _create(memory_store, clock, model_id="scripted-text", request={"type": "text", "prompt": "p"})

    orchestrator.start_job(job_id)

    record = memory_store.get(job_id)
    assert record["status"] == "succeeded"
    assert record["response"]["output"] == {"text": "a haiku"}
    assert "files" not in record


def test_contract_violation_fails_job(orchestrator, memory_store, clock, scripted):
    scripted("scripted-empty", StartResult())
    job_id = _create(memory_store, clock, model_id="scripted-empty", request={"type": "text", "prompt": "p"})

    orchestrator.start_job(job_id)

    record = memory_store.get(job_id)
    assert record["status"] == "failed"
    assert record["error"] == {"code": "START_FAILED", "message": "Model adapter returned invalid result"}


def test_cancel_during_start_is_not_overwritten(orchestrator, memory_store, clock, monkeypatch):
    def cancel_then_submit(model_id, body):
        orchestrator.cancel_job(job_id)
        return "operations/late"

    monkeypatch.setattr(vertex, "predict_long_running", cancel_then_submit)
    job_id = _create(memory_store, clock, model_id="veo-3.1-generate-preview", request=VIDEO_REQUEST)

    orchestrator.start_job(job_id)

    record = memory_store.get(job_id)
    assert record["status"] == "canceled"
    assert "operation" not in record["metadata"]


def test_cancel_job_only_affects_non_terminal(orchestrator, memory_store, clock):
    job_id = _create(memory_store, clock, model_id="gemini-2.5-flash", request={"type": "text", "prompt": "p"})

    assert orchestrator.cancel_job(job_id)["status"] == "canceled"
    assert orchestrator.cancel_job(job_id) is None
    assert orchestrator.cancel_job("missing") is None


# -- free-text jobs ----------------------------------------------------------


def test_free_text_job_is_transformed_and_started(memory_store, recording_queue, fake_storage, timings, clock, veo_submissions):
    seen: list[str] = []

    def analyzer(prompt: str) -> AnalyzedRequest:
        seen.append(prompt)
        return AnalyzedRequest(
            model_id="veo-3.1-fast-generate-preview",
            request={"type": "video", "prompt": "sunset over gentle waves", "durationSeconds": 4},
            reasons=["User asked for a video", "Duration set to 4 seconds"],
        )

    orchestrator = JobOrchestrator(memory_store, recording_queue, fake_storage, timings, clock=clock, analyzer=analyzer)
    job_id = _create(memory_store, clock, prompt="Create a 4 second sunset video with gentle waves")

    orchestrator.handle_created(job_id)
    orchestrator.handle_created(job_id)

    record = memory_store.get(job_id)
    assert seen == ["Create a 4 second sunset video with gentle waves"]
    assert record["status"] == "running"
    assert record["modelId"] == "veo-3.1-fast-generate-preview"
    assert record["request"]["durationSeconds"] == 4
    assert record["assisted"]["prompt"] == "Create a 4 second sunset video with gentle waves"
    assert len(record["assisted"]["reasons"]) >= 1
    assert len(veo_submissions) == 1


@pytest.mark.parametrize(
    "exc, code, prefix",
    [
        (AnalysisError("LLM output is not valid JSON"), "AI_ANALYSIS_FAILED", "AI analysis failed: "),
        (RequestValidationError(["durationSeconds: bad"]), "VALIDATION_ERROR", "Validation failed: "),
        (RuntimeError("socket closed"), "AI_ANALYSIS_FAILED", "AI analysis failed: "),
    ],
)
def test_free_text_analysis_failure_keeps_prompt(memory_store, recording_queue, fake_storage, timings, clock, exc, code, prefix):
    def analyzer(prompt: str) -> AnalyzedRequest:
        raise exc

    orchestrator = JobOrchestrator(memory_store, recording_queue, fake_storage, timings, clock=clock, analyzer=analyzer)
    job_id = _create(memory_store, clock, prompt="make something")

    orchestrator.handle_created(job_id)

    record = memory_store.get(job_id)
    assert record["status"] == "failed"
    assert record["error"]["code"] == code
    assert record["error"]["message"].startswith(prefix)
    assert record["assisted"] == {"prompt": "make something", "reasons": []}
    assert recording_queue.calls == []


def test_sync_adapter_failure_keeps_its_details(orchestrator, memory_store, clock, scripted):
    scripted("scripted-filtered", GenerationError("Model returned no image", details={"finishReason": "SAFETY"}))
    job_id = _create(memory_store, clock, model_id="scripted-filtered", request={"type": "text", "prompt": "p"})

    orchestrator.start_job(job_id)

    error = memory_store.get(job_id)["error"]
    assert error["code"] == "START_FAILED"
    assert error["details"] == {"finishReason": "SAFETY", "cause": "GENERATION_FAILED"}
