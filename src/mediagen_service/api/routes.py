"""API route definitions for the job service."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict

from celery.exceptions import CeleryError
from fastapi import APIRouter, Depends, status

from ..celery_app import mediagen_celery
from ..config import Settings, settings_dependency
from ..errors import raise_error
from ..models import is_valid_model_id, list_models
from ..monitoring import collect_dependency_status, record_job_created
from ..orchestrator import JobOrchestrator, new_job_record
from ..schemas import is_terminal
from ..store import JobStore
from ..tasks import build_orchestrator, get_job_store, on_job_created
from .schemas import CreateJobRequest, CreateJobResponse, HealthResponse, ModelDescriptor, ModelsResponse

logger = logging.getLogger(__name__)
router = APIRouter()


def store_dependency() -> JobStore:
    return get_job_store()


def orchestrator_dependency() -> JobOrchestrator:
    return build_orchestrator()


@router.post("/jobs", status_code=status.HTTP_202_ACCEPTED, response_model=CreateJobResponse)
async def create_job(
    payload: CreateJobRequest,
    store: JobStore = Depends(store_dependency),
) -> CreateJobResponse:
    if payload.mode == "structured" and not is_valid_model_id(payload.model_id):
        raise_error("ERR_UNKNOWN_MODEL", detail=f"Unknown model ID: {payload.model_id}")

    if payload.mode == "assisted":
        record = new_job_record(payload.owner_id, prompt=payload.prompt)
    else:
        record = new_job_record(payload.owner_id, model_id=payload.model_id, request=payload.request)

    job_id = store.create(record)
    try:
        on_job_created.delay(store.job_path(job_id))
    except CeleryError:
        logger.exception("Failed to enqueue created trigger for job %s", job_id)
        raise_error("ERR_ENQUEUE_FAILED")

    record_job_created(payload.mode)
    logger.info("Job %s accepted (%s)", job_id, payload.mode)
    return CreateJobResponse(job_id=job_id, status=record["status"])


@router.get("/jobs/{job_id}")
async def get_job(job_id: str, store: JobStore = Depends(store_dependency)) -> Dict[str, Any]:
    record = store.get(job_id)
    if record is None:
        raise_error("ERR_JOB_NOT_FOUND")
    return {"jobId": job_id, **record}


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(
    job_id: str,
    orchestrator: JobOrchestrator = Depends(orchestrator_dependency),
) -> Dict[str, Any]:
    current = orchestrator.store.get(job_id)
    if current is None:
        raise_error("ERR_JOB_NOT_FOUND")
    if is_terminal(current.get("status")):
        raise_error("ERR_JOB_TERMINAL", detail=f"Job {job_id} is already {current.get('status')}")

    written = orchestrator.cancel_job(job_id)
    if written is None:
        raise_error("ERR_JOB_TERMINAL")
    return {"jobId": job_id, **written}


@router.get("/models", response_model=ModelsResponse, response_model_by_alias=True)
async def get_models() -> ModelsResponse:
    return ModelsResponse(models=[ModelDescriptor(**model) for model in list_models()])


@router.get("/monitor/health", response_model=HealthResponse)
async def health_check(settings: Settings = Depends(settings_dependency)) -> HealthResponse:
    deps = collect_dependency_status(settings, mediagen_celery)
    return HealthResponse(status="ok", timestamp=datetime.utcnow(), dependencies=deps)
