"""Request and response models for the job API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateJobRequest(_CamelModel):
    owner_id: str = Field(..., min_length=1, description="Principal that owns the job record")
    prompt: Optional[str] = Field(None, description="Free-text request; the analyzer picks the model")
    model_id: Optional[str] = Field(None, description="Model identifier for a structured request")
    request: Optional[Dict[str, Any]] = Field(None, description="Structured request for ``model_id``")

    @model_validator(mode="after")
    def _one_mode(self) -> "CreateJobRequest":
        structured = self.model_id is not None or self.request is not None
        if self.prompt is not None and structured:
            raise ValueError("Send either prompt or modelId+request, not both")
        if self.prompt is None:
            if self.model_id is None or self.request is None:
                raise ValueError("modelId and request are required when prompt is absent")
        elif not self.prompt.strip():
            raise ValueError("prompt must not be empty")
        return self

    @property
    def mode(self) -> Literal["assisted", "structured"]:
        return "assisted" if self.prompt is not None else "structured"


class CreateJobResponse(_CamelModel):
    job_id: str
    status: str


class ModelDescriptor(_CamelModel):
    model_id: str
    type: str
    mode: Literal["sync", "async"]
    description: str


class ModelsResponse(_CamelModel):
    models: List[ModelDescriptor]


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded", "down"] = "ok"
    timestamp: datetime
    dependencies: dict[str, str] = Field(default_factory=dict)
