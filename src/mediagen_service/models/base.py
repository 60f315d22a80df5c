"""Adapter contract shared by every model backend."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Type

from ..errors import AdapterContractError
from ..schemas import RequestShape
from ..storage import ObjectStorage


@dataclass
class MediaOutput:
    uri: str
    mime_type: Optional[str] = None
    size: Optional[int] = None


@dataclass
class ModelOutput:
    """Normalized result: either one media reference or free text."""

    media: Optional[MediaOutput] = None
    text: Optional[str] = None

    def __post_init__(self) -> None:
        if self.media is not None and self.text is not None:
            raise AdapterContractError("Model output cannot carry both media and text")

    def to_wire(self) -> Dict[str, Any]:
        if self.media is not None:
            wire: Dict[str, Any] = {"uri": self.media.uri}
            if self.media.mime_type:
                wire["mimeType"] = self.media.mime_type
            if self.media.size is not None:
                wire["size"] = self.media.size
            return wire
        if self.text is not None:
            return {"text": self.text}
        return {}


@dataclass
class StartResult:
    operation_name: Optional[str] = None
    output: Optional[ModelOutput] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    def check(self) -> None:
        if bool(self.operation_name) == (self.output is not None):
            raise AdapterContractError("Model adapter returned invalid result")


@dataclass
class OperationResult:
    done: bool
    error: Optional[Dict[str, Any]] = None
    data: Optional[Dict[str, Any]] = None


class ModelAdapter(ABC):
    model_id: str = ""
    media_type: str = ""
    description: str = ""
    asynchronous: bool = False
    request_model: Type[RequestShape] = RequestShape

    @abstractmethod
    def start(self, request: RequestShape, job_id: str, storage: ObjectStorage) -> StartResult:
        """Submit the request; returns an operation handle or an immediate output.

        Sync adapters upload generated bytes through ``storage`` under the job's folder.
        """

    def poll(self, operation_name: str) -> OperationResult:
        raise NotImplementedError(f"{self.model_id} does not run long operations")

    def extract_output(self, data: Dict[str, Any], job_id: str, storage: ObjectStorage) -> ModelOutput:
        raise NotImplementedError(f"{self.model_id} does not run long operations")

    def describe(self) -> Dict[str, Any]:
        return {
            "modelId": self.model_id,
            "type": self.media_type,
            "mode": "async" if self.asynchronous else "sync",
            "description": self.description,
        }
