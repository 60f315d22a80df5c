"""Model adapter package: allow-list lookups over the registered adapters."""

from __future__ import annotations

from typing import Any, Dict, List

from .base import MediaOutput, ModelAdapter, ModelOutput, OperationResult, StartResult
from .registry import DEFAULT_ADAPTER_MODULES, REGISTRY, load_adapters

load_adapters()


def is_valid_model_id(model_id: Any) -> bool:
    return model_id in REGISTRY


def get_model_adapter(model_id: str) -> ModelAdapter:
    return REGISTRY.get(model_id)


def list_models() -> List[Dict[str, Any]]:
    return [adapter.describe() for adapter in REGISTRY.list()]


__all__ = [
    "DEFAULT_ADAPTER_MODULES",
    "MediaOutput",
    "ModelAdapter",
    "ModelOutput",
    "OperationResult",
    "REGISTRY",
    "StartResult",
    "get_model_adapter",
    "is_valid_model_id",
    "list_models",
    "load_adapters",
]
