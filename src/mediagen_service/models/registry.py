"""Registry mapping model identifiers to their adapters."""

from __future__ import annotations

from importlib import import_module
from typing import Dict, Iterable, List, Sequence

from ..errors import UnknownModelError
from .base import ModelAdapter

DEFAULT_ADAPTER_MODULES: Sequence[str] = (
    "mediagen_service.models.veo",
    "mediagen_service.models.gemini_image",
    "mediagen_service.models.gemini_tts",
    "mediagen_service.models.gemini_text",
)


class AdapterRegistry:
    def __init__(self) -> None:
        self._registry: Dict[str, ModelAdapter] = {}

    def register(self, adapter: ModelAdapter) -> None:
        if not adapter.model_id:
            raise ValueError(f"{type(adapter).__name__} has no model_id")
        if adapter.model_id in self._registry:
            raise ValueError(f"Adapter already registered for {adapter.model_id}")
        self._registry[adapter.model_id] = adapter

    def __contains__(self, model_id: object) -> bool:
        return isinstance(model_id, str) and model_id in self._registry

    def get(self, model_id: str) -> ModelAdapter:
        if model_id not in self._registry:
            raise UnknownModelError(f"Unknown model ID: {model_id}")
        return self._registry[model_id]

    def model_ids(self) -> List[str]:
        return list(self._registry)

    def list(self) -> Iterable[ModelAdapter]:
        return list(self._registry.values())


REGISTRY = AdapterRegistry()


def load_adapters(module_names: Iterable[str] | None = None) -> None:
    """Import adapter modules and trigger their registration side-effects."""

    for module in list(module_names or DEFAULT_ADAPTER_MODULES):
        import_module(module)


__all__ = ["AdapterRegistry", "DEFAULT_ADAPTER_MODULES", "REGISTRY", "load_adapters"]
