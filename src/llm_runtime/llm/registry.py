"""Registration table used to rebuild LLMs from serialized records."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, List

import yaml

from .types import ModelMismatchError, UnknownModelTypeError

if TYPE_CHECKING:
    from .base import BaseLLM

MODEL_TYPE = "base_llm"

LLMFactory = Callable[..., "BaseLLM"]

_REGISTRY: Dict[str, LLMFactory] = {}
_REGISTRY_LOCK = threading.Lock()


def register_llm(type_name: str, factory: LLMFactory | None = None):
    """Maps a ``_type`` discriminator to a constructor.

    Usable directly, ``register_llm("fake", FakeLLM)``, or as a class decorator.
    """

    def _register(fn: LLMFactory) -> LLMFactory:
        with _REGISTRY_LOCK:
            _REGISTRY[type_name] = fn
        return fn

    if factory is None:
        return _register
    return _register(factory)


def unregister_llm(type_name: str) -> None:
    with _REGISTRY_LOCK:
        _REGISTRY.pop(type_name, None)


def get_llm_factory(type_name: str) -> LLMFactory | None:
    with _REGISTRY_LOCK:
        return _REGISTRY.get(type_name)


def registered_types() -> List[str]:
    with _REGISTRY_LOCK:
        return sorted(_REGISTRY)


def deserialize_llm(data: Dict[str, Any]) -> "BaseLLM":
    params = dict(data)
    type_name = params.pop("_type", None)
    model_type = params.pop("_model", None)
    if model_type and model_type != MODEL_TYPE:
        raise ModelMismatchError(f"Cannot load LLM with model {model_type}")

    factory = get_llm_factory(str(type_name)) if type_name is not None else None
    if factory is None:
        raise UnknownModelTypeError(f"Cannot load LLM with type {type_name}")
    return factory(**params)


def load_llm(path: str) -> "BaseLLM":
    """Reads a YAML or JSON record from disk and rebuilds the LLM it describes."""
    file_path = Path(path)
    with file_path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping in {path}, got {type(data).__name__}")
    return deserialize_llm(data)


def save_llm(llm: "BaseLLM", path: str) -> None:
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    with file_path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(llm.serialize(), f, sort_keys=True)
