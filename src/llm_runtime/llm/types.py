"""Shared LLM data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class Generation:
    text: str
    generation_info: Dict[str, Any] | None = None


@dataclass
class RunInfo:
    run_id: str


@dataclass
class LLMResult:
    generations: List[List[Generation]]
    llm_output: Dict[str, Any] = field(default_factory=dict)
    run: RunInfo | None = None


class InvalidArgumentError(TypeError):
    """Call-site input has the wrong shape."""


class UnknownModelTypeError(ValueError):
    """Serialized record names an LLM type nobody registered."""


class ModelMismatchError(ValueError):
    """Serialized record belongs to a different model family."""
