"""Prompt cache interface and the in-memory default."""

from __future__ import annotations

import threading
from typing import ClassVar, Dict, List, Protocol, Tuple

from .llm.types import Generation


class BaseCache(Protocol):
    async def lookup(self, prompt: str, llm_string: str) -> List[Generation] | None:
        ...

    async def update(self, prompt: str, llm_string: str, generations: List[Generation]) -> None:
        ...


class InMemoryCache:
    """Unbounded dict-backed cache keyed on (prompt, llm_string)."""

    _global: ClassVar[InMemoryCache | None] = None
    _global_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self) -> None:
        self._store: Dict[Tuple[str, str], List[Generation]] = {}

    async def lookup(self, prompt: str, llm_string: str) -> List[Generation] | None:
        return self._store.get((prompt, llm_string))

    async def update(self, prompt: str, llm_string: str, generations: List[Generation]) -> None:
        self._store[(prompt, llm_string)] = generations

    def clear(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)

    @classmethod
    def global_instance(cls) -> "InMemoryCache":
        """Process-wide cache shared by every LLM constructed with ``cache=True``.

        Created on first use and never replaced afterwards; call ``clear()`` to
        drop its entries.
        """
        with cls._global_lock:
            if cls._global is None:
                cls._global = cls()
            return cls._global
