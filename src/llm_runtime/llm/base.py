"""Base LLM classes: cached batch generation with run callbacks."""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Sequence

from ..cache import BaseCache, InMemoryCache
from ..callbacks.manager import Callbacks, CallbackManager, LLMRunManager
from .registry import MODEL_TYPE, deserialize_llm
from .types import Generation, InvalidArgumentError, LLMResult, RunInfo

logger = logging.getLogger(__name__)


class BaseLLM(ABC):
    """Batch text generation over a pluggable backend.

    Subclasses implement ``_generate`` and ``_llm_type``. Callers use
    ``generate`` (batch) or ``call`` (single prompt); both consult the cache
    when one is configured and report the run to callback handlers.
    """

    def __init__(
        self,
        cache: BaseCache | bool | None = None,
        callbacks: Callbacks = None,
        verbose: bool = False,
        tracing: bool | None = None,
        tracing_db: str | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        if isinstance(cache, bool):
            self.cache: BaseCache | None = InMemoryCache.global_instance() if cache else None
        else:
            self.cache = cache
        self.callbacks = callbacks
        self.verbose = verbose
        self.tracing = tracing
        self.tracing_db = tracing_db
        if max_concurrency is not None and max_concurrency < 1:
            raise ValueError("max_concurrency must be a positive integer")
        self.max_concurrency = max_concurrency

    @abstractmethod
    async def _generate(
        self,
        prompts: List[str],
        stop: List[str] | None = None,
        run_manager: LLMRunManager | None = None,
    ) -> LLMResult:
        """Runs the backend on the given prompts."""

    @abstractmethod
    def _llm_type(self) -> str:
        """Type key identifying this class of LLM."""

    def _identifying_params(self) -> Dict[str, Any]:
        return {}

    def _model_type(self) -> str:
        return MODEL_TYPE

    def serialize(self) -> Dict[str, Any]:
        return {
            **self._identifying_params(),
            "_type": self._llm_type(),
            "_model": self._model_type(),
        }

    @classmethod
    def deserialize(cls, data: Dict[str, Any]) -> "BaseLLM":
        return deserialize_llm(data)

    def _llm_string(self, stop: Sequence[str] | None) -> str:
        params = self.serialize()
        params["stop"] = list(stop) if stop is not None else None
        return json.dumps(params, sort_keys=True, default=str)

    async def _generate_uncached(
        self,
        prompts: List[str],
        stop: List[str] | None = None,
        callbacks: Callbacks = None,
    ) -> LLMResult:
        manager = CallbackManager.configure(
            callbacks,
            self.callbacks,
            verbose=self.verbose,
            tracing=self.tracing,
            tracing_db=self.tracing_db,
        )
        run_manager = None
        if manager is not None:
            run_manager = await manager.handle_llm_start({"name": self._llm_type()}, prompts)

        try:
            output = await self._generate(prompts, stop, run_manager)
        except (Exception, asyncio.CancelledError) as err:
            if run_manager is not None:
                await run_manager.handle_llm_error(err)
            raise

        if run_manager is not None:
            await run_manager.handle_llm_end(output)
        output.run = RunInfo(run_id=run_manager.run_id) if run_manager is not None else None
        return output

    async def generate(
        self,
        prompts: Sequence[str],
        stop: List[str] | None = None,
        callbacks: Callbacks = None,
    ) -> LLMResult:
        """Runs the LLM on a batch of prompts, serving what it can from the cache."""
        if isinstance(prompts, str) or not isinstance(prompts, Sequence):
            raise InvalidArgumentError("Argument 'prompts' is expected to be a sequence of strings")
        prompts = list(prompts)

        if self.cache is None:
            return await self._generate_uncached(prompts, stop, callbacks)

        cache = self.cache
        llm_string = self._llm_string(stop)
        generations: List[List[Generation] | None] = list(
            await asyncio.gather(*(cache.lookup(prompt, llm_string) for prompt in prompts))
        )
        missing = [index for index, cached in enumerate(generations) if not cached]
        logger.debug("Cache: %d hit(s), %d miss(es)", len(prompts) - len(missing), len(missing))

        if not missing:
            return LLMResult(generations=generations, llm_output={})

        results = await self._generate_uncached([prompts[i] for i in missing], stop, callbacks)
        if len(results.generations) != len(missing):
            raise ValueError(
                f"Backend returned {len(results.generations)} generation list(s) for {len(missing)} prompt(s)"
            )

        for prompt_index, generation in zip(missing, results.generations):
            generations[prompt_index] = generation

        writes = await asyncio.gather(
            *(
                cache.update(prompts[prompt_index], llm_string, generation)
                for prompt_index, generation in zip(missing, results.generations)
            ),
            return_exceptions=True,
        )
        failures = [outcome for outcome in writes if isinstance(outcome, BaseException)]
        for failure in failures:
            logger.warning("Cache update failed: %s", failure)
        if failures:
            raise failures[0]

        return LLMResult(generations=generations, llm_output=results.llm_output or {}, run=results.run)

    async def call(
        self,
        prompt: str,
        stop: List[str] | None = None,
        callbacks: Callbacks = None,
    ) -> str:
        result = await self.generate([prompt], stop, callbacks)
        return result.generations[0][0].text


class LLM(BaseLLM):
    """Simpler base: implement ``_call`` for one prompt instead of ``_generate``.

    Prompts run one after another unless ``max_concurrency`` is set, in which
    case up to that many ``_call``s run at once. Output order always follows
    input order.
    """

    @abstractmethod
    async def _call(
        self,
        prompt: str,
        stop: List[str] | None = None,
        run_manager: LLMRunManager | None = None,
    ) -> str:
        """Runs the backend on a single prompt."""

    async def _generate(
        self,
        prompts: List[str],
        stop: List[str] | None = None,
        run_manager: LLMRunManager | None = None,
    ) -> LLMResult:
        if not self.max_concurrency:
            texts = [await self._call(prompt, stop, run_manager) for prompt in prompts]
        else:
            semaphore = asyncio.Semaphore(self.max_concurrency)

            async def _bounded(prompt: str) -> str:
                async with semaphore:
                    return await self._call(prompt, stop, run_manager)

            texts = await asyncio.gather(*(_bounded(prompt) for prompt in prompts))
        return LLMResult(generations=[[Generation(text=text)] for text in texts])
