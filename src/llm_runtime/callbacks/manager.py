"""Callback manager: fans lifecycle events out to registered handlers.

Every event is awaited: the hooks of all eligible handlers run concurrently
under ``asyncio.gather`` and the caller resumes once they have all finished.
This holds for token events too, so handlers observe tokens in emission
order. A hook that raises is logged and skipped; it never aborts the run or
hides the event from the remaining handlers.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from typing import Any, Dict, Iterable, List, Sequence, Tuple, Union

from ..config import env_flag, tracing_database_path
from ..utils import new_run_id
from .base import BaseCallbackHandler
from .handlers import LoggingCallbackHandler, RunLogCallbackHandler

logger = logging.getLogger(__name__)

_default_handlers: List[BaseCallbackHandler] = []
_default_lock = threading.Lock()
_run_log_handlers: Dict[str, RunLogCallbackHandler] = {}


def run_log_handler(db_path: str) -> RunLogCallbackHandler:
    """One tracing handler per database path, so migrations run once per path."""
    with _default_lock:
        handler = _run_log_handlers.get(db_path)
        if handler is None:
            handler = RunLogCallbackHandler(db_path)
            _run_log_handlers[db_path] = handler
        return handler


def default_handlers() -> List[BaseCallbackHandler]:
    with _default_lock:
        return list(_default_handlers)


def set_default_handlers(handlers: Iterable[BaseCallbackHandler]) -> None:
    """Replaces the process-wide handlers attached to every configured run."""
    with _default_lock:
        _default_handlers[:] = _dedupe(handlers)


def add_default_handler(handler: BaseCallbackHandler) -> None:
    with _default_lock:
        if not _contains(_default_handlers, handler):
            _default_handlers.append(handler)


def _contains(handlers: Sequence[Any], handler: Any) -> bool:
    return any(existing is handler for existing in handlers)


def _dedupe(handlers: Iterable[Any]) -> List[Any]:
    unique: List[Any] = []
    for handler in handlers:
        if not _contains(unique, handler):
            unique.append(handler)
    return unique


async def _invoke(handler: Any, hook_name: str, args: Tuple[Any, ...]) -> None:
    hook = getattr(handler, hook_name, None)
    if hook is None:
        return
    try:
        result = hook(*args)
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.exception(
            "Callback handler %s failed in %s",
            getattr(handler, "name", type(handler).__name__),
            hook_name,
        )


async def _dispatch(
    handlers: Sequence[Any],
    hook_name: str,
    ignore_flag: str | None,
    *args: Any,
) -> None:
    eligible = [
        handler
        for handler in handlers
        if not (ignore_flag and getattr(handler, ignore_flag, False))
    ]
    if not eligible:
        return
    await asyncio.gather(*(_invoke(handler, hook_name, args) for handler in eligible))


class BaseRunManager:
    """Handle for one run. Closed once a terminal event has been emitted."""

    def __init__(
        self,
        run_id: str,
        handlers: Sequence[Any],
        inheritable_handlers: Sequence[Any],
        parent_run_id: str | None = None,
    ) -> None:
        self.run_id = run_id
        self.handlers = list(handlers)
        self.inheritable_handlers = list(inheritable_handlers)
        self.parent_run_id = parent_run_id
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def _emit(self, hook_name: str, ignore_flag: str | None, *args: Any) -> None:
        if self._closed:
            logger.warning("Dropping %s for finished run %s", hook_name, self.run_id)
            return
        await _dispatch(self.handlers, hook_name, ignore_flag, *args, self.run_id, self.parent_run_id)

    async def _emit_terminal(self, hook_name: str, ignore_flag: str | None, *args: Any) -> None:
        if self._closed:
            logger.warning("Dropping %s for finished run %s", hook_name, self.run_id)
            return
        self._closed = True
        await _dispatch(self.handlers, hook_name, ignore_flag, *args, self.run_id, self.parent_run_id)

    async def handle_text(self, text: str) -> None:
        await self._emit("handle_text", None, text)

    def get_child(self) -> "CallbackManager":
        """Manager for nested runs, correlated to this run via ``parent_run_id``."""
        manager = CallbackManager(parent_run_id=self.run_id)
        manager.set_handlers(self.inheritable_handlers)
        return manager


class LLMRunManager(BaseRunManager):
    async def handle_llm_new_token(self, token: str) -> None:
        await self._emit("handle_llm_new_token", "ignore_llm", token)

    async def handle_llm_error(self, err: BaseException) -> None:
        await self._emit_terminal("handle_llm_error", "ignore_llm", err)

    async def handle_llm_end(self, output: Any) -> None:
        await self._emit_terminal("handle_llm_end", "ignore_llm", output)


class ChainRunManager(BaseRunManager):
    async def handle_chain_error(self, err: BaseException) -> None:
        await self._emit_terminal("handle_chain_error", "ignore_chain", err)

    async def handle_chain_end(self, outputs: Dict[str, Any]) -> None:
        await self._emit_terminal("handle_chain_end", "ignore_chain", outputs)

    async def handle_agent_action(self, action: Any) -> None:
        await self._emit("handle_agent_action", "ignore_agent", action)

    async def handle_agent_end(self, action: Any) -> None:
        await self._emit("handle_agent_end", "ignore_agent", action)


class ToolRunManager(BaseRunManager):
    async def handle_tool_error(self, err: BaseException) -> None:
        await self._emit_terminal("handle_tool_error", "ignore_agent", err)

    async def handle_tool_end(self, output: str) -> None:
        await self._emit_terminal("handle_tool_end", "ignore_agent", output)


Callbacks = Union["CallbackManager", Sequence[BaseCallbackHandler], None]


class CallbackManager:
    def __init__(
        self,
        handlers: Iterable[Any] | None = None,
        inheritable_handlers: Iterable[Any] | None = None,
        parent_run_id: str | None = None,
    ) -> None:
        self.handlers: List[Any] = _dedupe(handlers or [])
        self.inheritable_handlers: List[Any] = _dedupe(inheritable_handlers or [])
        self.parent_run_id = parent_run_id

    async def handle_llm_start(
        self,
        llm: Dict[str, Any],
        prompts: Sequence[str],
        run_id: str | None = None,
    ) -> LLMRunManager:
        run_id = run_id or new_run_id()
        await _dispatch(
            self.handlers, "handle_llm_start", "ignore_llm", llm, list(prompts), run_id, self.parent_run_id
        )
        return LLMRunManager(run_id, self.handlers, self.inheritable_handlers, self.parent_run_id)

    async def handle_chain_start(
        self,
        chain: Dict[str, Any],
        inputs: Dict[str, Any],
        run_id: str | None = None,
    ) -> ChainRunManager:
        run_id = run_id or new_run_id()
        await _dispatch(
            self.handlers, "handle_chain_start", "ignore_chain", chain, inputs, run_id, self.parent_run_id
        )
        return ChainRunManager(run_id, self.handlers, self.inheritable_handlers, self.parent_run_id)

    async def handle_tool_start(
        self,
        tool: Dict[str, Any],
        input: str,
        run_id: str | None = None,
    ) -> ToolRunManager:
        run_id = run_id or new_run_id()
        await _dispatch(
            self.handlers, "handle_tool_start", "ignore_agent", tool, input, run_id, self.parent_run_id
        )
        return ToolRunManager(run_id, self.handlers, self.inheritable_handlers, self.parent_run_id)

    def add_handler(self, handler: Any, inherit: bool = True) -> None:
        if not _contains(self.handlers, handler):
            self.handlers.append(handler)
        if inherit and not _contains(self.inheritable_handlers, handler):
            self.inheritable_handlers.append(handler)

    def remove_handler(self, handler: Any) -> None:
        self.handlers = [h for h in self.handlers if h is not handler]
        self.inheritable_handlers = [h for h in self.inheritable_handlers if h is not handler]

    def set_handlers(self, handlers: Iterable[Any], inherit: bool = True) -> None:
        self.handlers = []
        self.inheritable_handlers = []
        for handler in handlers:
            self.add_handler(handler, inherit)

    def copy(self, additional_handlers: Iterable[Any] = (), inherit: bool = True) -> "CallbackManager":
        manager = CallbackManager(self.handlers, self.inheritable_handlers, self.parent_run_id)
        for handler in additional_handlers:
            manager.add_handler(handler, inherit)
        return manager

    @classmethod
    def configure(
        cls,
        inheritable_handlers: Callbacks = None,
        local_handlers: Callbacks = None,
        verbose: bool = False,
        tracing: bool | None = None,
        tracing_db: str | None = None,
    ) -> CallbackManager | None:
        """Builds the manager for one run, or ``None`` when nothing would listen.

        ``inheritable_handlers`` are the caller's callbacks and propagate to
        child runs; ``local_handlers`` (the component's own callbacks) do not.
        Process-wide default handlers are merged in as inheritable.
        """
        if isinstance(inheritable_handlers, CallbackManager):
            manager = inheritable_handlers.copy()
        else:
            manager = cls()
            manager.set_handlers(inheritable_handlers or [], inherit=True)

        for handler in default_handlers():
            manager.add_handler(handler, inherit=True)

        if isinstance(local_handlers, CallbackManager):
            local = local_handlers.handlers
        else:
            local = local_handlers or []
        manager = manager.copy(local, inherit=False)

        if verbose or env_flag("LLM_RUNTIME_VERBOSE"):
            if not any(isinstance(h, LoggingCallbackHandler) for h in manager.handlers):
                manager.add_handler(LoggingCallbackHandler(), inherit=True)

        if tracing is None:
            tracing = env_flag("LLM_RUNTIME_TRACING")
        if tracing and not any(isinstance(h, RunLogCallbackHandler) for h in manager.handlers):
            manager.add_handler(run_log_handler(tracing_db or tracing_database_path()), inherit=True)

        if not manager.handlers:
            return None
        return manager
