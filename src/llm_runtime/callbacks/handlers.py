"""Built-in callback handlers: verbose logging and SQLite run tracing."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from contextlib import closing
from typing import Any, Callable, Dict, List

from ..models import apply_migrations, get_connection, log_run_end, log_run_error, log_run_start
from .base import BaseCallbackHandler


def _as_dict(value: Any) -> Dict[str, Any]:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, dict):
        return value
    return {"output": value}


class LoggingCallbackHandler(BaseCallbackHandler):
    """Writes every lifecycle event to the ``llm_runtime.runs`` logger."""

    name = "logging"

    def __init__(self, logger: logging.Logger | None = None, level: int = logging.INFO, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.logger = logger or logging.getLogger("llm_runtime.runs")
        self.level = level

    def _log(self, run_id: str, parent_run_id: str | None, message: str, *args: Any) -> None:
        prefix = f"[{run_id}]" if parent_run_id is None else f"[{parent_run_id} > {run_id}]"
        self.logger.log(self.level, prefix + " " + message, *args)

    def handle_llm_start(self, llm, prompts: List[str], run_id: str, parent_run_id: str | None = None) -> None:
        self._log(run_id, parent_run_id, "llm start %s with %d prompt(s)", llm.get("name"), len(prompts))

    def handle_llm_new_token(self, token: str, run_id: str, parent_run_id: str | None = None) -> None:
        self.logger.debug("[%s] token %r", run_id, token)

    def handle_llm_error(self, err, run_id: str, parent_run_id: str | None = None) -> None:
        self._log(run_id, parent_run_id, "llm error: %s", err)

    def handle_llm_end(self, output, run_id: str, parent_run_id: str | None = None) -> None:
        self._log(run_id, parent_run_id, "llm end with %d generation list(s)", len(output.generations))

    def handle_chain_start(self, chain, inputs, run_id: str, parent_run_id: str | None = None) -> None:
        self._log(run_id, parent_run_id, "chain start %s", chain.get("name"))

    def handle_chain_error(self, err, run_id: str, parent_run_id: str | None = None) -> None:
        self._log(run_id, parent_run_id, "chain error: %s", err)

    def handle_chain_end(self, outputs, run_id: str, parent_run_id: str | None = None) -> None:
        self._log(run_id, parent_run_id, "chain end, output keys: %s", sorted(outputs))

    def handle_tool_start(self, tool, input: str, run_id: str, parent_run_id: str | None = None) -> None:
        self._log(run_id, parent_run_id, "tool start %s", tool.get("name"))

    def handle_tool_error(self, err, run_id: str, parent_run_id: str | None = None) -> None:
        self._log(run_id, parent_run_id, "tool error: %s", err)

    def handle_tool_end(self, output: str, run_id: str, parent_run_id: str | None = None) -> None:
        self._log(run_id, parent_run_id, "tool end")

    def handle_text(self, text: str, run_id: str, parent_run_id: str | None = None) -> None:
        self._log(run_id, parent_run_id, "%s", text)

    def handle_agent_action(self, action, run_id: str, parent_run_id: str | None = None) -> None:
        self._log(run_id, parent_run_id, "agent action %s", action)

    def handle_agent_end(self, action, run_id: str, parent_run_id: str | None = None) -> None:
        self._log(run_id, parent_run_id, "agent end %s", action)


class RunLogCallbackHandler(BaseCallbackHandler):
    """Records runs in the SQLite ``runs`` table: one row per run, closed on end or error.

    Each write opens its own short-lived connection in a worker thread, so the
    handler can be shared by event loops running in different threads.
    """

    name = "run_log"

    def __init__(self, db_path: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.db_path = db_path
        apply_migrations(db_path)

    def _write(self, log_fn: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        with closing(get_connection(self.db_path)) as conn:
            log_fn(conn, *args, **kwargs)

    async def _start(self, run_type: str, name: Any, inputs: Dict[str, Any], run_id: str, parent_run_id: str | None) -> None:
        await asyncio.to_thread(
            self._write,
            log_run_start,
            run_id=run_id,
            run_type=run_type,
            name=str(name or run_type),
            inputs=inputs,
            parent_run_id=parent_run_id,
        )

    async def _end(self, run_id: str, outputs: Dict[str, Any]) -> None:
        await asyncio.to_thread(self._write, log_run_end, run_id, outputs)

    async def _error(self, run_id: str, err: BaseException) -> None:
        await asyncio.to_thread(self._write, log_run_error, run_id, repr(err))

    async def handle_llm_start(self, llm, prompts: List[str], run_id: str, parent_run_id: str | None = None) -> None:
        await self._start("llm", llm.get("name"), {"prompts": list(prompts)}, run_id, parent_run_id)

    async def handle_llm_error(self, err, run_id: str, parent_run_id: str | None = None) -> None:
        await self._error(run_id, err)

    async def handle_llm_end(self, output, run_id: str, parent_run_id: str | None = None) -> None:
        await self._end(run_id, _as_dict(output))

    async def handle_chain_start(self, chain, inputs, run_id: str, parent_run_id: str | None = None) -> None:
        await self._start("chain", chain.get("name"), _as_dict(inputs), run_id, parent_run_id)

    async def handle_chain_error(self, err, run_id: str, parent_run_id: str | None = None) -> None:
        await self._error(run_id, err)

    async def handle_chain_end(self, outputs, run_id: str, parent_run_id: str | None = None) -> None:
        await self._end(run_id, _as_dict(outputs))

    async def handle_tool_start(self, tool, input: str, run_id: str, parent_run_id: str | None = None) -> None:
        await self._start("tool", tool.get("name"), {"input": input}, run_id, parent_run_id)

    async def handle_tool_error(self, err, run_id: str, parent_run_id: str | None = None) -> None:
        await self._error(run_id, err)

    async def handle_tool_end(self, output: str, run_id: str, parent_run_id: str | None = None) -> None:
        await self._end(run_id, {"output": output})
