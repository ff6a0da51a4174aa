"""Callback handler base.

A handler is any object carrying ``name`` plus the three ignore flags. Each
lifecycle hook is optional and looked up by name when an event fires, so a
handler implements only the hooks it cares about. Hooks may be plain
functions or coroutines. Recognised hook names and their arguments:

    handle_llm_start(llm, prompts, run_id, parent_run_id)
    handle_llm_new_token(token, run_id, parent_run_id)
    handle_llm_error(err, run_id, parent_run_id)
    handle_llm_end(output, run_id, parent_run_id)
    handle_chain_start(chain, inputs, run_id, parent_run_id)
    handle_chain_error(err, run_id, parent_run_id)
    handle_chain_end(outputs, run_id, parent_run_id)
    handle_tool_start(tool, input, run_id, parent_run_id)
    handle_tool_error(err, run_id, parent_run_id)
    handle_tool_end(output, run_id, parent_run_id)
    handle_text(text, run_id, parent_run_id)
    handle_agent_action(action, run_id, parent_run_id)
    handle_agent_end(action, run_id, parent_run_id)
"""

from __future__ import annotations

import copy as _copy
from typing import Any, Callable

from ..utils import new_run_id

HOOK_NAMES = (
    "handle_llm_start",
    "handle_llm_new_token",
    "handle_llm_error",
    "handle_llm_end",
    "handle_chain_start",
    "handle_chain_error",
    "handle_chain_end",
    "handle_tool_start",
    "handle_tool_error",
    "handle_tool_end",
    "handle_text",
    "handle_agent_action",
    "handle_agent_end",
)


class BaseCallbackHandler:
    name = "base"

    def __init__(
        self,
        ignore_llm: bool = False,
        ignore_chain: bool = False,
        ignore_agent: bool = False,
    ) -> None:
        self.ignore_llm = ignore_llm
        self.ignore_chain = ignore_chain
        self.ignore_agent = ignore_agent

    def copy(self) -> "BaseCallbackHandler":
        return _copy.copy(self)

    @classmethod
    def from_methods(
        cls,
        ignore_llm: bool = False,
        ignore_chain: bool = False,
        ignore_agent: bool = False,
        **hooks: Callable[..., Any],
    ) -> "BaseCallbackHandler":
        """Builds a handler from loose functions, e.g. ``from_methods(handle_llm_end=fn)``."""
        unknown = set(hooks) - set(HOOK_NAMES)
        if unknown:
            raise ValueError(f"Unknown callback hooks: {', '.join(sorted(unknown))}")

        handler = cls(ignore_llm=ignore_llm, ignore_chain=ignore_chain, ignore_agent=ignore_agent)
        handler.name = new_run_id()
        for hook_name, fn in hooks.items():
            setattr(handler, hook_name, fn)
        return handler

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
