import asyncio
import threading

import pytest

from llm_runtime.callbacks.manager import CallbackManager, set_default_handlers
from llm_runtime.llm.base import BaseLLM
from llm_runtime.llm.types import Generation, LLMResult
from llm_runtime.models import apply_migrations, get_connection, get_run, list_child_runs, list_runs


REQUIRED_TABLES = {"schema_migrations", "runs"}


class TinyLLM(BaseLLM):
    def __init__(self, fail: bool = False, **kwargs):
        super().__init__(**kwargs)
        self.fail = fail

    def _llm_type(self) -> str:
        return "tiny"

    async def _generate(self, prompts, stop=None, run_manager=None):
        if self.fail:
            raise TimeoutError("too slow")
        return LLMResult(generations=[[Generation(text=p.upper())] for p in prompts])


@pytest.fixture(autouse=True)
def _clean_defaults(monkeypatch):
    monkeypatch.delenv("LLM_RUNTIME_TRACING", raising=False)
    monkeypatch.delenv("LLM_RUNTIME_TRACING_DB", raising=False)
    set_default_handlers([])
    yield
    set_default_handlers([])


def test_run_log_migrations_are_idempotent(tmp_path):
    db_path = str(tmp_path / "runs.db")
    apply_migrations(db_path)
    apply_migrations(db_path)

    with get_connection(db_path) as conn:
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
        tables = {row["name"] for row in rows}

    assert REQUIRED_TABLES.issubset(tables)


def test_tracing_records_successful_run(tmp_path):
    db_path = str(tmp_path / "runs.db")
    llm = TinyLLM(tracing=True, tracing_db=db_path)

    result = asyncio.run(llm.generate(["abc"]))

    with get_connection(db_path) as conn:
        run = get_run(conn, result.run.run_id)

    assert run["status"] == "success"
    assert run["run_type"] == "llm"
    assert run["name"] == "tiny"
    assert run["inputs"] == {"prompts": ["abc"]}
    assert run["outputs"]["generations"][0][0]["text"] == "ABC"
    assert run["ended_at"] is not None


def test_tracing_records_failed_run(tmp_path):
    db_path = str(tmp_path / "runs.db")
    llm = TinyLLM(fail=True, tracing=True, tracing_db=db_path)

    with pytest.raises(TimeoutError):
        asyncio.run(llm.generate(["abc"]))

    with get_connection(db_path) as conn:
        runs = list_runs(conn)

    assert len(runs) == 1
    assert runs[0]["status"] == "error"
    assert "too slow" in runs[0]["error"]


def test_tracing_links_child_runs(tmp_path):
    db_path = str(tmp_path / "runs.db")

    async def scenario():
        manager = CallbackManager.configure(None, None, tracing=True, tracing_db=db_path)
        chain_run = await manager.handle_chain_start({"name": "qa"}, {"question": "why"})
        await TinyLLM().generate(["why"], callbacks=chain_run.get_child())
        await chain_run.handle_chain_end({"answer": "WHY"})
        return chain_run.run_id

    chain_id = asyncio.run(scenario())

    with get_connection(db_path) as conn:
        chain = get_run(conn, chain_id)
        children = list_child_runs(conn, chain_id)

    assert chain["status"] == "success"
    assert chain["outputs"] == {"answer": "WHY"}
    assert len(children) == 1
    assert children[0]["run_type"] == "llm"


def test_tracing_env_flag(tmp_path, monkeypatch):
    db_path = str(tmp_path / "env_runs.db")
    monkeypatch.setenv("LLM_RUNTIME_TRACING", "1")
    monkeypatch.setenv("LLM_RUNTIME_TRACING_DB", db_path)

    asyncio.run(TinyLLM().generate(["x"]))

    with get_connection(db_path) as conn:
        assert len(list_runs(conn)) == 1


def test_tracing_from_worker_thread_shares_handler(tmp_path):
    db_path = str(tmp_path / "threaded.db")
    errors = []

    def run_in_thread():
        try:
            asyncio.run(TinyLLM(tracing=True, tracing_db=db_path).generate(["from thread"]))
        except Exception as exc:
            errors.append(exc)

    asyncio.run(TinyLLM(tracing=True, tracing_db=db_path).generate(["from main"]))
    worker = threading.Thread(target=run_in_thread)
    worker.start()
    worker.join()

    with get_connection(db_path) as conn:
        runs = list_runs(conn)

    assert errors == []
    assert len(runs) == 2
    assert {run["status"] for run in runs} == {"success"}
    assert sorted(run["inputs"]["prompts"][0] for run in runs) == ["from main", "from thread"]


def test_tracing_records_tool_runs(tmp_path):
    db_path = str(tmp_path / "tools.db")

    async def scenario():
        manager = CallbackManager.configure(None, None, tracing=True, tracing_db=db_path)
        ok = await manager.handle_tool_start({"name": "search"}, "weather oslo")
        await ok.handle_tool_end("rainy")
        broken = await manager.handle_tool_start({"name": "calculator"}, "1/0")
        await broken.handle_tool_error(ZeroDivisionError("division by zero"))
        return ok.run_id, broken.run_id

    ok_id, broken_id = asyncio.run(scenario())

    with get_connection(db_path) as conn:
        ok = get_run(conn, ok_id)
        broken = get_run(conn, broken_id)

    assert ok["run_type"] == "tool"
    assert ok["inputs"] == {"input": "weather oslo"}
    assert ok["outputs"] == {"output": "rainy"}
    assert broken["status"] == "error"
    assert "division by zero" in broken["error"]
