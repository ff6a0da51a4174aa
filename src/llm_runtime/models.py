"""SQLite schema, migrations, and run log helpers."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any, Dict, List

from .utils import json_dumps, json_loads, utc_now_iso

MIGRATIONS: list[tuple[int, str]] = [
    (
        1,
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version INTEGER PRIMARY KEY,
            applied_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS runs (
            run_id TEXT PRIMARY KEY,
            parent_run_id TEXT,
            run_type TEXT NOT NULL,
            name TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'running',
            inputs_json TEXT NOT NULL DEFAULT '{}',
            outputs_json TEXT NOT NULL DEFAULT '{}',
            error TEXT,
            started_at TEXT NOT NULL,
            ended_at TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_runs_parent ON runs(parent_run_id);
        CREATE INDEX IF NOT EXISTS idx_runs_started ON runs(started_at);
        """,
    ),
]


def get_connection(db_path: str) -> sqlite3.Connection:
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def apply_migrations(db_path: str) -> None:
    with get_connection(db_path) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            )
            """
        )
        applied = {
            row["version"]
            for row in conn.execute("SELECT version FROM schema_migrations").fetchall()
        }
        for version, sql in MIGRATIONS:
            if version in applied:
                continue
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_migrations(version, applied_at) VALUES (?, ?)",
                (version, utc_now_iso()),
            )
        conn.commit()


def _row_to_dict(row: sqlite3.Row | None) -> Dict[str, Any] | None:
    if row is None:
        return None
    data = dict(row)
    data["inputs"] = json_loads(data.pop("inputs_json", None))
    data["outputs"] = json_loads(data.pop("outputs_json", None))
    return data


def log_run_start(
    conn: sqlite3.Connection,
    run_id: str,
    run_type: str,
    name: str,
    inputs: Dict[str, Any],
    parent_run_id: str | None = None,
) -> None:
    conn.execute(
        """
        INSERT INTO runs(run_id, parent_run_id, run_type, name, inputs_json, started_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (run_id, parent_run_id, run_type, name, json_dumps(inputs), utc_now_iso()),
    )
    conn.commit()


def log_run_end(conn: sqlite3.Connection, run_id: str, outputs: Dict[str, Any]) -> None:
    conn.execute(
        "UPDATE runs SET status = 'success', outputs_json = ?, ended_at = ? WHERE run_id = ?",
        (json_dumps(outputs), utc_now_iso(), run_id),
    )
    conn.commit()


def log_run_error(conn: sqlite3.Connection, run_id: str, error: str) -> None:
    conn.execute(
        "UPDATE runs SET status = 'error', error = ?, ended_at = ? WHERE run_id = ?",
        (error, utc_now_iso(), run_id),
    )
    conn.commit()


def get_run(conn: sqlite3.Connection, run_id: str) -> Dict[str, Any] | None:
    row = conn.execute("SELECT * FROM runs WHERE run_id = ?", (run_id,)).fetchone()
    return _row_to_dict(row)


def list_runs(conn: sqlite3.Connection, limit: int = 20) -> List[Dict[str, Any]]:
    rows = conn.execute(
        "SELECT * FROM runs ORDER BY started_at DESC, rowid DESC LIMIT ?",
        (limit,),
    ).fetchall()
    return [_row_to_dict(row) for row in rows]


def list_child_runs(conn: sqlite3.Connection, parent_run_id: str) -> List[Dict[str, Any]]:
    rows = conn.execute(
        "SELECT * FROM runs WHERE parent_run_id = ? ORDER BY started_at, rowid",
        (parent_run_id,),
    ).fetchall()
    return [_row_to_dict(row) for row in rows]
