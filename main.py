"""Entrypoint: inspect configuration and traced LLM runs."""

from __future__ import annotations

import argparse
import json
import logging

from pathlib import Path
import sys

from dotenv import load_dotenv

sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from llm_runtime.config import llm_options, load_settings
from llm_runtime.llm.registry import registered_types
from llm_runtime.models import apply_migrations, get_connection, get_run, list_child_runs, list_runs


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="LLM run tracking and caching runtime")
    parser.add_argument("--settings", default="config/settings.yaml", help="Path to settings.yaml")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("show-config", help="Print effective settings (default)")
    subparsers.add_parser("init-db", help="Apply run log SQLite migrations only")
    runs_parser = subparsers.add_parser("runs", help="List recent traced runs")
    runs_parser.add_argument("--limit", type=int, default=20)
    show_parser = subparsers.add_parser("show-run", help="Show one traced run and its children")
    show_parser.add_argument("run_id")
    return parser


def main() -> None:
    load_dotenv()
    parser = _build_parser()
    args = parser.parse_args()
    command = args.command or "show-config"

    config = load_settings(args.settings)
    logging.basicConfig(
        level=getattr(logging, str(config["logging"]["level"]).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    db_path = config["tracing"]["database_path"]

    if command == "show-config":
        print(json.dumps({"settings": config, "llm_options": llm_options(config)}, indent=2, sort_keys=True))
        print(f"Registered LLM types: {', '.join(registered_types()) or '(none)'}")
        return

    apply_migrations(db_path)

    if command == "init-db":
        print(f"Run log initialized at {db_path}")
        return

    if command == "runs":
        with get_connection(db_path) as conn:
            runs = list_runs(conn, limit=args.limit)
        for run in runs:
            parent = f" parent={run['parent_run_id']}" if run["parent_run_id"] else ""
            print(f"- {run['run_id']} {run['run_type']}:{run['name']} status={run['status']}{parent}")
        print(f"{len(runs)} run(s)")
        return

    if command == "show-run":
        with get_connection(db_path) as conn:
            run = get_run(conn, args.run_id)
            children = list_child_runs(conn, args.run_id) if run else []
        if run is None:
            print(f"Run {args.run_id} not found")
            sys.exit(1)
        print(json.dumps({"run": run, "children": children}, indent=2, sort_keys=True))
        return


if __name__ == "__main__":
    main()
