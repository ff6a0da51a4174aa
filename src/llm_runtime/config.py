"""Configuration loading and defaults."""

from __future__ import annotations

import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict

import yaml

DEFAULT_SETTINGS: Dict[str, Any] = {
    "verbose": False,
    "cache": {
        "enabled": False,
    },
    "tracing": {
        "enabled": False,
        "database_path": "data/llm_runs.db",
    },
    "logging": {
        "level": "INFO",
    },
}

_TRUTHY = {"1", "true", "yes", "on"}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(settings_path: str = "config/settings.yaml") -> Dict[str, Any]:
    """Loads settings.yaml and merges it onto defaults, then applies env overrides."""
    merged = deepcopy(DEFAULT_SETTINGS)
    config_path = Path(settings_path)
    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as f:
            user_cfg = yaml.safe_load(f) or {}
        merged = _deep_merge(merged, user_cfg)

    if env_flag("LLM_RUNTIME_VERBOSE"):
        merged["verbose"] = True
    if env_flag("LLM_RUNTIME_TRACING"):
        merged["tracing"]["enabled"] = True
    db_env = os.getenv("LLM_RUNTIME_TRACING_DB")
    if db_env:
        merged["tracing"]["database_path"] = db_env
    return merged


def env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def llm_options(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Keyword arguments for an LLM constructor derived from loaded settings."""
    tracing = settings.get("tracing", {})
    return {
        "cache": bool(settings.get("cache", {}).get("enabled", False)),
        "verbose": bool(settings.get("verbose", False)),
        "tracing": bool(tracing.get("enabled", False)),
        "tracing_db": str(tracing.get("database_path") or DEFAULT_SETTINGS["tracing"]["database_path"]),
    }


def tracing_database_path() -> str:
    return os.getenv("LLM_RUNTIME_TRACING_DB") or DEFAULT_SETTINGS["tracing"]["database_path"]
