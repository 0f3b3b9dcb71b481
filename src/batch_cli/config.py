# BatchSH — Line-Oriented Batch Script Interpreter
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Configuration and data root resolution for BatchSH.

Handles:
- Data root resolution (BATCH_DATA_HOME, ~/.local/share)
- Log and history path helpers
- Packaged YAML defaults loading (batch_cli/defaults/system.yaml)
- ANSI coloring constants
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

try:
    # Py3.9+
    from importlib import resources as importlib_resources
except Exception:  # pragma: no cover
    import importlib_resources  # type: ignore


# -----------------------
# UI constants
# -----------------------

ANSI_COLORS: dict[str, str] = {
    "pink": "\033[38;5;169;1m",
    "reset": "\033[0m",
}

DEFAULT_EXTENSION = "BATCH"
DEFAULT_SIGIL = "$"
DEFAULT_PROMPT = ">"


# -----------------------
# Config model wrapper
# -----------------------


class YAMLConfig:
    """Simple config wrapper that implements ConfigModel protocol."""

    def __init__(self, config_dict: dict[str, Any]):
        self._config = config_dict

    @property
    def system(self) -> dict[str, Any]:
        return self._section("system")

    @property
    def script(self) -> dict[str, Any]:
        return self._section("script")

    @property
    def execution(self) -> dict[str, Any]:
        return self._section("execution")

    def _section(self, name: str) -> dict[str, Any]:
        value = self._config.get(name, {})
        return value if isinstance(value, dict) else {}

    def get_path(self, path: str, default: Any = None) -> Any:
        """
        Nested lookup using dot-separated path.
        Example: get_path("script.sigil", "$") -> "$"
        """
        if not path:
            return default

        cur: Any = self._config
        for part in path.split("."):
            if not isinstance(cur, dict):
                return default
            if part not in cur:
                return default
            cur = cur[part]
        return cur


# -----------------------
# Data root helpers
# -----------------------


def get_data_root() -> Path:
    """Get the data root directory for BatchSH.

    Resolution order:
    1. BATCH_DATA_HOME environment variable (if set)
    2. ~/.local/share (default, XDG_DATA_HOME is ignored)
    """
    batch_data_home = os.getenv("BATCH_DATA_HOME")
    if batch_data_home:
        root = Path(batch_data_home)
    else:
        root = Path.home() / ".local" / "share"

    root.mkdir(parents=True, exist_ok=True)
    return root


def app_dir(data_root: Path) -> Path:
    """<data_root>/batch"""
    return data_root / "batch"


def crash_log_path(data_root: Path) -> Path:
    """<data_root>/batch/logs/crash.log"""
    return app_dir(data_root) / "logs" / "crash.log"


def history_path(data_root: Path, filename: str = "history") -> Path:
    """<data_root>/batch/<filename>"""
    return app_dir(data_root) / filename


# -----------------------
# Packaged defaults loading
# -----------------------


def _defaults_dir() -> Path:
    """Return the installed path to packaged defaults directory."""
    return Path(
        importlib_resources.files("batch_cli.defaults")
    )  # type: ignore[arg-type]


def load_defaults_yaml(filename: str) -> dict[str, Any]:
    """
    Load a YAML file from batch_cli/defaults/.
    """
    defaults_dir = _defaults_dir()
    path = defaults_dir / filename
    if not path.exists():
        raise FileNotFoundError(
            f"Missing defaults YAML: {filename} "
            f"(looked in {defaults_dir})"
        )

    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(
            f"Defaults YAML {filename} must load to a mapping/dict."
        )
    return data


def load_system_config() -> YAMLConfig:
    """
    Load system.yaml from packaged defaults and return a YAMLConfig wrapper.
    """
    return YAMLConfig(load_defaults_yaml("system.yaml"))
