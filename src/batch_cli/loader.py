# BatchSH — Line-Oriented Batch Script Interpreter
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Script file loading.
"""

from __future__ import annotations

from pathlib import Path


class ScriptLoadError(Exception):
    """Base class for script loading failures."""

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}" if reason else path)


class ScriptNotFoundError(ScriptLoadError):
    """The script path does not name a file."""


class ScriptReadError(ScriptLoadError):
    """The script exists but could not be read or decoded."""


class FileTextLoader:
    """TextLoader implementation backed by the local filesystem."""

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def load(self, path: str) -> list[str]:
        p = Path(path)
        if not p.is_file():
            raise ScriptNotFoundError(str(p))
        try:
            content = p.read_text(encoding=self.encoding)
        except (OSError, UnicodeDecodeError) as e:
            raise ScriptReadError(str(p), str(e)) from e
        return content.splitlines()
