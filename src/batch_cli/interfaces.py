# BatchSH — Line-Oriented Batch Script Interpreter
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Protocol definitions for dependency injection.

These interfaces keep the interpreter independent of how lines are read,
how scripts are loaded from disk, and how external programs are spawned.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from .executor import RunResult  # pragma: no cover


class LineSource(Protocol):
    """Protocol for interactive line input and terminal output."""

    def read(self, prompt: str) -> str:
        """Read one line.

        Raises EOFError at end of input and KeyboardInterrupt when the
        user interrupts the pending read.
        """
        ...

    def write(self, text: str) -> None:
        """Write text exactly as given (no newline is appended)."""
        ...


class ProcessRunner(Protocol):
    """Protocol for external program execution."""

    def run(self, argv: list[str], cwd: str | None = None) -> RunResult:
        """Run a program to completion and return buffered results."""
        ...

    def run_stream(
        self,
        argv: list[str],
        on_stdout: Callable[[str], None] | None = None,
        on_stderr: Callable[[str], None] | None = None,
        timeout: int | None = None,
        cwd: str | None = None,
    ) -> RunResult:
        """Run a program, forwarding output lines as they arrive."""
        ...


class TextLoader(Protocol):
    """Protocol for reading script files."""

    def load(self, path: str) -> list[str]:
        """Return the file's lines.

        Raises ScriptNotFoundError or ScriptReadError.
        """
        ...


class ConfigModel(Protocol):
    """Protocol for configuration access."""

    @property
    def system(self) -> dict[str, Any]:
        """System configuration (name, prompt, welcome)."""
        ...

    @property
    def script(self) -> dict[str, Any]:
        """Script configuration (extension, sigil)."""
        ...

    @property
    def execution(self) -> dict[str, Any]:
        """Process execution configuration."""
        ...

    def get_path(self, path: str, default: Any = None) -> Any:
        """Nested lookup using a dot-separated path."""
        ...
