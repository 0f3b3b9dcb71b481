# BatchSH — Line-Oriented Batch Script Interpreter
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
BatchSH kernel.

Core implementation of BatchSH:
- session state (variables, labels, working directory)
- instruction-pointer driven execution of a line sequence
- single-line IF / FOR / WHILE bodies via recursive execution
- dispatch of unknown commands to nested scripts or external programs

Important boundary:
- Kernel does not read terminal input or load YAML.
- Kernel consumes the injected ConfigModel, ProcessRunner and TextLoader.

Control flow notes:
- One InstructionPointer object is shared by a pass and every loop body
  executed inside it, so a GOTO deep inside a body moves the pointer for
  all enclosing frames.
- EXIT raises SystemExit; it is the only way out of a running script
  other than reaching its last line.
"""

from __future__ import annotations

import os
import sys
import traceback
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from . import config as cfg_module
from .commands import (
    ChangeDir,
    Command,
    Conditional,
    Echo,
    Exit,
    ExternalInvocation,
    ForLoop,
    Jump,
    LabelDecl,
    Malformed,
    SetVar,
    Shift,
    WhileLoop,
    build_label_table,
    classify,
    compare,
)
from .config import (
    ANSI_COLORS,
    DEFAULT_EXTENSION,
    DEFAULT_PROMPT,
    DEFAULT_SIGIL,
)
from .interfaces import ConfigModel, ProcessRunner, TextLoader
from .loader import ScriptLoadError, ScriptNotFoundError, ScriptReadError


def write_crash_log(
    error: BaseException,
    command: str = "",
    cwd: str = "",
    script: str = "",
) -> None:
    """Write an entry to the crash log.

    Logs unhandled exceptions raised while executing a command.
    Only creates the log directory when actually needed.
    Appends to crash.log (never overwrites).
    """
    try:
        crash_log = cfg_module.crash_log_path(cfg_module.get_data_root())

        # Create logs directory only when we need to write
        crash_log.parent.mkdir(parents=True, exist_ok=True)

        timestamp = datetime.now().isoformat()
        lines = [f"{timestamp}"]

        if cwd:
            lines.append(f"cwd={cwd}")
        if script:
            lines.append(f"script={script}")
        if command:
            lines.append(f"command={command}")

        lines.append(f"error={type(error).__name__}: {error}")
        lines.append("traceback:")
        lines.append(
            "".join(
                traceback.format_exception(
                    type(error), error, error.__traceback__
                )
            )
        )
        lines.append("----")

        with crash_log.open("a", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")

    except Exception:
        # If we can't write the crash log, fail silently
        # (we're already in an error state)
        pass


@dataclass
class InstructionPointer:
    """Mutable index into the line sequence being executed."""

    value: int = 0
    # Bumped by every GOTO and false-IF skip, at any nesting depth
    moves: int = 0

    def jump(self, index: int) -> None:
        self.value = index
        self.moves += 1

    def skip(self) -> None:
        self.value += 1
        self.moves += 1


@dataclass
class Interpreter:
    """BatchSH session engine."""

    executor: ProcessRunner
    loader: TextLoader
    config: ConfigModel

    # Session state
    variables: dict[str, str] = field(default_factory=dict)
    labels: dict[str, int] = field(default_factory=dict)
    cwd: str = field(default_factory=os.getcwd)

    # Derived from config
    script_extension: str = DEFAULT_EXTENSION
    sigil: str = DEFAULT_SIGIL
    prompt_text: str = DEFAULT_PROMPT

    # ---- Output hooks (wired by UI/CLI) ----
    # Both receive text exactly as it should appear (newlines included).
    output_fn: Callable[[str], None] | None = None
    error_fn: Callable[[str], None] | None = None

    # Scripts currently executing, innermost last
    _script_stack: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        script_cfg = getattr(self.config, "script", {}) or {}
        extension = script_cfg.get("extension") or DEFAULT_EXTENSION
        self.script_extension = str(extension).lstrip(".")
        self.sigil = str(script_cfg.get("sigil") or DEFAULT_SIGIL)

        sys_cfg = getattr(self.config, "system", {}) or {}
        self.prompt_text = str(sys_cfg.get("prompt") or DEFAULT_PROMPT)

        self.cwd = os.path.abspath(self.cwd)

    # -----------------------
    # Output
    # -----------------------

    def _write(self, text: str) -> None:
        if self.output_fn is not None:
            self.output_fn(text)
            return
        sys.stdout.write(text)
        sys.stdout.flush()

    def _write_err(self, text: str) -> None:
        if self.error_fn is not None:
            self.error_fn(text)
            return
        sys.stderr.write(text)
        sys.stderr.flush()

    def _say(self, message: str) -> None:
        self._write(message + "\n")

    # -----------------------
    # Session
    # -----------------------

    def start(self) -> str:
        """Return the welcome banner for an interactive session."""
        sys_cfg = getattr(self.config, "system", {}) or {}
        welcome = sys_cfg.get("welcome") or {}
        if isinstance(welcome, dict):
            msg = welcome.get("message")
            if isinstance(msg, str) and msg.strip():
                return msg.strip()
        return ""

    def prompt(self) -> str:
        """Return the current prompt string with ANSI colors."""
        caret = ANSI_COLORS["pink"]
        reset = ANSI_COLORS["reset"]
        return f"{caret}{self.prompt_text}{reset}"

    def handle_line(self, line: str) -> None:
        """Execute one interactively entered line."""
        self.run_lines([line.strip()])

    def run_script(self, path: str) -> None:
        """Load a script (relative to the session cwd) and run it."""
        target = Path(self.cwd) / path
        try:
            lines = self.loader.load(str(target))
        except ScriptNotFoundError:
            self._say(f"Script not found: {path}")
            return
        except ScriptReadError as e:
            self._say(f"Failed to read script: {path}: {e.reason}")
            return
        except ScriptLoadError as e:
            self._say(f"Failed to load script: {e}")
            return

        self._script_stack.append(str(target))
        try:
            self.run_lines(lines)
        finally:
            self._script_stack.pop()

    def run_lines(self, lines: Sequence[str]) -> None:
        """Run a line sequence from its first line to its end.

        The label table is rebuilt for ``lines`` and replaces the session
        table for the duration of the pass, so GOTO only ever resolves
        against the sequence being executed.
        """
        outer_labels = self.labels
        self.labels = build_label_table(lines)
        ip = InstructionPointer()
        try:
            while ip.value < len(lines):
                self.execute(classify(lines[ip.value]), lines, ip)
                ip.value += 1
        finally:
            self.labels = outer_labels

    # -----------------------
    # Command execution
    # -----------------------

    def execute(
        self, command: Command, lines: Sequence[str], ip: InstructionPointer
    ) -> None:
        """Execute one command against the session and the pointer.

        Failures are contained here: an unexpected exception is written to
        the crash log and reported, and the caller carries on with the
        next line. SystemExit (from EXIT) is not an Exception and passes
        through.
        """
        try:
            self._dispatch(command, lines, ip)
        except Exception as e:
            write_crash_log(
                e,
                command=repr(command),
                cwd=self.cwd,
                script=self._script_stack[-1] if self._script_stack else "",
            )
            self._say(
                f"[ERROR] Unhandled exception: {type(e).__name__}: {e}"
            )

    def _dispatch(
        self, command: Command, lines: Sequence[str], ip: InstructionPointer
    ) -> None:
        if isinstance(command, Echo):
            self._say(self.substitute(command.text))
            return

        if isinstance(command, SetVar):
            self.variables[command.name] = command.value
            return

        if isinstance(command, ChangeDir):
            self._handle_cd(command.path)
            return

        if isinstance(command, Conditional):
            current = self.variables.get(command.var)
            # Unbound variable: the IF line has no effect at all
            if current is None:
                return
            if not compare(current, command.op, command.value):
                ip.skip()
            return

        if isinstance(command, ForLoop):
            self._handle_for(command, lines, ip)
            return

        if isinstance(command, WhileLoop):
            self._handle_while(command, lines, ip)
            return

        if isinstance(command, Shift):
            # Reserved keyword, accepted and ignored.
            return

        if isinstance(command, Jump):
            if command.label in self.labels:
                ip.jump(self.labels[command.label])
            else:
                self._say(f"Label '{command.label}' not found")
            return

        if isinstance(command, LabelDecl):
            return

        if isinstance(command, Exit):
            self._say("Exiting shell.")
            raise SystemExit(0)

        if isinstance(command, ExternalInvocation):
            self._dispatch_external(command)
            return

        if isinstance(command, Malformed):
            self._say("Invalid command")
            return

        raise TypeError(f"Unsupported command: {command!r}")

    def substitute(self, text: str) -> str:
        """Replace every sigil-prefixed token with its variable value.

        Single pass: substituted values are not scanned again. Unbound
        names become the empty string.
        """
        out: list[str] = []
        for token in text.split():
            if token.startswith(self.sigil):
                name = token[len(self.sigil):]
                out.append(self.variables.get(name, ""))
            else:
                out.append(token)
        return " ".join(out)

    def _run_body(
        self,
        body: int,
        moved: bool,
        lines: Sequence[str],
        ip: InstructionPointer,
    ) -> bool:
        """Run one loop pass; return False when no line is left to run.

        Until the body has moved the pointer (GOTO, or a false IF skipping
        a line, including inside nested loops) every pass runs the body
        line. Afterwards the loop carries on one line past wherever the
        pointer was left, so jumps are never undone.
        """
        if moved:
            ip.value += 1
        else:
            ip.value = body
        if ip.value >= len(lines):
            return False
        self.execute(classify(lines[ip.value]), lines, ip)
        return True

    def _handle_for(
        self, command: ForLoop, lines: Sequence[str], ip: InstructionPointer
    ) -> None:
        body = ip.value + 1
        moved = False
        for value in command.values:
            self.variables[command.var] = value
            before = ip.moves
            self._run_body(body, moved, lines, ip)
            moved = moved or ip.moves != before

    def _handle_while(
        self, command: WhileLoop, lines: Sequence[str], ip: InstructionPointer
    ) -> None:
        body = ip.value + 1
        moved = False
        while True:
            current = self.variables.get(command.var)
            if current is None:
                break
            if not compare(current, command.op, command.value):
                break
            before = ip.moves
            # Past the last line nothing could change the variable
            if not self._run_body(body, moved, lines, ip):
                break
            moved = moved or ip.moves != before

    def _handle_cd(self, path: str) -> None:
        target = Path(self.cwd) / path
        try:
            resolved = target.resolve(strict=True)
        except (OSError, RuntimeError):
            self._say(f"Directory not found: {path}")
            return

        if not resolved.is_dir():
            self._say(f"Directory not found: {path}")
            return

        try:
            os.chdir(resolved)
        except OSError:
            self._say(f"Directory not found: {path}")
            return

        self.cwd = str(resolved)
        self._say(f"Changed directory to: {self.cwd}")

    # -----------------------
    # External dispatch
    # -----------------------

    def _find_script(self, program: str) -> Path | None:
        """Return the script a command name refers to, if there is one."""
        candidate = Path(self.cwd) / program
        try:
            script = candidate.with_suffix("." + self.script_extension)
        except ValueError:
            # e.g. "..": no file name to attach an extension to
            return None
        return script if script.is_file() else None

    def _can_stream(self) -> bool:
        return (
            hasattr(self.executor, "run_stream")
            and callable(self.executor.run_stream)
        )

    def _dispatch_external(self, command: ExternalInvocation) -> None:
        script = self._find_script(command.program)
        if script is not None:
            self.run_script(str(script))
            return

        program = command.program
        separators = [s for s in (os.sep, os.altsep) if s]
        if any(s in program for s in separators):
            program = str(Path(self.cwd) / program)
        argv = [program] + command.args

        if self._can_stream():
            result = self.executor.run_stream(
                argv,
                on_stdout=self._write,
                on_stderr=self._write_err,
                cwd=self.cwd,
            )
        else:
            result = self.executor.run(argv, cwd=self.cwd)
            if result.launched:
                if result.stdout:
                    self._write(result.stdout)
                if result.stderr:
                    self._write_err(result.stderr)

        if not result.launched:
            self._say(
                f"Command not found or failed to execute: {result.error}"
            )
