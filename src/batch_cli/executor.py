# BatchSH — Line-Oriented Batch Script Interpreter
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Subprocess-backed process runner for BatchSH.

This module provides:
- run(): buffered execution of an argv list
- run_stream(): streaming stdout/stderr in real time

Programs are always started from an argv list (never through a shell), so
the interpreter's whitespace tokens reach the program unchanged.
"""

from __future__ import annotations

import os
import subprocess
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class RunResult:
    exit_code: int
    stdout: str
    stderr: str
    started_at: str
    duration_ms: int
    # Set only when the program could not be started at all
    error: str | None = None
    truncated: bool = False

    @property
    def launched(self) -> bool:
        return self.error is None


class SubprocessExecutor:
    """Subprocess implementation of ProcessRunner protocol."""

    def __init__(
        self, force_color: bool = False, timeout: int | None = None,
        max_capture_bytes: int = 256_000
    ):
        """Initialize executor with configuration.

        Args:
            force_color: If True, set color-forcing env variables
            timeout: Seconds to wait for a program (None waits forever)
            max_capture_bytes: Max bytes to keep in captured
                stdout/stderr buffers when streaming
        """
        self.force_color = force_color
        self.timeout = timeout
        self.max_capture_bytes = max_capture_bytes

    def _build_env(self) -> dict:
        env = os.environ.copy()
        if self.force_color:
            env["PY_COLORS"] = "1"
            env["FORCE_COLOR"] = "1"
            env["CLICOLOR_FORCE"] = "1"
        return env

    def run(
        self, argv: list[str], cwd: str | None = None
    ) -> RunResult:
        """Run a program and return buffered results.

        Args:
            argv: program followed by its arguments
            cwd: working directory for the program

        Returns:
            RunResult; ``error`` is set if the program could not start
        """
        env = self._build_env()

        started_at = datetime.now().isoformat()
        start_time = datetime.now()

        def _elapsed() -> int:
            return int(
                (datetime.now() - start_time).total_seconds() * 1000
            )

        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=env,
                cwd=cwd,
            )
            return RunResult(
                exit_code=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
                started_at=started_at,
                duration_ms=_elapsed(),
            )
        except subprocess.TimeoutExpired:
            return RunResult(
                exit_code=1,
                stdout="",
                stderr=f"Command timed out after {self.timeout} seconds",
                started_at=started_at,
                duration_ms=_elapsed(),
            )
        except (OSError, ValueError) as e:
            return RunResult(
                exit_code=1,
                stdout="",
                stderr="",
                started_at=started_at,
                duration_ms=_elapsed(),
                error=str(e),
            )

    def run_stream(
        self,
        argv: list[str],
        on_stdout: Callable[[str], None] | None = None,
        on_stderr: Callable[[str], None] | None = None,
        timeout: int | None = None,
        cwd: str | None = None,
    ) -> RunResult:
        """Run a program and stream output line-by-line in real time.

        Args:
            argv: program followed by its arguments
            on_stdout: called with each stdout line (including newline
                if present)
            on_stderr: called with each stderr line
            timeout: overrides self.timeout
            cwd: working directory for the program

        Returns:
            RunResult (includes captured output up to max_capture_bytes)
        """
        env = self._build_env()
        started_at = datetime.now().isoformat()
        start_ts = time.time()

        cap_out: list[str] = []
        cap_err: list[str] = []
        out_bytes = 0
        err_bytes = 0
        truncated = False

        max_bytes = max(0, int(self.max_capture_bytes))
        timeout_val = timeout if timeout is not None else self.timeout
        deadline = (
            start_ts + timeout_val if timeout_val is not None else None
        )

        def _append_capped(buf: list[str], s: str, current_bytes: int) -> int:
            nonlocal truncated
            b = len(s.encode("utf-8", errors="replace"))
            if max_bytes == 0 or current_bytes >= max_bytes:
                truncated = True
                return current_bytes + b
            # If this chunk would exceed the cap, partially keep it.
            remaining = max_bytes - current_bytes
            if b > remaining:
                raw = s.encode("utf-8", errors="replace")[:remaining]
                buf.append(raw.decode("utf-8", errors="replace"))
                truncated = True
                return current_bytes + b
            buf.append(s)
            return current_bytes + b

        try:
            proc = subprocess.Popen(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                bufsize=1,  # line-buffered (best effort)
                env=env,
                cwd=cwd,
            )
        except (OSError, ValueError) as e:
            duration_ms = int((time.time() - start_ts) * 1000)
            return RunResult(
                exit_code=1,
                stdout="",
                stderr="",
                started_at=started_at,
                duration_ms=duration_ms,
                error=str(e),
            )

        assert proc.stdout is not None
        assert proc.stderr is not None

        stop_event = threading.Event()

        def _reader(pipe, is_err: bool) -> None:
            nonlocal out_bytes, err_bytes
            try:
                for line in iter(pipe.readline, ""):
                    if stop_event.is_set():
                        break
                    if is_err:
                        if on_stderr:
                            on_stderr(line)
                        err_bytes = _append_capped(cap_err, line, err_bytes)
                    else:
                        if on_stdout:
                            on_stdout(line)
                        out_bytes = _append_capped(cap_out, line, out_bytes)
            finally:
                try:
                    pipe.close()
                except Exception:
                    pass

        t_out = threading.Thread(
            target=_reader, args=(proc.stdout, False), daemon=True
        )
        t_err = threading.Thread(
            target=_reader, args=(proc.stderr, True), daemon=True
        )
        t_out.start()
        t_err.start()

        timed_out = False
        try:
            while True:
                rc = proc.poll()
                if rc is not None:
                    break
                if deadline is not None and time.time() >= deadline:
                    timed_out = True
                    break
                time.sleep(0.03)
        finally:
            if timed_out:
                # Terminate nicely then kill if needed.
                try:
                    proc.terminate()
                except Exception:
                    pass
                try:
                    proc.wait(timeout=1.0)
                except Exception:
                    try:
                        proc.kill()
                    except Exception:
                        pass

            # Readers must drain the pipes before results are assembled.
            t_out.join(timeout=None if not timed_out else 0.5)
            t_err.join(timeout=None if not timed_out else 0.5)
            stop_event.set()

        duration_ms = int((time.time() - start_ts) * 1000)

        if timed_out:
            msg = f"Command timed out after {timeout_val} seconds\n"
            if on_stderr:
                on_stderr(msg)
            err_bytes = _append_capped(cap_err, msg, err_bytes)
            exit_code = 1
        else:
            exit_code = proc.returncode if proc.returncode is not None else 1

        return RunResult(
            exit_code=exit_code,
            stdout="".join(cap_out),
            stderr="".join(cap_err),
            started_at=started_at,
            duration_ms=duration_ms,
            truncated=truncated,
        )
