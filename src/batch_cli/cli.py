# BatchSH — Line-Oriented Batch Script Interpreter
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
BatchSH CLI entry point and REPL loop.

Design:
- CLI owns process startup and config loading.
- Interpreter is the session engine (config+executor+loader injected).
- UI is terminal-friendly PromptSession (keeps scrollback + copy/select).
"""

from __future__ import annotations

import os
import sys
from collections.abc import Callable

from . import config
from .executor import SubprocessExecutor
from .interfaces import ConfigModel, LineSource
from .kernel import Interpreter, write_crash_log
from .loader import FileTextLoader
from .ui import PromptToolkitUI

INTERRUPT_MESSAGE = "CTRL+C pressed. Use 'exit' command to quit."
EXIT_MESSAGE = "Exiting shell."
INTERRUPT_EXIT_CODE = 130


def build_interpreter(cfg: ConfigModel | None = None) -> Interpreter:
    """Wire an Interpreter with the subprocess runner and file loader."""
    if cfg is None:
        cfg = config.load_system_config()

    exec_cfg = getattr(cfg, "execution", {}) or {}
    executor = SubprocessExecutor(
        force_color=bool(exec_cfg.get("force_color", False)),
        timeout=exec_cfg.get("timeout"),
        max_capture_bytes=int(exec_cfg.get("max_capture_bytes", 256_000)),
    )
    return Interpreter(
        executor=executor, loader=FileTextLoader(), config=cfg
    )


def run_repl(
    interp: Interpreter,
    ui: LineSource | None = None,
    input_fn: Callable[[str], str] = input,
    output_fn: Callable[[str], None] | None = None,
) -> None:
    """Run the interactive BatchSH loop until end of input or EXIT."""

    def _emit(text: str) -> None:
        if ui is not None:
            ui.write(text)
        elif output_fn is not None:
            output_fn(text)
        else:
            sys.stdout.write(text)
            sys.stdout.flush()

    while True:
        try:
            prompt = interp.prompt()
            if ui is not None:
                line = ui.read(prompt)
            else:
                line = input_fn(prompt + " ")
        except KeyboardInterrupt:
            # Only the pending read is abandoned
            _emit(INTERRUPT_MESSAGE + "\n")
            continue
        except EOFError:
            _emit(EXIT_MESSAGE + "\n")
            return
        except Exception as e:
            _emit(f"Error reading line: {e}\n")
            return

        line = (line or "").strip()
        if not line:
            continue

        try:
            interp.handle_line(line)
        except KeyboardInterrupt:
            # Outside the read an interrupt ends the session
            _emit("\n" + EXIT_MESSAGE + "\n")
            raise SystemExit(INTERRUPT_EXIT_CODE) from None
        except Exception as e:
            # Unhandled exception outside a command - write crash log
            write_crash_log(e, command=line, cwd=interp.cwd)
            _emit(
                f"[ERROR] Unhandled exception: {type(e).__name__}: {e}\n"
            )


def main(argv: list[str] | None = None) -> None:
    """Main entry point for BatchSH.

    With a path argument the file is run as a script; otherwise an
    interactive session starts. EXIT ends the process from anywhere.
    """
    args = sys.argv[1:] if argv is None else argv

    cfg = config.load_system_config()
    interp = build_interpreter(cfg)

    if args:
        try:
            interp.run_script(args[0])
        except KeyboardInterrupt:
            print("\n" + EXIT_MESSAGE)
            raise SystemExit(INTERRUPT_EXIT_CODE) from None
        return

    # If user explicitly disables prompt_toolkit UI:
    if os.environ.get("BATCH_LEGACY_UI") == "1":
        banner = interp.start()
        if banner:
            print(banner)
        run_repl(interp)
        return

    # Default: PromptToolkitUI (keeps terminal scrollback/copy/select)
    ui = PromptToolkitUI(interp, data_root=config.get_data_root())

    # Echo and status output goes through the UI; process stderr
    # stays on the real stderr.
    interp.output_fn = ui.write

    banner = interp.start()
    if banner:
        ui.write(banner + "\n")

    run_repl(interp, ui=ui)
