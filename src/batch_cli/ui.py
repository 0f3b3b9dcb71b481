# BatchSH — Line-Oriented Batch Script Interpreter
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

from __future__ import annotations

import os
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.formatted_text import ANSI
from prompt_toolkit.history import FileHistory, History, InMemoryHistory
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.patch_stdout import patch_stdout
from prompt_toolkit.shortcuts import print_formatted_text
from prompt_toolkit.styles import Style

from .commands import KEYWORDS
from .config import history_path

if TYPE_CHECKING:
    from .kernel import Interpreter  # pragma: no cover


# ----------------------------
# Config helpers (read through interpreter.config.get_path)
# ----------------------------


def _cfg_get_path(interp: Interpreter | None, path: str, default):
    if interp is None:
        return default
    cfg = getattr(interp, "config", None)
    if cfg is None or not hasattr(cfg, "get_path"):
        return default
    try:
        return cfg.get_path(path, default)
    except Exception:
        return default


def _cfg_bool(interp: Interpreter | None, path: str, default: bool) -> bool:
    return bool(_cfg_get_path(interp, path, default))


def _cfg_dict(interp: Interpreter | None, path: str, default: dict) -> dict:
    val = _cfg_get_path(interp, path, default)
    return val if isinstance(val, dict) else default


def _cfg_str(interp: Interpreter | None, path: str, default: str) -> str:
    val = _cfg_get_path(interp, path, default)
    return str(val) if val is not None else default


# ----------------------------
# Theme / Style
# ----------------------------


def _default_style_dict() -> dict[str, str]:
    # Conservative: works across prompt_toolkit versions.
    return {
        "completion-menu": "bg:#111111 #d0d0d0",
        "completion-menu.completion": "bg:#111111 #d0d0d0",
        "completion-menu.completion.current": "bg:#303030 #ffffff bold",
        "completion-menu.meta.completion": "bg:#111111 #808080",
        "completion-menu.meta.completion.current": "bg:#303030 #a0a0a0",
        "scrollbar.background": "bg:#202020",
        "scrollbar.button": "bg:#505050",
        "bottom-toolbar": "bg:#0b0b0b #d0d0d0",
        "batch.toolbar.label": "bg:#0b0b0b #808080",
        "batch.toolbar.value": "bg:#0b0b0b #d0d0d0",
    }


def _build_style(interp: Interpreter | None) -> Style:
    base = _default_style_dict()
    overrides = _cfg_dict(interp, "ui.theme.style", {})
    # only keep string->string
    for k, v in list(overrides.items()):
        if isinstance(k, str) and isinstance(v, str):
            base[k] = v
    return Style.from_dict(base)


def build_history(
    interp: Interpreter | None, data_root: Path | None
) -> History:
    """Persistent FileHistory when enabled, in-memory history otherwise."""
    if data_root is None or not _cfg_bool(
        interp, "ui.history.enabled", True
    ):
        return InMemoryHistory()

    filename = _cfg_str(interp, "ui.history.filename", "history")
    path = history_path(data_root, filename)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        return InMemoryHistory()
    return FileHistory(str(path))


# ----------------------------
# Completions
# ----------------------------


class KeywordCompleter(Completer):
    """Completes interpreter keywords on the first token."""

    def get_completions(
        self, document, complete_event
    ) -> Iterable[Completion]:
        token = _first_token_fragment(document.text_before_cursor or "")
        if not token:
            return
        upper = token.upper()
        for kw in KEYWORDS:
            if kw.startswith(upper):
                yield Completion(
                    kw, start_position=-len(token), display_meta="keyword"
                )


class ExecutableCompleter(Completer):
    """Completes executable names available on PATH (first token)."""

    def __init__(self) -> None:
        self._cache: set[str] | None = None
        self._cache_path: str | None = None

    def _load(self) -> set[str]:
        path_val = os.environ.get("PATH", "")
        if self._cache is not None and self._cache_path == path_val:
            return self._cache

        exes: set[str] = set()
        for p in path_val.split(os.pathsep):
            if not p:
                continue
            try:
                for name in os.listdir(p):
                    full = os.path.join(p, name)
                    if os.path.isfile(full) and os.access(full, os.X_OK):
                        exes.add(name)
            except OSError:
                continue

        self._cache = exes
        self._cache_path = path_val
        return exes

    def get_completions(
        self, document, complete_event
    ) -> Iterable[Completion]:
        token = _first_token_fragment(document.text_before_cursor or "")
        if not token:
            return
        for exe in sorted(self._load()):
            if exe.startswith(token):
                yield Completion(
                    exe, start_position=-len(token), display_meta="exe"
                )


class PathCompleter(Completer):
    """Filesystem path completion for arguments, relative to a base dir."""

    def __init__(self, base_dir_fn=None) -> None:
        self._base_dir_fn = base_dir_fn

    def _base(self) -> str:
        if self._base_dir_fn is None:
            return "."
        try:
            return self._base_dir_fn() or "."
        except Exception:
            return "."

    def _current_arg_token(self, full_text: str) -> tuple[str | None, int]:
        """Extract the current token to complete from the text.

        Returns:
            (token, replace_len) or (None, 0) if not applicable
        """
        after = full_text.lstrip()
        if not after:
            return (None, 0)

        # Need at least one space after cmd token
        if " " not in after:
            return (None, 0)

        # If the line ends with space, complete from the base dir
        if after.endswith(" "):
            return ("", 0)

        token = after.split()[-1]
        return (token, len(token))

    def _list_dir(self, directory: str) -> list[str]:
        try:
            return sorted(os.listdir(directory))
        except OSError:
            return []

    def get_completions(
        self, document, complete_event
    ) -> Iterable[Completion]:
        token, replace_len = self._current_arg_token(
            document.text_before_cursor or ""
        )
        if token is None:
            return

        root = self._base()
        expanded = os.path.expanduser(token)

        if token == "":
            base_dir = root
            prefix = ""
            insert_prefix = ""
        elif expanded.endswith("/") or expanded.endswith(os.sep):
            base_dir = os.path.join(root, expanded)
            prefix = ""
            insert_prefix = token
        else:
            base_dir = os.path.join(root, os.path.dirname(expanded))
            prefix = os.path.basename(expanded)
            insert_prefix = os.path.dirname(token)
            if insert_prefix and not insert_prefix.endswith("/"):
                insert_prefix += "/"

        for name in self._list_dir(base_dir):
            if not name.startswith(prefix):
                continue
            full = os.path.join(base_dir, name)
            is_dir = os.path.isdir(full)
            ins = f"{insert_prefix}{name}" + ("/" if is_dir else "")
            meta = "dir" if is_dir else "file"
            yield Completion(
                ins, start_position=-replace_len, display_meta=meta
            )


def _first_token_fragment(text_before_cursor: str) -> str:
    """Return the first token while the cursor is still inside it.

    Once whitespace follows the first token we are in arguments and
    return "".
    """
    s = text_before_cursor.lstrip()
    if " " in s:
        return ""
    return s


class BatchCompleter(Completer):
    def __init__(self, interp: Interpreter | None) -> None:
        self.interp = interp
        self._keywords = KeywordCompleter()
        self._exe = ExecutableCompleter()
        self._path = PathCompleter(
            base_dir_fn=lambda: getattr(self.interp, "cwd", ".")
        )

    def get_completions(
        self, document, complete_event
    ) -> Iterable[Completion]:
        before = document.text_before_cursor or ""
        if _first_token_fragment(before):
            yield from self._keywords.get_completions(
                document, complete_event
            )
            yield from self._exe.get_completions(document, complete_event)
            return
        yield from self._path.get_completions(document, complete_event)


# ----------------------------
# PromptSession UI + bottom toolbar
# ----------------------------


class PromptToolkitUI:
    """
    This is the *terminal-friendly* UI:
      - Keeps normal terminal scrollback + drag-select copy.
      - Uses PromptSession with keyword / executable / path completion.
      - Keeps line history (FileHistory under the data root when enabled).
      - Adds a bottom toolbar showing cwd and bound variable count.
      - Ctrl+L clears the screen.
    """

    def __init__(
        self,
        interp: Interpreter | None = None,
        data_root: Path | None = None,
    ) -> None:
        self.interp = interp
        self.data_root = data_root
        self.session: PromptSession[str] | None = None
        self._completer: BatchCompleter | None = None
        self._style = _build_style(interp)

        # Track whether we ended on a newline (to prevent prompt mangling)
        self._needs_newline_before_prompt = False

    # ---------- toolbar rendering ----------

    def _bottom_toolbar(self):
        if not _cfg_bool(self.interp, "ui.toolbar.enabled", True):
            return ""
        if self.interp is None:
            return ""

        cwd = str(getattr(self.interp, "cwd", ""))
        variables = getattr(self.interp, "variables", {}) or {}
        return [
            ("class:batch.toolbar.label", " cwd "),
            ("class:batch.toolbar.value", cwd),
            ("class:batch.toolbar.label", "  vars "),
            ("class:batch.toolbar.value", str(len(variables))),
            ("class:batch.toolbar.label", " "),
        ]

    # ---------- session ----------

    def _ensure_session(self) -> None:
        if self.session is not None:
            return

        self._completer = BatchCompleter(self.interp)

        self.session = PromptSession(
            key_bindings=self.build_key_bindings(),
            completer=self._completer,
            complete_while_typing=False,
            history=build_history(self.interp, self.data_root),
            style=self._style,
            bottom_toolbar=self._bottom_toolbar,
        )

    # ---------- public API ----------

    def read(self, prompt: str) -> str:
        self._ensure_session()
        assert self.session is not None

        # If last output didn't end with newline, insert one
        # before prompt redraw
        if self._needs_newline_before_prompt:
            print_formatted_text(
                ANSI("\n"), style=self._style, end=""
            )
            self._needs_newline_before_prompt = False

        with patch_stdout():
            return self.session.prompt(ANSI(prompt + " "))

    def write(self, text: str) -> None:
        """Write EXACTLY what we receive (no extra newline).

        Track prompt safety.
        """
        if not text:
            return
        print_formatted_text(ANSI(text), style=self._style, end="")
        self._needs_newline_before_prompt = not text.endswith("\n")

    # ---------- keybindings ----------

    def build_key_bindings(self) -> KeyBindings:
        kb = KeyBindings()

        @kb.add("c-l")
        def _(event):
            try:
                event.app.renderer.clear()
            except Exception:
                pass
            event.app.invalidate()

        return kb
