# BatchSH — Line-Oriented Batch Script Interpreter
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Command classification for BatchSH.

A line of script text is turned into exactly one tagged command value.
Classification is pure: it never reads or writes interpreter state, and a
line that does not satisfy its keyword's shape becomes ``Malformed`` rather
than raising.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Union

LABEL_MARKER = ":"


@dataclass(frozen=True)
class Echo:
    text: str


@dataclass(frozen=True)
class SetVar:
    name: str
    value: str


@dataclass(frozen=True)
class ChangeDir:
    path: str


@dataclass(frozen=True)
class Conditional:
    var: str
    op: str
    value: str


@dataclass(frozen=True)
class ForLoop:
    var: str
    values: tuple[str, ...]


@dataclass(frozen=True)
class WhileLoop:
    var: str
    op: str
    value: str


@dataclass(frozen=True)
class Shift:
    pass


@dataclass(frozen=True)
class Jump:
    label: str


@dataclass(frozen=True)
class LabelDecl:
    label: str


@dataclass(frozen=True)
class Exit:
    pass


@dataclass(frozen=True)
class ExternalInvocation:
    argv: tuple[str, ...]

    @property
    def program(self) -> str:
        return self.argv[0]

    @property
    def args(self) -> list[str]:
        return list(self.argv[1:])


@dataclass(frozen=True)
class Malformed:
    line: str = ""


Command = Union[
    Echo,
    SetVar,
    ChangeDir,
    Conditional,
    ForLoop,
    WhileLoop,
    Shift,
    Jump,
    LabelDecl,
    Exit,
    ExternalInvocation,
    Malformed,
]

# Keywords recognised on the first token (compared upper-cased)
KEYWORDS: tuple[str, ...] = (
    "ECHO",
    "SET",
    "CD",
    "IF",
    "FOR",
    "WHILE",
    "SHIFT",
    "GOTO",
    "EXIT",
)


def classify(line: str) -> Command:
    """Classify a single line of text into a command value.

    Args:
        line: Raw line as typed or read from a script

    Returns:
        The tagged command. Lines that match a keyword but not its
        token-count rule come back as ``Malformed``; lines whose first
        token is not a keyword come back as ``ExternalInvocation``.
    """
    parts = line.strip().split()
    if not parts:
        return Malformed(line)

    keyword = parts[0].upper()

    if keyword == "ECHO":
        return Echo(" ".join(parts[1:]))

    if keyword == "SET":
        if len(parts) != 3:
            return Malformed(line)
        return SetVar(parts[1], parts[2])

    if keyword == "CD":
        if len(parts) != 2:
            return Malformed(line)
        return ChangeDir(parts[1])

    if keyword == "IF":
        if len(parts) < 4:
            return Malformed(line)
        return Conditional(parts[1], parts[2], " ".join(parts[3:]))

    if keyword == "FOR":
        if len(parts) < 3:
            return Malformed(line)
        return ForLoop(parts[1], tuple(parts[2:]))

    if keyword == "WHILE":
        if len(parts) < 4:
            return Malformed(line)
        return WhileLoop(parts[1], parts[2], parts[3])

    if keyword == "SHIFT":
        return Shift()

    if keyword == "GOTO":
        if len(parts) != 2:
            return Malformed(line)
        return Jump(parts[1])

    if parts[0] == LABEL_MARKER:
        if len(parts) != 2:
            return Malformed(line)
        return LabelDecl(parts[1])

    # ":name" written as one token
    if parts[0].startswith(LABEL_MARKER) and len(parts[0]) > 1:
        if len(parts) != 1:
            return Malformed(line)
        return LabelDecl(parts[0][1:])

    if keyword == "EXIT":
        return Exit()

    return ExternalInvocation(tuple(parts))


def build_label_table(lines: Sequence[str]) -> dict[str, int]:
    """Map every label declared in ``lines`` to its 0-based line index.

    A label declared twice resolves to its last declaration.
    """
    labels: dict[str, int] = {}
    for index, line in enumerate(lines):
        command = classify(line)
        if isinstance(command, LabelDecl):
            labels[command.label] = index
    return labels


def compare(left: str, op: str, right: str) -> bool:
    """Evaluate ``left <op> right`` with lexicographic string ordering.

    Unknown operators evaluate to False.
    """
    if op == "==":
        return left == right
    if op == "!=":
        return left != right
    if op == "<":
        return left < right
    if op == ">":
        return left > right
    if op == "<=":
        return left <= right
    if op == ">=":
        return left >= right
    return False
