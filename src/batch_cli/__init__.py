# BatchSH — Line-Oriented Batch Script Interpreter
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
BatchSH core package.

A line-oriented batch script interpreter: ECHO, SET, CD, IF, FOR, WHILE,
GOTO and EXIT, with everything else dispatched to nested ``.BATCH`` scripts
or external programs.
"""
from .kernel import Interpreter as Interpreter  # noqa: F401 (re-export)
