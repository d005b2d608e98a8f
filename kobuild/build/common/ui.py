# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Terse build status display.
"""
from __future__ import annotations

import os
import sys
from typing import IO, Mapping, Optional

# ANSI color codes for terminal output
GREEN = "\033[0;32m"
YELLOW = "\033[1;33m"
RED = "\033[0;31m"
END = "\033[0m"

PENDING = "pending"
RUNNING = "running"
SUCCESS = "success"
FAILED = "failed"

# Allow forcing ASCII mode via environment variable (useful for dumb terminals)
USE_UNICODE = not os.environ.get("KOBUILD_ASCII")

if USE_UNICODE:
    SYMBOLS = {PENDING: "◯", RUNNING: "…", SUCCESS: "✓", FAILED: "✗"}
else:
    SYMBOLS = {PENDING: "o", RUNNING: ".", SUCCESS: "+", FAILED: "X"}

COLORS = {PENDING: YELLOW, RUNNING: GREEN, SUCCESS: GREEN, FAILED: RED}


def format_ui(states: Mapping[str, str]) -> str:
    """
    Render one status line, one entry per package in sequence order.
    """
    uiline = []
    for name, state in states.items():
        uiline.append(f"{COLORS[state]}{SYMBOLS[state]} {name}")
    return " ".join(uiline) + END


def print_ui(states: Mapping[str, str], stream: Optional[IO[str]] = None) -> None:
    """
    Redraw the status line in place.
    """
    if stream is None:
        stream = sys.stdout
    stream.write("\r")
    stream.write(format_ui(states))
    stream.flush()
