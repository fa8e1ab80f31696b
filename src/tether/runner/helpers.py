"""Shared helper functions for the process runner."""

from __future__ import annotations

import os
import time
from pathlib import Path


def format_stderr_preview(stderr_text: str, max_lines: int = 5) -> str:
    """Extract and format the last N non-empty lines from stderr output."""
    lines = [line for line in stderr_text.split("\n") if line.strip()]
    last = lines[-max_lines:] if len(lines) > max_lines else lines
    return "\n  ".join(last)


def elapsed_ms(start: float) -> int:
    """Milliseconds since *start* (a ``time.monotonic()`` reading)."""
    return int((time.monotonic() - start) * 1000)


def home_dir() -> Path:
    """The user's home directory, with ``USERPROFILE`` and ``/tmp`` fallbacks."""
    return Path(os.environ.get("HOME") or os.environ.get("USERPROFILE") or "/tmp")
