"""Terminal output helpers for the CLI."""

from __future__ import annotations

import os
import sys
from collections.abc import Sequence
from typing import TextIO

RESET = "\033[0m"
BOLD = "\033[1m"
DIM = "\033[2m"
RED = "\033[31m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
CYAN = "\033[36m"


def _supports_color(stream: TextIO) -> bool:
    if os.environ.get("NO_COLOR") or os.environ.get("TERM") == "dumb":
        return False
    return hasattr(stream, "isatty") and stream.isatty()


def colorize(text: str, color: str, *, bold: bool = False, stream: TextIO | None = None) -> str:
    if not _supports_color(stream or sys.stdout):
        return text
    return f"{BOLD if bold else ''}{color}{text}{RESET}"


def print_success(message: str, stream: TextIO | None = None) -> None:
    stream = stream or sys.stdout
    print(colorize("✓", GREEN, bold=True, stream=stream) + " " + message, file=stream)


def print_error(message: str, stream: TextIO | None = None) -> None:
    stream = stream or sys.stderr
    print(colorize("✗", RED, bold=True, stream=stream) + " " + message, file=stream)


def print_warning(message: str, stream: TextIO | None = None) -> None:
    stream = stream or sys.stdout
    print(colorize("⚠", YELLOW, bold=True, stream=stream) + " " + message, file=stream)


def print_summary_box(
    title: str, items: Sequence[tuple[str, str | int]], stream: TextIO | None = None
) -> None:
    """Key/value table framed by rules; positive counts are highlighted."""
    stream = stream or sys.stdout
    width = max((len(k) for k, _ in items), default=0)
    rule = colorize("─" * 60, DIM, stream=stream)
    print(colorize(f"\n{title}", CYAN, bold=True, stream=stream), file=stream)
    print(rule, file=stream)
    for key, value in items:
        text = str(value)
        if isinstance(value, int) and value > 0:
            text = colorize(text, GREEN, bold=True, stream=stream)
        print(f"  {key.ljust(width)}  {text}", file=stream)
    print(rule, file=stream)


def print_operation_status(
    operation: str, status: str, details: str = "", stream: TextIO | None = None
) -> None:
    stream = stream or sys.stdout
    low = status.lower()
    if low in ("success", "ok", "completed"):
        icon, color = "✓", GREEN
    elif low in ("failed", "error"):
        icon, color = "✗", RED
    else:
        icon, color = "→", CYAN
    line = f"{colorize(icon, color, bold=True, stream=stream)} {operation}: {status}"
    if details:
        line += f" ({details})"
    print(line, file=stream)


__all__ = [
    "colorize",
    "print_success",
    "print_error",
    "print_warning",
    "print_summary_box",
    "print_operation_status",
]
