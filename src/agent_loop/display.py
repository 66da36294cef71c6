"""
Terminal presentation helpers: tool headers and write previews.

Everything here writes to stderr so stdout stays reserved for the
assistant's answer.
"""

import difflib
import sys
from typing import TextIO

_RED = "\033[31m"
_GREEN = "\033[32m"
_CYAN = "\033[36m"
_BOLD = "\033[1m"
_RESET = "\033[0m"


def _use_color(stream: TextIO) -> bool:
    return hasattr(stream, "isatty") and stream.isatty()


def unified_diff(old: str, new: str, path: str = "file") -> str:
    """Unified diff of two file contents; empty string when identical."""
    lines = difflib.unified_diff(
        old.splitlines(keepends=True),
        new.splitlines(keepends=True),
        fromfile=f"a/{path}",
        tofile=f"b/{path}",
        n=3,
    )
    return "".join(line if line.endswith("\n") else line + "\n" for line in lines)


def tool_header(name: str, dry_run: bool, stream: TextIO | None = None) -> None:
    stream = stream or sys.stderr
    label = f"{name} (dry-run)" if dry_run else name
    if _use_color(stream):
        stream.write(f"{_BOLD}{_CYAN}==> {label}{_RESET}\n")
    else:
        stream.write(f"==> {label}\n")


def show_diff(old: str, new: str, path: str, stream: TextIO | None = None) -> None:
    """Print a colored unified diff of a pending write."""
    stream = stream or sys.stderr
    diff = unified_diff(old, new, path)
    if not diff:
        stream.write("(no changes)\n")
        return

    color = _use_color(stream)
    for line in diff.splitlines(keepends=True):
        if color and line.startswith("+") and not line.startswith("+++"):
            stream.write(f"{_GREEN}{line.rstrip()}{_RESET}\n")
        elif color and line.startswith("-") and not line.startswith("---"):
            stream.write(f"{_RED}{line.rstrip()}{_RESET}\n")
        else:
            stream.write(line)
