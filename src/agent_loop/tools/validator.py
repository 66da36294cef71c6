"""
Command and path validation for the tool sandbox.

Checks run in a fixed order and the first match wins: chaining operators
are rejected before anything else so that a whitelisted prefix can never
smuggle a second command through.
"""

import os
import re

from ..errors import SandboxViolation

CHAIN_OPERATORS = ("||", "&&", ";")

BLOCKED_PATTERNS = (
    "sudo", "su ", "rm ", "mv ", "cp ", "chmod", "chown",
    "curl", "wget",
    # shell metacharacters: background, redirection, substitution, newline
    "&", ">", "<", "$(", "`", "\n",
)

ALLOWED_COMMANDS = frozenset({
    "ls", "cat", "grep", "find", "head", "tail", "wc",
    "echo", "pwd", "date",
    "git",  # subcommands restricted below
    "go",
})

ALLOWED_GIT_SUBCOMMANDS = frozenset({"log", "diff", "show", "status", "blame"})

_PIPE = re.compile(r"\s*\|\s*")


def validate_command(command: str) -> None:
    """Raise SandboxViolation if ``command`` may not run."""
    for op in CHAIN_OPERATORS:
        if op in command:
            raise SandboxViolation(f"blocked pattern: {op}")

    if ".." in command:
        raise SandboxViolation("path traversal not allowed")

    for pattern in BLOCKED_PATTERNS:
        if pattern in command:
            raise SandboxViolation(f"blocked pattern: {pattern}")

    for sub in _PIPE.split(command):
        parts = sub.split()
        if not parts:
            continue

        first = parts[0]
        if first not in ALLOWED_COMMANDS:
            raise SandboxViolation(f"command not in whitelist: {first}")

        if first == "git" and len(parts) > 1 and parts[1] not in ALLOWED_GIT_SUBCOMMANDS:
            raise SandboxViolation(f"git subcommand not allowed: {parts[1]}")


def resolve_path(path: str, working_dir: str) -> str:
    """Absolute, symlink-free form of ``path``; relative paths start at working_dir."""
    return os.path.realpath(os.path.join(working_dir, os.path.expanduser(path)))


def is_safe_path(path: str, working_dir: str) -> bool:
    """True if ``path`` is ``working_dir`` itself or lies inside it.

    Both sides get a trailing separator before the prefix test so that
    /home/user/project does not contain /home/user/project-evil.
    """
    try:
        candidate = resolve_path(path, working_dir)
        root = os.path.realpath(working_dir)
    except (OSError, ValueError):
        return False

    candidate = candidate.rstrip(os.sep) + os.sep
    root = root.rstrip(os.sep) + os.sep
    return candidate.startswith(root)


def require_safe_path(path: str, working_dir: str) -> str:
    """Resolve ``path`` or raise SandboxViolation if it escapes working_dir."""
    if not is_safe_path(path, working_dir):
        raise SandboxViolation(f"path outside project: {path}")
    return resolve_path(path, working_dir)
