"""
Permission policy for sandboxed tools.

Tools are classified by risk level. Safe tools always run; dangerous tools
(writes, commands) only run when the policy grants the matching permission,
otherwise they are described as a dry-run.

The policy string mirrors the --tool flag:
    ""        dry-run: tools offered, writes and commands only described
    none      no tools offered to the model
    read      read-only
    write     file writes allowed
    command   shell commands allowed
    all       everything allowed
    a,b       comma-separated combination
"""

from dataclasses import dataclass, field
from enum import Enum


class RiskLevel(str, Enum):
    """Risk classification for tool operations."""
    SAFE = "safe"              # read_file - always executes
    DANGEROUS = "dangerous"    # write_file, bash_command - needs permission


class Permission(str, Enum):
    NONE = "none"
    READ = "read"
    WRITE = "write"
    COMMAND = "command"
    ALL = "all"


DEFAULT_RISK_MAP: dict[str, RiskLevel] = {
    "read_file": RiskLevel.SAFE,
    "write_file": RiskLevel.DANGEROUS,
    "bash_command": RiskLevel.DANGEROUS,
}


@dataclass(frozen=True)
class PermissionPolicy:
    """Which tool actions may touch the system."""

    permissions: frozenset[Permission] = field(default_factory=frozenset)

    @classmethod
    def from_flag(cls, value: str | None) -> "PermissionPolicy":
        """Parse a --tool style value, raising ValueError on unknown names."""
        perms = set()
        for part in (value or "").split(","):
            part = part.strip().lower()
            if not part:
                continue
            try:
                perms.add(Permission(part))
            except ValueError:
                valid = ", ".join(p.value for p in Permission)
                raise ValueError(f"unknown tool permission '{part}' (valid: {valid})") from None
        return cls(frozenset(perms))

    @property
    def is_dry_run(self) -> bool:
        return not self.permissions

    @property
    def tools_enabled(self) -> bool:
        return Permission.NONE not in self.permissions

    @property
    def can_write(self) -> bool:
        return Permission.WRITE in self.permissions or Permission.ALL in self.permissions

    @property
    def can_execute(self) -> bool:
        return Permission.COMMAND in self.permissions or Permission.ALL in self.permissions

    def allows(self, tool_name: str) -> bool:
        """Whether a tool may act for real rather than as a dry-run."""
        risk = DEFAULT_RISK_MAP.get(tool_name, RiskLevel.DANGEROUS)
        if risk == RiskLevel.SAFE:
            return True
        if tool_name == "write_file":
            return self.can_write
        if tool_name == "bash_command":
            return self.can_execute
        return Permission.ALL in self.permissions

    def __str__(self) -> str:
        if self.is_dry_run:
            return "dry-run"
        return ",".join(sorted(p.value for p in self.permissions))
