"""Sandboxed tools the model may call."""

from .base import Tool, ToolContext, ToolInput, ToolParameter, ToolResult
from .file_tool import create_file_tools
from .policy import Permission, PermissionPolicy, RiskLevel
from .sandbox import ToolSandbox
from .shell_tool import create_shell_tools
from .validator import is_safe_path, validate_command

__all__ = [
    "Tool",
    "ToolContext",
    "ToolInput",
    "ToolParameter",
    "ToolResult",
    "ToolSandbox",
    "Permission",
    "PermissionPolicy",
    "RiskLevel",
    "create_file_tools",
    "create_shell_tools",
    "is_safe_path",
    "validate_command",
]
