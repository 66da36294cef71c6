"""
File Operations Tool - read and write files inside the project directory.

Every path is resolved against the working directory and rejected if it
escapes it. Writes show a diff first and only touch disk when the
permission policy allows it.
"""

import os
import tempfile

import structlog

from .. import display
from .base import Tool, ToolContext, ToolInput, ToolParameter, ToolResult
from .validator import require_safe_path

logger = structlog.get_logger()

DRY_RUN_WRITE_MESSAGE = "Dry-run: changes not applied. Use --tool=write flag."


class ReadFileInput(ToolInput):
    path: str


class WriteFileInput(ToolInput):
    path: str
    content: str


def _write_text_atomic(path: str, content: str) -> None:
    """Write via temp file + rename so a crash never leaves half a file."""
    dirname = os.path.dirname(path) or "."
    os.makedirs(dirname, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=dirname, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        if os.path.exists(path):
            os.chmod(tmp_path, os.stat(path).st_mode & 0o777)
        else:
            os.chmod(tmp_path, 0o644)
        os.replace(tmp_path, path)
    except OSError:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


async def read_file_handler(inp: ReadFileInput, ctx: ToolContext) -> ToolResult:
    """Read a file."""
    path = require_safe_path(inp.path, ctx.working_dir)

    logger.info("Tool: read_file", path=inp.path)

    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            content = f.read()
    except OSError as e:
        return ToolResult(success=False, error=str(e), data={"error": str(e)})

    return ToolResult(
        success=True,
        output=content,
        data={"success": True, "path": inp.path, "size": len(content)},
    )


async def write_file_handler(inp: WriteFileInput, ctx: ToolContext) -> ToolResult:
    """Write to a file, or describe the write when the policy forbids it."""
    path = require_safe_path(inp.path, ctx.working_dir)
    if os.path.isdir(path):
        return ToolResult(
            success=False,
            error=f"{inp.path} is a directory",
            data={"error": "is a directory", "path": inp.path},
        )

    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            old = f.read()
    except OSError:
        old = ""

    dry_run = not ctx.policy.allows("write_file")

    if ctx.show_diff:
        display.tool_header(inp.path, dry_run)
        display.show_diff(old, inp.content, inp.path)

    if dry_run:
        return ToolResult(
            success=True,
            output=DRY_RUN_WRITE_MESSAGE,
            dry_run=True,
            data={"dry_run": True, "path": inp.path, "size": len(inp.content)},
        )

    logger.info("Tool: write_file", path=inp.path)

    try:
        _write_text_atomic(path, inp.content)
    except OSError as e:
        return ToolResult(success=False, error=str(e), data={"error": str(e)})

    return ToolResult(
        success=True,
        output=f"Successfully wrote to {inp.path}",
        data={"success": True, "path": inp.path, "size": len(inp.content)},
    )


def create_file_tools() -> list[Tool]:
    """Create file operation tools."""
    read_file = Tool(
        name="read_file",
        description="Read the contents of a file",
        parameters=[
            ToolParameter(
                name="path",
                param_type="string",
                description="Path to the file to read",
                required=True,
            ),
        ],
        input_model=ReadFileInput,
        handler=read_file_handler,
    )

    write_file = Tool(
        name="write_file",
        description="Write content to a file. Shows diff in dry-run mode.",
        parameters=[
            ToolParameter(
                name="path",
                param_type="string",
                description="Path to the file to write",
                required=True,
            ),
            ToolParameter(
                name="content",
                param_type="string",
                description="Content to write to the file",
                required=True,
            ),
        ],
        input_model=WriteFileInput,
        handler=write_file_handler,
    )

    return [read_file, write_file]
