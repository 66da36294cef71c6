"""
Shell Command Tool - Safe execution of whitelisted shell commands.

Commands are validated before anything else happens, run through
``bash -c`` in the working directory inside their own process group, and
killed as a group when they exceed the wall-clock bound.
"""

import asyncio
import os
import signal
import time
from dataclasses import dataclass

import structlog

from .. import display
from ..errors import ExecutionTimeout
from .base import Tool, ToolContext, ToolInput, ToolParameter, ToolResult
from .validator import ALLOWED_COMMANDS, ALLOWED_GIT_SUBCOMMANDS, validate_command

logger = structlog.get_logger()


@dataclass
class CommandOutput:
    exit_code: int
    stdout: str
    stderr: str
    duration: float


class BashCommandInput(ToolInput):
    command: str
    reason: str


def _truncate_output(output: str, max_chars: int = 10_000) -> str:
    """Truncate output to keep tool results within context limits."""
    if len(output) > max_chars:
        return output[:max_chars] + "\n\n... (truncated)"
    return output


def _kill_process_group(proc: asyncio.subprocess.Process) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        try:
            proc.kill()
        except ProcessLookupError:
            pass


async def run_command(command: str, cwd: str, timeout: float) -> CommandOutput:
    """
    Run ``bash -c command`` with a wall-clock bound.

    Raises:
        ExecutionTimeout: with whatever output was captured before the
            process group was killed.
    """
    start = time.monotonic()
    proc = await asyncio.create_subprocess_exec(
        "bash", "-c", command,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
        start_new_session=True,
    )

    stdout_chunks: list[bytes] = []
    stderr_chunks: list[bytes] = []

    async def drain(stream: asyncio.StreamReader, sink: list[bytes]) -> None:
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                break
            sink.append(chunk)

    def decoded(chunks: list[bytes]) -> str:
        return b"".join(chunks).decode("utf-8", errors="replace")

    try:
        await asyncio.wait_for(
            asyncio.gather(
                drain(proc.stdout, stdout_chunks),
                drain(proc.stderr, stderr_chunks),
                proc.wait(),
            ),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        _kill_process_group(proc)
        await proc.wait()
        stdout, stderr = decoded(stdout_chunks), decoded(stderr_chunks)
        raise ExecutionTimeout(
            f"Command timeout after {timeout:g}s\nStdout: {stdout}\nStderr: {stderr}",
            stdout=stdout,
            stderr=stderr,
        ) from None

    return CommandOutput(
        exit_code=proc.returncode,
        stdout=decoded(stdout_chunks),
        stderr=decoded(stderr_chunks),
        duration=time.monotonic() - start,
    )


async def bash_command_handler(inp: BashCommandInput, ctx: ToolContext) -> ToolResult:
    """Validate, then run or describe a shell command."""
    validate_command(inp.command)

    if not ctx.policy.allows("bash_command"):
        msg = (
            f"Dry-run: would execute command: {inp.command}\n"
            f"Reason: {inp.reason}\n"
            "Use --tool=command or --tool=all to execute"
        )
        if ctx.show_diff:
            display.tool_header("bash_command", True)
        return ToolResult(
            success=True,
            output=msg,
            dry_run=True,
            data={"dry_run": True, "command": inp.command, "reason": inp.reason},
        )

    logger.info("Tool: bash_command", command=inp.command, reason=inp.reason)

    try:
        result = await run_command(inp.command, ctx.working_dir, ctx.command_timeout)
    except OSError as e:
        return ToolResult(success=False, error=f"starting command: {e}", data={"error": str(e), "exit_code": -1})

    stdout = _truncate_output(result.stdout)
    stderr = _truncate_output(result.stderr)
    message = (
        f"Exit code: {result.exit_code}\n"
        f"Duration: {result.duration:.3f}s\n"
        f"Stdout:\n{stdout}\n"
        f"Stderr:\n{stderr}"
    )
    data = {
        "exit_code": result.exit_code,
        "stdout": stdout,
        "stderr": stderr,
        "duration": int(result.duration * 1000),
    }

    if result.exit_code != 0:
        return ToolResult(success=False, error=message, data=data)
    return ToolResult(success=True, output=message, data=data)


def create_shell_tools() -> list[Tool]:
    """Create shell-related tools."""
    allowed = ", ".join(sorted(ALLOWED_COMMANDS - {"git", "go"}))
    git_subcommands = ", ".join(sorted(ALLOWED_GIT_SUBCOMMANDS))

    bash_command = Tool(
        name="bash_command",
        description=(
            "Execute a bash command in the working directory.\n\n"
            f"Allowed commands: {allowed}\n"
            f"Also allowed: git ({git_subcommands}) and go (all subcommands)\n"
            "Pipes are permitted; command chaining (;, &&, ||) is not.\n\n"
            "Blocked: rm, mv, cp, chmod, sudo, curl, wget, and path traversal.\n\n"
            "Use 'reason' to explain why this command is needed (for audit trail)."
        ),
        parameters=[
            ToolParameter(
                name="command",
                param_type="string",
                description="The bash command to execute",
                required=True,
            ),
            ToolParameter(
                name="reason",
                param_type="string",
                description="Why this command is needed",
                required=True,
            ),
        ],
        input_model=BashCommandInput,
        handler=bash_command_handler,
    )

    return [bash_command]
