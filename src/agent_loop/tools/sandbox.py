"""
Tool sandbox: dispatches model tool_use blocks to registered tools.

The sandbox never raises. Every failure becomes a tool_result whose content
starts with ``Error:`` so the model can see it and react, and every call is
appended to the conversation's audit log.
"""

import time
from typing import TYPE_CHECKING

import structlog

from ..errors import ExecutionTimeout, SandboxViolation, StorageError, ValidationError
from ..llm.base import ToolDefinition
from ..models import AuditLogEntry, ToolResultBlock, ToolUseBlock
from .base import Tool, ToolContext, ToolResult
from .file_tool import create_file_tools
from .policy import PermissionPolicy
from .shell_tool import create_shell_tools

if TYPE_CHECKING:
    from ..storage import ConversationStore

logger = structlog.get_logger()


class ToolSandbox:
    """Registry of tools bound to one working directory and policy."""

    def __init__(
        self,
        working_dir: str,
        policy: PermissionPolicy,
        store: "ConversationStore | None" = None,
        turn_id: str = "",
        show_diff: bool = True,
        command_timeout: float = 30.0,
        register_defaults: bool = True,
    ):
        self.working_dir = working_dir
        self.policy = policy
        self.store = store
        self.turn_id = turn_id
        self.context = ToolContext(
            working_dir=working_dir,
            policy=policy,
            show_diff=show_diff,
            command_timeout=command_timeout,
        )
        self._tools: dict[str, Tool] = {}

        if register_defaults:
            for tool in create_file_tools() + create_shell_tools():
                self.register(tool)

    def register(self, tool: Tool) -> None:
        """Register a tool."""
        self._tools[tool.name] = tool
        logger.debug("Tool registered", tool_name=tool.name)

    def get(self, name: str) -> Tool | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def get_definitions(self) -> list[ToolDefinition]:
        """Tool definitions for the provider; empty when tools are disabled."""
        if not self.policy.tools_enabled:
            return []
        return [tool.to_definition() for tool in self._tools.values()]

    async def execute(self, block: ToolUseBlock) -> ToolResultBlock:
        """Run one tool_use block and answer it with a tool_result block."""
        start = time.monotonic()
        tool = self.get(block.name)

        if tool is None:
            result = ToolResult(success=False, error=f"unknown tool: {block.name}")
        else:
            logger.info("Executing tool", tool_name=block.name, arguments=block.input)
            try:
                result = await tool.execute(block.input, self.context)
            except (ValidationError, SandboxViolation) as e:
                result = ToolResult(success=False, error=str(e), data={"error": str(e)})
            except ExecutionTimeout as e:
                result = ToolResult(
                    success=False,
                    error=str(e),
                    data={"error": "timeout", "stdout": e.stdout, "stderr": e.stderr},
                )
            except Exception as e:
                logger.error("Tool execution error", tool_name=block.name, error=str(e))
                result = ToolResult(success=False, error=str(e), data={"error": str(e)})

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Tool executed",
            tool_name=block.name,
            success=result.success,
            dry_run=result.dry_run,
            duration_ms=duration_ms,
        )
        self._audit(block, result, duration_ms)

        if result.success:
            content = result.output
        else:
            content = f"Error: {result.error}"
        return ToolResultBlock(tool_use_id=block.id, content=content)

    async def execute_all(self, blocks: list[ToolUseBlock]) -> list[ToolResultBlock]:
        """Run blocks one at a time, results in the same order."""
        results = []
        for block in blocks:
            results.append(await self.execute(block))
        return results

    def _audit(self, block: ToolUseBlock, result: ToolResult, duration_ms: int) -> None:
        if self.store is None:
            return

        summary = dict(result.data) if result.data else {"success": result.success}
        entry = AuditLogEntry(
            timestamp=time.strftime("%Y-%m-%dT%H:%M:%S%z"),
            tool=block.name,
            input=block.input,
            result=summary,
            success=result.success,
            duration_ms=duration_ms,
            conversation_id=self.turn_id,
            dry_run=result.dry_run,
            error=None if result.success else result.error,
        )
        try:
            self.store.append_audit_log(entry)
        except StorageError as e:
            logger.warning("Failed to write audit log", tool_name=block.name, error=str(e))
