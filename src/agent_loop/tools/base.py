"""
Base classes for tools.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from ..llm.base import ToolDefinition
from .policy import PermissionPolicy


@dataclass
class ToolResult:
    """Result from a tool execution."""

    success: bool
    output: str = ""
    error: str | None = None
    dry_run: bool = False
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolContext:
    """Everything a tool handler may depend on for one call."""

    working_dir: str
    policy: PermissionPolicy
    show_diff: bool = True
    command_timeout: float = 30.0


class ToolInput(BaseModel):
    """Base for per-tool input schemas.

    Strict so that a number is never silently accepted where a string is
    required.
    """

    model_config = ConfigDict(strict=True, extra="ignore")

    @classmethod
    def parse(cls, raw: dict[str, Any]) -> "ToolInput":
        """Validate raw model-supplied input, raising ValidationError."""
        try:
            return cls.model_validate(raw)
        except PydanticValidationError as e:
            err = e.errors()[0]
            name = ".".join(str(part) for part in err["loc"]) or "input"
            if err["type"] == "missing":
                raise ValidationError(f"{name} is required") from e
            if err["type"] == "string_type":
                raise ValidationError(f"{name} must be a string") from e
            raise ValidationError(f"{name}: {err['msg']}") from e


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    param_type: str  # string, integer, boolean, array, object
    description: str
    required: bool = True


@dataclass
class Tool:
    """
    A sandboxed tool: schema for the model, typed input, and an async handler.
    """

    name: str
    description: str
    parameters: list[ToolParameter]
    input_model: type[ToolInput]
    handler: Callable[[Any, ToolContext], Coroutine[Any, Any, ToolResult]]

    def get_parameters_schema(self) -> dict[str, Any]:
        """Convert parameters to JSON Schema format."""
        properties = {}
        required = []

        for param in self.parameters:
            properties[param.name] = {
                "type": param.param_type,
                "description": param.description,
            }
            if param.required:
                required.append(param.name)

        return {
            "type": "object",
            "properties": properties,
            "required": required,
        }

    def to_definition(self) -> ToolDefinition:
        """Convert to a tool definition for the LLM."""
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.get_parameters_schema(),
        )

    async def execute(self, raw_input: dict[str, Any], context: ToolContext) -> ToolResult:
        """Validate input and run the handler."""
        parsed = self.input_model.parse(raw_input)
        return await self.handler(parsed, context)
