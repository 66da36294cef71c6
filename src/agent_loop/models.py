"""
Wire and on-disk data models for agent-loop.

Uses pydantic for validation of everything that crosses a boundary:
provider responses, persisted request/response artifacts, the audit log,
and the per-conversation stats file.
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class TextBlock(BaseModel):
    """Plain text content."""

    type: Literal["text"] = "text"
    text: str = ""


class ToolUseBlock(BaseModel):
    """A model-issued request to run a local tool."""

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    """The outcome of a tool invocation, fed back to the model."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str = ""

    @property
    def is_error(self) -> bool:
        return self.content.startswith("Error:")


ContentBlock = Annotated[
    Union[TextBlock, ToolUseBlock, ToolResultBlock],
    Field(discriminator="type"),
]


class Message(BaseModel):
    """A message in the conversation."""

    role: Literal["user", "assistant"]
    content: list[ContentBlock] = Field(default_factory=list)

    @classmethod
    def user_text(cls, text: str) -> "Message":
        return cls(role="user", content=[TextBlock(text=text)])

    def first_text(self) -> str:
        for block in self.content:
            if isinstance(block, TextBlock):
                return block.text
        return ""

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]


class Usage(BaseModel):
    """Token usage reported by a provider."""

    input_tokens: int = 0
    output_tokens: int = 0


class APIError(BaseModel):
    """Error payload returned by a provider."""

    type: str = ""
    message: str = ""


class ProviderResponse(BaseModel):
    """One provider reply; the unit stored in a response array."""

    model_config = ConfigDict(extra="ignore")

    id: str = ""
    type: str = "message"
    role: str = "assistant"
    content: list[ContentBlock] = Field(default_factory=list)
    model: str = ""
    stop_reason: str | None = None
    usage: Usage = Field(default_factory=Usage)
    error: APIError | None = None

    def first_text(self) -> str:
        for block in self.content:
            if isinstance(block, TextBlock):
                return block.text
        return ""

    def to_message(self) -> Message:
        return Message(role="assistant", content=list(self.content))


class RequestRecord(BaseModel):
    """What was sent to the provider for one turn (saved for replay/audit)."""

    timestamp: str
    messages: list[Message] = Field(default_factory=list)


class AuditLogEntry(BaseModel):
    """A single tool execution in the append-only audit trail."""

    timestamp: str
    tool: str
    input: dict[str, Any] = Field(default_factory=dict)
    result: dict[str, Any] = Field(default_factory=dict)
    success: bool
    duration_ms: int = 0
    conversation_id: str = ""
    dry_run: bool = False
    error: str | None = None


class RunStats(BaseModel):
    """Aggregate per-conversation state kept in config.json."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    model: str = ""
    system_prompt: str | None = None
    total_input: int = Field(default=0, alias="total_input_tokens")
    total_output: int = Field(default=0, alias="total_output_tokens")
    first_run: str = ""
    last_run: str = ""

    def record_run(self, turn_id: str, input_tokens: int, output_tokens: int) -> None:
        """Fold one finished turn into the running totals."""
        self.total_input += input_tokens
        self.total_output += output_tokens
        self.last_run = turn_id
        if not self.first_run:
            self.first_run = turn_id


class ModelInfo(BaseModel):
    """A model offered by a provider."""

    id: str = ""
    name: str
    provider: str


class ModelsCache(BaseModel):
    """Cached provider model listing (models.json)."""

    last_updated: datetime
    models: list[ModelInfo] = Field(default_factory=list)

    def has_model(self, name: str) -> bool:
        return any(m.name == name for m in self.models)
