"""
Anthropic Claude LLM provider.
"""

from typing import Any

import anthropic
import structlog

from ..errors import ProviderError
from ..models import ModelInfo, ProviderResponse
from .base import BaseLLM, LLMRequest, ModelCapabilities, ToolDefinition

logger = structlog.get_logger()

# Used when the models endpoint cannot be reached or no key is configured
DEFAULT_CLAUDE_MODELS = [
    "claude-opus-4-20250514",
    "claude-sonnet-4-20250514",
    "claude-sonnet-4-5-20250929",
    "claude-haiku-4-5-20251001",
    "claude-3-5-sonnet-20241022",
    "claude-3-5-haiku-20241022",
]

_KNOWN_BLOCK_TYPES = {"text", "tool_use", "tool_result"}


def describe_status(status: int, body: Any) -> str:
    """Human readable message for a non-success HTTP status."""
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        err = body["error"]
        return f"API error [{err.get('type', '')}]: {err.get('message', '')}"

    if status == 401:
        return "Unauthorized: check API key"
    if status == 404:
        return "Not Found: invalid endpoint"
    if status == 529:
        return f"service overloaded (529): {body}"
    return f"HTTP {status}: {body}"


class ClaudeProvider(BaseLLM):
    """Anthropic Claude LLM provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        base_url: str | None = None,
        timeout: float = 300.0,
        client: anthropic.AsyncAnthropic | None = None,
    ):
        super().__init__(model, timeout)
        self.client = client or anthropic.AsyncAnthropic(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
        )

    @property
    def provider_name(self) -> str:
        return "claude"

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to Anthropic format."""
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.parameters,
            }
            for tool in tools
        ]

    def _parse_response(self, data: dict[str, Any]) -> ProviderResponse:
        """Build a ProviderResponse, dropping block types we don't handle."""
        data = dict(data)
        data["content"] = [
            block for block in data.get("content") or []
            if block.get("type") in _KNOWN_BLOCK_TYPES
        ]
        return ProviderResponse.model_validate(data)

    async def generate(self, request: LLMRequest) -> ProviderResponse:
        """Generate a response from Claude."""
        kwargs: dict[str, Any] = {
            "model": request.model or self.model,
            "max_tokens": request.max_tokens,
            "messages": [m.model_dump(mode="json") for m in request.messages],
        }

        if request.system:
            kwargs["system"] = request.system

        if request.tools:
            kwargs["tools"] = self._convert_tools(request.tools)

        try:
            response = await self.client.messages.create(**kwargs)
        except anthropic.APIStatusError as e:
            logger.error("Anthropic API error", status=e.status_code, error=str(e))
            raise ProviderError(
                describe_status(e.status_code, e.body),
                payload=e.body,
                status_code=e.status_code,
            ) from e
        except anthropic.APIError as e:
            logger.error("Anthropic API error", error=str(e))
            raise ProviderError(f"making API call: {e}") from e

        parsed = self._parse_response(response.model_dump(mode="json"))
        if parsed.error is not None:
            raise ProviderError(
                f"API error [{parsed.error.type}]: {parsed.error.message}",
                payload=parsed.model_dump(mode="json"),
            )
        return parsed

    async def list_models(self) -> list[ModelInfo]:
        """List models from the Anthropic models endpoint."""
        try:
            page = await self.client.models.list(limit=100)
        except anthropic.APIError as e:
            raise ProviderError(f"listing Claude models: {e}") from e

        return [
            ModelInfo(id=m.id, name=m.id, provider=self.provider_name)
            for m in page.data
        ]

    def get_capabilities(self) -> ModelCapabilities:
        return ModelCapabilities(
            provider=self.provider_name,
            supports_tools=True,
            supports_vision=True,
            supports_streaming=True,
            max_context_tokens=200_000,
            recommended_for_tasks=["code", "reasoning", "analysis", "chat"],
        )


def default_claude_models() -> list[ModelInfo]:
    """Hardcoded Claude model list."""
    return [ModelInfo(id=name, name=name, provider="claude") for name in DEFAULT_CLAUDE_MODELS]
