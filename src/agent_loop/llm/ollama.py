"""
Ollama LLM provider.

Talks to a local Ollama server over its /api/chat and /api/tags endpoints.
"""

import json
from typing import Any

import httpx
import structlog

from ..errors import ProviderError
from ..models import (
    Message,
    ModelInfo,
    ProviderResponse,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
)
from .base import BaseLLM, LLMRequest, ModelCapabilities, ToolDefinition

logger = structlog.get_logger()

_TOOL_MODEL_FAMILIES = ("llama3.1", "llama3.2", "llama3.3", "qwen2.5", "qwen3", "mistral", "mixtral")
_NO_TOOL_FAMILIES = ("codellama", "deepseek-coder", "embed")

_CONTEXT_SIZES = {
    "llama3.1": 128_000,
    "llama3.2": 128_000,
    "llama3.3": 128_000,
    "qwen2.5": 32_768,
    "qwen3": 32_768,
    "mistral": 32_768,
    "mixtral": 32_768,
    "codellama": 16_384,
    "deepseek-coder": 16_384,
}


class OllamaProvider(BaseLLM):
    """Ollama LLM provider."""

    def __init__(
        self,
        model: str,
        base_url: str = "http://localhost:11434",
        timeout: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(model, timeout)
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    @property
    def provider_name(self) -> str:
        return "ollama"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        )

    def _convert_messages(self, messages: list[Message], system: str) -> list[dict[str, Any]]:
        """Flatten content blocks into Ollama chat messages."""
        converted: list[dict[str, Any]] = []
        if system:
            converted.append({"role": "system", "content": system})

        for msg in messages:
            text = "".join(b.text for b in msg.content if isinstance(b, TextBlock))
            tool_calls = [
                {"function": {"name": b.name, "arguments": b.input}}
                for b in msg.content
                if isinstance(b, ToolUseBlock)
            ]
            results = [b for b in msg.content if isinstance(b, ToolResultBlock)]

            if text or tool_calls or not results:
                entry: dict[str, Any] = {"role": msg.role, "content": text}
                if tool_calls:
                    entry["tool_calls"] = tool_calls
                converted.append(entry)

            for result in results:
                converted.append({"role": "tool", "content": result.content})

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in tools
        ]

    async def generate(self, request: LLMRequest) -> ProviderResponse:
        """Generate a response from the local Ollama server."""
        body: dict[str, Any] = {
            "model": self.model,
            "messages": self._convert_messages(request.messages, request.system),
            "stream": False,
        }
        if request.tools:
            body["tools"] = self._convert_tools(request.tools)

        try:
            async with self._client() as client:
                resp = await client.post("/api/chat", json=body)
        except httpx.HTTPError as e:
            logger.error("Ollama request failed", error=str(e))
            raise ProviderError(f"making API call: {e}") from e

        if resp.status_code != 200:
            raise ProviderError(
                f"API error {resp.status_code}: {resp.text}",
                payload=resp.text,
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except json.JSONDecodeError as e:
            raise ProviderError(f"parsing response: {e}", payload=resp.text) from e

        if "error" in data:
            raise ProviderError(f"API error: {data['error']}", payload=data)

        message = data.get("message") or {}
        tool_calls = message.get("tool_calls") or []

        if tool_calls:
            content = []
            for i, call in enumerate(tool_calls):
                fn = call.get("function") or {}
                name = fn.get("name", "")
                content.append(ToolUseBlock(
                    id=f"call_{i}_{name}",
                    name=name,
                    input=fn.get("arguments") or {},
                ))
            stop_reason = "tool_use"
        else:
            content = [TextBlock(text=message.get("content", ""))]
            stop_reason = "end_turn"

        return ProviderResponse(
            content=content,
            stop_reason=stop_reason,
            model=data.get("model", self.model),
            usage=Usage(
                input_tokens=data.get("prompt_eval_count", 0) or 0,
                output_tokens=data.get("eval_count", 0) or 0,
            ),
        )

    async def list_models(self) -> list[ModelInfo]:
        """List models installed on the Ollama server."""
        try:
            async with self._client() as client:
                resp = await client.get("/api/tags")
        except httpx.HTTPError as e:
            raise ProviderError(f"making API call: {e}") from e

        if resp.status_code != 200:
            raise ProviderError(f"API error {resp.status_code}: {resp.text}", status_code=resp.status_code)

        return [
            ModelInfo(id=m["name"], name=m["name"], provider=self.provider_name)
            for m in resp.json().get("models", [])
        ]

    def get_capabilities(self) -> ModelCapabilities:
        """Infer capabilities from the model name."""
        name = self.model.lower()

        if "embed" in name:
            tasks = ["embeddings"]
        elif "code" in name:
            tasks = ["code", "programming"]
        else:
            tasks = ["chat"]

        supports_tools = (
            any(family in name for family in _TOOL_MODEL_FAMILIES)
            and not any(family in name for family in _NO_TOOL_FAMILIES)
        )

        context = 8192
        for family, size in _CONTEXT_SIZES.items():
            if family in name:
                context = size
                break

        return ModelCapabilities(
            provider=self.provider_name,
            supports_tools=supports_tools,
            supports_vision="llava" in name or "vision" in name,
            supports_streaming=True,
            max_context_tokens=context,
            recommended_for_tasks=tasks,
        )
