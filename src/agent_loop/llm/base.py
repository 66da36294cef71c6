"""
Base classes for LLM providers.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from ..models import Message, ModelInfo, ProviderResponse


@dataclass
class ToolDefinition:
    """Definition of a tool that the LLM can use."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass
class LLMRequest:
    """All parameters needed for one provider call."""

    model: str
    messages: list[Message]
    tools: list[ToolDefinition] = field(default_factory=list)
    max_tokens: int = 8192
    system: str = ""


@dataclass
class ModelCapabilities:
    """What a provider/model combination can do."""

    provider: str
    supports_tools: bool = False
    supports_vision: bool = False
    supports_streaming: bool = False
    max_context_tokens: int = 0
    recommended_for_tasks: list[str] = field(default_factory=list)


class BaseLLM(ABC):
    """Base class for LLM providers.

    The orchestrator only talks to providers through this interface; concrete
    providers are injected at construction time.
    """

    def __init__(self, model: str, timeout: float = 300.0):
        self.model = model
        self.timeout = timeout

    @abstractmethod
    async def generate(self, request: LLMRequest) -> ProviderResponse:
        """Send one request and return the provider's reply.

        Raises ProviderError on transport failure, non-success status or an
        error payload.
        """
        pass

    @abstractmethod
    async def list_models(self) -> list[ModelInfo]:
        """List models available from this provider."""
        pass

    @abstractmethod
    def get_capabilities(self) -> ModelCapabilities:
        """Describe the capabilities of the configured model."""
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get the provider name."""
        pass
