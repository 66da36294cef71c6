"""
LLM module for provider access.

Providers:
- Anthropic Claude (native SDK)
- Ollama (local server over HTTP)
"""

from .base import BaseLLM, LLMRequest, ModelCapabilities, ToolDefinition
from .anthropic import ClaudeProvider
from .ollama import OllamaProvider
from .factory import create_provider, fetch_models, is_claude_model

__all__ = [
    "BaseLLM",
    "LLMRequest",
    "ModelCapabilities",
    "ToolDefinition",
    "ClaudeProvider",
    "OllamaProvider",
    "create_provider",
    "fetch_models",
    "is_claude_model",
]
