"""
LLM factory for creating provider instances.

Provider routing is by model name:
- claude-* -> ClaudeProvider (native Anthropic SDK)
- anything else -> OllamaProvider (local Ollama server)
"""

from datetime import datetime, timezone

import structlog

from ..config import Settings
from ..errors import ProviderError
from ..models import ModelInfo, ModelsCache
from .anthropic import ClaudeProvider, default_claude_models
from .base import BaseLLM
from .ollama import OllamaProvider

logger = structlog.get_logger()


def is_claude_model(model: str) -> bool:
    return model.startswith("claude-")


def create_provider(model: str, settings: Settings) -> BaseLLM:
    """Create a provider instance for the given model."""
    if is_claude_model(model):
        if not settings.anthropic_api_key:
            raise ProviderError("ANTHROPIC_API_KEY not set")
        return ClaudeProvider(
            api_key=settings.anthropic_api_key,
            model=model,
            base_url=settings.anthropic_base_url,
            timeout=settings.timeout_seconds,
        )
    return OllamaProvider(
        model=model,
        base_url=settings.ollama_url,
        timeout=settings.timeout_seconds,
    )


async def fetch_models(settings: Settings) -> ModelsCache:
    """Query Claude and Ollama for available models.

    Failures are non-fatal: Claude falls back to a built-in list and an
    unreachable Ollama server simply contributes no models.
    """
    models: list[ModelInfo] = []

    if settings.anthropic_api_key:
        claude = ClaudeProvider(
            api_key=settings.anthropic_api_key,
            base_url=settings.anthropic_base_url,
            timeout=settings.timeout_seconds,
        )
        try:
            models.extend(await claude.list_models())
        except ProviderError as e:
            logger.warning("Couldn't fetch Claude models", error=str(e))
            models.extend(default_claude_models())
    else:
        models.extend(default_claude_models())

    ollama = OllamaProvider(model="", base_url=settings.ollama_url, timeout=settings.timeout_seconds)
    try:
        models.extend(await ollama.list_models())
    except ProviderError as e:
        logger.warning("Couldn't fetch Ollama models", error=str(e))

    models.sort(key=lambda m: (m.provider, m.name))
    return ModelsCache(last_updated=datetime.now(timezone.utc), models=models)
