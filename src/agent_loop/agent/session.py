"""
Session management: everything that happens around a turn.

A session picks the model and system prompt, loads and trims the stored
history, wires provider, sandbox and budget into an orchestrator, and
folds the finished turn into the conversation's config.json.
"""

import os
from datetime import timezone

import structlog

from ..config import DEFAULT_SYSTEM_PROMPT, Settings
from ..errors import AgentLoopError
from ..llm import BaseLLM, create_provider, fetch_models
from ..models import Message, ModelsCache, TextBlock
from ..storage import ConversationStore
from ..tools import PermissionPolicy, ToolSandbox
from .budget import BudgetGuard, get_model_pricing, iteration_cost
from .core import SessionOrchestrator, TurnResult, replay_turn

logger = structlog.get_logger()

# Rough estimate used for the pre-flight context check
CHARS_PER_TOKEN = 4


def select_model(flag_model: str | None, config_model: str, default_model: str) -> str:
    return flag_model or config_model or default_model


def select_system_prompt(flag_prompt: str | None, env_prompt: str, config_prompt: str | None) -> str:
    """Flag, then environment, then config.json, then the built-in prompt."""
    return flag_prompt or env_prompt or config_prompt or DEFAULT_SYSTEM_PROMPT


def estimate_tokens(messages: list[Message]) -> int:
    """Estimate token count from the text blocks of a message list."""
    total = 0
    for message in messages:
        for block in message.content:
            if isinstance(block, TextBlock):
                total += len(block.text) // CHARS_PER_TOKEN
    return total


def truncate_history(messages: list[Message], keep: int) -> list[Message]:
    if keep > 0 and len(messages) > keep:
        return messages[-keep:]
    return messages


class SessionManager:
    """Owns the per-run setup and teardown of a conversation."""

    def __init__(
        self,
        settings: Settings,
        model: str | None = None,
        system_prompt: str | None = None,
        provider: BaseLLM | None = None,
        store: ConversationStore | None = None,
        working_dir: str | None = None,
    ):
        self.settings = settings
        self.store = store or ConversationStore(settings.claude_dir)
        self.stats = self.store.load_stats()

        self.model = select_model(model, self.stats.model, settings.default_model)
        self.stats.model = self.model
        self.system_prompt = select_system_prompt(
            system_prompt, settings.agent_system_prompt, self.stats.system_prompt
        )

        try:
            self.policy = PermissionPolicy.from_flag(settings.tool)
        except ValueError as e:
            raise AgentLoopError(str(e)) from e

        self.working_dir = working_dir or os.getcwd()
        self.sandbox = ToolSandbox(
            working_dir=self.working_dir,
            policy=self.policy,
            store=self.store,
            show_diff=settings.verbosity != "silent",
            command_timeout=settings.command_timeout_seconds,
        )
        self._provider = provider

        logger.info(
            "Session initialized",
            directory=str(self.store.directory),
            model=self.model,
            tools=str(self.policy),
        )

    @property
    def provider(self) -> BaseLLM:
        """Provider for the selected model, created on first use."""
        if self._provider is None:
            self._provider = create_provider(self.model, self.settings)
        return self._provider

    def check_model(self) -> None:
        """Warn when the model is missing from a cached model listing."""
        cache = self.store.load_models_cache()
        if cache is not None and not cache.has_model(self.model):
            logger.warning(
                "Model not in cache (run --models-refresh to update)",
                model=self.model,
            )

    def load_history(self) -> list[Message]:
        """Stored history, truncated and checked against the context limit."""
        messages = self.store.load_history()
        logger.info("Loaded history", messages=len(messages))

        truncated = truncate_history(messages, self.settings.truncate)
        if len(truncated) != len(messages):
            logger.info("Truncating history", before=len(messages), after=len(truncated))

        estimated = estimate_tokens(truncated)
        if estimated > self.settings.max_context_tokens:
            raise AgentLoopError(
                f"conversation too large ({estimated} tokens, max {self.settings.max_context_tokens})\n"
                "Options:\n"
                "  agent-loop --reset           # start fresh\n"
                "  agent-loop --truncate N      # keep last N messages"
            )
        return truncated

    def orchestrator(self) -> SessionOrchestrator:
        return SessionOrchestrator(
            provider=self.provider,
            store=self.store,
            sandbox=self.sandbox,
            budget=BudgetGuard.for_model(
                self.model, self.settings.max_cost, self.settings.max_iterations
            ),
            model=self.model,
            system_prompt=self.system_prompt,
            max_tokens=self.settings.max_tokens,
            wants_json=self.settings.wants_json,
        )

    async def run(self, user_msg: str) -> TurnResult:
        """Run one turn for a new user message."""
        self.check_model()
        history = self.load_history()
        result = await self.orchestrator().run_turn(user_msg, history=history)
        self.finalize(result)
        return result

    async def resume(self) -> TurnResult:
        """Re-run the newest stored user message."""
        self.check_model()
        history = self.load_history()
        result = await self.orchestrator().resume_last(history=history)
        self.finalize(result)
        return result

    async def replay(self, turn_id: str | None = None) -> int:
        return await replay_turn(self.store, self.sandbox, turn_id)

    def finalize(self, result: TurnResult) -> None:
        """Fold a finished turn into config.json."""
        self.stats.record_run(result.turn_id, result.input_tokens, result.output_tokens)
        self.store.save_stats(self.stats)
        logger.info(
            "Turn finished",
            turn_id=result.turn_id,
            iterations=result.iterations,
            cost=round(result.cost, 6),
        )


def stats_report(store: ConversationStore) -> str:
    """Human readable summary of a conversation directory."""
    stats = store.load_stats()
    pairs = store.list_complete_pairs()
    cost = iteration_cost(stats.total_input, stats.total_output, get_model_pricing(stats.model))
    return "\n".join([
        f"Project: {store.directory}",
        f"Model: {stats.model}",
        f"Total tokens: {stats.total_input} in, {stats.total_output} out",
        f"Approximate cost: ${cost:.4f}",
        f"Conversation turns: {len(pairs)}",
        f"First run: {stats.first_run}",
        f"Last run: {stats.last_run}",
    ])


async def refresh_models(settings: Settings, store: ConversationStore) -> ModelsCache:
    """Query providers and rewrite models.json."""
    cache = await fetch_models(settings)
    store.save_models_cache(cache)
    logger.info("Models cache refreshed", models=len(cache.models))
    return cache


async def list_models(settings: Settings, store: ConversationStore) -> ModelsCache:
    """Cached model listing, refreshed when missing."""
    cache = store.load_models_cache()
    if cache is None:
        cache = await refresh_models(settings, store)
    return cache


def format_models(cache: ModelsCache) -> str:
    updated = cache.last_updated.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    lines = [f"Available models (updated {updated}):"]
    provider = None
    for model in cache.models:
        if model.provider != provider:
            provider = model.provider
            lines.append(f"\n{provider}:")
        lines.append(f"  {model.name}")
    return "\n".join(lines)
