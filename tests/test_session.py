"""
Tests for session setup and teardown.
"""

import os
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from agent_loop.agent.session import (
    SessionManager,
    estimate_tokens,
    format_models,
    select_model,
    select_system_prompt,
    stats_report,
    truncate_history,
)
from agent_loop.config import DEFAULT_SYSTEM_PROMPT, Settings
from agent_loop.errors import AgentLoopError
from agent_loop.models import Message, ModelInfo, ModelsCache, ProviderResponse, RunStats, TextBlock, Usage
from agent_loop.storage import ConversationStore


@pytest.fixture
def settings(tmp_path):
    with patch.dict(os.environ, {}, clear=True):
        yield Settings(_env_file=None, conversation_dir=str(tmp_path), tool="read")


@pytest.fixture
def mock_llm():
    llm = MagicMock()
    llm.generate = AsyncMock(return_value=ProviderResponse(
        content=[TextBlock(text="Hi there!")],
        stop_reason="end_turn",
        usage=Usage(input_tokens=120, output_tokens=30),
    ))
    return llm


def test_select_model_priority():
    assert select_model("flag-model", "config-model", "default") == "flag-model"
    assert select_model(None, "config-model", "default") == "config-model"
    assert select_model(None, "", "default") == "default"


def test_select_system_prompt_priority():
    assert select_system_prompt("flag", "env", "config") == "flag"
    assert select_system_prompt(None, "env", "config") == "env"
    assert select_system_prompt(None, "", "config") == "config"
    assert select_system_prompt(None, "", None) == DEFAULT_SYSTEM_PROMPT


def test_estimate_tokens_counts_text_only():
    messages = [Message.user_text("a" * 400), Message.user_text("b" * 40)]
    assert estimate_tokens(messages) == 110


def test_truncate_history():
    messages = [Message.user_text(str(i)) for i in range(10)]

    assert truncate_history(messages, 0) == messages
    assert [m.first_text() for m in truncate_history(messages, 3)] == ["7", "8", "9"]


@pytest.mark.asyncio
async def test_run_updates_stats(settings, mock_llm, tmp_path):
    session = SessionManager(settings, provider=mock_llm, working_dir=str(tmp_path))

    result = await session.run("Hello")

    assert result.text == "Hi there!"
    stats = session.store.load_stats()
    assert stats.model == settings.default_model
    assert (stats.total_input, stats.total_output) == (120, 30)
    assert stats.first_run == stats.last_run == result.turn_id


@pytest.mark.asyncio
async def test_stats_accumulate_across_runs(settings, mock_llm, tmp_path):
    first = await SessionManager(settings, provider=mock_llm, working_dir=str(tmp_path)).run("one")
    second = await SessionManager(settings, provider=mock_llm, working_dir=str(tmp_path)).run("two")

    stats = ConversationStore(settings.claude_dir).load_stats()
    assert stats.total_input == 240
    assert stats.first_run == first.turn_id
    assert stats.last_run == second.turn_id


def test_model_from_config_json(settings, mock_llm):
    store = ConversationStore(settings.claude_dir)
    store.save_stats(RunStats(model="llama3.2", system_prompt="From config."))

    session = SessionManager(settings, provider=mock_llm)

    assert session.model == "llama3.2"
    assert session.system_prompt == "From config."
    assert SessionManager(settings, model="claude-opus-4", provider=mock_llm).model == "claude-opus-4"


def test_unknown_tool_flag(settings, mock_llm):
    with pytest.raises(AgentLoopError, match="unknown tool permission"):
        SessionManager(settings.model_copy(update={"tool": "everything"}), provider=mock_llm)


def test_history_too_large(settings, mock_llm):
    store = ConversationStore(settings.claude_dir)
    turn_id = store.new_turn_id()
    store.save_request(turn_id, [Message.user_text("x" * 4000)])
    store.save_response(turn_id, [ProviderResponse(content=[TextBlock(text="ok")], stop_reason="end_turn")])

    session = SessionManager(settings.model_copy(update={"max_context_tokens": 100}), provider=mock_llm)

    with pytest.raises(AgentLoopError, match="conversation too large"):
        session.load_history()


def test_provider_created_lazily(settings):
    session = SessionManager(settings.model_copy(update={"anthropic_api_key": ""}))

    assert session._provider is None


def test_stats_report(tmp_path):
    store = ConversationStore(tmp_path / ".claude")
    stats = RunStats(model="claude-sonnet-4-20250514")
    stats.record_run("20250101_000000_000000", 1_000_000, 0)
    store.save_stats(stats)

    report = stats_report(store)

    assert "Total tokens: 1000000 in, 0 out" in report
    assert "Approximate cost: $3.0000" in report
    assert "Conversation turns: 0" in report


def test_format_models():
    cache = ModelsCache(
        last_updated=datetime(2025, 1, 1, tzinfo=timezone.utc),
        models=[
            ModelInfo(name="claude-sonnet-4-20250514", provider="claude"),
            ModelInfo(name="llama3.2", provider="ollama"),
        ],
    )

    text = format_models(cache)

    assert "updated 2025-01-01 00:00:00 UTC" in text
    assert "claude:\n  claude-sonnet-4-20250514" in text
    assert "ollama:\n  llama3.2" in text
