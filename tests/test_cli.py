"""
Tests for the command-line interface.
"""

import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from agent_loop.agent.core import TurnResult
from agent_loop.cli import build_parser, main, run, settings_from_args, write_output
from agent_loop.config import Settings
from agent_loop.models import Message, ProviderResponse, TextBlock
from agent_loop.storage import ConversationStore


@pytest.fixture
def base_settings():
    with patch.dict(os.environ, {}, clear=True):
        yield Settings(_env_file=None)


def test_flags_override_settings(base_settings, tmp_path):
    args = build_parser().parse_args([
        "--max-cost", "0",
        "--max-iterations", "3",
        "--tool", "Write,Command",
        "--output", "json",
        "--resume-dir", str(tmp_path),
        "--verbosity", "debug",
    ])

    settings = settings_from_args(args, base_settings)

    assert settings.max_cost == 0
    assert settings.max_iterations == 3
    assert settings.tool == "write,command"
    assert settings.wants_json is True
    assert settings.claude_dir == tmp_path / ".claude"
    assert settings.effective_log_level == "DEBUG"
    assert settings.max_tokens == base_settings.max_tokens


def test_replay_flag_optional_id():
    parser = build_parser()

    assert parser.parse_args([]).replay is None
    assert parser.parse_args(["--replay"]).replay == ""
    assert parser.parse_args(["--replay", "20250101_000000"]).replay == "20250101_000000"


def test_modes_are_exclusive():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--stats", "--reset"])


def test_write_output_to_file(base_settings, tmp_path):
    target = tmp_path / "answer.txt"
    settings = base_settings.model_copy(update={"output_file": str(target)})

    write_output(settings, "the answer")

    assert target.read_text() == "the answer"


@pytest.mark.asyncio
async def test_prune_mode(base_settings, tmp_path, capsys):
    settings = base_settings.model_copy(update={"conversation_dir": str(tmp_path)})
    store = ConversationStore(settings.claude_dir)
    for i in range(3):
        turn_id = store.new_turn_id()
        store.save_request(turn_id, [Message.user_text(str(i))])
        store.save_response(turn_id, [ProviderResponse(content=[TextBlock(text="ok")], stop_reason="end_turn")])

    await run(build_parser().parse_args(["--prune-old", "1"]), settings)

    assert "Pruned 2 turns" in capsys.readouterr().err
    assert len(store.list_complete_pairs()) == 1


@pytest.mark.asyncio
async def test_reset_mode(base_settings, tmp_path):
    settings = base_settings.model_copy(update={"conversation_dir": str(tmp_path)})
    settings.claude_dir.mkdir()

    await run(build_parser().parse_args(["--reset"]), settings)

    assert not settings.claude_dir.exists()


@pytest.mark.asyncio
async def test_json_output_is_final_response(base_settings, tmp_path, capsys):
    settings = base_settings.model_copy(update={"conversation_dir": str(tmp_path), "output": "json"})
    final = ProviderResponse(id="msg_1", content=[TextBlock(text="done")], stop_reason="end_turn")
    session = MagicMock()
    session.resume = AsyncMock(return_value=TurnResult(turn_id="t", text="done", responses=[final]))

    with patch("agent_loop.cli.SessionManager", return_value=session):
        await run(build_parser().parse_args(["--execute"]), settings)

    out = capsys.readouterr().out
    assert ProviderResponse.model_validate_json(out).id == "msg_1"


def test_errors_exit_nonzero(tmp_path, capsys):
    with patch.dict(os.environ, {}, clear=True):
        with pytest.raises(SystemExit) as exc:
            main(["--prune-old", "0", "--resume-dir", str(tmp_path)])

    assert exc.value.code == 1
    assert capsys.readouterr().err.startswith("Error: --prune-old needs a positive count")
