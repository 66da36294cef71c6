"""
Tests for tools module.
"""

from unittest.mock import MagicMock, patch

import pytest

from agent_loop.errors import StorageError
from agent_loop.models import ToolUseBlock
from agent_loop.storage import ConversationStore
from agent_loop.tools import PermissionPolicy, ToolResult, ToolSandbox
from agent_loop.tools.file_tool import create_file_tools
from agent_loop.tools.shell_tool import create_shell_tools


def make_sandbox(tmp_path, tool_flag="all", **kwargs) -> ToolSandbox:
    return ToolSandbox(
        working_dir=str(tmp_path),
        policy=PermissionPolicy.from_flag(tool_flag),
        show_diff=False,
        **kwargs,
    )


def use(name: str, **tool_input) -> ToolUseBlock:
    return ToolUseBlock(id=f"toolu_{name}", name=name, input=tool_input)


def test_tool_result_defaults():
    """Test failed tool result."""
    result = ToolResult(success=False, error="Something went wrong")

    assert result.output == ""
    assert result.dry_run is False
    assert result.data == {}


def test_tool_definitions():
    """Test converting tools to LLM definitions."""
    tools = {t.name: t for t in create_file_tools() + create_shell_tools()}

    assert set(tools) == {"read_file", "write_file", "bash_command"}
    schema = tools["bash_command"].to_definition().parameters
    assert schema["required"] == ["command", "reason"]
    assert schema["properties"]["command"]["type"] == "string"


def test_definitions_empty_when_tools_disabled(tmp_path):
    assert make_sandbox(tmp_path, "none").get_definitions() == []
    assert len(make_sandbox(tmp_path, "").get_definitions()) == 3


@pytest.mark.asyncio
async def test_read_file(tmp_path):
    (tmp_path / "hello.txt").write_text("hello world")
    sandbox = make_sandbox(tmp_path, "read")

    result = await sandbox.execute(use("read_file", path="hello.txt"))

    assert result.tool_use_id == "toolu_read_file"
    assert result.content == "hello world"
    assert result.is_error is False


@pytest.mark.asyncio
async def test_read_file_outside_project(tmp_path):
    sandbox = make_sandbox(tmp_path)

    result = await sandbox.execute(use("read_file", path="/etc/passwd"))

    assert result.content == "Error: path outside project: /etc/passwd"


@pytest.mark.asyncio
async def test_read_missing_file(tmp_path):
    result = await make_sandbox(tmp_path).execute(use("read_file", path="nope.txt"))

    assert result.is_error is True


@pytest.mark.asyncio
async def test_missing_argument(tmp_path):
    result = await make_sandbox(tmp_path).execute(use("read_file"))

    assert result.content == "Error: path is required"


@pytest.mark.asyncio
async def test_mistyped_argument(tmp_path):
    result = await make_sandbox(tmp_path).execute(use("read_file", path=5))

    assert result.content == "Error: path must be a string"


@pytest.mark.asyncio
async def test_write_file_dry_run(tmp_path):
    sandbox = make_sandbox(tmp_path, "read")

    result = await sandbox.execute(use("write_file", path="out.txt", content="new"))

    assert result.content == "Dry-run: changes not applied. Use --tool=write flag."
    assert not (tmp_path / "out.txt").exists()


@pytest.mark.asyncio
async def test_write_file(tmp_path):
    (tmp_path / "out.txt").write_text("old")
    sandbox = make_sandbox(tmp_path, "write")

    result = await sandbox.execute(use("write_file", path="out.txt", content="new"))

    assert result.content == "Successfully wrote to out.txt"
    assert (tmp_path / "out.txt").read_text() == "new"


@pytest.mark.asyncio
async def test_write_file_to_directory_rejected(tmp_path):
    project = tmp_path / "project"
    project.mkdir()
    sandbox = make_sandbox(project, "write")

    result = await sandbox.execute(use("write_file", path=".", content="x"))

    assert result.content == "Error: . is a directory"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["project"]
    assert list(project.iterdir()) == []


@pytest.mark.asyncio
async def test_dry_run_decided_by_policy_allows(tmp_path):
    sandbox = make_sandbox(tmp_path, "all")

    with patch.object(PermissionPolicy, "allows", return_value=False) as allows:
        write = await sandbox.execute(use("write_file", path="out.txt", content="new"))
        bash = await sandbox.execute(use("bash_command", command="pwd", reason="where"))

    assert write.content.startswith("Dry-run: changes not applied")
    assert bash.content.startswith("Dry-run: would execute command: pwd")
    assert not (tmp_path / "out.txt").exists()
    assert [c.args[0] for c in allows.call_args_list] == ["write_file", "bash_command"]


@pytest.mark.asyncio
async def test_bash_dry_run(tmp_path):
    sandbox = make_sandbox(tmp_path, "read")

    result = await sandbox.execute(use("bash_command", command="ls", reason="look around"))

    assert result.content == (
        "Dry-run: would execute command: ls\n"
        "Reason: look around\n"
        "Use --tool=command or --tool=all to execute"
    )


@pytest.mark.asyncio
async def test_bash_validated_even_in_dry_run(tmp_path):
    sandbox = make_sandbox(tmp_path, "")

    result = await sandbox.execute(use("bash_command", command="ls; rm -rf /", reason="x"))

    assert result.content == "Error: blocked pattern: ;"


@pytest.mark.asyncio
async def test_bash_execution(tmp_path):
    sandbox = make_sandbox(tmp_path, "command")

    result = await sandbox.execute(use("bash_command", command="echo hello", reason="greet"))

    assert result.content.startswith("Exit code: 0\nDuration: ")
    assert "Stdout:\nhello\n" in result.content


@pytest.mark.asyncio
async def test_bash_runs_in_working_dir(tmp_path):
    (tmp_path / "marker.txt").write_text("")
    sandbox = make_sandbox(tmp_path, "command")

    result = await sandbox.execute(use("bash_command", command="ls", reason="list"))

    assert "marker.txt" in result.content


@pytest.mark.asyncio
async def test_bash_nonzero_exit_is_error(tmp_path):
    sandbox = make_sandbox(tmp_path, "all")

    result = await sandbox.execute(
        use("bash_command", command="ls does_not_exist_dir", reason="probe")
    )

    assert result.content.startswith("Error: Exit code: ")
    assert "Exit code: 0" not in result.content


@pytest.mark.asyncio
async def test_bash_timeout_kills_command(tmp_path):
    (tmp_path / "log.txt").write_text("line\n")
    sandbox = make_sandbox(tmp_path, "all", command_timeout=0.5)

    result = await sandbox.execute(use("bash_command", command="tail -f log.txt", reason="follow"))

    assert result.content.startswith("Error: Command timeout after 0.5s\nStdout: ")
    assert "line" in result.content


@pytest.mark.asyncio
async def test_unknown_tool(tmp_path):
    result = await make_sandbox(tmp_path).execute(use("delete_everything"))

    assert result.content == "Error: unknown tool: delete_everything"


@pytest.mark.asyncio
async def test_execute_all_keeps_order(tmp_path):
    (tmp_path / "a.txt").write_text("A")
    (tmp_path / "b.txt").write_text("B")
    sandbox = make_sandbox(tmp_path, "read")
    blocks = [
        ToolUseBlock(id="1", name="read_file", input={"path": "b.txt"}),
        ToolUseBlock(id="2", name="read_file", input={"path": "a.txt"}),
    ]

    results = await sandbox.execute_all(blocks)

    assert [(r.tool_use_id, r.content) for r in results] == [("1", "B"), ("2", "A")]


@pytest.mark.asyncio
async def test_audit_log_written(tmp_path):
    store = ConversationStore(tmp_path / ".claude")
    sandbox = make_sandbox(tmp_path, "read", store=store, turn_id="20250101_120000_000000")

    await sandbox.execute(use("bash_command", command="ls", reason="list"))
    await sandbox.execute(use("read_file", path="/etc/passwd"))

    entries = store.read_audit_log()
    assert [e.tool for e in entries] == ["bash_command", "read_file"]
    assert entries[0].dry_run is True
    assert entries[0].success is True
    assert entries[0].conversation_id == "20250101_120000_000000"
    assert entries[1].success is False
    assert entries[1].error == "path outside project: /etc/passwd"


@pytest.mark.asyncio
async def test_audit_failure_does_not_fail_tool(tmp_path):
    (tmp_path / "a.txt").write_text("A")
    store = MagicMock()
    store.append_audit_log.side_effect = StorageError("read-only filesystem")
    sandbox = make_sandbox(tmp_path, "read", store=store)

    result = await sandbox.execute(use("read_file", path="a.txt"))

    assert result.content == "A"
    store.append_audit_log.assert_called_once()
