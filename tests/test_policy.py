"""
Tests for the tool permission policy.
"""

import pytest

from agent_loop.tools.policy import DEFAULT_RISK_MAP, Permission, PermissionPolicy, RiskLevel


def test_empty_flag_is_dry_run():
    policy = PermissionPolicy.from_flag("")

    assert policy.is_dry_run is True
    assert policy.tools_enabled is True
    assert policy.can_write is False
    assert policy.can_execute is False
    assert str(policy) == "dry-run"


def test_none_disables_tools():
    policy = PermissionPolicy.from_flag("none")

    assert policy.tools_enabled is False


def test_read_only():
    policy = PermissionPolicy.from_flag("read")

    assert policy.allows("read_file") is True
    assert policy.allows("write_file") is False
    assert policy.allows("bash_command") is False


def test_allows_follows_risk_map():
    assert DEFAULT_RISK_MAP["read_file"] == RiskLevel.SAFE
    assert PermissionPolicy.from_flag("").allows("read_file") is True
    assert PermissionPolicy.from_flag("write").allows("write_file") is True
    assert PermissionPolicy.from_flag("write").allows("bash_command") is False
    assert PermissionPolicy.from_flag("command").allows("bash_command") is True
    assert PermissionPolicy.from_flag("write,command").allows("some_future_tool") is False


def test_combined_flags():
    policy = PermissionPolicy.from_flag("write, COMMAND")

    assert policy.permissions == frozenset({Permission.WRITE, Permission.COMMAND})
    assert policy.can_write is True
    assert policy.can_execute is True
    assert str(policy) == "command,write"


def test_all_allows_everything():
    policy = PermissionPolicy.from_flag("all")

    assert policy.can_write is True
    assert policy.can_execute is True
    assert policy.allows("some_future_tool") is True


def test_unknown_permission_rejected():
    with pytest.raises(ValueError, match="unknown tool permission 'delete'"):
        PermissionPolicy.from_flag("read,delete")
