from __future__ import annotations

import pytest

from streamcall.core.errors import ValidationError
from streamcall.tools import CapabilityPolicy, ToolCatalog, ToolSpec


def _policy() -> CapabilityPolicy:
    return CapabilityPolicy(ToolCatalog.default(plan_safe=["read_file"], plan_blocked=["write_file"]))


def test_act_mode_is_unrestricted() -> None:
    policy = _policy()

    assert policy.validate("insert_code", "act").allowed is True
    assert policy.validate("no_such_tool", "act").allowed is True


def test_plan_mode_allows_read_only_tools() -> None:
    policy = _policy()

    assert policy.validate("get_code", "plan").allowed is True
    assert policy.validate("search_code", "plan").allowed is True
    assert policy.validate("read_file", "plan").allowed is True


def test_plan_mode_blocks_modification_tools() -> None:
    policy = _policy()

    decision = policy.validate("insert_code", "plan")

    assert decision.allowed is False
    assert decision.reason is not None
    assert "insert_code" in decision.reason
    assert "Plan Mode" in decision.reason
    assert policy.validate("write_file", "plan").allowed is False


def test_plan_mode_blocks_unknown_and_undeclared_tools() -> None:
    catalog = ToolCatalog.default()
    catalog.register(ToolSpec("mystery", source="remote"))
    policy = CapabilityPolicy(catalog)

    assert policy.validate("mystery", "plan").allowed is False
    assert policy.validate("never_heard_of", "plan").allowed is False
    assert "mystery" in policy.plan_blocked
    assert "get_code" in policy.plan_allowed


def test_check_raises_validation_error() -> None:
    with pytest.raises(ValidationError) as ei:
        _policy().check("format_code", "plan")

    assert ei.value.tool_name == "format_code"


def test_discovery_keeps_configured_safety() -> None:
    catalog = ToolCatalog.default(plan_safe=["read_file"])
    catalog.register(ToolSpec("read_file", description="Read a file", source="mcp:files"))

    spec = catalog.get("read_file")
    assert spec is not None
    assert spec.plan_safe is True
    assert spec.description == "Read a file"


def test_status_messages_cover_builtins() -> None:
    messages = ToolCatalog.default().status_messages()

    assert messages["get_code"] == "Reading code..."
    assert "read_file" not in messages


def test_clipboard_and_cql_tools_follow_plan_safety() -> None:
    policy = _policy()

    assert policy.validate("list_clipboard", "plan").allowed is True
    for name in ("add_to_clipboard", "remove_from_clipboard", "clear_clipboard", "validate_cql", "format_cql"):
        assert policy.validate(name, "plan").allowed is False
        assert policy.validate(name, "act").allowed is True

    messages = ToolCatalog.default().status_messages()
    assert messages["list_clipboard"] == "Listing clipboard..."
    assert messages["add_to_clipboard"] == "Adding to clipboard..."
