from __future__ import annotations

from streamcall.parsing import (
    detect_partial_tool_call,
    has_complete_tool_calls,
    parse_tool_calls,
    strip_tool_calls,
)


def test_bare_call_after_prose() -> None:
    text = 'Reading code.\n{"tool":"get_code","params":{}}'

    calls = parse_tool_calls(text)

    assert len(calls) == 1
    assert calls[0].tool_name == "get_code"
    assert calls[0].params == {}
    assert strip_tool_calls(text, calls) == "Reading code."


def test_nested_braces_in_string_param() -> None:
    text = 'Adding it.\n{"tool": "insert_code", "params": {"code": "define F: { 1 }"}}\nDone.'

    calls = parse_tool_calls(text)

    assert [c.params for c in calls] == [{"code": "define F: { 1 }"}]
    assert strip_tool_calls(text, calls) == "Adding it.\n\nDone."


def test_fenced_and_inline_encodings() -> None:
    text = (
        "First search.\n"
        "```tool:search_code\n"
        '{"query": "define"}\n'
        "```\n"
        "Then the cursor: <tool_call tool=\"get_cursor_position\" params='{}' />"
    )

    calls = parse_tool_calls(text)

    assert [c.tool_name for c in calls] == ["search_code", "get_cursor_position"]
    assert calls[0].params == {"query": "define"}


def test_encodings_merge_in_text_order_and_dedupe() -> None:
    text = (
        "```tool:get_code\n{}\n```\n"
        '{"tool": "list_libraries", "params": {}}\n'
        '{"tool": "get_code", "params": {}}'
    )

    calls = parse_tool_calls(text)

    assert [c.tool_name for c in calls] == ["get_code", "list_libraries"]


def test_permuted_params_are_one_call() -> None:
    text = (
        '{"tool": "replace_code", "params": {"code": "x", "startLine": 1}}\n'
        '{"tool": "replace_code", "params": {"startLine": 1, "code": "x"}}'
    )

    assert len(parse_tool_calls(text)) == 1


def test_incomplete_call_is_not_parsed() -> None:
    text = 'Working on it {"tool": "insert_code", "params": {"code": "defi'

    assert parse_tool_calls(text) == []
    assert has_complete_tool_calls(text) is False

    partial = detect_partial_tool_call(text)
    assert partial is not None
    assert partial.tool_name == "insert_code"
    assert partial.is_complete is False


def test_malformed_call_is_skipped() -> None:
    text = '{"tool": "get_code", "params": {oops}} and {"tool": "get_selection", "params": {}}'

    calls = parse_tool_calls(text)

    assert [c.tool_name for c in calls] == ["get_selection"]


def test_literal_newlines_in_code_are_repaired() -> None:
    text = '{"tool": "insert_code", "params": {"code": "define A: 1\ndefine B: 2"}}'

    calls = parse_tool_calls(text)

    assert calls[0].params["code"] == "define A: 1\ndefine B: 2"


def test_wrong_shape_is_ignored() -> None:
    assert parse_tool_calls('{"tool": "get_code", "params": "nope"}') == []
    assert parse_tool_calls("") == []
    assert has_complete_tool_calls('{"tool": "get_code", "params": {}}') is True
