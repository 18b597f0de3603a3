from __future__ import annotations

import json

from streamcall.parsing import parse_plan, strip_plan


def _plan_payload(n: int, **extra: object) -> str:
    steps = [{"number": i + 1, "description": f"step {i + 1}"} for i in range(n)]
    return json.dumps({"plan": {"description": "X", "steps": steps}, **extra})


def test_plan_is_truncated_to_twelve_steps() -> None:
    parsed = parse_plan(_plan_payload(16))

    assert parsed is not None
    assert parsed.plan.description == "X"
    assert len(parsed.plan.steps) == 12
    assert [s.number for s in parsed.plan.steps] == list(range(1, 13))
    assert all(s.status == "pending" for s in parsed.plan.steps)


def test_structured_plan_display_is_its_comment() -> None:
    text = _plan_payload(2, comment="Here is the plan.")

    parsed = parse_plan(text)

    assert parsed is not None
    assert parsed.structured is True
    assert strip_plan(text, parsed) == "Here is the plan."


def test_structured_plan_without_comment_has_empty_display() -> None:
    text = _plan_payload(2)

    parsed = parse_plan(text)

    assert parsed is not None
    assert strip_plan(text, parsed) == ""


def test_fenced_plan_inside_prose() -> None:
    text = (
        "After reading the library, here is my plan.\n\n"
        "```json\n" + _plan_payload(3) + "\n```\n\n"
        "Click Execute to start."
    )

    parsed = parse_plan(text)

    assert parsed is not None
    assert len(parsed.plan.steps) == 3
    display = strip_plan(text, parsed)
    assert "```" not in display
    assert display.startswith("After reading the library")
    assert display.endswith("Click Execute to start.")


def test_inline_plan_object() -> None:
    text = 'Plan: {"plan": {"description": "Fix {braces}", "steps": [{"description": "a"}, {"description": "b"}]}} ok'

    parsed = parse_plan(text)

    assert parsed is not None
    assert parsed.plan.description == "Fix {braces}"
    # Missing numbers default to the position.
    assert [s.number for s in parsed.plan.steps] == [1, 2]


def test_max_steps_is_capped_at_twelve() -> None:
    parsed = parse_plan(_plan_payload(20), max_steps=50)

    assert parsed is not None
    assert len(parsed.plan.steps) == 12


def test_no_plan() -> None:
    assert parse_plan("") is None
    assert parse_plan("Just prose.") is None
    assert parse_plan('{"plan": {"description": "x", "steps": "none"}}') is None
    assert parse_plan('{"comment": "x", "next_action": "final"}') is None
