"""Plan payloads emitted in investigation (plan) mode.

    {"plan": {"description": "...", "steps": [{"number": 1, "description": "..."}, ...]}}

The payload may be the whole response (optionally with a "comment" key),
sit in a fenced ```json block, or appear inline in free text.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ..core.errors import ParseError, ParseIncomplete
from ..core.types import MAX_PLAN_STEPS, Plan, PlanStep
from ..observability.logging import get_logger
from .json_scan import decode_object_at

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```")
_PLAN_START = re.compile(r'\{\s*"plan"\s*:')

_log = get_logger("streamcall.parser")


class _StepPayload(BaseModel):
    number: int | None = None
    description: str = ""


class _PlanPayload(BaseModel):
    description: str = ""
    steps: list[_StepPayload] = Field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ParsedPlan:
    plan: Plan
    raw_text: str
    comment: str = ""
    # True when the whole response was the JSON payload.
    structured: bool = False


def _build(value: Any, *, max_steps: int) -> Plan | None:
    if not isinstance(value, dict):
        return None
    body = value.get("plan")
    if not isinstance(body, dict) or not isinstance(body.get("steps"), list):
        return None
    try:
        payload = _PlanPayload.model_validate(body)
    except PydanticValidationError as e:
        _log.warning("plan_invalid_shape", error=str(e))
        return None

    steps = [
        PlanStep(number=s.number or index + 1, description=s.description)
        for index, s in enumerate(payload.steps[:max_steps])
    ]
    if len(payload.steps) > max_steps:
        _log.info("plan_steps_truncated", requested=len(payload.steps), kept=max_steps)
    return Plan(description=payload.description, steps=steps)


def parse_plan(text: str, *, max_steps: int = MAX_PLAN_STEPS) -> ParsedPlan | None:
    if not text or not text.strip():
        return None
    max_steps = max(1, min(int(max_steps), MAX_PLAN_STEPS))

    trimmed = text.strip()
    if trimmed.startswith("{"):
        try:
            whole = json.loads(trimmed)
        except json.JSONDecodeError:
            whole = None
        plan = _build(whole, max_steps=max_steps)
        if plan is not None:
            comment = whole.get("comment") if isinstance(whole.get("comment"), str) else ""
            return ParsedPlan(plan=plan, raw_text=trimmed, comment=comment, structured=True)

    for m in _FENCED_JSON.finditer(text):
        if '"plan"' not in m.group(1):
            continue
        try:
            value = json.loads(m.group(1))
        except json.JSONDecodeError as e:
            _log.warning("plan_undecodable", encoding="fenced", error=e.msg)
            continue
        plan = _build(value, max_steps=max_steps)
        if plan is not None:
            return ParsedPlan(plan=plan, raw_text=m.group(0))

    for m in _PLAN_START.finditer(text):
        try:
            raw, value = decode_object_at(text, m.start())
        except ParseIncomplete:
            continue
        except ParseError as e:
            _log.warning("plan_undecodable", encoding="inline", error=str(e))
            continue
        plan = _build(value, max_steps=max_steps)
        if plan is not None:
            return ParsedPlan(plan=plan, raw_text=raw)

    return None


def strip_plan(text: str, parsed: ParsedPlan) -> str:
    """Display text for a response that carried a plan payload."""

    if parsed.structured:
        return parsed.comment.strip()
    return text.replace(parsed.raw_text, "", 1).strip()
