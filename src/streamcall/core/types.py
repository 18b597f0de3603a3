from __future__ import annotations

import json
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

Mode = Literal["plan", "act"]
StepStatus = Literal["pending", "in-progress", "completed", "failed"]

MAX_PLAN_STEPS = 12


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A tool invocation decoded from model text (stable across encodings)."""

    tool_name: str
    params: dict[str, Any]
    raw_text: str = ""


@dataclass(frozen=True, slots=True)
class ToolResult:
    tool_name: str
    success: bool
    result: Any = None
    error: str | None = None


def canonical_json(value: Any) -> str:
    """Serialize with keys sorted at every depth and compact separators."""

    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=repr)


def call_key(call: ToolCall) -> str:
    """Deterministic identity of a call: tool name plus canonical params.

    Two calls that differ only in parameter key order share a key. Malformed
    (non-object) params are serialized as-is so they never collide with a
    well-formed call.
    """

    return f"{call.tool_name}:{canonical_json(call.params)}"


def _new_id(prefix: str) -> str:
    return f"{prefix}_{secrets.token_hex(6)}"


@dataclass(slots=True)
class PlanStep:
    number: int
    description: str
    status: StepStatus = "pending"
    id: str = field(default_factory=lambda: _new_id("step"))
    call_key: str | None = None


@dataclass(slots=True)
class Plan:
    description: str
    steps: list[PlanStep]
    id: str = field(default_factory=lambda: _new_id("plan"))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def step(self, step_id: str) -> PlanStep | None:
        for s in self.steps:
            if s.id == step_id:
                return s
        return None
