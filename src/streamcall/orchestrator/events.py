from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from ..core.types import Mode, Plan, ToolCall, ToolResult


@dataclass(frozen=True, slots=True)
class ConversationContext:
    """What the caller knows about the conversation a turn belongs to."""

    # When set, must match the orchestrator's conversation or the turn is rejected.
    conversation_id: str | None = None
    mode: Mode = "act"
    # Opaque editor state handed back with a continuation.
    editor_context: Any = None


@dataclass(frozen=True, slots=True)
class ToolCallEvent:
    call: ToolCall
    call_key: str
    status: Literal["executed", "replayed", "failed"]
    result: ToolResult | None = None


@dataclass(frozen=True, slots=True)
class Done:
    kind: Literal["done"] = "done"


@dataclass(frozen=True, slots=True)
class StartContinuation:
    """Resume the model with `summary` as injected context.

    `corrective` marks a contract correction: nothing ran, so the caller should
    count it as a step without progress.
    """

    editor_context: Any
    summary: str
    corrective: bool = False
    kind: Literal["start_continuation"] = "start_continuation"


Outcome = Done | StartContinuation


@dataclass(frozen=True, slots=True)
class TurnReport:
    display_text: str
    outcome: Outcome
    tool_call_events: list[ToolCallEvent] = field(default_factory=list)
    plan_update: Plan | None = None
    contract_error: str | None = None
    # False when the turn made no progress (no-op replay or a contract correction).
    progress: bool = True

    @property
    def is_done(self) -> bool:
        return isinstance(self.outcome, Done)
