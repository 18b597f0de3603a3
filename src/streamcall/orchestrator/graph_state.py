from __future__ import annotations

import operator
from typing import Annotated, Any
from typing_extensions import TypedDict

from ..core.types import Mode, Plan, ToolCall, ToolResult
from .events import ToolCallEvent, TurnReport


class TurnState(TypedDict, total=False):
    # Input
    raw_text: str
    mode: Mode
    editor_context: Any

    # Idempotence gate
    response_hash: str
    duplicate: bool

    # Decode
    display_text: str
    tool_calls: list[ToolCall]
    contract_status: str
    contract_error: str | None
    plan: Plan | None

    # Registry admission
    new_calls: list[ToolCall]
    replayed_calls: list[ToolCall]

    # Execution
    tool_results: list[ToolResult]
    events: Annotated[list[ToolCallEvent], operator.add]

    # Outcome
    summary: str
    corrective: bool
    correction_limit_hit: bool
    report: TurnReport
