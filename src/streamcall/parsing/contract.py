"""Structured response contract used in schema-constrained (act) mode.

    {"comment": "...", "next_action": "tool" | "final", "tool_call": {"tool": "...", "params": {...}}}

Parsing has three outcomes: `valid`, `invalid` (looks like the contract but
breaks it, so the model must be corrected) and `not_structured` (something
else entirely, so callers fall back to the free-text decoder).
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, StrictStr, model_validator
from pydantic import ValidationError as PydanticValidationError

from ..core.errors import ContractViolation
from ..core.types import ToolCall

ContractStatus = Literal["valid", "invalid", "not_structured"]

CONTRACT_KEYS = frozenset({"comment", "next_action", "tool_call"})


class ContractToolCall(BaseModel):
    tool: StrictStr
    params: dict[str, Any]


class ActResponse(BaseModel):
    comment: StrictStr
    next_action: Literal["tool", "final"]
    tool_call: ContractToolCall | None = None

    @model_validator(mode="before")
    @classmethod
    def _reject_null_tool_call(cls, data: Any) -> Any:
        if isinstance(data, dict) and "tool_call" in data and data["tool_call"] is None:
            raise ValueError('"tool_call" must be an object when present.')
        return data

    @model_validator(mode="after")
    def _check_action(self) -> "ActResponse":
        if self.next_action == "tool" and self.tool_call is None:
            raise ValueError('"tool_call" is required when next_action is "tool".')
        if self.next_action == "final" and self.tool_call is not None:
            raise ValueError('"tool_call" is not allowed when next_action is "final".')
        return self

    def to_tool_call(self) -> ToolCall | None:
        if self.tool_call is None:
            return None
        raw = json.dumps({"tool": self.tool_call.tool, "params": self.tool_call.params}, ensure_ascii=False)
        return ToolCall(tool_name=self.tool_call.tool, params=dict(self.tool_call.params), raw_text=raw)

    def display_text(self) -> str:
        comment = self.comment.strip()
        tool_line = f"[Tool: {self.tool_call.tool}]" if self.tool_call is not None else ""
        if comment and tool_line:
            return f"{comment}\n{tool_line}"
        return comment or tool_line


@dataclass(frozen=True, slots=True)
class ContractParseResult:
    status: ContractStatus
    response: ActResponse | None = None
    error: str | None = None

    def raise_for_violation(self) -> None:
        if self.status == "invalid":
            raise ContractViolation(self.error or "invalid structured response")


def _describe(exc: PydanticValidationError) -> str:
    parts: list[str] = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        msg = str(err.get("msg", "invalid"))
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts) or "invalid structured response"


def parse_act_response(text: str) -> ContractParseResult:
    if not text or not text.strip():
        return ContractParseResult("not_structured")

    trimmed = text.strip()
    if not trimmed.startswith("{"):
        return ContractParseResult("not_structured")

    try:
        obj = json.loads(trimmed)
    except json.JSONDecodeError:
        return ContractParseResult("invalid", error="Malformed JSON in structured response.")

    if not isinstance(obj, dict):
        return ContractParseResult("invalid", error="Structured response must be a JSON object.")

    # A bare legacy call or a plan payload does not resemble the contract.
    if not CONTRACT_KEYS & obj.keys():
        return ContractParseResult("not_structured")

    try:
        response = ActResponse.model_validate(obj)
    except PydanticValidationError as e:
        return ContractParseResult("invalid", error=_describe(e))
    return ContractParseResult("valid", response=response)


def parse_content_response(text: str) -> str | None:
    """Content-only responses (`{"content": "..."}`) produced when tools are disabled."""

    trimmed = (text or "").strip()
    if not trimmed.startswith("{"):
        return None
    try:
        obj = json.loads(trimmed)
    except json.JSONDecodeError:
        return None
    if isinstance(obj, dict) and isinstance(obj.get("content"), str):
        return obj["content"]
    return None
