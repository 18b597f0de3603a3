"""Decoders for tool calls, the structured contract, and plan payloads."""

from __future__ import annotations

from .contract import ActResponse, ContractParseResult, parse_act_response, parse_content_response
from .json_scan import extract_json_object, loads_lenient, repair_json_newlines
from .plan import ParsedPlan, parse_plan, strip_plan
from .tool_calls import (
    PartialToolCall,
    dedupe_calls,
    detect_partial_tool_call,
    has_complete_tool_calls,
    parse_tool_calls,
    strip_tool_calls,
)

__all__ = [
    "ActResponse",
    "ContractParseResult",
    "ParsedPlan",
    "PartialToolCall",
    "dedupe_calls",
    "detect_partial_tool_call",
    "extract_json_object",
    "has_complete_tool_calls",
    "loads_lenient",
    "parse_act_response",
    "parse_content_response",
    "parse_plan",
    "parse_tool_calls",
    "repair_json_newlines",
    "strip_plan",
    "strip_tool_calls",
]
