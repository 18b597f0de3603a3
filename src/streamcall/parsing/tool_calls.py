"""Free-text tool-call decoder.

Supported encodings (all legacy, kept as a fallback for the structured
contract in `contract.py`):

1. A bare JSON object anywhere in the text::

       {"tool": "get_code", "params": {}}

2. A fenced block labelled with the tool name::

       ```tool:search_code
       {"query": "define"}
       ```

3. An inline tag with JSON-encoded params::

       <tool_call tool="get_code" params='{}' />

Only balanced, decodable encodings produce calls, so a turn cut mid-object
never triggers execution.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from ..core.errors import ParseError, ParseIncomplete
from ..core.types import ToolCall, call_key
from ..observability.logging import get_logger
from .json_scan import decode_object_at, extract_json_object, loads_lenient

_BARE_START = re.compile(r'\{\s*"tool"\s*:')
_PARTIAL = re.compile(r'\{\s*"tool"\s*:\s*"([^"]+)"')
_FENCED = re.compile(r"```\s*tool:(\w+)\s*\n([\s\S]*?)```")
_INLINE = re.compile(r"""<tool_call\s+tool=["'](\w+)["']\s+params=["'](\{[\s\S]*?\})["']\s*/>""")
_STANDALONE = re.compile(r'\{\s*"tool"\s*:\s*"[^"]+"\s*,\s*"params"\s*:\s*\{[\s\S]*?\}\s*\}')

_log = get_logger("streamcall.parser")


@dataclass(frozen=True, slots=True)
class PartialToolCall:
    """Streaming indicator for a renderer. Never used to execute anything."""

    tool_name: str
    is_complete: bool


def _as_call(value: Any, raw: str) -> ToolCall | None:
    if not isinstance(value, dict):
        return None
    tool = value.get("tool")
    params = value.get("params")
    if not isinstance(tool, str) or not tool or not isinstance(params, dict):
        return None
    return ToolCall(tool_name=tool, params=params, raw_text=raw)


def _scan_bare(text: str) -> list[tuple[int, ToolCall]]:
    found: list[tuple[int, ToolCall]] = []
    for m in _BARE_START.finditer(text):
        try:
            raw, value = decode_object_at(text, m.start())
        except ParseIncomplete:
            _log.debug("tool_call_incomplete", offset=m.start())
            continue
        except ParseError as e:
            _log.warning("tool_call_undecodable", offset=m.start(), error=str(e), snippet=e.snippet[:100])
            continue

        call = _as_call(value, raw)
        if call is None:
            _log.warning("tool_call_invalid_shape", offset=m.start())
            continue
        found.append((m.start(), call))
    return found


def _scan_pattern(text: str, pattern: re.Pattern[str], *, encoding: str) -> list[tuple[int, ToolCall]]:
    found: list[tuple[int, ToolCall]] = []
    for m in pattern.finditer(text):
        body = m.group(2).strip()
        try:
            params = loads_lenient(body)
        except ParseError as e:
            _log.warning("tool_call_undecodable", encoding=encoding, error=str(e), snippet=e.snippet[:100])
            continue
        if not isinstance(params, dict):
            _log.warning("tool_call_invalid_shape", encoding=encoding, tool=m.group(1))
            continue
        found.append((m.start(), ToolCall(tool_name=m.group(1), params=params, raw_text=m.group(0))))
    return found


def dedupe_calls(calls: list[ToolCall]) -> list[ToolCall]:
    """Collapse calls with the same CallKey, keeping the first occurrence."""

    unique: dict[str, ToolCall] = {}
    for call in calls:
        unique.setdefault(call_key(call), call)
    return list(unique.values())


def parse_tool_calls(text: str) -> list[ToolCall]:
    """Decode every complete tool call in `text`, in order of appearance."""

    if not text or not text.strip():
        return []

    found = _scan_bare(text)
    found += _scan_pattern(text, _FENCED, encoding="fenced")
    found += _scan_pattern(text, _INLINE, encoding="inline")
    found.sort(key=lambda item: item[0])

    calls = dedupe_calls([call for _, call in found])
    if calls:
        _log.debug("tool_calls_parsed", count=len(calls), tools=[c.tool_name for c in calls])
    return calls


def has_complete_tool_calls(text: str) -> bool:
    for m in _BARE_START.finditer(text or ""):
        try:
            _, value = decode_object_at(text, m.start())
        except (ParseIncomplete, ParseError):
            continue
        if _as_call(value, "") is not None:
            return True
    return False


def detect_partial_tool_call(text: str) -> PartialToolCall | None:
    m = _PARTIAL.search(text or "")
    if m is None:
        return None
    return PartialToolCall(tool_name=m.group(1), is_complete=extract_json_object(text, m.start()) is not None)


def strip_tool_calls(text: str, calls: list[ToolCall]) -> str:
    """Return the natural-language part of `text` with tool-call encodings removed."""

    cleaned = text or ""
    for call in calls:
        if call.raw_text and call.raw_text in cleaned:
            cleaned = cleaned.replace(call.raw_text, "", 1)
    cleaned = _STANDALONE.sub("", cleaned)

    kept = []
    for line in cleaned.split("\n"):
        stripped = line.strip()
        if stripped.startswith("{") and '"tool"' in stripped and '"params"' in stripped:
            continue
        kept.append(line)
    return "\n".join(kept).strip()
