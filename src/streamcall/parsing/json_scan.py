"""Quote-aware JSON object scanning.

Model output embeds JSON in free text and is frequently cut mid-object while
streaming. Everything here is best-effort: an unbalanced candidate is a
normal condition, and undecodable candidates are reported, never fatal.
"""

from __future__ import annotations

import json
from typing import Any

from ..core.errors import ParseError, ParseIncomplete

_STRING_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}


def extract_json_object(text: str, start: int) -> str | None:
    """Return the balanced `{...}` beginning at or after `start`, or None if unbalanced.

    Braces inside string literals do not count towards depth.
    """

    i = text.find("{", start)
    if i < 0:
        return None

    begin = i
    depth = 0
    in_string = False
    escape_next = False

    while i < len(text):
        ch = text[i]
        if escape_next:
            escape_next = False
        elif ch == "\\":
            escape_next = True
        elif ch == '"':
            in_string = not in_string
        elif not in_string:
            if ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[begin : i + 1]
        i += 1

    return None


def repair_json_newlines(candidate: str) -> str:
    """Escape literal newline, carriage-return and tab bytes inside string literals."""

    out: list[str] = []
    in_string = False
    escape_next = False

    for ch in candidate:
        if escape_next:
            out.append(ch)
            escape_next = False
            continue
        if ch == "\\":
            out.append(ch)
            escape_next = True
            continue
        if ch == '"':
            in_string = not in_string
            out.append(ch)
            continue
        if in_string and ch in _STRING_ESCAPES:
            out.append(_STRING_ESCAPES[ch])
        else:
            out.append(ch)

    return "".join(out)


def loads_lenient(candidate: str) -> Any:
    """json.loads with one repair attempt for un-escaped line breaks in strings.

    Raises:
        ParseError: if the candidate is still undecodable after repair.
    """

    try:
        return json.loads(candidate)
    except json.JSONDecodeError as first:
        repaired = repair_json_newlines(candidate)
        if repaired == candidate:
            raise ParseError(f"malformed JSON: {first.msg}", snippet=candidate[:200]) from first
        try:
            return json.loads(repaired)
        except json.JSONDecodeError:
            raise ParseError(f"malformed JSON after repair: {first.msg}", snippet=candidate[:200]) from first


def decode_object_at(text: str, start: int) -> tuple[str, Any]:
    """Extract and decode the object at `start`.

    Returns:
        (raw_object_text, decoded_value)

    Raises:
        ParseIncomplete: the object is not balanced yet.
        ParseError: the object is balanced but not valid JSON.
    """

    raw = extract_json_object(text, start)
    if raw is None:
        raise ParseIncomplete(start)
    return raw, loads_lenient(raw)
