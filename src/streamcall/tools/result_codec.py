from __future__ import annotations

import asyncio
import json
import re
from typing import Any

from ..core.errors import InvocationError, ToolExecutionError

TRUNCATION_MARKER = "..."
RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})

_STATUS_IN_TEXT = re.compile(r"\b(429|500|502|503|504)\b")
_TRANSIENT_WORDS = ("timeout", "timed out", "network", "failed to fetch", "econn", "connection reset")


def _is_json_primitive(obj: Any) -> bool:
    return obj is None or isinstance(obj, (str, int, float, bool))


def to_json_friendly(obj: Any) -> Any:
    """Best-effort conversion so results can be summarized and logged."""

    if _is_json_primitive(obj):
        return obj
    if isinstance(obj, (list, tuple)):
        return [to_json_friendly(v) for v in obj]
    if isinstance(obj, dict):
        return {str(k): to_json_friendly(v) for k, v in obj.items()}
    if hasattr(obj, "model_dump"):
        return to_json_friendly(obj.model_dump())
    return repr(obj)


def render_result(result: Any, *, limit: int) -> str:
    """Pretty JSON for a successful result, cut to `limit` characters."""

    text = json.dumps(to_json_friendly(result), ensure_ascii=False, indent=2)
    if len(text) > limit:
        text = text[:limit] + TRUNCATION_MARKER
    return text


def error_text(exc: BaseException) -> str:
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return "Tool execution timed out"
    message = str(exc) or type(exc).__name__
    if isinstance(exc, InvocationError) and exc.status is not None and str(exc.status) not in message:
        message = f"{message} (status {exc.status})"
    return message


def is_transient(exc: BaseException) -> bool:
    """Timeouts, network failures and retryable statuses are worth one more try."""

    if isinstance(exc, ToolExecutionError):
        return exc.transient
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    if isinstance(exc, InvocationError) and exc.status is not None:
        return exc.status in RETRYABLE_STATUSES
    return is_transient_message(str(exc))


def is_transient_message(message: str | None) -> bool:
    if not message:
        return False
    lowered = message.lower()
    if any(word in lowered for word in _TRANSIENT_WORDS):
        return True
    return _STATUS_IN_TEXT.search(lowered) is not None
