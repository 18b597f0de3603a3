"""Project core.

Value types and errors shared by every package, plus config loading.
"""

from __future__ import annotations

from .errors import ConfigError, EngineError
from .types import Mode, Plan, PlanStep, ToolCall, ToolResult, call_key

__all__ = [
    "ConfigError",
    "EngineError",
    "Mode",
    "Plan",
    "PlanStep",
    "ToolCall",
    "ToolResult",
    "call_key",
]
