from __future__ import annotations

from .manager import ToolExecutionEvent, ToolExecutionManager
from .registry import ExecutionRegistry, RegistryCounts

__all__ = ["ExecutionRegistry", "RegistryCounts", "ToolExecutionEvent", "ToolExecutionManager"]
