from __future__ import annotations

from .events import ConversationContext, Done, StartContinuation, ToolCallEvent, TurnReport
from .stream_orchestrator import StreamResponseOrchestrator

__all__ = [
    "ConversationContext",
    "Done",
    "StartContinuation",
    "StreamResponseOrchestrator",
    "ToolCallEvent",
    "TurnReport",
]
