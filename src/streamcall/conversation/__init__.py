from __future__ import annotations

from .state import TRANSITIONS, ConversationState, ConversationStateMachine

__all__ = ["TRANSITIONS", "ConversationState", "ConversationStateMachine"]
