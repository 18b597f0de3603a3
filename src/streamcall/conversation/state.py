"""Conversation state machine.

States follow one turn of a tool-using conversation:

    idle -> streaming -> tool-detected -> tool-executing -> results-ready
         -> awaiting-followup (continuation) | idle (done)

After streaming ends the next state is not chosen by the caller. It is
recomputed from the execution registry, so late or repeated "tool finished"
notifications cannot leave the machine stuck.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Callable, Iterable

from ..core.types import ToolCall, call_key
from ..execution.registry import ExecutionRegistry
from ..observability import get_logger, set_state


class ConversationState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    TOOL_DETECTED = "tool-detected"
    TOOL_EXECUTING = "tool-executing"
    RESULTS_READY = "results-ready"
    AWAITING_FOLLOWUP = "awaiting-followup"
    ERROR = "error"


_S = ConversationState

TRANSITIONS: dict[ConversationState, frozenset[ConversationState]] = {
    _S.IDLE: frozenset({_S.STREAMING, _S.ERROR}),
    _S.STREAMING: frozenset({_S.TOOL_DETECTED, _S.IDLE, _S.ERROR}),
    _S.TOOL_DETECTED: frozenset({_S.TOOL_EXECUTING, _S.ERROR}),
    _S.TOOL_EXECUTING: frozenset({_S.RESULTS_READY, _S.TOOL_EXECUTING, _S.ERROR}),
    _S.RESULTS_READY: frozenset({_S.AWAITING_FOLLOWUP, _S.IDLE, _S.STREAMING, _S.ERROR}),
    _S.AWAITING_FOLLOWUP: frozenset({_S.IDLE, _S.STREAMING, _S.ERROR}),
    _S.ERROR: frozenset({_S.IDLE}),
}

StateListener = Callable[[ConversationState, ConversationState], None]


class ConversationStateMachine:
    def __init__(self, registry: ExecutionRegistry) -> None:
        self._registry = registry
        self._state = ConversationState.IDLE
        self._buffer: list[str] = []
        self._streaming = False
        self._last_chunk_at: float | None = None
        self._error: str | None = None
        self._listeners: list[StateListener] = []
        self._log = get_logger("streamcall.state")
        set_state(self._state.value)

    @property
    def state(self) -> ConversationState:
        return self._state

    @property
    def is_streaming(self) -> bool:
        return self._streaming

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def text(self) -> str:
        return "".join(self._buffer)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def can_transition(self, target: ConversationState) -> bool:
        return target is ConversationState.ERROR or target in TRANSITIONS[self._state]

    def transition_to(self, target: ConversationState) -> bool:
        """Apply a transition if the table allows it. Rejections are logged, not raised."""

        if not self.can_transition(target):
            self._log.warning("state_transition_rejected", from_state=self._state.value, to_state=target.value)
            return False
        self._apply(target)
        return True

    def _apply(self, target: ConversationState) -> None:
        old = self._state
        self._state = target
        set_state(target.value)
        self._log.debug("state_transition", from_state=old.value, to_state=target.value)
        for listener in list(self._listeners):
            listener(old, target)

    # -- streaming --

    def start_streaming(self) -> bool:
        if self._state is ConversationState.ERROR:
            # error only leaves through idle
            self.transition_to(ConversationState.IDLE)
        if not self.transition_to(ConversationState.STREAMING):
            return False
        self._buffer.clear()
        self._streaming = True
        self._error = None
        self._last_chunk_at = time.monotonic()
        return True

    def add_chunk(self, text: str) -> None:
        if not self._streaming:
            self.start_streaming()
        self._buffer.append(text or "")
        self._last_chunk_at = time.monotonic()

    def seconds_since_last_chunk(self) -> float | None:
        if self._last_chunk_at is None:
            return None
        return time.monotonic() - self._last_chunk_at

    def end_streaming(self) -> ConversationState:
        self._streaming = False
        return self.sync_with_registry()

    # -- tool flow --

    def add_tool_calls(self, calls: Iterable[ToolCall]) -> list[ToolCall]:
        """Register calls not yet known to the registry; return the new ones."""

        new_calls: list[ToolCall] = []
        for call in calls:
            if self._registry.is_known(call_key(call)):
                continue
            self._registry.add_pending(call)
            new_calls.append(call)
        if new_calls:
            self.tools_detected()
        return new_calls

    def tools_detected(self) -> None:
        if self._state is ConversationState.STREAMING:
            self._streaming = False
            self.transition_to(ConversationState.TOOL_DETECTED)

    def sync_with_registry(self) -> ConversationState:
        """Recompute the state from registry cardinalities."""

        current = self._state
        if self._registry.has_in_flight():
            if current is not ConversationState.TOOL_EXECUTING:
                self.transition_to(ConversationState.TOOL_EXECUTING)
        elif self._registry.completed_this_turn() > 0:
            if current is not ConversationState.RESULTS_READY:
                self.transition_to(ConversationState.RESULTS_READY)
        elif current not in (ConversationState.IDLE, ConversationState.AWAITING_FOLLOWUP):
            self.transition_to(ConversationState.IDLE)
        return self._state

    def await_followup(self) -> None:
        self.transition_to(ConversationState.AWAITING_FOLLOWUP)

    def finish(self) -> None:
        if self._state is not ConversationState.IDLE:
            self.transition_to(ConversationState.IDLE)

    def set_error(self, message: str) -> None:
        self._error = message
        self._streaming = False
        self._log.error("conversation_error", error=message)
        self.transition_to(ConversationState.ERROR)

    def reset(self) -> None:
        """Force `idle`, clearing the stream buffer. Used on cancellation."""

        self._buffer.clear()
        self._streaming = False
        self._last_chunk_at = None
        if self._state is not ConversationState.IDLE:
            self._apply(ConversationState.IDLE)
