from __future__ import annotations

from dataclasses import dataclass

from ..core.errors import RegistryError
from ..core.types import ToolCall, ToolResult, call_key


@dataclass(frozen=True, slots=True)
class RegistryCounts:
    pending: int
    executing: int
    completed: int
    completed_this_turn: int


class ExecutionRegistry:
    """Pending, executing and completed calls, keyed by call key.

    A key lives in at most one collection. Moves only go forward:
    pending -> executing -> completed, or pending -> completed for calls that
    fail validation. Completed entries are never removed, which is what makes
    replay idempotent across turns of one conversation.
    """

    def __init__(self) -> None:
        self._pending: dict[str, ToolCall] = {}
        self._executing: dict[str, ToolCall] = {}
        self._completed: dict[str, ToolResult] = {}
        self._completed_this_turn: set[str] = set()

    def begin_turn(self) -> None:
        self._completed_this_turn.clear()

    # -- queries --

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    def is_executing(self, key: str) -> bool:
        return key in self._executing

    def is_completed(self, key: str) -> bool:
        return key in self._completed

    def is_known(self, key: str) -> bool:
        return key in self._pending or key in self._executing or key in self._completed

    def result(self, key: str) -> ToolResult | None:
        return self._completed.get(key)

    def pending_keys(self) -> list[str]:
        return list(self._pending)

    def executing_keys(self) -> list[str]:
        return list(self._executing)

    def has_in_flight(self) -> bool:
        return bool(self._pending or self._executing)

    def completed_this_turn(self) -> int:
        return len(self._completed_this_turn)

    def counts(self) -> RegistryCounts:
        return RegistryCounts(
            pending=len(self._pending),
            executing=len(self._executing),
            completed=len(self._completed),
            completed_this_turn=len(self._completed_this_turn),
        )

    # -- moves --

    def add_pending(self, call: ToolCall) -> str:
        key = call_key(call)
        if self.is_known(key):
            raise RegistryError(f"call already registered: {key}")
        self._pending[key] = call
        return key

    def mark_executing(self, key: str) -> ToolCall:
        call = self._pending.pop(key, None)
        if call is None:
            raise RegistryError(f"call is not pending: {key}")
        self._executing[key] = call
        return call

    def complete(self, key: str, result: ToolResult) -> None:
        if key in self._completed:
            raise RegistryError(f"call already completed: {key}")
        if self._executing.pop(key, None) is None and self._pending.pop(key, None) is None:
            raise RegistryError(f"call is neither pending nor executing: {key}")
        self._completed[key] = result
        self._completed_this_turn.add(key)

    def abandon(self, key: str) -> bool:
        """Forget a pending or executing call without recording a result."""

        if self._pending.pop(key, None) is not None:
            return True
        return self._executing.pop(key, None) is not None

    def abandon_in_flight(self) -> list[str]:
        keys = [*self._pending, *self._executing]
        self._pending.clear()
        self._executing.clear()
        return keys
