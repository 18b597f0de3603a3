"""Logging context for the turn being processed.

Each asyncio task sees one immutable `TurnContext`; every change replaces it,
so conversations running in separate tasks never share fields.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, fields, replace
from typing import Iterator


@dataclass(frozen=True, slots=True)
class TurnContext:
    trace_id: str | None = None
    conversation_id: str | None = None
    turn_id: int | None = None
    state: str | None = None
    # Set only while one tool call is being dispatched.
    call_key: str | None = None
    errors: tuple[str, ...] = ()


_current: ContextVar[TurnContext] = ContextVar("streamcall_turn", default=TurnContext())


def current() -> TurnContext:
    return _current.get()


def bind_context(*, trace_id: str, conversation_id: str, turn_id: int) -> None:
    """Start a turn: fresh ids and error list, the mirrored state carries over."""

    _current.set(
        TurnContext(trace_id=trace_id, conversation_id=conversation_id, turn_id=turn_id, state=current().state)
    )


def set_state(state: str) -> None:
    _current.set(replace(current(), state=state))


def add_error(message: str) -> None:
    ctx = current()
    _current.set(replace(ctx, errors=(*ctx.errors, message)))


@contextmanager
def call_scope(key: str) -> Iterator[None]:
    """Tag records emitted during one dispatch with its call key."""

    previous = current().call_key
    _current.set(replace(current(), call_key=key))
    try:
        yield
    finally:
        # Not a token reset: state and errors recorded inside the scope must survive.
        _current.set(replace(current(), call_key=previous))


def snapshot() -> dict[str, object]:
    ctx = current()
    out: dict[str, object] = {}
    for f in fields(ctx):
        value = getattr(ctx, f.name)
        if f.name == "errors":
            out["errors"] = list(value)
        elif value is not None:
            out[f.name] = value
    return out
