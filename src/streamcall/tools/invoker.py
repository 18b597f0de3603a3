from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Protocol

from ..core.errors import InvocationError
from ..observability.logging import get_logger


class ToolInvoker(Protocol):
    """Boundary to the external tool adapters.

    Implementations return the tool's result or raise. `InvocationError.status`
    lets an adapter report an HTTP-like status that the retry policy reads.
    """

    async def invoke(self, tool_name: str, params: dict[str, Any]) -> Any:
        ...


ToolHandler = Callable[[dict[str, Any]], Any | Awaitable[Any]]


class HandlerToolInvoker:
    """Dispatch by name to locally registered handlers.

    Sync handlers run in a worker thread so a slow one cannot stall the
    event loop; cancellation then stops the wait, not the thread.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, ToolHandler] = {}
        self._log = get_logger("streamcall.tools")

    def register(self, name: str, handler: ToolHandler) -> None:
        self._handlers[name] = handler

    def names(self) -> list[str]:
        return list(self._handlers.keys())

    async def invoke(self, tool_name: str, params: dict[str, Any]) -> Any:
        handler = self._handlers.get(tool_name)
        if handler is None:
            raise InvocationError(f"tool not registered: {tool_name}", status=404)

        if inspect.iscoroutinefunction(handler):
            out = await handler(params)
        else:
            out = await asyncio.to_thread(handler, params)
            if inspect.isawaitable(out):
                out = await out
        self._log.debug("tool_ok", tool=tool_name)
        return out
