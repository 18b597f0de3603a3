from __future__ import annotations

import asyncio

import pytest

from streamcall.core.errors import InvocationError
from streamcall.tools import HandlerToolInvoker


def test_sync_and_async_handlers() -> None:
    invoker = HandlerToolInvoker()
    invoker.register("get_code", lambda params: "define X: 1")

    async def search(params: dict) -> dict:
        return {"matches": [params["query"]]}

    invoker.register("search_code", search)

    async def run() -> tuple:
        return await invoker.invoke("get_code", {}), await invoker.invoke("search_code", {"query": "X"})

    code, found = asyncio.run(run())

    assert code == "define X: 1"
    assert found == {"matches": ["X"]}
    assert sorted(invoker.names()) == ["get_code", "search_code"]


def test_unknown_tool_raises_404() -> None:
    with pytest.raises(InvocationError) as ei:
        asyncio.run(HandlerToolInvoker().invoke("nope", {}))

    assert ei.value.status == 404


def test_handler_errors_propagate() -> None:
    invoker = HandlerToolInvoker()

    def boom(params: dict) -> None:
        raise ValueError("Line number is required and must be a positive number")

    invoker.register("navigate_to_line", boom)

    with pytest.raises(ValueError):
        asyncio.run(invoker.invoke("navigate_to_line", {}))
