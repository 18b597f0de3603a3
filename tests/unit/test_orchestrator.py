from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import pytest

from streamcall.conversation import ConversationState
from streamcall.core.config import AppConfig, EngineConfig, ToolsConfig
from streamcall.core.errors import EngineError
from streamcall.core.types import ToolCall, call_key
from streamcall.execution import ExecutionRegistry, ToolExecutionManager
from streamcall.orchestrator import ConversationContext, Done, StartContinuation, StreamResponseOrchestrator
from streamcall.orchestrator.prompts import PLAN_PLACEHOLDER
from streamcall.tools import CapabilityPolicy, ToolCatalog

S = ConversationState
LEGACY_TURN = 'Reading code.\n{"tool":"get_code","params":{}}'


@dataclass(slots=True)
class FakeInvoker:
    results: dict[str, list[Any]] = field(default_factory=dict)
    calls: list[str] = field(default_factory=list)

    async def invoke(self, tool_name: str, params: dict[str, Any]) -> Any:
        self.calls.append(tool_name)
        queued = self.results.get(tool_name)
        outcome = queued.pop(0) if queued else {"tool": tool_name}
        if outcome == "hang":
            await asyncio.sleep(10)
        return outcome


def _orchestrator(invoker: FakeInvoker, **engine: Any) -> StreamResponseOrchestrator:
    manager = ToolExecutionManager(
        registry=ExecutionRegistry(),
        invoker=invoker,
        policy=CapabilityPolicy(ToolCatalog.default()),
    )
    return StreamResponseOrchestrator(manager=manager, engine=EngineConfig(**engine), tools=ToolsConfig(timeout_ms=2000))


async def _stream(text: str, size: int = 7) -> AsyncIterator[str]:
    for i in range(0, len(text), size):
        yield text[i : i + size]
        await asyncio.sleep(0)


def test_legacy_call_runs_and_continues() -> None:
    invoker = FakeInvoker(results={"get_code": ["define X: 1"]})
    orch = _orchestrator(invoker)

    report = asyncio.run(orch.process_response(LEGACY_TURN, ConversationContext(editor_context={"doc": "a.cql"})))

    assert report.display_text == "Reading code."
    assert isinstance(report.outcome, StartContinuation)
    assert report.outcome.editor_context == {"doc": "a.cql"}
    assert report.outcome.corrective is False
    assert "**Tool Execution Results:**" in report.outcome.summary
    assert 'Tool get_code executed successfully:\n"define X: 1"' in report.outcome.summary
    assert [e.status for e in report.tool_call_events] == ["executed"]
    assert invoker.calls == ["get_code"]
    assert orch.state_machine.state is S.AWAITING_FOLLOWUP


def test_streamed_turn_matches_single_text() -> None:
    invoker = FakeInvoker()
    orch = _orchestrator(invoker)

    report = asyncio.run(orch.run_turn(_stream(LEGACY_TURN)))

    assert report.display_text == "Reading code."
    assert isinstance(report.outcome, StartContinuation)
    assert invoker.calls == ["get_code"]


def test_repeated_text_is_a_no_op() -> None:
    invoker = FakeInvoker()
    orch = _orchestrator(invoker)

    async def run() -> tuple:
        first = await orch.process_response(LEGACY_TURN)
        before = (orch.state_machine.state, orch.manager.registry.completed_this_turn())
        second = await orch.process_response(LEGACY_TURN)
        after = (orch.state_machine.state, orch.manager.registry.completed_this_turn())
        return first, second, before, after

    first, second, before, after = asyncio.run(run())

    assert isinstance(first.outcome, StartContinuation)
    assert isinstance(second.outcome, Done)
    assert before == (S.AWAITING_FOLLOWUP, 1)
    assert after == before
    assert second.progress is False
    assert invoker.calls == ["get_code"]
    assert orch.has_processed(LEGACY_TURN)


def test_reemitted_call_continues_with_cached_result() -> None:
    invoker = FakeInvoker(results={"get_code": ["define X: 1"]})
    orch = _orchestrator(invoker)

    async def run() -> Any:
        await orch.process_response(LEGACY_TURN)
        return await orch.process_response('Let me look again.\n{"tool": "get_code", "params": {}}')

    report = asyncio.run(run())

    assert isinstance(report.outcome, StartContinuation)
    assert "define X: 1" in report.outcome.summary
    assert [e.status for e in report.tool_call_events] == ["replayed"]
    assert report.progress is False
    assert invoker.calls == ["get_code"]


def test_contract_tool_call() -> None:
    invoker = FakeInvoker()
    orch = _orchestrator(invoker)
    text = json.dumps(
        {"comment": "Searching.", "next_action": "tool", "tool_call": {"tool": "search_code", "params": {"query": "BMI"}}}
    )

    report = asyncio.run(orch.process_response(text))

    assert report.display_text == "Searching.\n[Tool: search_code]"
    assert isinstance(report.outcome, StartContinuation)
    assert invoker.calls == ["search_code"]


def test_contract_final_answer_is_done() -> None:
    orch = _orchestrator(FakeInvoker())

    report = asyncio.run(orch.process_response('{"comment": "The library compiles.", "next_action": "final"}'))

    assert report.display_text == "The library compiles."
    assert isinstance(report.outcome, Done)
    assert orch.state_machine.state is S.IDLE


def test_contract_violation_asks_for_correction() -> None:
    invoker = FakeInvoker()
    orch = _orchestrator(invoker)

    report = asyncio.run(orch.process_response('{"comment":"ok","next_action":"tool"}'))

    assert isinstance(report.outcome, StartContinuation)
    assert report.outcome.corrective is True
    assert "violated the required response format" in report.outcome.summary
    assert report.progress is False
    assert report.contract_error is not None
    assert invoker.calls == []


def test_correction_cap_ends_turn_with_error() -> None:
    orch = _orchestrator(FakeInvoker(), max_contract_corrections=2)

    async def run() -> list:
        reports = []
        for comment in ("a", "b", "c"):
            reports.append(await orch.process_response(json.dumps({"comment": comment, "next_action": "tool"})))
        return reports

    first, second, third = asyncio.run(run())

    assert isinstance(first.outcome, StartContinuation) and first.outcome.corrective
    assert isinstance(second.outcome, StartContinuation) and second.outcome.corrective
    assert isinstance(third.outcome, Done)
    assert third.contract_error is not None
    assert orch.state_machine.state is S.ERROR

    # The next turn recovers from the error state.
    report = asyncio.run(orch.process_response('{"comment": "Sorry.", "next_action": "final"}'))
    assert isinstance(report.outcome, Done)
    assert orch.state_machine.state is S.IDLE


def test_plan_payload_is_stored_and_capped() -> None:
    orch = _orchestrator(FakeInvoker())
    steps = [{"number": i + 1, "description": f"step {i + 1}"} for i in range(16)]
    text = json.dumps({"plan": {"description": "X", "steps": steps}})

    report = asyncio.run(orch.process_response(text, ConversationContext(mode="plan")))

    assert report.plan_update is not None
    assert len(report.plan_update.steps) == 12
    assert orch.active_plan == report.plan_update
    assert report.display_text == PLAN_PLACEHOLDER
    assert isinstance(report.outcome, Done)


def test_plan_mode_blocks_modification_tools() -> None:
    invoker = FakeInvoker()
    orch = _orchestrator(invoker)
    text = 'Let me edit.\n{"tool": "insert_code", "params": {"code": "define Y: 2"}}'

    report = asyncio.run(orch.process_response(text, ConversationContext(mode="plan")))

    assert invoker.calls == []
    assert [e.status for e in report.tool_call_events] == ["failed"]
    assert isinstance(report.outcome, StartContinuation)
    assert "Tool insert_code failed:" in report.outcome.summary
    assert "create a structured plan" in report.outcome.summary


def test_plain_text_is_done() -> None:
    orch = _orchestrator(FakeInvoker())

    report = asyncio.run(orch.process_response("The define statement is on line 4."))

    assert report.display_text == "The define statement is on line 4."
    assert isinstance(report.outcome, Done)
    assert report.tool_call_events == []


def test_cancel_stops_turn_without_completing_calls() -> None:
    invoker = FakeInvoker(results={"get_code": ["hang"]})
    orch = _orchestrator(invoker)

    async def run() -> None:
        task = orch.start_turn(_stream(LEGACY_TURN))
        for _ in range(200):
            await asyncio.sleep(0.005)
            if invoker.calls:
                break
        assert orch.state_machine.state is S.TOOL_EXECUTING
        assert orch.cancel() is True
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(run())

    key = call_key(ToolCall("get_code", {}))
    assert orch.state_machine.state is S.IDLE
    assert not orch.manager.registry.has_in_flight()
    assert not orch.manager.registry.is_completed(key)

    # Retrying the same turn starts clean.
    invoker.results["get_code"] = ["define X: 1"]
    report = asyncio.run(orch.process_response(LEGACY_TURN))
    assert isinstance(report.outcome, StartContinuation)
    assert invoker.calls == ["get_code", "get_code"]


def test_only_one_active_turn() -> None:
    invoker = FakeInvoker(results={"get_code": ["hang"]})
    orch = _orchestrator(invoker)

    async def run() -> None:
        orch.start_turn(_stream(LEGACY_TURN))
        with pytest.raises(Exception, match="already active"):
            orch.start_turn(_stream("other"))
        assert orch.cancel() is True
        await asyncio.sleep(0)

    asyncio.run(run())
    assert orch.cancel() is False


def test_from_config_and_prompts() -> None:
    cfg = AppConfig(tools=ToolsConfig(plan_safe=["read_file"], plan_blocked=["write_file"]))
    orch = StreamResponseOrchestrator.from_config(cfg, invoker=FakeInvoker())

    plan_prompt = orch.system_prompt("plan")
    assert "read_file" in plan_prompt.split("investigation tools:")[1].splitlines()[0]
    assert "write_file" in plan_prompt.split("modify code:")[1].splitlines()[0]
    assert "ACT MODE" in orch.system_prompt("act")


def test_context_for_another_conversation_is_rejected() -> None:
    invoker = FakeInvoker()
    orch = _orchestrator(invoker)

    with pytest.raises(EngineError, match="not " + orch.conversation_id):
        asyncio.run(orch.process_response(LEGACY_TURN, ConversationContext(conversation_id="conv_other")))

    assert orch.state_machine.state is S.IDLE
    assert not orch.has_processed(LEGACY_TURN)
    assert invoker.calls == []

    own = ConversationContext(conversation_id=orch.conversation_id)
    report = asyncio.run(orch.process_response(LEGACY_TURN, own))
    assert isinstance(report.outcome, StartContinuation)
