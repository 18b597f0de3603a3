from __future__ import annotations

import asyncio
import time
from typing import Any, AsyncIterable, cast

from langgraph.graph import END, START, StateGraph

from ..conversation.state import ConversationState, ConversationStateMachine
from ..core.config import AppConfig, EngineConfig, ToolsConfig
from ..core.errors import ContractViolation, EngineError
from ..core.types import Mode, Plan, ToolCall, ToolResult, call_key
from ..execution.manager import ToolExecutionEvent, ToolExecutionManager
from ..execution.registry import ExecutionRegistry
from ..observability import bind_context, get_logger
from ..observability.ids import content_hash, new_conversation_id, new_trace_id
from ..parsing.contract import parse_act_response, parse_content_response
from ..parsing.plan import parse_plan, strip_plan
from ..parsing.tool_calls import parse_tool_calls, strip_tool_calls
from ..tools.catalog import ToolCatalog
from ..tools.invoker import ToolInvoker
from ..tools.policy import CapabilityPolicy
from .events import ConversationContext, Done, StartContinuation, ToolCallEvent, TurnReport
from .graph_state import TurnState
from .prompts import PLAN_PLACEHOLDER, act_mode_prompt, continuation_message, corrective_instruction, plan_mode_prompt

_EXECUTION_STATES = (ConversationState.TOOL_DETECTED, ConversationState.TOOL_EXECUTING)


class StreamResponseOrchestrator:
    """Per-turn control loop for one conversation.

    A finished model turn goes through a compiled LangGraph pipeline:

        gate -> decode -> register_calls -> run_tools -> finish
                      \\-> correct ---------------------/

    Cross-turn state (processed hashes, the active plan, the correction
    counter, the execution registry) lives on this object and is private to
    the conversation. Only one turn runs at a time; `start_turn` / `cancel`
    manage it as an asyncio task.
    """

    def __init__(
        self,
        *,
        manager: ToolExecutionManager,
        engine: EngineConfig | None = None,
        tools: ToolsConfig | None = None,
        conversation_id: str | None = None,
    ) -> None:
        self._manager = manager
        self._engine = engine or EngineConfig()
        self._tools = tools or ToolsConfig()
        self._registry = manager.registry
        self._state = ConversationStateMachine(self._registry)

        self._conversation_id = conversation_id or new_conversation_id()
        self._turn_id = 0
        self._processed_hashes: set[str] = set()
        self._turn_hash: str | None = None
        self._active_plan: Plan | None = None
        self._corrections = 0
        self._active_task: asyncio.Task[TurnReport] | None = None
        self._log = get_logger("streamcall.orchestrator")

        manager.subscribe(self._on_execution_event)
        self._graph = self._build_graph()

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        invoker: ToolInvoker,
        catalog: ToolCatalog | None = None,
        conversation_id: str | None = None,
    ) -> "StreamResponseOrchestrator":
        if catalog is None:
            catalog = ToolCatalog.default(plan_safe=config.tools.plan_safe, plan_blocked=config.tools.plan_blocked)
        manager = ToolExecutionManager(
            registry=ExecutionRegistry(),
            invoker=invoker,
            policy=CapabilityPolicy(catalog),
            summary_char_limit=config.tools.summary_char_limit,
            retry_backoff_ms=config.tools.retry_backoff_ms,
        )
        return cls(manager=manager, engine=config.engine, tools=config.tools, conversation_id=conversation_id)

    # -- accessors --

    @property
    def state_machine(self) -> ConversationStateMachine:
        return self._state

    @property
    def manager(self) -> ToolExecutionManager:
        return self._manager

    @property
    def active_plan(self) -> Plan | None:
        return self._active_plan

    @property
    def conversation_id(self) -> str:
        return self._conversation_id

    def has_processed(self, text: str) -> bool:
        return content_hash(text) in self._processed_hashes

    def system_prompt(self, mode: Mode) -> str:
        policy = self._manager.policy
        allowed = sorted(policy.plan_allowed)
        blocked = sorted(policy.plan_blocked)
        if mode == "plan":
            return plan_mode_prompt(allowed, blocked)
        return act_mode_prompt(self._active_plan is not None, allowed, blocked)

    # -- turn entry points --

    async def process_response(self, text: str, context: ConversationContext | None = None) -> TurnReport:
        """Handle the fully assembled text of one model turn."""

        ctx = context or ConversationContext(mode=cast(Mode, self._engine.default_mode))
        self._check_context(ctx)
        if not self._state.is_streaming:
            # A repeated end-of-stream notification must not touch turn state.
            if self.has_processed(text or ""):
                self._log.info("response_already_processed", state=self._state.state.value)
                return TurnReport(display_text="", outcome=Done(), progress=False)
            self._begin_turn()

        t0 = time.perf_counter()
        try:
            out = cast(
                TurnState,
                await self._graph.ainvoke(
                    {
                        "raw_text": text or "",
                        "mode": ctx.mode,
                        "editor_context": ctx.editor_context,
                        "events": [],
                    }
                ),
            )
        except asyncio.CancelledError:
            self._abort()
            raise
        except EngineError as e:
            self._state.set_error(str(e))
            raise

        self._turn_hash = None
        report = out["report"]
        self._log.info(
            "turn_done",
            latency_ms=round((time.perf_counter() - t0) * 1000, 2),
            outcome=report.outcome.kind,
            tool_calls=len(report.tool_call_events),
            progress=report.progress,
            state=self._state.state.value,
        )
        return report

    async def run_turn(self, chunks: AsyncIterable[str], context: ConversationContext | None = None) -> TurnReport:
        """Consume a streamed model turn, then process the assembled text."""

        if context is not None:
            self._check_context(context)
        self._begin_turn()
        try:
            async for chunk in chunks:
                self._state.add_chunk(chunk)
        except asyncio.CancelledError:
            self._abort()
            raise
        except Exception as e:  # noqa: BLE001
            self._state.set_error(f"stream failed: {e}")
            raise
        return await self.process_response(self._state.text, context)

    def start_turn(
        self, chunks: AsyncIterable[str], context: ConversationContext | None = None
    ) -> asyncio.Task[TurnReport]:
        """Schedule `run_turn` as the single cancellable active turn."""

        if self._active_task is not None and not self._active_task.done():
            raise EngineError("a turn is already active for this conversation")
        self._active_task = asyncio.create_task(self.run_turn(chunks, context))
        return self._active_task

    def cancel(self) -> bool:
        """Stop waiting on the active turn. Calls already dispatched are not undone."""

        task = self._active_task
        if task is None or task.done():
            return False
        task.cancel()
        self._abort()
        return True

    def _check_context(self, ctx: ConversationContext) -> None:
        if ctx.conversation_id is not None and ctx.conversation_id != self._conversation_id:
            raise EngineError(
                f"context is for conversation {ctx.conversation_id}, not {self._conversation_id}"
            )

    def _begin_turn(self) -> None:
        self._turn_id += 1
        bind_context(trace_id=new_trace_id(), conversation_id=self._conversation_id, turn_id=self._turn_id)
        self._registry.begin_turn()
        self._state.start_streaming()

    def _abort(self) -> None:
        # A cancelled turn was never handled; let a retry of the same text through.
        if self._turn_hash is not None:
            self._processed_hashes.discard(self._turn_hash)
            self._turn_hash = None
        abandoned = self._registry.abandon_in_flight()
        self._state.reset()
        self._log.info("turn_cancelled", abandoned=len(abandoned))

    def _on_execution_event(self, event: ToolExecutionEvent) -> None:
        if self._state.state in _EXECUTION_STATES:
            self._state.sync_with_registry()

    # -- pipeline --

    def _decode_plan_mode(self, text: str) -> dict[str, Any]:
        parsed = parse_plan(text, max_steps=self._engine.max_plan_steps)

        contract = parse_act_response(text)
        if contract.status == "valid" and contract.response is not None:
            call = contract.response.to_tool_call()
            display = contract.response.display_text()
            calls = [call] if call is not None else []
        else:
            calls = parse_tool_calls(text)
            display = strip_plan(text, parsed) if parsed is not None else text
            display = strip_tool_calls(display, calls)

        if parsed is not None:
            self._active_plan = parsed.plan
            if not display.strip():
                display = PLAN_PLACEHOLDER
        # Corrections only apply to act mode.
        self._corrections = 0
        return {
            "display_text": display,
            "tool_calls": calls,
            "contract_status": contract.status,
            "contract_error": None,
            "plan": parsed.plan if parsed is not None else None,
        }

    def _decode_act_mode(self, text: str) -> dict[str, Any]:
        contract = parse_act_response(text)
        try:
            contract.raise_for_violation()
        except ContractViolation as e:
            return {
                "display_text": "",
                "tool_calls": [],
                "contract_status": "invalid",
                "contract_error": str(e),
            }

        self._corrections = 0
        if contract.status == "valid" and contract.response is not None:
            call = contract.response.to_tool_call()
            return {
                "display_text": contract.response.display_text(),
                "tool_calls": [call] if call is not None else [],
                "contract_status": "valid",
                "contract_error": None,
            }

        content = parse_content_response(text)
        if content is not None:
            return {"display_text": content, "tool_calls": [], "contract_status": "not_structured"}

        calls = parse_tool_calls(text)
        return {
            "display_text": strip_tool_calls(text, calls),
            "tool_calls": calls,
            "contract_status": "not_structured",
            "contract_error": None,
        }

    def _build_graph(self):
        async def gate_node(state: TurnState) -> dict[str, Any]:
            digest = content_hash(str(state.get("raw_text", "")))
            if digest in self._processed_hashes:
                self._log.info("response_already_processed", response_hash=digest[:12])
                return {"response_hash": digest, "duplicate": True}
            # Record before any side effect so a repeated notification is a no-op.
            self._processed_hashes.add(digest)
            self._turn_hash = digest
            return {"response_hash": digest, "duplicate": False}

        def route_gate(state: TurnState) -> str:
            return "finish" if state.get("duplicate") else "decode"

        async def decode_node(state: TurnState) -> dict[str, Any]:
            text = str(state.get("raw_text", ""))
            if state.get("mode") == "plan":
                return self._decode_plan_mode(text)
            return self._decode_act_mode(text)

        def route_decode(state: TurnState) -> str:
            if state.get("mode") != "plan" and state.get("contract_status") == "invalid":
                return "correct"
            return "register_calls"

        async def correct_node(state: TurnState) -> dict[str, Any]:
            error = state.get("contract_error")
            if self._corrections >= self._engine.max_contract_corrections:
                self._log.warning("contract_correction_limit", corrections=self._corrections, error=error)
                self._corrections = 0
                return {"correction_limit_hit": True}

            self._corrections += 1
            self._log.info("contract_violation", attempt=self._corrections, error=error)
            return {"corrective": True, "summary": corrective_instruction(error)}

        async def register_calls_node(state: TurnState) -> dict[str, Any]:
            calls: list[ToolCall] = list(state.get("tool_calls", []))
            new_calls = self._state.add_tool_calls(calls)
            new_keys = {call_key(c) for c in new_calls}
            replayed = [c for c in calls if call_key(c) not in new_keys and self._registry.is_completed(call_key(c))]
            self._state.end_streaming()

            if len(calls) > len(new_calls):
                self._log.info("tool_calls_deduplicated", found=len(calls), new=len(new_calls))
            return {"new_calls": new_calls, "replayed_calls": replayed}

        def route_calls(state: TurnState) -> str:
            return "run_tools" if state.get("new_calls") else "finish"

        async def run_tools_node(state: TurnState) -> dict[str, Any]:
            new_calls: list[ToolCall] = list(state.get("new_calls", []))
            events: list[ToolCallEvent] = []

            def on_result(call: ToolCall, result: ToolResult) -> None:
                events.append(
                    ToolCallEvent(
                        call=call,
                        call_key=call_key(call),
                        status="executed" if result.success else "failed",
                        result=result,
                    )
                )

            results = await self._manager.execute_serial_with_retry(
                new_calls,
                timeout_ms=self._tools.timeout_ms,
                max_retries=self._tools.max_retries,
                mode=cast(Mode, state.get("mode", "act")),
                on_result=on_result,
            )
            self._state.sync_with_registry()
            return {"tool_results": results, "events": events}

        async def finish_node(state: TurnState) -> dict[str, Any]:
            if self._state.is_streaming:
                self._state.end_streaming()

            editor_context = state.get("editor_context")
            mode = cast(Mode, state.get("mode", "act"))
            display = str(state.get("display_text", ""))
            plan = state.get("plan")
            events: list[ToolCallEvent] = list(state.get("events", []))

            if state.get("duplicate"):
                report = TurnReport(display_text="", outcome=Done(), progress=False)
                return {"report": report}

            if state.get("correction_limit_hit"):
                error = state.get("contract_error") or "invalid structured response"
                self._state.set_error(f"contract violation: {error}")
                report = TurnReport(display_text="", outcome=Done(), contract_error=error, progress=False)
                return {"report": report}

            if state.get("corrective"):
                outcome = StartContinuation(
                    editor_context=editor_context, summary=str(state.get("summary", "")), corrective=True
                )
                report = TurnReport(
                    display_text=display,
                    outcome=outcome,
                    contract_error=state.get("contract_error"),
                    progress=False,
                )
                return {"report": report}

            replayed: list[ToolCall] = list(state.get("replayed_calls", []))
            for call in replayed:
                events.append(
                    ToolCallEvent(
                        call=call,
                        call_key=call_key(call),
                        status="replayed",
                        result=self._registry.result(call_key(call)),
                    )
                )

            new_calls: list[ToolCall] = list(state.get("new_calls", []))
            summarized = [
                c for c in state.get("tool_calls", []) if self._registry.is_completed(call_key(c))
            ]
            if new_calls or replayed:
                summary = continuation_message(self._manager.results_summary(summarized), mode)
                if self._state.state is ConversationState.RESULTS_READY:
                    self._state.await_followup()
                outcome: Done | StartContinuation = StartContinuation(editor_context=editor_context, summary=summary)
                if not new_calls:
                    self._log.info("duplicate_tool_calls_only", calls=len(replayed))
            else:
                outcome = Done()
                self._state.finish()

            report = TurnReport(
                display_text=display,
                outcome=outcome,
                tool_call_events=events,
                plan_update=plan,
                progress=bool(new_calls) or plan is not None or isinstance(outcome, Done),
            )
            return {"report": report}

        builder = StateGraph(TurnState)
        builder.add_node("gate", gate_node)
        builder.add_node("decode", decode_node)
        builder.add_node("correct", correct_node)
        builder.add_node("register_calls", register_calls_node)
        builder.add_node("run_tools", run_tools_node)
        builder.add_node("finish", finish_node)

        builder.add_edge(START, "gate")
        builder.add_conditional_edges("gate", route_gate, ["decode", "finish"])
        builder.add_conditional_edges("decode", route_decode, ["correct", "register_calls"])
        builder.add_edge("correct", "finish")
        builder.add_conditional_edges("register_calls", route_calls, ["run_tools", "finish"])
        builder.add_edge("run_tools", "finish")
        builder.add_edge("finish", END)

        return builder.compile()
