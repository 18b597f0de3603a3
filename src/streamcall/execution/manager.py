from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Literal, Sequence

from ..core.errors import (
    DuplicateCallError,
    PermanentExecutionError,
    ToolExecutionError,
    TransientExecutionError,
    ValidationError,
)
from ..core.types import Mode, PlanStep, ToolCall, ToolResult, call_key
from ..observability import add_error, call_scope, get_logger
from ..tools.invoker import ToolInvoker
from ..tools.policy import CapabilityPolicy
from ..tools.result_codec import error_text, is_transient, render_result
from .registry import ExecutionRegistry

EventType = Literal["started", "retrying", "completed", "failed"]

FALLBACK_SUMMARY = "Tools executed: {names}. Continue with your response."


@dataclass(frozen=True, slots=True)
class ToolExecutionEvent:
    type: EventType
    call_key: str
    call: ToolCall
    result: ToolResult | None = None
    error: str | None = None
    attempt: int = 1


ExecutionListener = Callable[[ToolExecutionEvent], None]
ResultCallback = Callable[[ToolCall, ToolResult], None]
StepCallback = Callable[[PlanStep], None]


def _param_ok(kind: str, value: Any) -> bool:
    if kind == "string":
        return isinstance(value, str) and value.strip() != ""
    if kind == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if kind == "object":
        return isinstance(value, dict)
    return value is not None


class ToolExecutionManager:
    """The only component that moves calls between registry collections.

    Dispatch goes through a ToolInvoker. Each call is validated (shape,
    required parameters, capability policy) before it may leave `pending`;
    validation failures are recorded as completed failures and never retried.
    """

    def __init__(
        self,
        *,
        registry: ExecutionRegistry,
        invoker: ToolInvoker,
        policy: CapabilityPolicy,
        summary_char_limit: int = 2000,
        retry_backoff_ms: int = 0,
    ) -> None:
        self._registry = registry
        self._invoker = invoker
        self._policy = policy
        self._summary_char_limit = summary_char_limit
        self._retry_backoff_ms = retry_backoff_ms
        self._listeners: list[ExecutionListener] = []
        self._log = get_logger("streamcall.execution")

    @property
    def registry(self) -> ExecutionRegistry:
        return self._registry

    @property
    def policy(self) -> CapabilityPolicy:
        return self._policy

    def subscribe(self, listener: ExecutionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: ToolExecutionEvent) -> None:
        for listener in list(self._listeners):
            listener(event)

    # -- validation --

    def validate(self, call: ToolCall, mode: Mode) -> None:
        """Raise ValidationError if the call may not be dispatched."""

        if not isinstance(call.tool_name, str) or not call.tool_name:
            raise ValidationError(str(call.tool_name), "Tool name is required and must be a string")
        if not isinstance(call.params, dict):
            raise ValidationError(call.tool_name, "Tool params must be an object")

        spec = self._policy.catalog.get(call.tool_name)
        if spec is not None:
            for name, kind in spec.required_params.items():
                if not _param_ok(kind, call.params.get(name)):
                    raise ValidationError(call.tool_name, f"{call.tool_name} requires a '{name}' parameter")

        self._policy.check(call.tool_name, mode)

    # -- execution --

    async def execute(self, call: ToolCall, *, mode: Mode = "act", timeout_ms: int | None = None) -> ToolResult:
        """Run one call once. Completed calls replay their stored result."""

        return await self._execute_one(call, mode=mode, timeout_ms=timeout_ms, max_retries=0)

    async def execute_serial_with_retry(
        self,
        calls: Sequence[ToolCall],
        *,
        timeout_ms: int,
        max_retries: int = 1,
        mode: Mode = "act",
        plan_steps: Sequence[PlanStep] | None = None,
        on_result: ResultCallback | None = None,
        on_step: StepCallback | None = None,
    ) -> list[ToolResult]:
        """Run calls strictly one after another, in order.

        A failing call never stops the batch: one result is returned per call,
        except for calls already executing elsewhere, which are skipped without a
        result since the in-flight execution reports its own.
        `plan_steps` is aligned with `calls` by position.
        """

        results: list[ToolResult] = []
        for i, call in enumerate(calls):
            step = plan_steps[i] if plan_steps is not None and i < len(plan_steps) else None
            if step is not None:
                step.status = "in-progress"
                step.call_key = call_key(call)
                if on_step is not None:
                    on_step(step)

            try:
                result = await self._execute_one(call, mode=mode, timeout_ms=timeout_ms, max_retries=max_retries)
            except DuplicateCallError as e:
                self._log.info("tool_duplicate_skipped", tool=call.tool_name, call_key=e.key)
                if step is not None:
                    step.status = "pending"
                    if on_step is not None:
                        on_step(step)
                continue

            if step is not None:
                step.status = "completed" if result.success else "failed"
                if on_step is not None:
                    on_step(step)
            if on_result is not None:
                on_result(call, result)
            results.append(result)
        return results

    async def _execute_one(
        self,
        call: ToolCall,
        *,
        mode: Mode,
        timeout_ms: int | None,
        max_retries: int,
    ) -> ToolResult:
        key = call_key(call)

        cached = self._registry.result(key)
        if cached is not None:
            self._log.debug("tool_replay", tool=call.tool_name, call_key=key)
            return cached
        if self._registry.is_executing(key):
            raise DuplicateCallError(key)
        if not self._registry.is_pending(key):
            self._registry.add_pending(call)

        try:
            self.validate(call, mode)
        except ValidationError as e:
            self._log.info("tool_validation_failed", tool=call.tool_name, reason=str(e))
            result = ToolResult(tool_name=call.tool_name, success=False, error=str(e))
            self._finish(key, call, result)
            return result

        # Claim the key before the first await so nothing can dispatch it twice.
        self._registry.mark_executing(key)
        self._emit(ToolExecutionEvent(type="started", call_key=key, call=call))

        try:
            with call_scope(key):
                result = await self._dispatch_with_retry(key, call, timeout_ms=timeout_ms, max_retries=max_retries)
        except asyncio.CancelledError:
            self._registry.abandon(key)
            self._log.info("tool_cancelled", tool=call.tool_name, call_key=key)
            raise

        self._finish(key, call, result)
        return result

    async def _dispatch_with_retry(
        self,
        key: str,
        call: ToolCall,
        *,
        timeout_ms: int | None,
        max_retries: int,
    ) -> ToolResult:
        log = self._log.bind(tool=call.tool_name)
        attempt = 0
        while True:
            attempt += 1
            t0 = time.perf_counter()
            try:
                value = await self._dispatch(call, timeout_ms)
            except asyncio.CancelledError:
                raise
            except Exception as e:  # noqa: BLE001
                failure = self._classify(call, e)
                retry = failure.transient and attempt <= max_retries
                log.warning(
                    "tool_failed",
                    attempt=attempt,
                    transient=failure.transient,
                    will_retry=retry,
                    error=str(failure),
                )
                if not retry:
                    return ToolResult(tool_name=call.tool_name, success=False, error=str(failure))
                self._emit(
                    ToolExecutionEvent(
                        type="retrying", call_key=key, call=call, error=str(failure), attempt=attempt + 1
                    )
                )
                if self._retry_backoff_ms > 0:
                    await asyncio.sleep(self._retry_backoff_ms / 1000)
                continue

            log.info(
                "tool_ok",
                attempt=attempt,
                latency_ms=round((time.perf_counter() - t0) * 1000, 2),
            )
            return ToolResult(tool_name=call.tool_name, success=True, result=value)

    async def _dispatch(self, call: ToolCall, timeout_ms: int | None) -> Any:
        coro = self._invoker.invoke(call.tool_name, dict(call.params))
        if timeout_ms is None:
            return await coro
        return await asyncio.wait_for(coro, timeout=timeout_ms / 1000)

    @staticmethod
    def _classify(call: ToolCall, exc: Exception) -> ToolExecutionError:
        if isinstance(exc, ToolExecutionError):
            return exc
        cls = TransientExecutionError if is_transient(exc) else PermanentExecutionError
        return cls(call.tool_name, error_text(exc))

    def _finish(self, key: str, call: ToolCall, result: ToolResult) -> None:
        self._registry.complete(key, result)
        if not result.success:
            add_error(f"{call.tool_name}: {result.error}")
        self._emit(
            ToolExecutionEvent(
                type="completed" if result.success else "failed",
                call_key=key,
                call=call,
                result=result,
                error=result.error,
            )
        )

    # -- summaries --

    def results_summary(self, calls: Sequence[ToolCall]) -> str:
        """Bounded digest of results for the next model turn."""

        parts: list[str] = []
        for call in calls:
            key = call_key(call)
            result = self._registry.result(key)
            if result is None:
                self._log.error("summary_missing_result", tool=call.tool_name, call_key=key)
                continue
            if result.success:
                body = render_result(result.result, limit=self._summary_char_limit)
                parts.append(f"Tool {call.tool_name} executed successfully:\n{body}")
            else:
                parts.append(f"Tool {call.tool_name} failed: {result.error}")

        if not parts:
            names = ", ".join(c.tool_name for c in calls)
            return FALLBACK_SUMMARY.format(names=names)
        return "\n\n".join(parts)
