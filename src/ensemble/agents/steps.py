"""Execution of a single plan step: validation, tool call, retries."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from ..errors import ErrorInfo, ErrorKind
from ..metrics import MetricsSink, record_safely
from ..planning.planner import REFERENCE_PREFIX, PlanStep, resolve_reference
from ..tools.base import ToolContext, check_fields
from ..tools.registry import ToolGateway

logger = logging.getLogger(__name__)

RetryCallback = Callable[[int, ErrorInfo], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class RetryPolicy:
    """``delay`` is in seconds; the wait before attempt ``n + 1`` is ``delay * n``."""

    max_attempts: int = 1
    delay: float = 0.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def backoff(self, attempt: int) -> float:
        return self.delay * attempt


@dataclass(frozen=True)
class StepResult:
    step_ordinal: int
    success: bool
    output: Any = None
    error: Optional[ErrorInfo] = None
    attempts: int = 0
    duration_ms: float = 0.0
    tool: Optional[str] = None
    step_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step_id or self.step_ordinal,
            "tool": self.tool,
            "success": self.success,
            "output": self.output,
            "error": self.error.to_dict() if self.error else None,
            "attempts": self.attempts,
            "duration_ms": round(self.duration_ms, 3),
        }


def build_step_input(step: PlanStep, accumulated: Mapping[str, Any]) -> Dict[str, Any]:
    """Overlay the step's resolved bindings on the accumulated context.

    Raises ``KeyError`` naming the first reference that cannot be resolved.
    """

    params = dict(accumulated)
    for name, value in step.input_bindings.items():
        if isinstance(value, str) and value.startswith(REFERENCE_PREFIX):
            value = resolve_reference(value[len(REFERENCE_PREFIX):], accumulated)
        params[name] = value
    return params


class StepExecutor:
    """Runs one plan step against the tool gateway. Never raises."""

    def __init__(
        self,
        gateway: ToolGateway,
        *,
        metrics: MetricsSink | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.gateway = gateway
        self.metrics = metrics
        self._sleep = sleep

    async def execute(
        self,
        step: PlanStep,
        current_input: Mapping[str, Any],
        retry_policy: RetryPolicy | None = None,
        *,
        context: ToolContext | None = None,
        on_retry: RetryCallback | None = None,
    ) -> StepResult:
        policy = retry_policy or RetryPolicy()
        started = time.perf_counter()
        result = await self._execute(step, current_input, policy, context, on_retry)
        result = replace(result, duration_ms=(time.perf_counter() - started) * 1000)
        record_safely(self.metrics, f"step.{step.tool or 'direct'}", result.duration_ms)
        return result

    async def _execute(
        self,
        step: PlanStep,
        current_input: Mapping[str, Any],
        policy: RetryPolicy,
        context: ToolContext | None,
        on_retry: RetryCallback | None,
    ) -> StepResult:
        def failed(kind: ErrorKind, message: str, attempts: int = 0, **details: Any) -> StepResult:
            error = ErrorInfo(kind=kind, message=message, step_ordinal=step.ordinal, details=details)
            return StepResult(
                step_ordinal=step.ordinal,
                success=False,
                error=error,
                attempts=attempts,
                tool=step.tool,
                step_id=step.id,
            )

        try:
            params = build_step_input(step, current_input)
        except KeyError as exc:
            return failed(ErrorKind.VALIDATION_FAILED, f"unresolved input reference {exc.args[0]!r}")

        tool = None
        if step.tool is not None:
            tool = self.gateway.describe(step.tool)
            if tool is None:
                return failed(ErrorKind.TOOL_NOT_FOUND, f"tool '{step.tool}' is not registered")

        input_schema = step.input_schema if step.input_schema is not None else getattr(tool, "input_schema", None)
        problems = check_fields(params, input_schema)
        if problems:
            return failed(ErrorKind.VALIDATION_FAILED, "invalid step input: " + "; ".join(problems))

        output_schema = step.output_schema if step.output_schema is not None else getattr(tool, "output_schema", None)
        if step.tool is None:
            output = {"response": step.description}
            problems = check_fields(output, step.output_schema)
            if problems:
                return failed(ErrorKind.VALIDATION_FAILED, "invalid step output: " + "; ".join(problems), 1)
            return StepResult(step.ordinal, True, output=output, attempts=1, step_id=step.id)

        context = context or ToolContext(agent_name="", task_id="", step=step.ordinal)
        attempt = 0
        while True:
            attempt += 1
            try:
                outcome = await self.gateway.execute(step.tool, params, context)
            except Exception as exc:  # noqa: BLE001 - a misbehaving gateway is a tool failure
                logger.warning("gateway raised for %s", step.tool, exc_info=True)
                outcome_error, outcome = f"{type(exc).__name__}: {exc}", None
            else:
                outcome_error = None if outcome.success else (outcome.error or "tool reported failure")

            if outcome is not None and outcome.success:
                problems = check_fields(outcome.result, output_schema)
                if problems:
                    return failed(
                        ErrorKind.VALIDATION_FAILED,
                        "invalid tool output: " + "; ".join(problems),
                        attempt,
                    )
                return StepResult(
                    step_ordinal=step.ordinal,
                    success=True,
                    output=outcome.result,
                    attempts=attempt,
                    tool=step.tool,
                    step_id=step.id,
                )
            not_found = outcome is not None and outcome.metadata.get("not_found")
            kind = ErrorKind.TOOL_NOT_FOUND if not_found else ErrorKind.TOOL_EXECUTION_FAILED
            if not kind.retryable or attempt >= policy.max_attempts:
                return failed(kind, outcome_error, attempt)

            logger.info("step %s attempt %d failed: %s", step.id, attempt, outcome_error)
            if on_retry is not None:
                notified = on_retry(attempt, ErrorInfo(kind, outcome_error, step.ordinal))
                if inspect.isawaitable(notified):
                    await notified
            await self._sleep(policy.backoff(attempt))
