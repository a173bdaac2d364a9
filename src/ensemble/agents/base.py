"""Agent runtime: plan a task, then execute the plan step by step."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from ..config import AgentConfig
from ..errors import ErrorInfo, ErrorKind, PlanningFailed
from ..memory.episodic import EpisodeRecord, Memory
from ..metrics import MetricsSink, record_safely
from ..planning.planner import Planner, PlanStep, order_plan
from ..tasks.base import Task
from ..tools.base import ToolContext
from ..tools.registry import ToolGateway
from .steps import RetryPolicy, StepExecutor, StepResult

logger = logging.getLogger(__name__)


class AgentState(str, Enum):
    IDLE = "idle"
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class AgentResult:
    """Terminal value of one agent invocation."""

    success: bool
    output: Any = None
    error: Optional[ErrorInfo] = None
    tools_executed: Tuple[StepResult, ...] = ()
    metrics: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    agent_name: str = ""

    @classmethod
    def failure(cls, agent_name: str, kind: ErrorKind, message: str) -> "AgentResult":
        return cls(success=False, error=ErrorInfo(kind, message), agent_name=agent_name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent": self.agent_name,
            "success": self.success,
            "output": self.output,
            "error": self.error.to_dict() if self.error else None,
            "tools_executed": [step.to_dict() for step in self.tools_executed],
            "metrics": dict(self.metrics),
        }


@dataclass(frozen=True)
class AgentEvent:
    """One state transition reported by :meth:`AgentRuntime.execute_stream`."""

    type: str
    agent: str
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS

    @property
    def result(self) -> Optional[AgentResult]:
        return self.data.get("result")


STEP_START = "step_start"
STEP_COMPLETE = "step_complete"
STEP_RETRY = "step_retry"
ERROR = "error"
COMPLETE = "complete"
TERMINAL_EVENTS = frozenset({ERROR, COMPLETE})


@dataclass(frozen=True)
class HookContext:
    step: PlanStep
    accumulated_context: Mapping[str, Any]
    prior_results: Tuple[StepResult, ...]


@dataclass(frozen=True)
class HookDecision:
    retry: bool = False
    delay_skip: float = 0.0


HookReturn = Union[HookDecision, Mapping[str, Any], None]
ErrorHook = Callable[[ErrorInfo, HookContext], Union[HookReturn, Awaitable[HookReturn]]]
Approver = Callable[[PlanStep, Mapping[str, Any]], Union[bool, Awaitable[bool]]]
Emit = Callable[[AgentEvent], Awaitable[None]]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _coerce_decision(value: HookReturn) -> HookDecision:
    if isinstance(value, HookDecision):
        return value
    if isinstance(value, Mapping):
        return HookDecision(
            retry=bool(value.get("retry", False)),
            delay_skip=float(value.get("delay_skip", value.get("delaySkip", 0.0)) or 0.0),
        )
    return HookDecision()


class AgentRuntime:
    """Runs tasks for one agent through planning and step execution."""

    def __init__(
        self,
        config: AgentConfig,
        planner: Planner,
        gateway: ToolGateway,
        *,
        memory: Memory | None = None,
        metrics: MetricsSink | None = None,
        error_hook: ErrorHook | None = None,
        approver: Approver | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.planner = planner
        self.gateway = gateway
        self.memory = memory
        self.metrics = metrics
        self.error_hook = error_hook
        self.approver = approver
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=config.retry.max_attempts, delay=config.retry.delay / 1000.0
        )
        self._sleep = sleep
        self.executor = StepExecutor(gateway, metrics=metrics, sleep=sleep)

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def tool_names(self) -> List[str]:
        return list(self.config.tools)

    async def run(self, task: Task | str, *, timeout: float | None = None) -> AgentResult:
        """Execute ``task`` to completion and return its result. Never raises."""

        return await self._invoke(Task.coerce(task), timeout, None)

    async def execute_stream(
        self, task: Task | str, *, timeout: float | None = None
    ) -> AsyncIterator[AgentEvent]:
        """Yield one event per state transition; closing the stream cancels the run.

        The run advances only as far as the consumer reads: at most one event
        waits in the queue, so a consumer that stops reading stops the run too.
        """

        queue: "asyncio.Queue[AgentEvent]" = asyncio.Queue(maxsize=1)
        runner = asyncio.create_task(self._invoke(Task.coerce(task), timeout, queue.put))
        finished = False
        try:
            while True:
                event = await queue.get()
                yield event
                if event.terminal:
                    finished = True
                    break
        finally:
            if finished:
                await runner
            elif not runner.done():
                runner.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await runner

    async def _invoke(self, task: Task, timeout: float | None, emit: Emit | None) -> AgentResult:
        if timeout is None:
            timeout = self.config.timeout_seconds
        loop = ExecutionLoop(self, task, emit)
        try:
            return await asyncio.wait_for(loop.execute(), timeout)
        except asyncio.TimeoutError:
            return await loop.finish_failed(
                ErrorInfo(ErrorKind.TIMEOUT, f"run exceeded {timeout:.3f}s"),
            )
        except Exception as exc:  # noqa: BLE001 - the runtime reports, it never raises
            logger.exception("agent %s crashed", self.name)
            return await loop.finish_failed(ErrorInfo(ErrorKind.INTERNAL, f"{type(exc).__name__}: {exc}"))


class ExecutionLoop:
    """State for a single invocation: Idle -> Planning -> Executing -> Completed/Failed."""

    def __init__(self, runtime: AgentRuntime, task: Task, emit: Emit | None) -> None:
        self.runtime = runtime
        self.task = task
        self._emit_fn = emit
        self.state = AgentState.IDLE
        self.episode_id = f"ep-{uuid.uuid4().hex}"
        self.results: List[StepResult] = []
        self.plan: List[PlanStep] = []
        self.accumulated: Dict[str, Any] = {**task.context, "task": task.description}
        self._started = time.perf_counter()
        self._finished: Optional[AgentResult] = None
        self._announced = False

    @property
    def name(self) -> str:
        return self.runtime.name

    async def emit(self, type_: str, **data: Any) -> None:
        if self._emit_fn is not None:
            await self._emit_fn(AgentEvent(type=type_, agent=self.name, data=data))

    def remember(self, kind: str, content: str, /, **metadata: Any) -> None:
        memory = self.runtime.memory
        if memory is None:
            return
        try:
            memory.append_episode(self.episode_id, EpisodeRecord(kind=kind, content=content, metadata=metadata))
        except Exception:  # noqa: BLE001 - memory is write-only and must not fail a run
            logger.warning("episode %s: could not record %s", self.episode_id, kind, exc_info=True)

    async def execute(self) -> AgentResult:
        self.remember("task_start", self.task.description, task_id=self.task.id)
        self.state = AgentState.PLANNING
        planning_started = time.perf_counter()
        try:
            self.plan = await self._plan()
        except PlanningFailed as exc:
            return await self.finish_failed(ErrorInfo(ErrorKind.PLANNING_FAILED, str(exc)))
        finally:
            record_safely(self.runtime.metrics, "agent.plan", (time.perf_counter() - planning_started) * 1000)
        logger.debug("agent %s planned %d steps for %s", self.name, len(self.plan), self.task.id)

        self.state = AgentState.EXECUTING
        for step in self.plan:
            result = await self._run_step(step)
            if not result.success:
                result = await self._recover(step, result)
            if not result.success:
                return await self.finish_failed(result.error)
        last_output = self.results[-1].output if self.results else None
        return await self.finish(success=True, output=last_output)

    async def _plan(self) -> List[PlanStep]:
        try:
            steps = await self.runtime.planner.plan(self.task, self.runtime.tool_names)
        except PlanningFailed:
            raise
        except Exception as exc:  # noqa: BLE001 - any planner error is a planning failure
            raise PlanningFailed(f"{type(exc).__name__}: {exc}") from exc
        if not steps:
            raise PlanningFailed("planner returned no steps")
        if not all(isinstance(step, PlanStep) for step in steps):
            raise PlanningFailed("planner returned malformed steps")
        max_calls = self.runtime.config.max_calls
        tool_calls = sum(1 for step in steps if step.tool)
        if max_calls is not None and tool_calls > max_calls:
            raise PlanningFailed(f"plan needs {tool_calls} tool calls, limit is {max_calls}")
        return order_plan(steps, self._produced_fields)

    def _produced_fields(self, step: PlanStep) -> Sequence[str]:
        if step.output_schema is not None:
            return list(step.output_schema)
        if step.tool is None:
            return ["response"]
        tool = self.runtime.gateway.describe(step.tool)
        return list(getattr(tool, "output_schema", None) or {})

    async def _run_step(self, step: PlanStep, prior_attempts: int = 0) -> StepResult:
        await self.emit(STEP_START, step=step.id, ordinal=step.ordinal, tool=step.tool)
        if not await self._approved(step):
            result = StepResult(
                step_ordinal=step.ordinal,
                success=False,
                error=ErrorInfo(ErrorKind.APPROVAL_DENIED, f"tool '{step.tool}' was not approved", step.ordinal),
                tool=step.tool,
                step_id=step.id,
            )
        else:
            context = ToolContext(
                agent_name=self.name,
                task_id=self.task.id,
                step=step.ordinal,
                metadata={"episode_id": self.episode_id, "description": step.description},
            )
            result = await self.runtime.executor.execute(
                step,
                self.accumulated,
                self.runtime.retry_policy,
                context=context,
                on_retry=lambda attempt, error: self.emit(
                    STEP_RETRY, step=step.id, attempt=attempt, error=error.to_dict()
                ),
            )
        if prior_attempts:
            result = replace(result, attempts=result.attempts + prior_attempts)
        await self._record(step, result)
        return result

    async def _approved(self, step: PlanStep) -> bool:
        if not (self.runtime.config.require_approval and step.tool):
            return True
        approver = self.runtime.approver
        if approver is None:
            return False
        try:
            return bool(await _maybe_await(approver(step, dict(self.accumulated))))
        except Exception:  # noqa: BLE001 - a failing approver denies
            logger.warning("approver failed for %s", step.id, exc_info=True)
            return False

    async def _record(self, step: PlanStep, result: StepResult) -> None:
        # one StepResult per plan step; a re-run replaces the earlier outcome
        if self.results and self.results[-1].step_ordinal == step.ordinal:
            self.results[-1] = result
        else:
            self.results.append(result)
        if result.success:
            self.accumulated[step.id] = result.output
            if isinstance(result.output, Mapping):
                self.accumulated.update(result.output)
        self.remember(
            "tool_call",
            step.description,
            step=step.id,
            tool=step.tool,
            success=result.success,
            attempts=result.attempts,
            error=str(result.error) if result.error else None,
        )
        await self.emit(STEP_COMPLETE, step=step.id, result=result)

    async def _recover(self, step: PlanStep, failed: StepResult) -> StepResult:
        hook = self.runtime.error_hook
        if hook is None or failed.error is None:
            return failed
        context = HookContext(
            step=step,
            accumulated_context=dict(self.accumulated),
            prior_results=tuple(self.results[:-1]),
        )
        try:
            decision = _coerce_decision(await _maybe_await(hook(failed.error, context)))
        except Exception:  # noqa: BLE001 - a failing hook leaves the failure fatal
            logger.warning("error hook raised for %s", step.id, exc_info=True)
            return failed
        if not decision.retry:
            return failed
        logger.info("agent %s retrying %s after hook request", self.name, step.id)
        await self.emit(STEP_RETRY, step=step.id, attempt=failed.attempts, error=failed.error.to_dict(), hook=True)
        if decision.delay_skip > 0:
            await self.runtime._sleep(decision.delay_skip)
        return await self._run_step(step, prior_attempts=failed.attempts)

    def _metrics(self) -> Dict[str, Any]:
        return {
            "duration_ms": round((time.perf_counter() - self._started) * 1000, 3),
            "steps_planned": len(self.plan),
            "tool_calls": sum(1 for result in self.results if result.tool),
            "attempts": sum(result.attempts for result in self.results),
            "episode_id": self.episode_id,
            "state": self.state.value,
        }

    def _conclude(self, success: bool, output: Any, error: ErrorInfo | None) -> AgentResult:
        self.state = AgentState.COMPLETED if success else AgentState.FAILED
        metrics = self._metrics()
        result = AgentResult(
            success=success,
            output=output,
            error=error,
            tools_executed=tuple(self.results),
            metrics=MappingProxyType(metrics),
            agent_name=self.name,
        )
        if success:
            self.remember("task_complete", str(output), duration_ms=metrics["duration_ms"])
        else:
            logger.info("agent %s failed: %s", self.name, error)
            self.remember("task_failed", str(error), kind=error.kind.value if error else None)
        if self.runtime.memory is not None:
            try:
                self.runtime.memory.close_episode(self.episode_id)
            except Exception:  # noqa: BLE001
                logger.warning("episode %s could not be closed", self.episode_id, exc_info=True)
        record_safely(self.runtime.metrics, "agent.run", metrics["duration_ms"])
        return result

    async def finish(self, *, success: bool, output: Any = None, error: ErrorInfo | None = None) -> AgentResult:
        if self._finished is None:
            self._finished = self._conclude(success, output, error)
        result = self._finished
        # a timeout can cancel the terminal event mid-delivery; the next finish resends it
        if not self._announced:
            if result.success:
                await self.emit(COMPLETE, result=result)
            else:
                error_data = result.error.to_dict() if result.error else None
                await self.emit(ERROR, error=error_data, result=result)
            self._announced = True
        return result

    async def finish_failed(self, error: ErrorInfo | None) -> AgentResult:
        return await self.finish(success=False, error=error)
