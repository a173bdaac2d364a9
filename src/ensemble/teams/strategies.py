"""Scheduling algorithms for the five team strategies.

Each strategy receives the per-run :class:`TeamRun` state and returns a
:class:`StrategyOutcome`. Agent results are collected on the run as they
settle so that a team-level timeout can still report them.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from ..agents.base import AgentResult
from ..errors import ErrorInfo, ErrorKind
from ..strategy import Strategy
from ..tasks.base import Task
from .context import SharedContext
from .scoring import SubTask, canonical

if TYPE_CHECKING:  # pragma: no cover
    from .coordinator import AgentHandle, Team

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Dict[str, Any]], None]


@dataclass(frozen=True)
class RoleAssignment:
    agent_id: str
    responsibilities: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {"agent_id": self.agent_id, "responsibilities": list(self.responsibilities)}


@dataclass
class StrategyOutcome:
    success: bool
    error: Optional[ErrorInfo] = None
    consensus_reached: Optional[bool] = None
    role_assignments: Optional[List[RoleAssignment]] = None
    unassigned: List[SubTask] = field(default_factory=list)


class TeamRun:
    """State of one ``Team.run`` call."""

    def __init__(
        self,
        team: "Team",
        task: Task,
        strategy: Strategy,
        context: SharedContext,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.team = team
        self.task = task
        self.strategy = strategy
        self.context = context
        self.on_progress = on_progress
        self.settled: Dict[int, AgentResult] = {}
        self.agent_calls = 0
        cap = team.config.max_concurrency or len(team.handles)
        self._slots = asyncio.Semaphore(max(1, cap))

    @property
    def handles(self) -> List["AgentHandle"]:
        return self.team.handles

    def results(self) -> List[AgentResult]:
        """Settled results in handle registration order."""

        return [self.settled[index] for index in sorted(self.settled)]

    def progress(self, status: str, agent: str, **data: Any) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress({"status": status, "agent": agent, "strategy": self.strategy.value, **data})
        except Exception:  # noqa: BLE001 - observers never affect the run
            logger.warning("progress callback failed", exc_info=True)

    async def invoke(self, index: int, handle: "AgentHandle", task: Task) -> AgentResult:
        async with self._slots:
            self.agent_calls += 1
            self.progress("agent_started", handle.id)
            try:
                result = await handle.runtime.run(task)
            except Exception as exc:  # noqa: BLE001 - isolate a crashing agent
                logger.exception("agent %s raised during team run", handle.id)
                result = AgentResult.failure(handle.id, ErrorKind.INTERNAL, f"{type(exc).__name__}: {exc}")
        if result.agent_name != handle.id:
            result = replace(result, agent_name=handle.id)
        self.settled[index] = result
        self.progress("agent_completed", handle.id, success=result.success)
        return result

    async def invoke_all(self, tasks: Mapping[int, Task]) -> List[AgentResult]:
        """Run the given agents concurrently and wait for every one to settle."""

        handles = self.handles
        jobs = [self.invoke(index, handles[index], task) for index, task in sorted(tasks.items())]
        return list(await asyncio.gather(*jobs))


async def run_parallel(run: TeamRun) -> StrategyOutcome:
    results = await run.invoke_all({index: run.task for index in range(len(run.handles))})
    # merge serially once every agent has settled
    for handle, result in zip(run.handles, results):
        run.context.record_result(handle.id, result)
    return StrategyOutcome(success=all(result.success for result in results))


async def run_sequential(run: TeamRun) -> StrategyOutcome:
    for index, handle in enumerate(run.handles):
        task = run.task.with_context(**run.context.snapshot().per_agent_outputs)
        result = await run.invoke(index, handle, task)
        run.context.record_result(handle.id, result)
        if not result.success:
            logger.info("sequential run stopped at %s", handle.id)
            return StrategyOutcome(success=False)
    return StrategyOutcome(success=True)


def carry_over(original: Task, agent_id: str, output: Any, stage: int) -> Task:
    """Build the task for the next pipeline stage from the previous stage's output."""

    if isinstance(output, Mapping):
        context: Dict[str, Any] = dict(output)
        text = output.get("task") or output.get("description")
        description = text if isinstance(text, str) and text else canonical(output)
    else:
        context = {"input": output}
        description = output if isinstance(output, str) and output else canonical(output)
    context.setdefault("previous_agent", agent_id)
    context.setdefault("pipeline_stage", stage)
    return original.derive(description, context)


async def run_pipeline(run: TeamRun) -> StrategyOutcome:
    task = run.task
    for index, handle in enumerate(run.handles):
        result = await run.invoke(index, handle, task)
        run.context.record_result(handle.id, result)
        if not result.success:
            logger.info("pipeline aborted at stage %d (%s)", index, handle.id)
            return StrategyOutcome(success=False)
        task = carry_over(run.task, handle.id, result.output, index + 1)
    return StrategyOutcome(success=True)


def _round_output(contributions: List[Tuple[str, Any]]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {}
    for agent_id, output in contributions:
        if isinstance(output, Mapping):
            merged.update(output)
        else:
            merged[agent_id] = output
    return merged


async def run_collaborative(run: TeamRun) -> StrategyOutcome:
    config = run.team.config
    previous: Optional[Dict[str, Any]] = None
    for round_number in range(1, config.max_rounds + 1):
        run.context.advance_round()
        snapshot = run.context.snapshot()
        round_task = run.task.with_context(
            blackboard=dict(snapshot.blackboard),
            blackboard_version=snapshot.version,
            round=round_number,
        )
        results = await run.invoke_all({index: round_task for index in range(len(run.handles))})
        contributions = []
        for handle, result in zip(run.handles, results):
            run.context.record_result(handle.id, result)
            if result.success:
                contributions.append((handle.id, result.output))
            else:
                logger.info("round %d: %s contributed nothing", round_number, handle.id)
        if not contributions:
            return StrategyOutcome(
                success=False,
                consensus_reached=False,
                error=ErrorInfo(ErrorKind.INTERNAL, f"every agent failed in round {round_number}"),
            )
        run.context.merge_all(contributions)
        current = _round_output(contributions)
        if previous is not None:
            score = run.team.similarity(previous, current)
            logger.debug("round %d similarity %.3f", round_number, score)
            if score >= config.consensus_threshold:
                return StrategyOutcome(success=True, consensus_reached=True)
        previous = current

    message = f"no consensus after {config.max_rounds} rounds"
    logger.info("collaborative run: %s", message)
    return StrategyOutcome(
        success=not config.require_consensus,
        consensus_reached=False,
        error=ErrorInfo(ErrorKind.CONSENSUS_NOT_REACHED, message),
    )


def assign_roles(run: TeamRun, subtasks: List[SubTask]) -> Tuple[Dict[int, List[SubTask]], List[SubTask]]:
    assigned: Dict[int, List[SubTask]] = {}
    unassigned: List[SubTask] = []
    for subtask in subtasks:
        best, best_score = None, 0.0
        for index, handle in enumerate(run.handles):
            score = run.team.scorer(handle.capabilities, subtask.required)
            # strict comparison keeps the earliest registered agent on ties
            if score > best_score:
                best, best_score = index, score
        if best is None:
            unassigned.append(subtask)
        else:
            assigned.setdefault(best, []).append(subtask)
    return assigned, unassigned


async def run_role_based(run: TeamRun) -> StrategyOutcome:
    subtasks = run.team.decomposer(run.task, run.handles)
    assigned, unassigned = assign_roles(run, subtasks)
    roles = [
        RoleAssignment(run.handles[index].id, tuple(item.description for item in assigned[index]))
        for index in sorted(assigned)
    ]
    for item in unassigned:
        logger.warning("no agent can handle sub-task %r (needs %s)", item.description, list(item.required))

    tasks = {
        index: run.task.derive(
            "\n".join(item.description for item in items),
            {
                **run.task.context,
                "responsibilities": [item.description for item in items],
                "parent_task": run.task.description,
            },
        )
        for index, items in assigned.items()
    }
    results = await run.invoke_all(tasks)
    for index, result in zip(sorted(tasks), results):
        run.context.record_result(run.handles[index].id, result)
    error = None
    if unassigned:
        error = ErrorInfo(
            ErrorKind.NO_CAPABLE_AGENT,
            f"{len(unassigned)} sub-task(s) matched no agent capabilities",
            details={"unassigned": [item.description for item in unassigned]},
        )
    return StrategyOutcome(
        success=bool(results) and not unassigned and all(result.success for result in results),
        error=error,
        role_assignments=roles,
        unassigned=unassigned,
    )


STRATEGIES: Dict[Strategy, Callable[[TeamRun], Awaitable[StrategyOutcome]]] = {
    Strategy.PARALLEL: run_parallel,
    Strategy.SEQUENTIAL: run_sequential,
    Strategy.PIPELINE: run_pipeline,
    Strategy.COLLABORATIVE: run_collaborative,
    Strategy.ROLE_BASED: run_role_based,
}
