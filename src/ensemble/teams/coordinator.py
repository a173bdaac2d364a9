"""Team coordinator: runs one task across several agents under a strategy."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Deque, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from ..agents.base import AgentResult
from ..config import AgentDescriptor, ConfigError, TeamConfig
from ..errors import ErrorInfo, ErrorKind
from ..metrics import MetricsSink, record_safely
from ..strategy import Strategy
from ..tasks.base import Task
from .context import SharedContext
from .scoring import Decomposer, Scorer, Similarity, SubTask, capability_overlap, decompose_task, text_similarity
from .strategies import STRATEGIES, ProgressCallback, RoleAssignment, StrategyOutcome, TeamRun

logger = logging.getLogger(__name__)


class Runnable(Protocol):
    async def run(self, task: Task, *, timeout: float | None = None) -> AgentResult:  # pragma: no cover
        ...


@dataclass
class AgentHandle:
    """A team member: identity, capabilities and the runtime that executes it."""

    id: str
    runtime: Runnable
    capabilities: Tuple[str, ...] = ()

    @classmethod
    def for_runtime(cls, runtime: Any, capabilities: Sequence[str] | None = None) -> "AgentHandle":
        config = getattr(runtime, "config", None)
        if capabilities is None:
            capabilities = config.capabilities if config is not None else ()
        return cls(id=runtime.name, runtime=runtime, capabilities=tuple(capabilities))


@dataclass(frozen=True)
class TeamResult:
    success: bool
    strategy: Strategy
    per_agent_results: Tuple[AgentResult, ...]
    shared_context: Optional[Dict[str, Any]] = None
    role_assignments: Optional[Tuple[RoleAssignment, ...]] = None
    unassigned: Tuple[SubTask, ...] = ()
    consensus_reached: Optional[bool] = None
    error: Optional[ErrorInfo] = None
    metrics: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def result_for(self, agent_id: str) -> Optional[AgentResult]:
        for result in self.per_agent_results:
            if result.agent_name == agent_id:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "strategy": self.strategy.value,
            "per_agent_results": [result.to_dict() for result in self.per_agent_results],
            "shared_context": self.shared_context,
            "role_assignments": (
                [item.to_dict() for item in self.role_assignments] if self.role_assignments is not None else None
            ),
            "unassigned": [item.description for item in self.unassigned],
            "consensus_reached": self.consensus_reached,
            "error": self.error.to_dict() if self.error else None,
            "metrics": dict(self.metrics),
        }


@dataclass
class TeamStatus:
    name: str
    members: List[str]
    default_strategy: Strategy
    active_runs: int
    completed_runs: int
    last_activity: Optional[float]


class Team:
    """A configured group of agents. Each ``run`` gets a fresh shared context."""

    def __init__(
        self,
        config: TeamConfig,
        handles: Sequence[AgentHandle],
        *,
        metrics: MetricsSink | None = None,
        similarity: Similarity = text_similarity,
        scorer: Scorer = capability_overlap,
        decomposer: Decomposer = decompose_task,
        history_size: int = 20,
    ) -> None:
        if not handles:
            raise ValueError(f"Team '{config.name}' needs at least one agent")
        ids = [handle.id for handle in handles]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Team '{config.name}' has duplicate agent ids")
        self.config = config
        self.handles = list(handles)
        self.metrics = metrics
        self.similarity = similarity
        self.scorer = scorer
        self.decomposer = decomposer
        self.history: Deque[Dict[str, Any]] = deque(maxlen=history_size)
        self._active = 0
        self._completed = 0
        self._last_activity: Optional[float] = None

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def default_strategy(self) -> Strategy:
        return self.config.strategy or Strategy.PARALLEL

    def members(self) -> List[str]:
        return [handle.id for handle in self.handles]

    def status(self) -> TeamStatus:
        return TeamStatus(
            name=self.name,
            members=self.members(),
            default_strategy=self.default_strategy,
            active_runs=self._active,
            completed_runs=self._completed,
            last_activity=self._last_activity,
        )

    async def run(
        self,
        task: Task | str,
        strategy: Strategy | str | None = None,
        *,
        timeout: float | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> TeamResult:
        """Run ``task`` under ``strategy`` (or the team default).

        Failures are reported in the returned :class:`TeamResult`; only an unknown
        strategy name raises ``ValueError``.
        """

        task = Task.coerce(task)
        chosen = Strategy.parse(strategy) if strategy is not None else self.default_strategy
        if timeout is None:
            timeout = self.config.timeout_seconds
        run = TeamRun(
            self,
            task,
            chosen,
            SharedContext(team_id=f"{self.name}-{uuid.uuid4().hex[:8]}"),
            on_progress,
        )
        logger.info("team %s running %s with %s", self.name, task.id, chosen.value)
        started = time.perf_counter()
        self._active += 1
        try:
            outcome = await self._execute(run, timeout)
        finally:
            self._active -= 1
        duration_ms = (time.perf_counter() - started) * 1000
        result = TeamResult(
            success=outcome.success,
            strategy=chosen,
            per_agent_results=tuple(run.results()),
            shared_context=run.context.snapshot().to_dict(),
            role_assignments=tuple(outcome.role_assignments) if outcome.role_assignments is not None else None,
            unassigned=tuple(outcome.unassigned),
            consensus_reached=outcome.consensus_reached,
            error=outcome.error,
            metrics=MappingProxyType(
                {
                    "duration_ms": round(duration_ms, 3),
                    "agent_calls": run.agent_calls,
                    "rounds": run.context.iteration_count,
                    "context_version": run.context.version,
                }
            ),
        )
        self._record(task, result, duration_ms)
        return result

    async def _execute(self, run: TeamRun, timeout: float | None) -> StrategyOutcome:
        try:
            return await asyncio.wait_for(STRATEGIES[run.strategy](run), timeout)
        except asyncio.TimeoutError:
            logger.warning("team %s timed out after %.3fs", self.name, timeout)
            return StrategyOutcome(
                success=False,
                error=ErrorInfo(ErrorKind.TIMEOUT, f"team run exceeded {timeout:.3f}s"),
            )
        except Exception as exc:  # noqa: BLE001 - a team run reports, it never raises
            logger.exception("team %s strategy %s crashed", self.name, run.strategy.value)
            return StrategyOutcome(success=False, error=ErrorInfo(ErrorKind.INTERNAL, f"{type(exc).__name__}: {exc}"))

    def _record(self, task: Task, result: TeamResult, duration_ms: float) -> None:
        self._completed += 1
        self._last_activity = time.time()
        self.history.append(
            {
                "task": task.description,
                "strategy": result.strategy.value,
                "success": result.success,
                "duration_ms": round(duration_ms, 3),
                "agents": [item.agent_name for item in result.per_agent_results],
            }
        )
        record_safely(self.metrics, f"team.{result.strategy.value}", duration_ms)
        logger.info(
            "team %s finished %s: success=%s agents=%d",
            self.name,
            result.strategy.value,
            result.success,
            len(result.per_agent_results),
        )


class TeamCoordinator:
    """Creates teams from configuration over a set of named agent runtimes."""

    def __init__(
        self,
        runtimes: Mapping[str, Runnable],
        *,
        metrics: MetricsSink | None = None,
        similarity: Similarity = text_similarity,
        scorer: Scorer = capability_overlap,
        decomposer: Decomposer = decompose_task,
    ) -> None:
        self.runtimes = dict(runtimes)
        self.metrics = metrics
        self.similarity = similarity
        self.scorer = scorer
        self.decomposer = decomposer

    def _handle(self, descriptor: AgentDescriptor) -> AgentHandle:
        try:
            runtime = self.runtimes[descriptor.name]
        except KeyError as exc:
            raise ConfigError(f"Unknown agent '{descriptor.name}'") from exc
        handle = AgentHandle.for_runtime(runtime, descriptor.capabilities)
        handle.id = descriptor.name
        return handle

    def create(self, config: TeamConfig) -> Team:
        handles = [self._handle(descriptor) for descriptor in config.agents]
        return Team(
            config,
            handles,
            metrics=self.metrics,
            similarity=self.similarity,
            scorer=self.scorer,
            decomposer=self.decomposer,
        )
