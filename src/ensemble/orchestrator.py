"""High-level orchestration for running config-defined agents and teams."""

from __future__ import annotations

import logging
from typing import Any, Dict

from .agents.base import AgentRuntime, Approver, ErrorHook
from .config import AgentConfig, ConfigError, ProjectConfig, TaskSpec, instantiate_from_path
from .memory.episodic import EpisodicMemory, Memory
from .metrics import InMemoryMetrics, MetricsSink
from .planning.planner import LLMPlanner, Planner, StaticPlanner
from .tasks.runner import TaskRunner
from .teams.coordinator import Team, TeamCoordinator
from .tools.builtin import register_builtin_tools
from .tools.registry import ToolGateway, ToolRegistry

logger = logging.getLogger(__name__)


class Orchestrator:
    """Builds tools, agents and teams from config and runs the requested tasks."""

    def __init__(
        self,
        project_config: ProjectConfig,
        *,
        memory: Memory | None = None,
        metrics: MetricsSink | None = None,
        approver: Approver | None = None,
        error_hook: ErrorHook | None = None,
    ) -> None:
        self.config = project_config
        self.memory = memory if memory is not None else EpisodicMemory()
        self.metrics = metrics if metrics is not None else InMemoryMetrics()
        self.approver = approver
        self.error_hook = error_hook
        self.tool_registry = ToolRegistry()
        register_builtin_tools(self.tool_registry)
        self.tool_registry.configure_from_specs(self.config.tool_specs.values())
        self.gateway = ToolGateway(self.tool_registry)
        self.agents: Dict[str, AgentRuntime] = self._build_agents()
        self.coordinator = TeamCoordinator(self.agents, metrics=self.metrics)
        self.teams: Dict[str, Team] = {
            name: self.coordinator.create(spec) for name, spec in self.config.teams.items()
        }
        self.runner = TaskRunner(self._resolve)

    def _resolve(self, spec: TaskSpec) -> object:
        if spec.team:
            return self.teams[spec.team]
        return self.agents[spec.agent]

    def _build_agents(self) -> Dict[str, AgentRuntime]:
        return {name: self._materialize_agent(spec) for name, spec in self.config.agents.items()}

    def _planner_for(self, spec: AgentConfig) -> Planner:
        if spec.plan is not None:
            return StaticPlanner(spec.plan)
        provider_path = spec.llm or self.config.defaults.llm
        if not provider_path:
            raise ConfigError(f"Agent '{spec.name}' needs either a static plan or an llm provider")
        provider_params = dict(self.config.defaults.llm_params)
        provider_params.update(spec.llm_params)
        provider = instantiate_from_path(provider_path, **provider_params)
        return LLMPlanner(provider, agent_name=spec.name, description=spec.description or "")

    def _materialize_agent(self, spec: AgentConfig) -> AgentRuntime:
        missing = [name for name in spec.tools if name not in self.tool_registry]
        if missing:
            logger.warning("agent %s declares unregistered tools: %s", spec.name, ", ".join(missing))
        return AgentRuntime(
            spec,
            self._planner_for(spec),
            self.gateway,
            memory=self.memory,
            metrics=self.metrics,
            error_hook=self.error_hook,
            approver=self.approver,
        )

    async def run_task(self, spec: TaskSpec) -> Any:
        return await self.runner.run(spec)

    async def run(self) -> Dict[str, Any]:
        outputs: Dict[str, Any] = {}
        for spec in self.config.tasks:
            outputs[spec.id] = await self.run_task(spec)
        return outputs
