"""Configuration helpers for agents, teams and project files."""

from __future__ import annotations

import importlib
import pathlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, MutableMapping, Optional

import yaml

from .errors import ConfigError
from .strategy import Strategy

__all__ = [
    "AgentConfig",
    "AgentDescriptor",
    "ConfigError",
    "DefaultsSpec",
    "ProjectConfig",
    "RetrySpec",
    "TaskSpec",
    "TeamConfig",
    "ToolSpec",
    "import_string",
    "instantiate_from_path",
]


def _optional_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


def _names(value: Any) -> List[str]:
    """A single name or a list of names, as a list of strings."""
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(item) for item in value]


def _plan_step(agent: str, step: Any) -> Dict[str, Any]:
    if not isinstance(step, Mapping):
        raise ConfigError(f"Agent '{agent}' plan entries must be mappings, got {step!r}")
    return dict(step)


def _parse_strategy(value: Any, owner: str) -> Optional[Strategy]:
    if value is None:
        return None
    try:
        return Strategy.parse(value)
    except ValueError as exc:
        raise ConfigError(f"{owner}: {exc}") from exc


@dataclass
class RetrySpec:
    """Per-step retry policy; ``delay`` is in milliseconds."""

    max_attempts: int = 1
    delay: int = 0

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "RetrySpec":
        if not data:
            return cls()
        max_attempts = int(data.get("max_attempts", 1))
        if max_attempts < 1:
            raise ConfigError("retry.max_attempts must be at least 1")
        return cls(max_attempts=max_attempts, delay=int(data.get("delay", 0)))


@dataclass
class AgentConfig:
    """Definition of an agent. ``timeout`` is in milliseconds."""

    name: str
    tools: List[str] = field(default_factory=list)
    llm: Optional[str] = None
    llm_params: Dict[str, Any] = field(default_factory=dict)
    max_calls: Optional[int] = None
    require_approval: bool = False
    timeout: Optional[int] = None
    description: Optional[str] = None
    skills: List[str] = field(default_factory=list)
    retry: RetrySpec = field(default_factory=RetrySpec)
    plan: Optional[List[Dict[str, Any]]] = None

    @property
    def timeout_seconds(self) -> Optional[float]:
        return None if self.timeout is None else self.timeout / 1000.0

    @property
    def capabilities(self) -> List[str]:
        return list(dict.fromkeys([*self.tools, *self.skills]))

    @classmethod
    def from_mapping(cls, name: str, data: Optional[Mapping[str, Any]]) -> "AgentConfig":
        data = data or {}
        plan = data.get("plan")
        if plan is not None and not isinstance(plan, list):
            raise ConfigError(f"Agent '{name}' plan must be a list of steps")
        return cls(
            name=name,
            tools=_names(data.get("tools")),
            llm=data.get("llm"),
            llm_params=dict(data.get("llm_params") or {}),
            max_calls=_optional_int(data.get("max_calls")),
            require_approval=bool(data.get("require_approval", False)),
            timeout=_optional_int(data.get("timeout")),
            description=data.get("description"),
            skills=_names(data.get("skills")),
            retry=RetrySpec.from_mapping(data.get("retry")),
            plan=[_plan_step(name, step) for step in plan] if plan is not None else None,
        )


@dataclass
class AgentDescriptor:
    """Reference to an agent from a team, optionally overriding its capabilities."""

    name: str
    capabilities: Optional[List[str]] = None

    @classmethod
    def from_value(cls, value: Any) -> "AgentDescriptor":
        if isinstance(value, str):
            return cls(name=value)
        if isinstance(value, Mapping) and "name" in value:
            caps = value.get("capabilities")
            return cls(name=str(value["name"]), capabilities=_names(caps) if caps is not None else None)
        raise ConfigError(f"Invalid team member entry: {value!r}")


@dataclass
class TeamConfig:
    """Definition of a team. ``timeout`` is in milliseconds."""

    name: str
    agents: List[AgentDescriptor]
    strategy: Optional[Strategy] = None
    description: Optional[str] = None
    max_concurrency: Optional[int] = None
    max_rounds: int = 3
    consensus_threshold: float = 0.95
    require_consensus: bool = False
    timeout: Optional[int] = None

    @property
    def timeout_seconds(self) -> Optional[float]:
        return None if self.timeout is None else self.timeout / 1000.0

    @classmethod
    def from_mapping(cls, name: str, data: Mapping[str, Any]) -> "TeamConfig":
        members = data.get("agents")
        if not members:
            raise ConfigError(f"Team '{name}' requires a non-empty agents list")
        max_rounds = int(data.get("max_rounds", 3))
        if max_rounds < 1:
            raise ConfigError(f"Team '{name}' max_rounds must be at least 1")
        return cls(
            name=name,
            agents=[AgentDescriptor.from_value(item) for item in members],
            strategy=_parse_strategy(data.get("strategy"), f"Team '{name}'"),
            description=data.get("description"),
            max_concurrency=_optional_int(data.get("max_concurrency")),
            max_rounds=max_rounds,
            consensus_threshold=float(data.get("consensus_threshold", 0.95)),
            require_consensus=bool(data.get("require_consensus", False)),
            timeout=_optional_int(data.get("timeout")),
        )


@dataclass
class TaskSpec:
    """A task from the project file, targeting one team or one agent."""

    id: str
    description: str
    team: Optional[str] = None
    agent: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    strategy: Optional[Strategy] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TaskSpec":
        missing = [key for key in ("id", "description") if key not in data]
        if missing:
            raise ConfigError(f"Task is missing required keys: {', '.join(missing)}")
        team, agent = data.get("team"), data.get("agent")
        if bool(team) == bool(agent):
            raise ConfigError(f"Task '{data['id']}' must name exactly one of 'team' or 'agent'")
        return cls(
            id=str(data["id"]),
            description=str(data["description"]),
            team=team,
            agent=agent,
            context=dict(data.get("context") or {}),
            strategy=_parse_strategy(data.get("strategy"), f"Task '{data['id']}'"),
        )


@dataclass
class ToolSpec:
    """Configuration for a tool instance."""

    name: str
    type: str
    args: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, name: str, data: Mapping[str, Any]) -> "ToolSpec":
        if "type" not in data:
            raise ConfigError(f"Tool '{name}' requires a type path")
        return cls(name=name, type=str(data["type"]), args=dict(data.get("args", {})))


@dataclass
class DefaultsSpec:
    """Optional defaults applied to agents."""

    llm: Optional[str] = None
    llm_params: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "DefaultsSpec":
        if not data:
            return cls()
        return cls(llm=data.get("llm"), llm_params=dict(data.get("llm_params", {})))


@dataclass
class ProjectConfig:
    """Representation of the YAML configuration."""

    name: str
    description: Optional[str]
    defaults: DefaultsSpec
    agents: Dict[str, AgentConfig]
    teams: Dict[str, TeamConfig]
    tasks: List[TaskSpec]
    tool_specs: Dict[str, ToolSpec]

    @classmethod
    def from_file(cls, path: str | pathlib.Path) -> "ProjectConfig":
        path = pathlib.Path(path)
        try:
            text = path.read_text()
        except OSError as exc:
            raise ConfigError(f"Cannot read configuration {path}: {exc}") from exc
        return cls.from_yaml(text, default_name=path.stem)

    @classmethod
    def from_yaml(cls, text: str, default_name: str = "project") -> "ProjectConfig":
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML: {exc}") from exc
        if not isinstance(data, MutableMapping):
            raise ConfigError("Configuration root must be a mapping")
        return cls.from_mapping(data, default_name=default_name)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], default_name: str = "project") -> "ProjectConfig":
        agents = {
            name: AgentConfig.from_mapping(name, info)
            for name, info in (data.get("agents") or {}).items()
        }
        if not agents:
            raise ConfigError("At least one agent must be defined")
        teams = {
            name: TeamConfig.from_mapping(name, info)
            for name, info in (data.get("teams") or {}).items()
        }
        for team in teams.values():
            unknown = [member.name for member in team.agents if member.name not in agents]
            if unknown:
                raise ConfigError(f"Team '{team.name}' references unknown agents: {', '.join(unknown)}")
        tasks = [TaskSpec.from_mapping(item) for item in data.get("tasks") or []]
        for task in tasks:
            if task.team and task.team not in teams:
                raise ConfigError(f"Task '{task.id}' references unknown team '{task.team}'")
            if task.agent and task.agent not in agents:
                raise ConfigError(f"Task '{task.id}' references unknown agent '{task.agent}'")
        tool_specs = {
            name: ToolSpec.from_mapping(name, info)
            for name, info in (data.get("tools") or {}).items()
        }
        return cls(
            name=data.get("name", default_name),
            description=data.get("description"),
            defaults=DefaultsSpec.from_mapping(data.get("defaults")),
            agents=agents,
            teams=teams,
            tasks=tasks,
            tool_specs=tool_specs,
        )

    def get_task(self, task_id: str) -> TaskSpec:
        for task in self.tasks:
            if task.id == task_id:
                return task
        raise ConfigError(f"Unknown task '{task_id}'")


def import_string(path: str) -> Any:
    """Return attribute from module specified by path "module:qualname"."""

    if ":" not in path:
        raise ConfigError(f"Import path '{path}' must use module:qualname format")
    module_path, attr = path.split(":", 1)
    try:
        module = importlib.import_module(module_path)
    except ImportError as exc:
        raise ConfigError(f"Cannot import module '{module_path}': {exc}") from exc
    try:
        return getattr(module, attr)
    except AttributeError as exc:
        raise ConfigError(f"Module '{module_path}' has no attribute '{attr}'") from exc


def instantiate_from_path(path: str, *args: Any, **kwargs: Any) -> Any:
    """Import and instantiate a class given its dotted path."""

    cls = import_string(path)
    return cls(*args, **kwargs)
