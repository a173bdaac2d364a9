"""Versioned blackboard shared by the agents of one team run."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Tuple

from ..agents.base import AgentResult


def _frozen(data: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(copy.deepcopy(dict(data)))


@dataclass(frozen=True)
class ContextSnapshot:
    """Read-only view of a :class:`SharedContext` at one version."""

    team_id: str
    version: int
    per_agent_outputs: Mapping[str, Any]
    blackboard: Mapping[str, Any]
    iteration_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "team_id": self.team_id,
            "version": self.version,
            "per_agent_outputs": copy.deepcopy(dict(self.per_agent_outputs)),
            "blackboard": copy.deepcopy(dict(self.blackboard)),
            "iteration_count": self.iteration_count,
        }


@dataclass
class SharedContext:
    """Mutable team state. Only the coordinator writes; agents read snapshots.

    Every committed change bumps ``version`` so readers holding an older
    snapshot can tell that it is stale.
    """

    team_id: str
    version: int = 0
    per_agent_outputs: Dict[str, AgentResult] = field(default_factory=dict)
    blackboard: Dict[str, Any] = field(default_factory=dict)
    iteration_count: int = 0

    def snapshot(self) -> ContextSnapshot:
        return ContextSnapshot(
            team_id=self.team_id,
            version=self.version,
            per_agent_outputs=_frozen(self.outputs()),
            blackboard=_frozen(self.blackboard),
            iteration_count=self.iteration_count,
        )

    def outputs(self) -> Dict[str, Any]:
        """Outputs of the agents that succeeded, keyed by agent id."""

        return {
            agent_id: result.output
            for agent_id, result in self.per_agent_outputs.items()
            if result.success
        }

    def record_result(self, agent_id: str, result: AgentResult) -> None:
        self.per_agent_outputs[agent_id] = result
        self.version += 1

    def merge(self, agent_id: str, output: Any) -> Tuple[str, ...]:
        """Apply one agent's contribution to the blackboard (last writer wins).

        Mapping outputs are merged key by key; anything else is stored under the
        agent id. Returns the keys written.
        """

        if isinstance(output, Mapping):
            updates = {str(key): copy.deepcopy(value) for key, value in output.items()}
        else:
            updates = {agent_id: copy.deepcopy(output)}
        self.blackboard.update(updates)
        self.version += 1
        return tuple(updates)

    def merge_all(self, contributions: Iterable[Tuple[str, Any]]) -> None:
        for agent_id, output in contributions:
            self.merge(agent_id, output)

    def advance_round(self) -> int:
        self.iteration_count += 1
        return self.iteration_count
