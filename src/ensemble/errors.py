"""Error taxonomy shared by the runtime and the team coordinator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    VALIDATION_FAILED = "ValidationFailed"
    TOOL_NOT_FOUND = "ToolNotFound"
    TOOL_EXECUTION_FAILED = "ToolExecutionFailed"
    PLANNING_FAILED = "PlanningFailed"
    TIMEOUT = "Timeout"
    CONSENSUS_NOT_REACHED = "ConsensusNotReached"
    APPROVAL_DENIED = "ApprovalDenied"
    NO_CAPABLE_AGENT = "NoCapableAgent"
    INTERNAL = "Internal"

    @property
    def retryable(self) -> bool:
        return self is ErrorKind.TOOL_EXECUTION_FAILED


@dataclass(frozen=True)
class ErrorInfo:
    """Failure carried as data by step, agent and team results."""

    kind: ErrorKind
    message: str
    step_ordinal: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        where = f" (step {self.step_ordinal})" if self.step_ordinal is not None else ""
        return f"{self.kind.value}{where}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "step_ordinal": self.step_ordinal,
            "details": dict(self.details),
        }


class EnsembleError(RuntimeError):
    """Base class for exceptions raised at collaborator seams."""


class ConfigError(EnsembleError):
    """Raised when configuration files are invalid."""


class PlanningFailed(EnsembleError):
    """Raised by planners that cannot produce a usable plan."""
