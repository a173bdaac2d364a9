"""Agent runtime and multi-agent team coordination."""

from .agents import AgentResult, AgentRuntime, RetryPolicy, StepExecutor, StepResult
from .config import AgentConfig, ProjectConfig, TeamConfig
from .errors import ErrorInfo, ErrorKind
from .orchestrator import Orchestrator
from .strategy import Strategy
from .tasks import Task
from .teams import AgentHandle, SharedContext, Team, TeamCoordinator, TeamResult

__version__ = "0.1.0"

__all__ = [
    "AgentConfig",
    "AgentHandle",
    "AgentResult",
    "AgentRuntime",
    "ErrorInfo",
    "ErrorKind",
    "Orchestrator",
    "ProjectConfig",
    "RetryPolicy",
    "SharedContext",
    "StepExecutor",
    "StepResult",
    "Strategy",
    "Task",
    "Team",
    "TeamConfig",
    "TeamCoordinator",
    "TeamResult",
]
