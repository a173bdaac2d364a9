"""Multi-agent teams."""

from ..strategy import Strategy
from .context import ContextSnapshot, SharedContext
from .coordinator import AgentHandle, Team, TeamCoordinator, TeamResult, TeamStatus
from .scoring import SubTask, capability_overlap, decompose_task, text_similarity
from .strategies import RoleAssignment

__all__ = [
    "AgentHandle",
    "ContextSnapshot",
    "RoleAssignment",
    "SharedContext",
    "Strategy",
    "SubTask",
    "Team",
    "TeamCoordinator",
    "TeamResult",
    "TeamStatus",
    "capability_overlap",
    "decompose_task",
    "text_similarity",
]
