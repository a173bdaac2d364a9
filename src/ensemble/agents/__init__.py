"""Agent package exports."""

from .base import AgentEvent, AgentResult, AgentRuntime, AgentState, HookContext, HookDecision
from .steps import RetryPolicy, StepExecutor, StepResult

__all__ = [
    "AgentEvent",
    "AgentResult",
    "AgentRuntime",
    "AgentState",
    "HookContext",
    "HookDecision",
    "RetryPolicy",
    "StepExecutor",
    "StepResult",
]
