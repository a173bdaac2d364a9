"""Planning primitives."""

from .planner import (
    LLMPlanner,
    Planner,
    PlanStep,
    StaticPlanner,
    order_plan,
    parse_plan,
    resolve_reference,
)

__all__ = [
    "LLMPlanner",
    "Planner",
    "PlanStep",
    "StaticPlanner",
    "order_plan",
    "parse_plan",
    "resolve_reference",
]
