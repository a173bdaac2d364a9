"""Task runner utilities."""

from __future__ import annotations

from typing import Any, Callable, Dict

from ..config import TaskSpec
from .base import Task


class TaskRunner:
    """Executes configured tasks by dispatching them to their team or agent."""

    def __init__(self, resolver: Callable[[TaskSpec], object]):
        self._resolver = resolver
        self._results: Dict[str, Any] = {}

    async def run(self, spec: TaskSpec) -> Any:
        target = self._resolver(spec)
        if not hasattr(target, "run"):
            raise AttributeError(f"Target for task {spec.id} missing run method")
        task = Task(description=spec.description, context=spec.context, id=spec.id)
        if spec.team:
            result = await target.run(task, spec.strategy)
        else:
            result = await target.run(task)
        self._results[spec.id] = result
        return result

    def results(self) -> Dict[str, Any]:
        return dict(self._results)
