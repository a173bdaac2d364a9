"""Task dataclasses handed to agents and teams."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, Mapping


def _new_task_id() -> str:
    return f"task-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class Task:
    """A goal described in natural language plus optional structured context."""

    description: str
    context: Mapping[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=_new_task_id)

    def __post_init__(self) -> None:
        # freeze a private copy so callers cannot mutate a submitted task
        object.__setattr__(self, "context", MappingProxyType(dict(self.context)))

    def with_context(self, **extra: Any) -> "Task":
        merged: Dict[str, Any] = dict(self.context)
        merged.update(extra)
        return replace(self, context=merged)

    def derive(self, description: str, context: Mapping[str, Any]) -> "Task":
        """Return a new task sharing this task's id but with new text and context."""

        return Task(description=description, context=context, id=self.id)

    @classmethod
    def coerce(cls, value: "Task | str", context: Mapping[str, Any] | None = None) -> "Task":
        if isinstance(value, Task):
            return value.with_context(**context) if context else value
        return cls(description=str(value), context=dict(context or {}))
