"""Base classes for tools."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, List, Mapping, Optional, Union

# Declared field types understood by step and tool schemas.
FIELD_TYPES: Dict[str, tuple] = {
    "any": (object,),
    "string": (str,),
    "number": (int, float),
    "integer": (int,),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list, tuple),
}


def check_fields(data: Any, schema: Mapping[str, str] | None) -> List[str]:
    """Return a list of problems found when checking ``data`` against ``schema``.

    ``schema`` maps a required field name to one of :data:`FIELD_TYPES`.
    """

    if not schema:
        return []
    if not isinstance(data, Mapping):
        return [f"expected a mapping, got {type(data).__name__}"]
    problems: List[str] = []
    for name, type_name in schema.items():
        if name not in data:
            problems.append(f"missing field '{name}'")
            continue
        expected = FIELD_TYPES.get(str(type_name).lower())
        if expected is None:
            problems.append(f"field '{name}' declares unknown type '{type_name}'")
            continue
        value = data[name]
        # bool is an int subclass; keep it out of numeric fields
        if isinstance(value, bool) and type_name in ("number", "integer"):
            problems.append(f"field '{name}' expected {type_name}, got bool")
        elif not isinstance(value, expected):
            problems.append(f"field '{name}' expected {type_name}, got {type(value).__name__}")
    return problems


@dataclass
class ToolContext:
    """Metadata passed to tool invocations."""

    agent_name: str
    task_id: str
    step: int
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResult:
    """Uniform result returned by every tool call."""

    success: bool
    result: Any = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, result: Any = None, **metadata: Any) -> "ToolResult":
        return cls(success=True, result=result, metadata=metadata)

    @classmethod
    def fail(cls, error: str, **metadata: Any) -> "ToolResult":
        return cls(success=False, error=error, metadata=metadata)


class Tool:
    """Base tool class."""

    name: str
    description: str
    input_schema: Dict[str, str] = {}
    output_schema: Dict[str, str] = {}

    def __init__(self, name: str, description: str | None = None, **kwargs: object) -> None:
        self.name = name
        self.description = description or self.__class__.__doc__ or ""
        self.config = kwargs

    def run(
        self, *, params: Dict[str, Any], context: ToolContext
    ) -> Union[ToolResult, Awaitable[ToolResult]]:  # pragma: no cover - abstract
        raise NotImplementedError
