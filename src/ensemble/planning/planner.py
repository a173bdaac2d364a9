"""Planners turn a task into an ordered list of plan steps."""

from __future__ import annotations

import asyncio
import heapq
import json
import logging
import re
import textwrap
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from ..errors import PlanningFailed
from ..llm.provider import LLMProvider, PromptContext
from ..tasks.base import Task

logger = logging.getLogger(__name__)

REFERENCE_PREFIX = "$"
_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


@dataclass(frozen=True)
class PlanStep:
    """One planned unit of work, optionally bound to a tool."""

    ordinal: int
    tool: Optional[str]
    description: str
    input_bindings: Dict[str, Any] = field(default_factory=dict)
    input_schema: Optional[Dict[str, str]] = None
    output_schema: Optional[Dict[str, str]] = None
    step_id: Optional[str] = None

    @property
    def id(self) -> str:
        return self.step_id or f"step{self.ordinal}"

    @property
    def references(self) -> List[str]:
        """Dotted context paths this step's bindings read from."""

        return [
            value[len(REFERENCE_PREFIX):]
            for value in self.input_bindings.values()
            if isinstance(value, str) and value.startswith(REFERENCE_PREFIX)
        ]

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], position: int) -> "PlanStep":
        if not isinstance(data, Mapping):
            raise PlanningFailed(f"Plan step {position} must be a mapping, got {type(data).__name__}")
        tool = data.get("tool")
        description = data.get("description") or data.get("answer") or (f"Call {tool}" if tool else "")
        if not tool and not description:
            raise PlanningFailed(f"Plan step {position} has neither a tool nor a description")
        bindings = data.get("inputs", data.get("input_bindings")) or {}
        if not isinstance(bindings, Mapping):
            raise PlanningFailed(f"Plan step {position} inputs must be a mapping")
        try:
            ordinal = int(data.get("ordinal", position))
        except (TypeError, ValueError) as exc:
            raise PlanningFailed(f"Plan step {position} has a non-integer ordinal") from exc
        return cls(
            ordinal=ordinal,
            tool=str(tool) if tool else None,
            description=str(description),
            input_bindings=dict(bindings),
            input_schema=_schema(data.get("input_schema"), position),
            output_schema=_schema(data.get("outputs", data.get("output_schema")), position),
            step_id=data.get("id"),
        )


def _schema(value: Any, position: int) -> Optional[Dict[str, str]]:
    if value is None:
        return None
    if isinstance(value, Mapping):
        return {str(key): str(kind) for key, kind in value.items()}
    if isinstance(value, (list, tuple)):
        return {str(key): "any" for key in value}
    raise PlanningFailed(f"Plan step {position} declares an invalid schema: {value!r}")


def resolve_reference(path: str, context: Mapping[str, Any]) -> Any:
    """Look up a dotted path such as ``step1.summary`` in ``context``."""

    current: Any = context
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            raise KeyError(path)
    return current


def order_plan(
    steps: Sequence[PlanStep],
    produced_fields: Callable[[PlanStep], Iterable[str]] | None = None,
) -> List[PlanStep]:
    """Sort steps so that every consumer runs after the steps producing its inputs.

    Ordinals break ties. A dependency cycle raises :class:`PlanningFailed`.
    """

    if produced_fields is None:
        produced_fields = lambda step: (step.output_schema or {}).keys()  # noqa: E731
    ordinals = [step.ordinal for step in steps]
    if len(set(ordinals)) != len(ordinals):
        raise PlanningFailed("Plan contains duplicate step ordinals")

    producers: Dict[str, List[int]] = {}
    for index, step in enumerate(steps):
        for name in {step.id, *produced_fields(step)}:
            producers.setdefault(name, []).append(index)

    edges: Dict[int, set] = {index: set() for index in range(len(steps))}
    indegree = [0] * len(steps)
    for index, step in enumerate(steps):
        for ref in step.references:
            for producer in producers.get(ref.split(".", 1)[0], []):
                if producer != index and index not in edges[producer]:
                    edges[producer].add(index)
                    indegree[index] += 1

    ready = [(step.ordinal, index) for index, step in enumerate(steps) if indegree[index] == 0]
    heapq.heapify(ready)
    ordered: List[PlanStep] = []
    while ready:
        _, index = heapq.heappop(ready)
        ordered.append(steps[index])
        for consumer in edges[index]:
            indegree[consumer] -= 1
            if indegree[consumer] == 0:
                heapq.heappush(ready, (steps[consumer].ordinal, consumer))
    if len(ordered) != len(steps):
        stuck = sorted(step.id for index, step in enumerate(steps) if indegree[index] > 0)
        raise PlanningFailed(f"Plan has a dependency cycle between: {', '.join(stuck)}")
    return ordered


class Planner(Protocol):
    async def plan(self, task: Task, tool_names: Sequence[str]) -> List[PlanStep]:  # pragma: no cover - interface
        """Return the steps needed to accomplish ``task``."""


def parse_plan(payload: Any) -> List[PlanStep]:
    """Build plan steps from a decoded JSON/YAML payload."""

    if isinstance(payload, Mapping):
        if "steps" in payload:
            payload = payload["steps"]
        elif payload.get("action") == "final" or "answer" in payload:
            # a direct answer is a single step without a tool
            payload = [{"description": payload.get("answer") or payload.get("input", "")}]
        else:
            payload = [payload]
    if not isinstance(payload, list):
        raise PlanningFailed(f"Plan must be a list of steps, got {type(payload).__name__}")
    if not payload:
        raise PlanningFailed("Planner returned an empty plan")
    return [PlanStep.from_mapping(item, position) for position, item in enumerate(payload, start=1)]


class StaticPlanner:
    """Replays a fixed plan regardless of the task."""

    def __init__(self, steps: Iterable[PlanStep | Mapping[str, Any]]) -> None:
        items = list(steps)
        self.steps = [
            item if isinstance(item, PlanStep) else PlanStep.from_mapping(item, position)
            for position, item in enumerate(items, start=1)
        ]

    async def plan(self, task: Task, tool_names: Sequence[str]) -> List[PlanStep]:
        if not self.steps:
            raise PlanningFailed("Static plan is empty")
        return list(self.steps)


class LLMPlanner:
    """Asks a language model for a JSON plan and parses it."""

    def __init__(self, provider: LLMProvider, *, agent_name: str = "agent", description: str = "") -> None:
        self.provider = provider
        self.agent_name = agent_name
        self.description = description

    async def plan(self, task: Task, tool_names: Sequence[str]) -> List[PlanStep]:
        prompt = self.build_prompt(task, tool_names)
        context = PromptContext(agent_name=self.agent_name, task_id=task.id, purpose="plan")
        try:
            response = await asyncio.to_thread(self.provider.generate, prompt, context)
        except Exception as exc:  # noqa: BLE001 - provider failures become planning failures
            raise PlanningFailed(f"LLM provider failed: {exc}") from exc
        logger.debug("plan response for %s: %s", task.id, response)
        return self.parse_response(response)

    def build_prompt(self, task: Task, tool_names: Sequence[str]) -> str:
        tools_desc = "\n".join(f"- {name}" for name in tool_names) or "- none"
        header = textwrap.dedent(
            f"""
            You are agent {self.agent_name}. {self.description}
            Task: {task.description}
            Context: {json.dumps(dict(task.context), default=str)}
            Tools available:
            """
        ).strip()
        instructions = textwrap.dedent(
            """
            Respond with JSON: {"steps": [{"tool": <tool name or null>, "description": <text>,
            "inputs": {<param>: <literal or "$field" reference to earlier output>},
            "outputs": {<field>: <type>}}]}.
            Use a step with "tool": null and the answer as description for a direct answer.
            """
        ).strip()
        return f"{header}\n{tools_desc}\n{instructions}"

    def parse_response(self, response: str) -> List[PlanStep]:
        text = _FENCE.sub("", (response or "").strip())
        if not text:
            raise PlanningFailed("LLM returned an empty response")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise PlanningFailed(f"LLM returned malformed plan JSON: {exc}") from exc
        return parse_plan(payload)
