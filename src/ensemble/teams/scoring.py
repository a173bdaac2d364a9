"""Tunable heuristics: output similarity, capability scoring and task decomposition."""

from __future__ import annotations

import difflib
import json
import os
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Iterable, List, Mapping, Sequence, Tuple

from ..tasks.base import Task

if TYPE_CHECKING:  # pragma: no cover
    from .coordinator import AgentHandle

Similarity = Callable[[Any, Any], float]
Scorer = Callable[[Sequence[str], Sequence[str]], float]
Decomposer = Callable[[Task, Sequence["AgentHandle"]], List["SubTask"]]

_SPLIT = re.compile(r"\n+|;\s*|(?<=[.!?])\s+|\s+(?:and then|then|and)\s+", re.IGNORECASE)
_TOKEN = re.compile(r"[a-z0-9]+")


@dataclass(frozen=True)
class SubTask:
    index: int
    description: str
    required: Tuple[str, ...]


def canonical(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True, default=str)


def text_similarity(previous: Any, current: Any) -> float:
    """Ratio in ``[0, 1]`` between the canonical text forms of two outputs."""

    left, right = canonical(previous), canonical(current)
    if left == right:
        return 1.0
    return difflib.SequenceMatcher(None, left, right).ratio()


def capability_overlap(capabilities: Sequence[str], required: Sequence[str]) -> float:
    have = {item.lower() for item in capabilities}
    return float(len(have.intersection(item.lower() for item in required)))


def _tokens(text: str) -> List[str]:
    return _TOKEN.findall(text.lower())


def _related(word: str, token: str) -> bool:
    shared = len(os.path.commonprefix([word, token]))
    return shared >= max(4, min(len(word), len(token)) - 3)


def infer_capabilities(text: str, capabilities: Iterable[str]) -> Tuple[str, ...]:
    """Capabilities whose name shares a word stem with ``text``."""

    words = _tokens(text)
    matched = []
    for capability in capabilities:
        parts = _tokens(capability.replace("_", " "))
        if parts and any(_related(word, part) for part in parts for word in words):
            matched.append(capability)
    return tuple(dict.fromkeys(matched))


def decompose_task(task: Task, handles: Sequence["AgentHandle"]) -> List[SubTask]:
    """Split a task into sub-tasks with required capabilities.

    An explicit ``subtasks`` list in the task context wins; each entry is a
    string or a mapping with ``description`` and ``capabilities``. Otherwise the
    description is split into clauses and capabilities are inferred by stem.
    """

    known = [cap for handle in handles for cap in handle.capabilities]
    explicit = task.context.get("subtasks")
    items: List[SubTask] = []
    if explicit:
        for index, entry in enumerate(explicit):
            if isinstance(entry, Mapping):
                description = str(entry.get("description", ""))
                required = entry.get("capabilities")
                if isinstance(required, str):
                    required = (required,)
                required = tuple(required) if required is not None else infer_capabilities(description, known)
            else:
                description = str(entry)
                required = infer_capabilities(description, known)
            items.append(SubTask(index=index, description=description, required=required))
        return items
    clauses = [part.strip(" .") for part in _SPLIT.split(task.description) if part and part.strip(" .")]
    for index, clause in enumerate(clauses or [task.description]):
        items.append(SubTask(index=index, description=clause, required=infer_capabilities(clause, known)))
    return items
