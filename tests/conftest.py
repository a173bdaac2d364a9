import asyncio
import time
from typing import Any, Dict, List

import pytest

from ensemble.agents.base import AgentResult, AgentRuntime
from ensemble.config import AgentConfig
from ensemble.errors import ErrorKind
from ensemble.memory.episodic import EpisodicMemory
from ensemble.metrics import InMemoryMetrics
from ensemble.planning.planner import StaticPlanner
from ensemble.tasks.base import Task
from ensemble.tools.base import Tool, ToolContext, ToolResult
from ensemble.tools.registry import ToolGateway, ToolRegistry


class FlakyTool(Tool):
    """Fails ``failures`` times, then returns ``result`` (or an echo of ``text``)."""

    def __init__(self, name: str, failures: int = 0, result: Any = None, **kwargs: Any) -> None:
        super().__init__(name, **kwargs)
        self.failures = failures
        self.result = result
        self.calls: List[Dict[str, Any]] = []

    def run(self, *, params: Dict[str, Any], context: ToolContext) -> ToolResult:
        self.calls.append(params)
        if len(self.calls) <= self.failures:
            return ToolResult.fail(f"boom {len(self.calls)}")
        if self.result is not None:
            return ToolResult.ok(self.result)
        return ToolResult.ok({"echo": params.get("text")})


class SlowTool(Tool):
    def __init__(self, name: str, delay: float) -> None:
        super().__init__(name)
        self.delay = delay
        self.started = 0
        self.finished = 0

    async def run(self, *, params: Dict[str, Any], context: ToolContext) -> ToolResult:
        self.started += 1
        await asyncio.sleep(self.delay)
        self.finished += 1
        return ToolResult.ok({"slow": True})


class BlockingTool(Tool):
    """Synchronous tool that holds its thread for ``delay`` seconds."""

    def __init__(self, name: str, delay: float) -> None:
        super().__init__(name)
        self.delay = delay

    def run(self, *, params: Dict[str, Any], context: ToolContext) -> ToolResult:
        time.sleep(self.delay)
        return ToolResult.ok({"blocked_for": self.delay})


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_gateway(*tools: Tool) -> ToolGateway:
    registry = ToolRegistry()
    for tool in tools:
        registry.register_instance(tool)
    return ToolGateway(registry)


def make_runtime(name: str, steps: List[Dict[str, Any]], *tools: Tool, **kwargs: Any) -> AgentRuntime:
    config_kwargs = {
        key: kwargs.pop(key)
        for key in ("max_calls", "require_approval", "timeout", "skills", "retry")
        if key in kwargs
    }
    config = AgentConfig(name=name, tools=[tool.name for tool in tools], **config_kwargs)
    return AgentRuntime(config, StaticPlanner(steps), make_gateway(*tools), **kwargs)


class ScriptedAgent:
    """Stand-in runtime for team tests; records every task it receives."""

    def __init__(
        self,
        name: str,
        output: Any = None,
        *,
        fail: bool = False,
        delay: float = 0.0,
        raises: bool = False,
    ) -> None:
        self.name = name
        self.output = output
        self.fail = fail
        self.delay = delay
        self.raises = raises
        self.tasks: List[Task] = []

    async def run(self, task: Task, *, timeout: float | None = None) -> AgentResult:
        self.tasks.append(task)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.raises:
            raise RuntimeError("scripted crash")
        if self.fail:
            return AgentResult.failure(self.name, ErrorKind.TOOL_EXECUTION_FAILED, "scripted failure")
        output = self.output(task) if callable(self.output) else self.output
        return AgentResult(success=True, output=output, agent_name=self.name)


@pytest.fixture
def memory() -> EpisodicMemory:
    return EpisodicMemory()


@pytest.fixture
def metrics() -> InMemoryMetrics:
    return InMemoryMetrics()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


