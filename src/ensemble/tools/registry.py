"""Tool registry and the gateway agents call tools through."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..config import ToolSpec, instantiate_from_path
from .base import Tool, ToolContext, ToolResult

logger = logging.getLogger(__name__)

ToolFactory = Callable[[], Tool]


class ToolRegistry:
    """Name-keyed tools. Factories run on first lookup and the instance is cached."""

    def __init__(self) -> None:
        self._factories: Dict[str, ToolFactory] = {}
        self._cache: Dict[str, Tool] = {}

    def register_instance(self, tool: Tool, *, overwrite: bool = False) -> None:
        self._check_free(tool.name, overwrite)
        self._factories[tool.name] = lambda: tool
        self._cache[tool.name] = tool

    def register_factory(self, name: str, factory: ToolFactory, *, overwrite: bool = False) -> None:
        self._check_free(name, overwrite)
        self._factories[name] = factory
        self._cache.pop(name, None)

    def register_from_spec(self, spec: ToolSpec) -> None:
        """Register a tool declared in configuration, replacing any tool of that name."""

        def build() -> Tool:
            instance = instantiate_from_path(spec.type, name=spec.name, **spec.args)
            if not isinstance(instance, Tool):
                raise TypeError(f"Tool '{spec.name}' from {spec.type} is not a Tool")
            return instance

        self.register_factory(spec.name, build, overwrite=True)

    def configure_from_specs(self, specs: Iterable[ToolSpec]) -> None:
        for spec in specs:
            self.register_from_spec(spec)

    def _check_free(self, name: str, overwrite: bool) -> None:
        if name in self._factories and not overwrite:
            raise ValueError(f"Tool '{name}' is already registered")

    def get(self, name: str) -> Tool:
        tool = self._cache.get(name)
        if tool is not None:
            return tool
        try:
            factory = self._factories[name]
        except KeyError:
            raise KeyError(f"Tool '{name}' is not registered") from None
        tool = self._cache[name] = factory()
        logger.debug("instantiated tool %s (%s)", name, type(tool).__name__)
        return tool

    def __contains__(self, name: str) -> bool:
        return name in self._factories

    def names(self) -> List[str]:
        return sorted(self._factories)

    def descriptions(self) -> Dict[str, str]:
        """First docstring line of every tool, instantiating lazily registered ones."""

        summary: Dict[str, str] = {}
        for name in self.names():
            lines = self.get(name).description.strip().splitlines()
            summary[name] = lines[0] if lines else ""
        return summary


class ToolGateway:
    """Resolves tool names and executes them, reporting every failure as data."""

    def __init__(self, registry: ToolRegistry) -> None:
        self.registry = registry

    def has(self, name: str) -> bool:
        return name in self.registry

    def describe(self, name: str) -> Optional[Tool]:
        if name not in self.registry:
            return None
        try:
            return self.registry.get(name)
        except Exception:  # noqa: BLE001 - a broken factory reads as a missing tool
            logger.warning("tool %s could not be instantiated", name, exc_info=True)
            return None

    async def execute(self, name: str, params: Dict[str, Any], context: ToolContext) -> ToolResult:
        tool = self.describe(name)
        if tool is None:
            return ToolResult.fail(f"Tool '{name}' not found", not_found=True)
        try:
            if inspect.iscoroutinefunction(tool.run):
                outcome = await tool.run(params=dict(params), context=context)
            else:
                # sync tools run off the event loop so timeouts and sibling agents keep going
                outcome = await asyncio.to_thread(tool.run, params=dict(params), context=context)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception as exc:  # noqa: BLE001 - tool errors are results, not exceptions
            logger.debug("tool %s raised", name, exc_info=True)
            return ToolResult.fail(f"{type(exc).__name__}: {exc}")
        if not isinstance(outcome, ToolResult):
            # bare return values are treated as a successful result
            return ToolResult.ok(outcome)
        return outcome
