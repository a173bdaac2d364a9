"""Command line interface for running configured agents and teams."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .agents.base import AgentResult
from .config import ConfigError, ProjectConfig, TaskSpec
from .orchestrator import Orchestrator
from .planning.planner import PlanStep
from .strategy import Strategy
from .teams.coordinator import TeamResult

app = typer.Typer(help="Agent ensemble CLI")
console = Console()


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _confirm_step(step: PlanStep, context: Any) -> bool:
    return typer.confirm(f"Allow tool '{step.tool}' for step {step.id} ({step.description})?")


def _short(value: Any, limit: int = 120) -> str:
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    return text if len(text) <= limit else text[: limit - 3] + "..."


def _render_agent(task_id: str, result: AgentResult) -> None:
    table = Table(title=f"{task_id}: agent {result.agent_name}", show_lines=True)
    table.add_column("Step")
    table.add_column("Tool")
    table.add_column("Status")
    table.add_column("Attempts")
    table.add_column("Output / error")
    for step in result.tools_executed:
        status = "[green]ok[/]" if step.success else "[red]failed[/]"
        detail = _short(step.output) if step.success else str(step.error)
        table.add_row(step.step_id, step.tool or "-", status, str(step.attempts), detail)
    console.print(table)
    if not result.success:
        console.print(f"[red]Agent failed:[/] {result.error}")


def _render_team(task_id: str, result: TeamResult) -> None:
    table = Table(title=f"{task_id}: {result.strategy.value}", show_lines=True)
    table.add_column("Agent")
    table.add_column("Status")
    table.add_column("Output / error")
    for item in result.per_agent_results:
        status = "[green]ok[/]" if item.success else "[red]failed[/]"
        detail = _short(item.output) if item.success else str(item.error)
        table.add_row(item.agent_name, status, detail)
    console.print(table)
    if result.role_assignments:
        for role in result.role_assignments:
            console.print(f"- {role.agent_id}: {', '.join(role.responsibilities)}")
    for subtask in result.unassigned:
        console.print(f"[yellow]unassigned:[/] {subtask.description}")
    if result.consensus_reached is not None:
        console.print(
            f"consensus: {result.consensus_reached} after {result.metrics.get('rounds')} round(s)"
        )
    verdict = "[green]succeeded[/]" if result.success else f"[red]failed[/] {result.error or ''}"
    console.print(f"Team {verdict}")


@app.command()
def run(
    config_path: Path = typer.Argument(..., help="Path to YAML configuration"),
    task: Optional[List[str]] = typer.Option(None, "--task", "-t", help="Only run these task ids"),
    strategy: Optional[str] = typer.Option(None, help="Override the strategy of team tasks"),
    log_level: str = typer.Option("warning", help="Logging level"),
) -> None:
    """Execute the tasks described in the given config file."""

    _configure_logging(log_level)
    try:
        config = ProjectConfig.from_file(config_path)
        specs = [config.get_task(item) for item in task] if task else list(config.tasks)
        override = Strategy.parse(strategy) if strategy else None
        orchestrator = Orchestrator(config, approver=_confirm_step)
    except (ConfigError, ValueError) as exc:
        console.print(f"[red]Configuration error:[/] {exc}")
        raise typer.Exit(code=2) from exc

    console.print(f"[bold green]Running project[/] {config.name}")
    failures = 0
    for spec in specs:
        if override is not None and spec.team:
            spec = TaskSpec(spec.id, spec.description, spec.team, spec.agent, spec.context, override)
        result = asyncio.run(orchestrator.run_task(spec))
        if isinstance(result, TeamResult):
            _render_team(spec.id, result)
        else:
            _render_agent(spec.id, result)
        failures += 0 if result.success else 1
    if failures:
        raise typer.Exit(code=1)


@app.command()
def inspect(config_path: Path = typer.Argument(..., help="Config to inspect")) -> None:
    """Print the agents, teams, tools, and tasks defined by a configuration file."""

    try:
        config = ProjectConfig.from_file(config_path)
        orchestrator = Orchestrator(config)
    except ConfigError as exc:
        console.print(f"[red]Configuration error:[/] {exc}")
        raise typer.Exit(code=2) from exc
    console.print(f"[bold]Project:[/] {config.name}\n{config.description or ''}")
    console.print("[bold]Agents[/]")
    for runtime in orchestrator.agents.values():
        console.print(f"- {runtime.name}: tools={runtime.tool_names} skills={runtime.config.skills}")
    console.print("[bold]Teams[/]")
    for team in orchestrator.teams.values():
        console.print(f"- {team.name} ({team.default_strategy.value}): {', '.join(team.members())}")
    console.print("[bold]Tools[/]")
    for name, summary in orchestrator.tool_registry.descriptions().items():
        console.print(f"- {name}: {summary}")
    console.print("[bold]Tasks[/]")
    for spec in config.tasks:
        console.print(f"- {spec.id} -> {spec.team or spec.agent}: {spec.description}")


if __name__ == "__main__":  # pragma: no cover
    app()
