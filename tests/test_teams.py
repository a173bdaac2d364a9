import asyncio
import time

import pytest

from conftest import BlockingTool, FlakyTool, ScriptedAgent, make_runtime
from ensemble.agents.base import AgentResult
from ensemble.config import AgentDescriptor, ConfigError, TeamConfig
from ensemble.errors import ErrorKind
from ensemble.strategy import Strategy
from ensemble.tasks.base import Task
from ensemble.teams.coordinator import AgentHandle, Team, TeamCoordinator


def make_team(*agents, strategy=None, capabilities=None, **kwargs):
    config_keys = ("max_concurrency", "max_rounds", "consensus_threshold", "require_consensus", "timeout")
    config_kwargs = {key: kwargs.pop(key) for key in config_keys if key in kwargs}
    config = TeamConfig(
        name="crew",
        agents=[AgentDescriptor(agent.name) for agent in agents],
        strategy=strategy,
        **config_kwargs,
    )
    capabilities = capabilities or {}
    handles = [AgentHandle.for_runtime(agent, capabilities.get(agent.name, ())) for agent in agents]
    return Team(config, handles, **kwargs)


# -- parallel ---------------------------------------------------------------


@pytest.mark.asyncio
async def test_parallel_is_the_default_and_isolates_failures():
    a = ScriptedAgent("A", {"a": 1}, delay=0.05)
    b = ScriptedAgent("B", fail=True)
    c = ScriptedAgent("C", {"c": 3})
    team = make_team(a, b, c)

    result = await team.run("analyze")

    assert result.strategy is Strategy.PARALLEL
    assert not result.success
    assert [item.agent_name for item in result.per_agent_results] == ["A", "B", "C"]
    assert [item.success for item in result.per_agent_results] == [True, False, True]
    assert result.shared_context["per_agent_outputs"] == {"A": {"a": 1}, "C": {"c": 3}}
    assert result.metrics["agent_calls"] == 3


@pytest.mark.asyncio
async def test_parallel_agents_receive_the_same_task():
    a, b = ScriptedAgent("A", "x"), ScriptedAgent("B", "y")
    task = Task("same", {"k": "v"})

    result = await make_team(a, b).run(task, Strategy.PARALLEL)

    assert result.success
    assert a.tasks[0] is task
    assert b.tasks[0] is task


@pytest.mark.asyncio
async def test_concurrency_cap_limits_in_flight_agents():
    active = 0
    peak = 0

    class Counting(ScriptedAgent):
        async def run(self, task, *, timeout=None):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return AgentResult(success=True, output=self.name, agent_name=self.name)

    team = make_team(Counting("A"), Counting("B"), Counting("C"), max_concurrency=1)

    result = await team.run("t")

    assert result.success
    assert peak == 1


@pytest.mark.asyncio
async def test_parallel_runs_blocking_tools_side_by_side():
    steps = [{"tool": "block", "description": "hold the thread"}]
    a = make_runtime("A", steps, BlockingTool("block", delay=0.2))
    b = make_runtime("B", steps, BlockingTool("block", delay=0.2))

    started = time.perf_counter()
    result = await make_team(a, b).run("t", Strategy.PARALLEL)
    elapsed = time.perf_counter() - started

    assert result.success
    assert elapsed < 0.35


@pytest.mark.asyncio
async def test_crashing_agent_becomes_internal_failure():
    team = make_team(ScriptedAgent("A", "ok"), ScriptedAgent("B", raises=True))

    result = await team.run("t")

    assert not result.success
    crashed = result.result_for("B")
    assert crashed.error.kind is ErrorKind.INTERNAL
    assert "scripted crash" in crashed.error.message
    assert result.result_for("A").success


@pytest.mark.asyncio
async def test_team_timeout_keeps_settled_results():
    team = make_team(ScriptedAgent("fast", "done"), ScriptedAgent("slow", "late", delay=5), timeout=100)

    result = await team.run("t")

    assert not result.success
    assert result.error.kind is ErrorKind.TIMEOUT
    assert [item.agent_name for item in result.per_agent_results] == ["fast"]


# -- sequential ---------------------------------------------------------------


@pytest.mark.asyncio
async def test_sequential_passes_prior_outputs_forward():
    researcher = ScriptedAgent("Researcher", {"notes": "light pressure"})
    writer = ScriptedAgent("Writer", lambda task: {"summary": task.context["Researcher"]["notes"]})
    team = make_team(researcher, writer, strategy=Strategy.SEQUENTIAL)

    result = await team.run(Task("write about solar sails", {"audience": "kids"}))

    assert result.success
    assert "Researcher" not in researcher.tasks[0].context
    context = writer.tasks[0].context
    assert context["Researcher"] == {"notes": "light pressure"}
    assert context["audience"] == "kids"
    assert result.result_for("Writer").output == {"summary": "light pressure"}


@pytest.mark.asyncio
async def test_sequential_stops_at_first_failure():
    a, b, c = ScriptedAgent("A", 1), ScriptedAgent("B", fail=True), ScriptedAgent("C", 3)

    result = await make_team(a, b, c).run("t", "sequential")

    assert not result.success
    assert [item.agent_name for item in result.per_agent_results] == ["A", "B"]
    assert c.tasks == []


# -- pipeline -----------------------------------------------------------------


@pytest.mark.asyncio
async def test_pipeline_output_becomes_next_input():
    a = ScriptedAgent("A", {"summary": "x"})
    b = ScriptedAgent("B", lambda task: {"final": task.context["summary"].upper()})
    team = make_team(a, b, strategy=Strategy.PIPELINE)

    result = await team.run(Task("start", {"seed": 1}))

    assert result.success
    stage_two = b.tasks[0]
    assert stage_two.context["summary"] == "x"
    assert stage_two.context["previous_agent"] == "A"
    assert "seed" not in stage_two.context
    assert stage_two.id == a.tasks[0].id
    assert result.result_for("B").output == {"final": "X"}


@pytest.mark.asyncio
async def test_pipeline_text_output_becomes_description():
    a = ScriptedAgent("A", "draft text")
    b = ScriptedAgent("B", lambda task: task.description)

    result = await make_team(a, b).run("start", Strategy.PIPELINE)

    assert b.tasks[0].description == "draft text"
    assert b.tasks[0].context["input"] == "draft text"
    assert result.result_for("B").output == "draft text"


@pytest.mark.asyncio
async def test_pipeline_aborts_on_failed_stage():
    a, b, c = ScriptedAgent("A", "1"), ScriptedAgent("B", fail=True), ScriptedAgent("C", "3")

    result = await make_team(a, b, c).run("t", Strategy.PIPELINE)

    assert not result.success
    assert c.tasks == []
    assert len(result.per_agent_results) == 2


# -- collaborative --------------------------------------------------------------


@pytest.mark.asyncio
async def test_collaborative_reaches_consensus_when_outputs_stabilize():
    a = ScriptedAgent("A", {"answer": "42"})
    b = ScriptedAgent("B", {"confidence": "high"})
    team = make_team(a, b, strategy=Strategy.COLLABORATIVE)

    result = await team.run("debate")

    assert result.success
    assert result.consensus_reached is True
    assert result.shared_context["iteration_count"] == 2
    assert result.shared_context["blackboard"] == {"answer": "42", "confidence": "high"}
    assert result.metrics["agent_calls"] == 4


@pytest.mark.asyncio
async def test_collaborative_agents_see_blackboard_of_previous_round():
    a = ScriptedAgent("A", lambda task: {"a_round": task.context["round"]})
    b = ScriptedAgent("B", lambda task: {"b_round": task.context["round"]})
    team = make_team(a, b, strategy=Strategy.COLLABORATIVE, max_rounds=2)

    await team.run("t")

    assert a.tasks[0].context["blackboard"] == {}
    assert a.tasks[1].context["blackboard"] == {"a_round": 1, "b_round": 1}
    assert a.tasks[1].context["blackboard_version"] > a.tasks[0].context["blackboard_version"]


@pytest.mark.asyncio
async def test_collaborative_without_consensus_reports_it():
    team = make_team(
        ScriptedAgent("A", {"x": 1}),
        ScriptedAgent("B", {"y": 2}),
        strategy=Strategy.COLLABORATIVE,
        similarity=lambda previous, current: 0.0,
    )

    result = await team.run("t")

    assert result.success
    assert result.consensus_reached is False
    assert result.shared_context["iteration_count"] == 3
    assert result.error.kind is ErrorKind.CONSENSUS_NOT_REACHED


@pytest.mark.asyncio
async def test_collaborative_can_require_consensus():
    team = make_team(
        ScriptedAgent("A", {"x": 1}),
        strategy=Strategy.COLLABORATIVE,
        similarity=lambda previous, current: 0.0,
        require_consensus=True,
        max_rounds=2,
    )

    result = await team.run("t")

    assert not result.success
    assert result.error.kind is ErrorKind.CONSENSUS_NOT_REACHED


@pytest.mark.asyncio
async def test_collaborative_round_survives_one_failing_agent():
    team = make_team(
        ScriptedAgent("A", {"answer": "yes"}),
        ScriptedAgent("B", fail=True),
        strategy=Strategy.COLLABORATIVE,
    )

    result = await team.run("t")

    assert result.success
    assert result.consensus_reached is True
    assert result.shared_context["blackboard"] == {"answer": "yes"}


@pytest.mark.asyncio
async def test_collaborative_fails_when_everyone_fails():
    team = make_team(ScriptedAgent("A", fail=True), ScriptedAgent("B", fail=True), strategy=Strategy.COLLABORATIVE)

    result = await team.run("t")

    assert not result.success
    assert result.shared_context["iteration_count"] == 1


# -- role based -----------------------------------------------------------------


@pytest.mark.asyncio
async def test_role_based_assigns_by_capability():
    researcher = ScriptedAgent("researcher", "notes")
    writer = ScriptedAgent("writer", "prose")
    team = make_team(
        researcher,
        writer,
        strategy=Strategy.ROLE_BASED,
        capabilities={"researcher": ("research", "search"), "writer": ("writing",)},
    )
    task = Task(
        "article",
        {
            "subtasks": [
                {"description": "collect sources", "capabilities": ["search"]},
                {"description": "draft the article", "capabilities": ["writing"]},
            ]
        },
    )

    result = await team.run(task)

    assert result.success
    assert [(role.agent_id, role.responsibilities) for role in result.role_assignments] == [
        ("researcher", ("collect sources",)),
        ("writer", ("draft the article",)),
    ]
    assert writer.tasks[0].description == "draft the article"
    assert writer.tasks[0].context["parent_task"] == "article"


@pytest.mark.asyncio
async def test_role_based_reports_unassigned_subtasks():
    writer = ScriptedAgent("writer", "prose")
    team = make_team(writer, capabilities={"writer": ("writing",)})
    task = Task(
        "article",
        {
            "subtasks": [
                {"description": "draft", "capabilities": ["writing"]},
                {"description": "render charts", "capabilities": ["plotting"]},
            ]
        },
    )

    result = await team.run(task, Strategy.ROLE_BASED)

    assert not result.success
    assert [item.description for item in result.unassigned] == ["render charts"]
    assert result.error.kind is ErrorKind.NO_CAPABLE_AGENT
    assert len(writer.tasks) == 1


@pytest.mark.asyncio
async def test_role_based_accepts_a_single_capability_string():
    writer = ScriptedAgent("writer", "prose")
    team = make_team(writer, capabilities={"writer": ("writing",)})
    task = Task("article", {"subtasks": [{"description": "draft it", "capabilities": "writing"}]})

    result = await team.run(task, Strategy.ROLE_BASED)

    assert result.success
    assert result.unassigned == ()
    assert writer.tasks[0].description == "draft it"


@pytest.mark.asyncio
async def test_role_based_ties_go_to_earliest_agent():
    first, second = ScriptedAgent("first", 1), ScriptedAgent("second", 2)
    team = make_team(first, second, capabilities={"first": ("writing",), "second": ("writing",)})
    task = Task("t", {"subtasks": [{"description": "a", "capabilities": ["writing"]}]})

    result = await team.run(task, Strategy.ROLE_BASED)

    assert [role.agent_id for role in result.role_assignments] == ["first"]
    assert second.tasks == []


@pytest.mark.asyncio
async def test_role_based_splits_description_when_no_subtasks_given():
    researcher = ScriptedAgent("researcher", "notes")
    writer = ScriptedAgent("writer", "prose")
    team = make_team(
        researcher,
        writer,
        capabilities={"researcher": ("research",), "writer": ("writing",)},
    )

    result = await team.run("Research solar sails and write a summary", Strategy.ROLE_BASED)

    assert result.success
    assert researcher.tasks[0].description == "Research solar sails"
    assert writer.tasks[0].description == "write a summary"


@pytest.mark.asyncio
async def test_role_based_merges_multiple_responsibilities():
    agent = ScriptedAgent("solo", "done")
    team = make_team(agent, capabilities={"solo": ("writing",)})
    task = Task("t", {"subtasks": [{"description": "intro", "capabilities": ["writing"]},
                                   {"description": "outro", "capabilities": ["writing"]}]})

    result = await team.run(task, Strategy.ROLE_BASED)

    assert result.success
    assert agent.tasks[0].description == "intro\noutro"
    assert agent.tasks[0].context["responsibilities"] == ["intro", "outro"]


# -- team bookkeeping -------------------------------------------------------------


@pytest.mark.asyncio
async def test_status_history_and_progress():
    events = []
    team = make_team(ScriptedAgent("A", 1), ScriptedAgent("B", 2))

    await team.run("t", on_progress=events.append)

    status = team.status()
    assert status.completed_runs == 1
    assert status.active_runs == 0
    assert status.members == ["A", "B"]
    assert team.history[-1]["strategy"] == "parallel"
    assert [event["status"] for event in events].count("agent_completed") == 2
    assert {event["agent"] for event in events} == {"A", "B"}


@pytest.mark.asyncio
async def test_each_run_gets_fresh_context():
    team = make_team(ScriptedAgent("A", {"n": 1}))

    first = await team.run("one")
    second = await team.run("two")

    assert first.shared_context["team_id"] != second.shared_context["team_id"]
    assert second.shared_context["version"] == 1


@pytest.mark.asyncio
async def test_unknown_strategy_name_is_rejected():
    team = make_team(ScriptedAgent("A", 1))

    with pytest.raises(ValueError):
        await team.run("t", "round_robin")


def test_team_requires_unique_members():
    with pytest.raises(ValueError):
        make_team()
    with pytest.raises(ValueError):
        make_team(ScriptedAgent("A"), ScriptedAgent("A"))


@pytest.mark.asyncio
async def test_coordinator_builds_teams_over_real_runtimes():
    researcher = make_runtime(
        "researcher",
        [{"tool": "fetch", "description": "fetch", "outputs": {"notes": "string"}}],
        FlakyTool("fetch", result={"notes": "n"}),
    )
    writer = make_runtime(
        "writer",
        [{"tool": "shape", "description": "shape", "inputs": {"text": "$researcher.notes"}}],
        FlakyTool("shape"),
    )
    coordinator = TeamCoordinator({"researcher": researcher, "writer": writer})
    team = coordinator.create(
        TeamConfig(
            name="editorial",
            agents=[AgentDescriptor("researcher"), AgentDescriptor("writer", ["writing"])],
            strategy=Strategy.SEQUENTIAL,
        )
    )

    result = await team.run("solar sails")

    assert result.success
    assert team.handles[0].capabilities == ("fetch",)
    assert team.handles[1].capabilities == ("writing",)
    assert result.result_for("writer").output == {"echo": "n"}


def test_coordinator_rejects_unknown_agents():
    coordinator = TeamCoordinator({})

    with pytest.raises(ConfigError):
        coordinator.create(TeamConfig(name="t", agents=[AgentDescriptor("ghost")]))
