import asyncio

import pytest

from ensemble.config import ToolSpec
from ensemble.memory.episodic import EpisodeRecord, EpisodicMemory
from ensemble.metrics import InMemoryMetrics, record_safely
from ensemble.tasks.base import Task
from ensemble.tools.base import ToolContext, ToolResult, check_fields
from ensemble.tools.builtin import builtin_names, register_builtin_tools
from ensemble.tools.registry import ToolGateway, ToolRegistry

CTX = ToolContext(agent_name="tester", task_id="t1", step=1)


@pytest.fixture
def gateway():
    registry = ToolRegistry()
    register_builtin_tools(registry)
    return ToolGateway(registry)


def _run(gateway, name, **params):
    return asyncio.run(gateway.execute(name, params, CTX))


def test_builtins_are_registered(gateway):
    assert set(builtin_names()) <= set(gateway.registry.names())


def test_word_count(gateway):
    outcome = _run(gateway, "word_count", text="Solar sails ride on light.")

    assert outcome.success
    assert outcome.result == {"words": 5, "characters": 26}


def test_keywords_skip_stopwords_and_respect_limit(gateway):
    outcome = _run(gateway, "keywords", text="The sail and the sail and the light of the sun", limit=2)

    assert outcome.result == {"keywords": ["sail", "light"]}


def test_keywords_fall_back_to_task_text(gateway):
    outcome = _run(gateway, "keywords", task="orbital mechanics")

    assert outcome.result["keywords"] == ["orbital", "mechanics"]


def test_template_renders_context_fields(gateway):
    outcome = _run(gateway, "template", template="Notes on {topic}", topic="sails")

    assert outcome.result == {"text": "Notes on sails"}


def test_template_reports_unknown_fields(gateway):
    outcome = _run(gateway, "template", template="{missing}")

    assert not outcome.success
    assert "missing" in outcome.error


def test_merge_fields_accepts_mappings_and_serialized_text(gateway):
    outcome = _run(
        gateway,
        "merge_fields",
        sources=["first", "second"],
        first={"a": 1},
        second='{"b": 2}',
    )

    assert outcome.result == {"merged": {"a": 1, "b": 2}}


def test_echo(gateway):
    assert _run(gateway, "echo", text="hi").result == {"text": "hi"}


def test_gateway_reports_unknown_tool(gateway):
    outcome = _run(gateway, "nope")

    assert not outcome.success
    assert outcome.metadata["not_found"] is True
    assert not gateway.has("nope")
    assert gateway.describe("nope") is None


def test_registry_rejects_duplicate_instances():
    registry = ToolRegistry()
    register_builtin_tools(registry, ["echo"])
    tool = registry.get("echo")

    with pytest.raises(ValueError):
        registry.register_instance(tool)
    registry.register_instance(tool, overwrite=True)


def test_spec_tool_replaces_builtin():
    registry = ToolRegistry()
    register_builtin_tools(registry, ["echo"])
    registry.get("echo")
    registry.register_from_spec(
        ToolSpec(name="echo", type="ensemble.tools.builtin:TemplateTool", args={"template": "fixed"})
    )

    outcome = asyncio.run(ToolGateway(registry).execute("echo", {}, CTX))

    assert outcome.result == {"text": "fixed"}


def test_check_fields_reports_each_problem():
    problems = check_fields({"count": True, "name": 3}, {"count": "integer", "name": "string", "tags": "array"})

    assert problems == [
        "field 'count' expected integer, got bool",
        "field 'name' expected string, got int",
        "missing field 'tags'",
    ]
    assert check_fields("text", {"a": "any"}) == ["expected a mapping, got str"]
    assert check_fields({}, None) == []


def test_tool_result_helpers():
    assert ToolResult.ok(1).success
    failure = ToolResult.fail("bad", retry=False)
    assert failure.error == "bad"
    assert failure.metadata == {"retry": False}


def test_episodic_memory_evicts_oldest_and_rejects_closed():
    memory = EpisodicMemory(max_episodes=2)
    for episode_id in ("a", "b", "c"):
        memory.append_episode(episode_id, EpisodeRecord(kind="task_start", content=episode_id))
    memory.close_episode("c")

    assert [episode.id for episode in memory.episodes()] == ["b", "c"]
    with pytest.raises(ValueError):
        memory.append_episode("c", EpisodeRecord(kind="tool_call", content="late"))


def test_metrics_aggregate_and_tolerate_broken_sinks():
    metrics = InMemoryMetrics()
    record_safely(metrics, "op", 2.0)
    record_safely(metrics, "op", 4.0)

    assert metrics.summary()["op"] == {"count": 2, "total_ms": 6.0, "mean_ms": 3.0, "max_ms": 4.0}

    class Broken:
        def record_operation(self, name, duration_ms):
            raise RuntimeError("sink down")

    record_safely(Broken(), "op", 1.0)
    record_safely(None, "op", 1.0)


def test_task_context_is_frozen_and_derivable():
    source = {"topic": "sails"}
    task = Task("research", source)
    source["topic"] = "changed"

    assert task.context["topic"] == "sails"
    with pytest.raises(TypeError):
        task.context["topic"] = "x"
    extended = task.with_context(round=2)
    assert extended.id == task.id
    assert dict(extended.context) == {"topic": "sails", "round": 2}
    assert Task.coerce("plain").description == "plain"


def test_registry_descriptions_use_first_doc_line():
    registry = ToolRegistry()
    register_builtin_tools(registry, ["word_count", "echo"])

    assert registry.descriptions() == {
        "echo": "Returns the ``text`` parameter (or the task text) unchanged.",
        "word_count": "Counts words and characters in ``text``.",
    }
