"""Small built-in tools usable from plans and configuration files."""

from __future__ import annotations

import json
import re
from collections import Counter
from typing import Any, Dict, Iterable, List

import yaml

from .base import Tool, ToolContext, ToolResult
from .registry import ToolRegistry

_WORD = re.compile(r"[A-Za-z][A-Za-z0-9_'-]*")
_STOPWORDS = frozenset(
    "a an and are as at be by for from has have in into is it its of on or that the this to was were will with".split()
)


def _load_structured(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError:
            return text


def _text_param(params: Dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = params.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


class EchoTool(Tool):
    """Returns the ``text`` parameter (or the task text) unchanged."""

    output_schema = {"text": "string"}

    def run(self, *, params: Dict[str, Any], context: ToolContext) -> ToolResult:
        text = _text_param(params, "text", "task")
        return ToolResult.ok({"text": text})


class WordCountTool(Tool):
    """Counts words and characters in ``text``."""

    input_schema = {"text": "string"}
    output_schema = {"words": "integer", "characters": "integer"}

    def run(self, *, params: Dict[str, Any], context: ToolContext) -> ToolResult:
        text = params["text"]
        return ToolResult.ok({"words": len(_WORD.findall(text)), "characters": len(text)})


class KeywordTool(Tool):
    """Extracts the most frequent non-trivial words from ``text``."""

    output_schema = {"keywords": "array"}

    def run(self, *, params: Dict[str, Any], context: ToolContext) -> ToolResult:
        text = _text_param(params, "text", "task")
        if not text:
            return ToolResult.fail("KeywordTool needs 'text' or 'task'")
        limit = int(params.get("limit", self.config.get("limit", 5)))
        words = [word.lower() for word in _WORD.findall(text)]
        counts = Counter(word for word in words if word not in _STOPWORDS and len(word) > 2)
        keywords = [word for word, _ in counts.most_common(limit)]
        return ToolResult.ok({"keywords": keywords})


class MergeFieldsTool(Tool):
    """Merges mappings named in ``sources`` into one mapping under ``merged``."""

    input_schema = {"sources": "array"}
    output_schema = {"merged": "object"}

    def run(self, *, params: Dict[str, Any], context: ToolContext) -> ToolResult:
        merged: Dict[str, Any] = {}
        for source in params["sources"]:
            value = params.get(source) if isinstance(source, str) else source
            if isinstance(value, str):
                value = _load_structured(value)
            if not isinstance(value, dict):
                return ToolResult.fail(f"Source {source!r} is not a mapping")
            merged.update(value)
        return ToolResult.ok({"merged": merged})


class TemplateTool(Tool):
    """Renders ``template`` with the remaining parameters via ``str.format``."""

    output_schema = {"text": "string"}

    def run(self, *, params: Dict[str, Any], context: ToolContext) -> ToolResult:
        template = params.get("template") or self.config.get("template")
        if not isinstance(template, str):
            return ToolResult.fail("TemplateTool requires a 'template' string")
        values = {key: value for key, value in params.items() if key != "template"}
        try:
            rendered = template.format(**values)
        except (KeyError, IndexError) as exc:
            return ToolResult.fail(f"Template references unknown field {exc}")
        return ToolResult.ok({"text": rendered})


BUILTIN_TOOLS: Dict[str, type] = {
    "echo": EchoTool,
    "word_count": WordCountTool,
    "keywords": KeywordTool,
    "merge_fields": MergeFieldsTool,
    "template": TemplateTool,
}


def builtin_names() -> List[str]:
    return list(BUILTIN_TOOLS)


def register_builtin_tools(registry: ToolRegistry, names: Iterable[str] | None = None) -> None:
    """Register the built-in tools (all of them unless ``names`` is given)."""

    for name in names or BUILTIN_TOOLS:
        cls = BUILTIN_TOOLS[name]
        registry.register_factory(name, lambda cls=cls, name=name: cls(name=name), overwrite=True)
