"""Prompt templates, placeholder substitution and context truncation."""

from __future__ import annotations

import json

from semantic_flow.config import EnvLoader
from semantic_flow.prompts import (
    PromptComposer,
    PromptContext,
    serialize_flow_context,
    set_placeholders,
    summarize_custom_nodes,
    to_json,
)


def _composer(**templates: str) -> PromptComposer:
    return PromptComposer(EnvLoader(settings=templates, env_candidates=[], prompt_defaults={}))


# ---------------------------------------------------------------------------
# Placeholders
# ---------------------------------------------------------------------------


class TestSetPlaceholders:
    def test_replaces_every_occurrence(self):
        assert set_placeholders("{a} and {a}", {"a": "x"}) == "x and x"

    def test_non_string_values_are_json(self):
        out = set_placeholders("{n} {list} {none}", {"n": 3, "list": [{"a": 1}], "none": None})
        assert out == '3 [{"a": 1}] '

    def test_unknown_placeholders_left_alone(self):
        assert set_placeholders("{keep}", {"other": "x"}) == "{keep}"


class TestTemplateWrapping:
    def test_prepend_and_append(self):
        composer = _composer(
            SYSTEM_PROMPT="core",
            SYSTEM_PROMPT_PREPEND="before ",
            SYSTEM_PROMPT_APPEND=" after",
        )
        assert composer.template("SYSTEM_PROMPT") == "before core after"

    def test_missing_template_is_empty(self):
        assert _composer().template("SYSTEM_PROMPT") == ""


# ---------------------------------------------------------------------------
# Context truncation
# ---------------------------------------------------------------------------


def _nodes(n: int) -> list[dict]:
    return [{"id": f"n{i}", "type": "function", "func": "x" * 50} for i in range(n)]


class TestSerializeFlowContext:
    def test_fits_untouched(self):
        nodes = _nodes(3)
        assert serialize_flow_context(nodes, 100000) == to_json(nodes)

    def test_truncates_linearly_with_notice(self):
        nodes = _nodes(10)
        full_len = len(to_json(nodes))
        out = serialize_flow_context(nodes, full_len // 2)
        keep = max(1, (10 * (full_len // 2)) // full_len)
        assert out.startswith(to_json(nodes[:keep]))
        assert out.endswith(
            f"\n\n/* NOTE: Flow truncated for context. Showing {keep} of 10 nodes. "
            "Preserve structure of unseen nodes. */"
        )

    def test_keeps_at_least_one_node(self):
        out = serialize_flow_context(_nodes(5), 10)
        assert "Showing 1 of 5 nodes" in out
        assert json.loads(out.split("\n\n/* NOTE")[0]) == _nodes(1)

    def test_empty(self):
        assert serialize_flow_context([], 10) == "[]"


# ---------------------------------------------------------------------------
# Context + composer
# ---------------------------------------------------------------------------


class TestPromptContext:
    def test_from_dict_accepts_both_spellings(self):
        assert PromptContext.from_dict({"customNodes": [{"name": "a"}]}).custom_nodes == [{"name": "a"}]
        assert PromptContext.from_dict({"custom_nodes": [{"name": "b"}]}).custom_nodes == [{"name": "b"}]
        assert not PromptContext.from_dict(None).has_nodes

    def test_from_dict_drops_containers(self):
        ctx = PromptContext.from_dict({"nodes": [
            {"id": "t1", "type": "tab"},
            {"id": "sf", "type": "subflow"},
            {"id": "a", "type": "inject", "z": "t1"},
        ]})
        assert [n["id"] for n in ctx.nodes] == ["a"]
        assert not PromptContext.from_dict({"nodes": [{"id": "t1", "type": "tab"}]}).has_nodes

    def test_from_nodes_filters_tab_and_containers(self):
        nodes = [
            {"id": "t1", "type": "tab"},
            {"id": "a", "type": "inject", "z": "t1"},
            {"id": "b", "type": "debug", "z": "t2"},
            {"id": "s", "type": "subflow", "z": "t1"},
        ]
        ctx = PromptContext.from_nodes(nodes, "t1")
        assert [n["id"] for n in ctx.nodes] == ["a"]

    def test_summarize_custom_nodes(self):
        summary = summarize_custom_nodes([{"name": "x", "schema": {"url": {}, "token": {}}, "extra": 1}])
        assert summary == [{"name": "x", "fields": ["url", "token"]}]


class TestPromptComposer:
    def test_user_prompt_without_context(self):
        composer = _composer(USER_PROMPT_TEMPLATE="Build: {prompt}")
        assert composer.build_user_prompt("log hello", PromptContext()) == "Build: log hello"

    def test_user_prompt_with_context(self):
        composer = _composer(USER_PROMPT_WITH_CONTEXT="{prompt}|{nodeCount}|{existingFlow}|{customNodes}")
        ctx = PromptContext(nodes=[{"id": "a"}], custom_nodes=[{"name": "c", "fields": []}])
        out = composer.build_user_prompt("add debug", ctx)
        prompt, count, flow, custom = out.split("|")
        assert prompt == "add debug"
        assert count == "1"
        assert json.loads(flow) == [{"id": "a"}]
        assert json.loads(custom) == [{"name": "c", "fields": []}]

    def test_system_prompt_nests_templates(self):
        composer = _composer(
            SYSTEM_PROMPT="SYS",
            CUSTOM_NODES="CUSTOM:",
            SYSTEM_PROMPT_FLOW="{SYSTEM_PROMPT} flow {CUSTOM_NODES}{customNodes}",
            SYSTEM_PROMPT_NODE="{SYSTEM_PROMPT} node",
        )
        assert composer.build_system_prompt([{"name": "x"}], "flow") == 'SYS flow CUSTOM:[{"name": "x"}]'
        assert composer.build_system_prompt(None, "flow") == "SYS flow CUSTOM:{}"
        assert composer.build_system_prompt(None, "node") == "SYS node"

    def test_resync_prompt_drops_custom_nodes_from_config(self):
        composer = _composer(NODE_SEMANTIC_UPDATE_PROMPT="{nodeId}/{nodeType}/{nodeName}/{info}/{currentConfig}")
        out = composer.build_resync_prompt("n1", "function", "double it", {"func": "x", "customNodes": [1]}, "Doubler")
        head, config = out.split("/", 4)[:4], out.split("/", 4)[4]
        assert head == ["n1", "function", "Doubler", "double it"]
        assert json.loads(config) == {"func": "x"}

    def test_description_prompt(self):
        composer = _composer(DESCRIPTION_GENERATION_PROMPT="{nodeId} {nodeType} [{nodeName}] {currentConfig}")
        out = composer.build_description_prompt("n1", "debug", {"id": "n1"})
        assert out.startswith("n1 debug [] ")
        assert '"id": "n1"' in out

    def test_default_templates_fill_every_placeholder(self):
        composer = PromptComposer(EnvLoader(env_candidates=[]))
        ctx = PromptContext(nodes=[{"id": "a"}])
        for text in (
            composer.build_system_prompt([], "flow"),
            composer.build_system_prompt([], "node"),
            composer.build_user_prompt("p", ctx),
            composer.build_user_prompt("p", PromptContext()),
            composer.build_resync_prompt("n", "t", "i", {}),
            composer.build_description_prompt("n", "t", {}),
        ):
            for placeholder in ("{prompt}", "{nodeCount}", "{existingFlow}", "{customNodes}",
                                "{SYSTEM_PROMPT}", "{CUSTOM_NODES}", "{nodeId}", "{currentConfig}"):
                assert placeholder not in text
