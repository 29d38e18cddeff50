"""Prompt composition for flow generation, node resync and description.

Templates are looked up through the EnvLoader so that a deployment can
replace or wrap any of them: for a template NAME the effective text is
``NAME_PREPEND + NAME + NAME_APPEND``.

serialize_flow_context() truncates linearly: it keeps a leading share of the
nodes proportional to the budget and appends a fixed notice. The notice text is part of the prompt
format and must stay stable.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any, Iterable

from semantic_flow.config import DEFAULT_MAX_FLOW_CONTEXT_CHARS, EnvLoader, default_loader

# Node types that group other nodes and never go into a prompt context.
CONTAINER_TYPES: frozenset[str] = frozenset({"tab", "subflow"})

TEMPLATE_NAMES: tuple[str, ...] = (
    "CUSTOM_NODES",
    "USER_PROMPT_TEMPLATE",
    "USER_PROMPT_WITH_CONTEXT",
    "NODE_SEMANTIC_UPDATE_PROMPT",
    "DESCRIPTION_GENERATION_PROMPT",
    "SYSTEM_PROMPT",
    "SYSTEM_PROMPT_FLOW",
    "SYSTEM_PROMPT_NODE",
)


def to_json(value: Any) -> str:
    """JSON with 2-space indent, the layout every prompt embeds."""
    return json.dumps(value, indent=2, ensure_ascii=False)


def set_placeholders(template: str, values: dict[str, Any]) -> str:
    """Replace every ``{key}`` occurrence, in the order values are given."""
    result = template
    for key, value in values.items():
        result = result.replace("{" + key + "}", _as_text(value))
    return result


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value)


def serialize_flow_context(
    nodes: list[dict[str, Any]] | None = None,
    max_chars: int = DEFAULT_MAX_FLOW_CONTEXT_CHARS,
) -> str:
    """Serialize nodes to JSON, keeping the leading nodes when over budget.

    keep = max(1, floor(len(nodes) * max_chars / full_length)); earlier nodes
    are assumed to be the most relevant.
    """
    nodes = nodes or []
    full = to_json(nodes)
    if len(full) <= max_chars:
        return full

    ratio = max_chars / len(full)
    keep_count = max(1, math.floor(len(nodes) * ratio))
    trimmed = to_json(nodes[:keep_count])
    return (
        f"{trimmed}\n\n/* NOTE: Flow truncated for context. Showing {keep_count} of "
        f"{len(nodes)} nodes. Preserve structure of unseen nodes. */"
    )


def summarize_custom_nodes(nodes: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Compact custom node summary: name and declared field names only."""
    return [
        {"name": n.get("name", ""), "fields": list((n.get("schema") or {}).keys())}
        for n in nodes
    ]


# ---------------------------------------------------------------------------
# Prompt context
# ---------------------------------------------------------------------------


@dataclass
class PromptContext:
    """The slice of the live graph sent along with a generation request."""

    nodes: list[dict[str, Any]] = field(default_factory=list)
    custom_nodes: list[dict[str, Any]] = field(default_factory=list)

    @property
    def has_nodes(self) -> bool:
        return bool(self.nodes)

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> PromptContext:
        """Context as posted by the editor; tab and subflow entries are dropped."""
        raw = raw or {}
        return cls(
            nodes=[
                n for n in raw.get("nodes") or []
                if not (isinstance(n, dict) and n.get("type") in CONTAINER_TYPES)
            ],
            custom_nodes=list(raw.get("customNodes") or raw.get("custom_nodes") or []),
        )

    @classmethod
    def from_nodes(
        cls,
        nodes: Iterable[dict[str, Any]],
        tab_id: str,
        custom_nodes: list[dict[str, Any]] | None = None,
    ) -> PromptContext:
        """Context for one tab: its nodes, minus container nodes."""
        return cls(
            nodes=[n for n in nodes if n.get("type") not in CONTAINER_TYPES and n.get("z") == tab_id],
            custom_nodes=list(custom_nodes or []),
        )


# ---------------------------------------------------------------------------
# Composer
# ---------------------------------------------------------------------------


class PromptComposer:
    """Builds system and user prompts from the configured templates."""

    def __init__(self, loader: EnvLoader | None = None) -> None:
        self._loader = loader or default_loader

    def template(self, name: str) -> str:
        env = self._loader
        return f"{env.get(f'{name}_PREPEND')}{env.get(name)}{env.get(f'{name}_APPEND')}"

    def build_user_prompt(
        self,
        prompt: str,
        context: PromptContext | None,
        max_chars: int = DEFAULT_MAX_FLOW_CONTEXT_CHARS,
    ) -> str:
        if context is not None and context.has_nodes:
            return set_placeholders(self.template("USER_PROMPT_WITH_CONTEXT"), {
                "prompt": prompt,
                "nodeCount": len(context.nodes),
                "existingFlow": serialize_flow_context(context.nodes, max_chars),
                "customNodes": context.custom_nodes,
            })
        return set_placeholders(self.template("USER_PROMPT_TEMPLATE"), {"prompt": prompt})

    def build_system_prompt(self, custom_nodes: Any = None, kind: str = "flow") -> str:
        """System prompt for kind "flow" or "node"."""
        name = "SYSTEM_PROMPT_FLOW" if kind == "flow" else "SYSTEM_PROMPT_NODE"
        return set_placeholders(self.template(name), {
            "SYSTEM_PROMPT": self.template("SYSTEM_PROMPT"),
            "CUSTOM_NODES": self.template("CUSTOM_NODES"),
            "customNodes": json.dumps(custom_nodes or {}),
        })

    def build_resync_prompt(
        self,
        node_id: str,
        node_type: str,
        info: str,
        current_config: dict[str, Any],
        node_name: str = "",
    ) -> str:
        return set_placeholders(self.template("NODE_SEMANTIC_UPDATE_PROMPT"), {
            "nodeType": node_type,
            "nodeId": node_id,
            "nodeName": node_name or "",
            "info": info,
            "currentConfig": to_json(_without_custom_nodes(current_config)),
        })

    def build_description_prompt(
        self,
        node_id: str,
        node_type: str,
        current_config: dict[str, Any],
        node_name: str = "",
    ) -> str:
        return set_placeholders(self.template("DESCRIPTION_GENERATION_PROMPT"), {
            "nodeType": node_type,
            "nodeId": node_id,
            "nodeName": node_name or "",
            "currentConfig": to_json(_without_custom_nodes(current_config)),
        })


def _without_custom_nodes(config: dict[str, Any]) -> dict[str, Any]:
    # The custom node summary rides along on currentConfig for the system
    # prompt; it is not part of the node itself.
    return {k: v for k, v in (config or {}).items() if k != "customNodes"}
