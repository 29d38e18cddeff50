"""Editor-side orchestration over a HostGraph.

FlowBuilder turns a prompt into graph changes: it collects context from the
active tab, asks the connector for a flow and hands the proposal to the merge
engine. NodeSynchronizer keeps one node's intent text and logic in step, in
whichever direction drifted, one sync per node at a time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from semantic_flow.connectors.base import Connector, GenerationResult
from semantic_flow.custom_nodes import CustomNodeStore
from semantic_flow.errors import ConfigurationError
from semantic_flow.graph.merge import CREATED, MergeOutcome, apply_flow, new_tab_id, should_create_new_tab
from semantic_flow.graph.model import HostGraph, extract_node_config
from semantic_flow.graph.patch import PatchOp, SetField, SetPosition, SetWires, apply_patch, normalize_wires
from semantic_flow.prompts import PromptContext
from semantic_flow.sync import INFO_TO_LOGIC, LOGIC_TO_INFO, SyncTracker

logger = logging.getLogger("semantic_flow.service")

EMPTY_FLOW_MESSAGE = "AI returned empty flow. Try rephrasing your prompt."
ERROR_HINTS = (
    "\n\nPlease check:\n"
    "- AI connector is configured\n"
    "- API keys are valid\n"
    "- Network connection is stable"
)

# Fields of an AI-updated node that are never written back verbatim.
_RESYNC_SKIP_KEYS = frozenset({"id", "type", "z", "x", "y", "wires"})


def total_tokens(usage: Any) -> int | None:
    """Total token count across the usage shapes providers report."""
    if not isinstance(usage, dict):
        return None
    for key in ("total_tokens", "totalTokenCount"):
        if isinstance(usage.get(key), int):
            return usage[key]
    parts = [usage.get(k) for k in ("input_tokens", "output_tokens")]
    if all(isinstance(p, int) for p in parts):
        return sum(parts)  # type: ignore[arg-type]
    return None


def success_message(outcome: MergeOutcome, metadata: dict[str, Any] | None) -> str:
    verb = "created" if outcome.mode == CREATED else "updated"
    message = f"Flow {verb} successfully! Generated {outcome.node_count} nodes"
    metadata = metadata or {}
    tokens = total_tokens(metadata.get("usage"))
    if tokens is not None:
        message += f"\nTokens used: {tokens}"
    citations = metadata.get("citations") or []
    if citations:
        message += f"\nUsed {len(citations)} documentation sources"
    return message


def require_configured(connector: Connector) -> None:
    """Raise ConfigurationError listing every missing connector field."""
    validation = connector.validate_config(connector.get_config())
    if not validation.valid:
        raise ConfigurationError(validation.errors)


def not_configured_message(error: ConfigurationError) -> str:
    return f"AI not configured: {', '.join(error.errors)}"


def _custom_node_summary(store: CustomNodeStore | None) -> list[dict[str, Any]]:
    return store.summarized() if store is not None else []


# ---------------------------------------------------------------------------
# Flow building
# ---------------------------------------------------------------------------


@dataclass
class BuildOutcome:
    success: bool
    message: str
    error: str = ""
    merge: MergeOutcome | None = None
    result: GenerationResult | None = None


class FlowBuilder:
    def __init__(
        self,
        connector: Connector,
        graph: HostGraph,
        tracker: SyncTracker | None = None,
        custom_nodes: CustomNodeStore | None = None,
        new_id: Callable[[], str] = new_tab_id,
    ) -> None:
        self.connector = connector
        self.graph = graph
        self.tracker = tracker
        self.custom_nodes = custom_nodes
        self._new_id = new_id

    def context_for(self, prompt: str, active_tab: str | None) -> PromptContext:
        """Tab context, or none at all when the prompt asks for a new tab."""
        custom = _custom_node_summary(self.custom_nodes)
        if not active_tab or should_create_new_tab(prompt):
            return PromptContext(custom_nodes=custom)
        nodes = [extract_node_config(n, self.graph) for n in self.graph.nodes_in(active_tab)]
        return PromptContext.from_nodes(nodes, active_tab, custom)

    def _failed(self, error: str, result: GenerationResult | None = None) -> BuildOutcome:
        logger.warning("Flow build failed: %s", error)
        return BuildOutcome(success=False, message=f"Error: {error}{ERROR_HINTS}", error=error, result=result)

    async def build(self, prompt: str, active_tab: str | None = None) -> BuildOutcome:
        if not prompt or not prompt.strip():
            return self._failed("Prompt is required")

        try:
            require_configured(self.connector)
        except ConfigurationError as e:
            return self._failed(not_configured_message(e))

        result = await self.connector.generate_flow(prompt, self.context_for(prompt, active_tab))
        if not result.success:
            return self._failed(result.error or "Failed to generate flow", result)
        if not result.flow:
            return BuildOutcome(success=False, message=EMPTY_FLOW_MESSAGE, error=EMPTY_FLOW_MESSAGE, result=result)

        outcome = apply_flow(
            self.graph,
            active_tab,
            prompt,
            result.flow,
            flow_name=result.flow_name,
            tracker=self.tracker,
            new_id=self._new_id,
        )
        return BuildOutcome(
            success=True,
            message=success_message(outcome, result.metadata),
            merge=outcome,
            result=result,
        )


# ---------------------------------------------------------------------------
# Node synchronization
# ---------------------------------------------------------------------------


@dataclass
class SyncOutcome:
    node_id: str
    direction: str
    success: bool = False
    error: str = ""
    ops: list[PatchOp] = field(default_factory=list)


def resync_ops(node: dict[str, Any], updated: dict[str, Any]) -> list[PatchOp]:
    """Patch ops writing an AI-updated node config onto node."""
    node_id = node["id"]
    ops: list[PatchOp] = [
        SetField(node_id=node_id, key=k, value=v)
        for k, v in updated.items()
        if k not in _RESYNC_SKIP_KEYS and node.get(k) != v
    ]
    x, y = updated.get("x"), updated.get("y")
    if (x is not None and x != node.get("x")) or (y is not None and y != node.get("y")):
        ops.append(SetPosition(node_id=node_id, x=x, y=y))
    if isinstance(updated.get("wires"), list):
        wires = normalize_wires(updated["wires"])
        if wires != normalize_wires(node.get("wires")):
            ops.append(SetWires(node_id=node_id, wires=wires))
    return ops


class NodeSynchronizer:
    def __init__(
        self,
        connector: Connector,
        graph: HostGraph,
        tracker: SyncTracker,
        custom_nodes: CustomNodeStore | None = None,
    ) -> None:
        self.connector = connector
        self.graph = graph
        self.tracker = tracker
        self.custom_nodes = custom_nodes

    def observe_tab(self, tab_id: str) -> int:
        """Give every node of a tab a sync baseline if it has none."""
        nodes = self.graph.nodes_in(tab_id)
        for node in nodes:
            self.tracker.observe(node)
        return len(nodes)

    async def resync(self, node_id: str, direction: str = INFO_TO_LOGIC) -> SyncOutcome:
        """Regenerate logic from intent, or intent from logic, for one node.

        Requests for the same node queue; the node's status is back to idle
        once this returns, whatever the result.
        """
        if direction not in (INFO_TO_LOGIC, LOGIC_TO_INFO):
            raise ValueError(f"Unknown sync direction: {direction!r}")
        outcome = SyncOutcome(node_id=node_id, direction=direction)
        try:
            require_configured(self.connector)
        except ConfigurationError as e:
            outcome.error = not_configured_message(e)
            logger.warning("Node %s not synced: %s", node_id, outcome.error)
            return outcome
        if self.graph.node(node_id) is not None:
            self.tracker.observe(self.graph.node(node_id))

        async with self.tracker.syncing(node_id):
            # Re-read: the node may have changed or gone while we were queued.
            node = self.graph.node(node_id)
            if node is None:
                outcome.error = f"Node {node_id} not found"
                return outcome

            config = extract_node_config(node, self.graph)
            config["customNodes"] = _custom_node_summary(self.custom_nodes)

            if direction == INFO_TO_LOGIC:
                await self._info_to_logic(node, config, outcome)
            else:
                await self._logic_to_info(node, config, outcome)

            current = self.graph.node(node_id)
            if current is None:
                self.tracker.forget(node_id)
            if outcome.success:
                self.tracker.record_sync(current)
                logger.info("Node %s synced (%s)", node_id, direction)
            else:
                logger.warning("Node %s sync failed (%s): %s", node_id, direction, outcome.error)
        return outcome

    async def _info_to_logic(self, node: dict[str, Any], config: dict[str, Any], outcome: SyncOutcome) -> None:
        info = node.get("info") or ""
        if not info.strip():
            outcome.error = "Node ID and info are required"
            return
        result = await self.connector.resync_node(
            node["id"], node.get("type", ""), info, config, node_name=node.get("name") or ""
        )
        if not (result.success and result.updated_node):
            outcome.error = result.error or "Failed to sync node with AI"
            return
        node = self._still_present(node, outcome)
        if node is None:
            return
        outcome.ops = resync_ops(node, result.updated_node)
        apply_patch(self.graph, outcome.ops)
        outcome.success = True

    async def _logic_to_info(self, node: dict[str, Any], config: dict[str, Any], outcome: SyncOutcome) -> None:
        result = await self.connector.generate_description(
            node["id"], node.get("type", ""), config, node_name=node.get("name") or ""
        )
        if not result.success:
            outcome.error = result.error or "Failed to generate description"
            return
        if not result.name or not result.description:
            outcome.error = "AI response missing name or description"
            return
        if self._still_present(node, outcome) is None:
            return
        outcome.ops = [
            SetField(node_id=node["id"], key="name", value=result.name),
            SetField(node_id=node["id"], key="info", value=result.description),
        ]
        apply_patch(self.graph, outcome.ops)
        outcome.success = True

    def _still_present(self, node: dict[str, Any], outcome: SyncOutcome) -> dict[str, Any] | None:
        # The graph keeps changing while the provider call is in flight.
        current = self.graph.node(node["id"])
        if current is None:
            outcome.error = f"Node {node['id']} not found"
        return current

    async def edit_info(self, node_id: str, text: str) -> SyncOutcome | None:
        """Set a node's intent text; resync its logic when the text is new."""
        node = self.graph.node(node_id)
        if node is None:
            raise KeyError(f"Node {node_id!r} not found")
        text = text.strip()
        if text == (node.get("info") or ""):
            return None
        state = self.tracker.get(node_id)
        apply_patch(self.graph, [SetField(node_id=node_id, key="info", value=text)])
        if state is not None and state.info == text:
            return None
        return await self.resync(node_id, INFO_TO_LOGIC)

    async def on_node_changed(self, node_id: str) -> SyncOutcome | None:
        """React to an edit: sync in the direction that drifted, if any.

        A node seen for the first time only gets its baseline recorded.
        """
        node = self.graph.node(node_id)
        if node is None:
            self.tracker.forget(node_id)
            return None
        if node_id not in self.tracker:
            self.tracker.observe(node)
            return None
        direction = self.tracker.detect_drift(node)
        if direction is None:
            return None
        return await self.resync(node_id, direction)
