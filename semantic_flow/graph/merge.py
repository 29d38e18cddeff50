"""Reconcile an AI-proposed node list against the live graph.

Two modes, picked from the wording of the user's prompt:

  new tab  the prompt asks to create something and does not ask to change
           anything: the proposal is imported into a fresh tab as one unit.
  merge    everything else: the proposal is reconciled against the active
           tab in four strictly ordered phases

    1. add       nodes whose id is not in the tab are imported
    2. wire-add  wiring of the added nodes is rebuilt (remove, then recreate)
    3. update    existing nodes receive every proposed field except
                 id/type/z/x/y/wires; x/y only when proposed; wiring rebuilt
                 when proposed, now able to reach nodes added in phase 1
    4. remove    nodes of the tab missing from the proposal are deleted

Planning never mutates the graph. plan_merge() returns the ops that would
bring the tab in line with the proposal, emitting only ops that change
something, so a proposal planned against its own result yields no ops.
apply_flow() plans, applies and reports.

Merging is synchronous end to end, so two merges never interleave on the
event loop.
"""

from __future__ import annotations

import copy
import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

from semantic_flow.graph.model import HostGraph
from semantic_flow.graph.patch import (
    AddNodes,
    PatchOp,
    RemoveNode,
    SetField,
    SetPosition,
    SetWires,
    apply_patch,
    normalize_wires,
)
from semantic_flow.sync import SyncTracker

logger = logging.getLogger("semantic_flow.graph.merge")

_CREATE_RE = re.compile(r"\b(create|build|make|generate|new)\b", re.IGNORECASE)
_UPDATE_RE = re.compile(r"\b(add|update|modify|change|append|insert)\b", re.IGNORECASE)

# Keys the update phase never copies verbatim.
SKIP_KEYS = frozenset({"id", "type", "z", "x", "y", "wires"})

DEFAULT_TAB_LABEL = "AI Flow"
TAB_INFO_PROMPT_CHARS = 100

_MISSING = object()

CREATED = "created"
MERGED = "merged"


# ---------------------------------------------------------------------------
# Intent
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Intent:
    create: bool
    update: bool

    @property
    def new_tab(self) -> bool:
        return self.create and not self.update


def classify_intent(prompt: str) -> Intent:
    return Intent(
        create=bool(_CREATE_RE.search(prompt or "")),
        update=bool(_UPDATE_RE.search(prompt or "")),
    )


def should_create_new_tab(prompt: str) -> bool:
    """True only for a create intent with no update verb; no verbs at all means merge."""
    return classify_intent(prompt).new_tab


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


@dataclass
class MergePlan:
    tab_id: str
    mode: str = MERGED
    ops: list[PatchOp] = field(default_factory=list)
    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    remapped: dict[str, str] = field(default_factory=dict)
    # distinct proposed nodes that end up in the tab
    node_count: int = 0

    @property
    def is_noop(self) -> bool:
        return not self.ops


@dataclass
class MergeOutcome:
    mode: str
    tab_id: str
    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    remapped: dict[str, str] = field(default_factory=dict)
    ops: list[PatchOp] = field(default_factory=list)
    node_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "tabId": self.tab_id,
            "added": list(self.added),
            "updated": list(self.updated),
            "removed": list(self.removed),
            "skipped": list(self.skipped),
            "remapped": dict(self.remapped),
            "nodeCount": self.node_count,
        }


def tab_info(prompt: str) -> str:
    prompt = prompt or ""
    suffix = "..." if len(prompt) > TAB_INFO_PROMPT_CHARS else ""
    return f"# AI Generated Flow\n\nPrompt: {prompt[:TAB_INFO_PROMPT_CHARS]}{suffix}"


def _proposed_nodes(proposal: list[Any], tab_id: str) -> tuple[list[dict[str, Any]], list[str]]:
    """Copies of the usable proposal entries, each tagged with tab_id.

    Entries without an id are dropped. A repeated id keeps its last entry at
    the position of its first.
    """
    by_id: dict[str, dict[str, Any]] = {}
    skipped: list[str] = []
    for entry in proposal or []:
        if not isinstance(entry, dict) or not entry.get("id"):
            logger.warning("Dropping proposed node without an id: %r", entry)
            skipped.append(str(entry.get("id", "")) if isinstance(entry, dict) else "")
            continue
        node = copy.deepcopy(entry)
        node["id"] = str(node["id"])
        node["z"] = tab_id
        if node["id"] in by_id:
            logger.warning("Proposal repeats node %s; keeping the last copy", node["id"])
        by_id[node["id"]] = node
    return list(by_id.values()), skipped


def _remap_ids(nodes: list[dict[str, Any]], graph: HostGraph) -> dict[str, str]:
    """Give every node whose id is taken in graph a fresh id, rewriting wires to match.

    Nodes are changed in place; returns old id -> new id.
    """
    used = {n["id"] for n in nodes}
    mapping: dict[str, str] = {}
    for node in nodes:
        if graph.node(node["id"]) is None:
            continue
        fresh = new_tab_id()
        while fresh in used or graph.node(fresh) is not None:
            fresh = new_tab_id()
        used.add(fresh)
        mapping[node["id"]] = fresh
        node["id"] = fresh
    if mapping:
        for node in nodes:
            if isinstance(node.get("wires"), list):
                node["wires"] = [
                    [mapping.get(target, target) for target in port]
                    for port in normalize_wires(node["wires"])
                ]
    return mapping


def plan_new_tab(
    proposal: list[Any],
    tab_id: str,
    flow_name: str | None = None,
    prompt: str = "",
    graph: HostGraph | None = None,
) -> MergePlan:
    """One AddNodes op importing a fresh tab together with the proposal.

    Proposed ids already taken elsewhere in graph are imported under fresh
    ids, with the proposal's wires following them.
    """
    nodes, skipped = _proposed_nodes(proposal, tab_id)
    remapped = _remap_ids(nodes, graph) if graph is not None else {}
    if remapped:
        logger.info("Renamed proposed nodes already in the graph: %s",
                    ", ".join(f"{old}->{new}" for old, new in remapped.items()))
    tab_node = {
        "type": "tab",
        "id": tab_id,
        "label": flow_name or DEFAULT_TAB_LABEL,
        "disabled": False,
        "info": tab_info(prompt),
    }
    return MergePlan(
        tab_id=tab_id,
        mode=CREATED,
        ops=[AddNodes(nodes=[tab_node, *nodes])],
        added=[n["id"] for n in nodes],
        skipped=skipped,
        remapped=remapped,
        node_count=len(nodes),
    )


def _strip_trailing(wires: list[list[str]]) -> list[list[str]]:
    trimmed = [list(port) for port in wires]
    while trimmed and not trimmed[-1]:
        trimmed.pop()
    return trimmed


def _live_wires(graph: HostGraph, node_id: str) -> list[list[str]]:
    wires: list[list[str]] = []
    for link in graph.links_from(node_id):
        while len(wires) <= link.port:
            wires.append([])
        wires[link.port].append(link.target)
    return wires


def _wires_change(
    graph: HostGraph,
    node: dict[str, Any],
    wires: list[list[str]],
    reachable: Callable[[str], bool],
) -> bool:
    """Whether rewiring node to wires would change its links or declared wires."""
    expected = [[t for t in port if reachable(t)] for port in wires]
    if _strip_trailing(_live_wires(graph, node["id"])) != _strip_trailing(expected):
        return True
    return normalize_wires(node.get("wires")) != wires


def plan_merge(graph: HostGraph, tab_id: str, proposal: list[Any]) -> MergePlan:
    """Ops that reconcile tab_id with the proposal, in phase order."""
    plan = MergePlan(tab_id=tab_id)
    nodes, plan.skipped = _proposed_nodes(proposal, tab_id)
    existing = {n["id"]: n for n in graph.nodes_in(tab_id)}

    to_add: list[dict[str, Any]] = []
    to_update: list[dict[str, Any]] = []
    for node in nodes:
        if node["id"] in existing:
            to_update.append(node)
        elif graph.node(node["id"]) is not None:
            logger.warning("Proposed node %s belongs to another tab; not moved", node["id"])
            plan.skipped.append(node["id"])
        else:
            to_add.append(node)

    added_ids = {n["id"] for n in to_add}

    def reachable(target: str) -> bool:
        return target in added_ids or graph.node(target) is not None

    # 1. add
    if to_add:
        plan.ops.append(AddNodes(nodes=to_add))
        plan.added = [n["id"] for n in to_add]

    # 2. wire-add
    for node in to_add:
        if isinstance(node.get("wires"), list):
            plan.ops.append(SetWires(node_id=node["id"], wires=normalize_wires(node["wires"])))

    # 3. update
    for proposed in to_update:
        current = existing[proposed["id"]]
        ops: list[PatchOp] = []
        for key, value in proposed.items():
            if key in SKIP_KEYS or current.get(key, _MISSING) == value:
                continue
            ops.append(SetField(node_id=proposed["id"], key=key, value=copy.deepcopy(value)))
        x, y = proposed.get("x"), proposed.get("y")
        if (x is not None and x != current.get("x")) or (y is not None and y != current.get("y")):
            ops.append(SetPosition(node_id=proposed["id"], x=x, y=y))
        if isinstance(proposed.get("wires"), list):
            wires = normalize_wires(proposed["wires"])
            if _wires_change(graph, current, wires, reachable):
                ops.append(SetWires(node_id=proposed["id"], wires=wires))
        if ops:
            plan.ops.extend(ops)
            plan.updated.append(proposed["id"])

    plan.node_count = len(to_add) + len(to_update)

    # 4. remove
    proposed_ids = {n["id"] for n in nodes}
    for node_id in existing:
        if node_id not in proposed_ids:
            plan.ops.append(RemoveNode(node_id=node_id))
            plan.removed.append(node_id)

    return plan


def new_tab_id() -> str:
    return uuid.uuid4().hex[:16]


def apply_flow(
    graph: HostGraph,
    active_tab: str | None,
    prompt: str,
    proposal: list[Any],
    flow_name: str | None = None,
    tracker: SyncTracker | None = None,
    new_id: Callable[[], str] = new_tab_id,
) -> MergeOutcome:
    """Route the proposal to a new tab or merge it into active_tab, then apply."""
    if should_create_new_tab(prompt) or not active_tab:
        plan = plan_new_tab(proposal, new_id(), flow_name, prompt, graph)
    else:
        plan = plan_merge(graph, active_tab, proposal)

    logger.info(
        "Applying %s plan on tab %s: %d ops (+%d ~%d -%d)",
        plan.mode, plan.tab_id, len(plan.ops), len(plan.added), len(plan.updated), len(plan.removed),
    )
    apply_patch(graph, plan.ops)

    if tracker is not None:
        for node_id in plan.removed:
            tracker.forget(node_id)
        for node_id in plan.added + plan.updated:
            node = graph.node(node_id)
            if node is not None:
                tracker.record_sync(node)

    return MergeOutcome(
        mode=plan.mode,
        tab_id=plan.tab_id,
        added=plan.added,
        updated=plan.updated,
        removed=plan.removed,
        skipped=plan.skipped,
        remapped=plan.remapped,
        ops=plan.ops,
        node_count=plan.node_count,
    )
