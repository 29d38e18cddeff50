"""Patch ops: typed, JSON-serializable mutations of the host graph.

Each op is one discrete change applied through the HostGraph primitives:

  AddNodes     import a batch of nodes (a new tab and its nodes travel together)
  SetField     set one non-structural field on an existing node
  SetPosition  move a node; a missing coordinate keeps its current value
  SetWires     replace a node's outgoing wiring: drop every existing link
               from the node, then link port by port
  RemoveNode   delete a node together with its links

The merge engine only ever plans lists of these ops; apply_patch() is the
single place that mutates the graph.
"""

from __future__ import annotations

import copy
import dataclasses
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Union

from semantic_flow.graph.model import HostGraph

logger = logging.getLogger("semantic_flow.graph.patch")


# ---------------------------------------------------------------------------
# Op types
# ---------------------------------------------------------------------------


@dataclass
class AddNodes:
    op_type: str = "add_nodes"
    nodes: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class SetField:
    op_type: str = "set_field"
    node_id: str = ""
    key: str = ""
    value: Any = None


@dataclass
class SetPosition:
    op_type: str = "set_position"
    node_id: str = ""
    x: float | None = None
    y: float | None = None


@dataclass
class SetWires:
    op_type: str = "set_wires"
    node_id: str = ""
    wires: list[list[str]] = field(default_factory=list)


@dataclass
class RemoveNode:
    op_type: str = "remove_node"
    node_id: str = ""


PatchOp = Union[AddNodes, SetField, SetPosition, SetWires, RemoveNode]

_OP_TYPE_MAP: dict[str, type] = {
    "add_nodes": AddNodes,
    "set_field": SetField,
    "set_position": SetPosition,
    "set_wires": SetWires,
    "remove_node": RemoveNode,
}


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def op_to_dict(op: PatchOp) -> dict[str, Any]:
    return dataclasses.asdict(op)


def op_from_dict(d: dict[str, Any]) -> PatchOp:
    """Raises ValueError for an unknown op_type; unknown keys are dropped."""
    op_type = d.get("op_type")
    cls = _OP_TYPE_MAP.get(op_type)  # type: ignore[arg-type]
    if cls is None:
        raise ValueError(f"Unknown op_type: {op_type!r}. Valid types: {list(_OP_TYPE_MAP)}")
    valid_fields = {f.name for f in dataclasses.fields(cls)}
    return cls(**{k: v for k, v in d.items() if k in valid_fields})


def ops_to_json(ops: list[PatchOp]) -> str:
    return json.dumps([op_to_dict(op) for op in ops], indent=2)


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


def normalize_wires(wires: Any) -> list[list[str]]:
    """Copy a wire list, coercing malformed ports to empty lists."""
    if not isinstance(wires, list):
        return []
    return [[str(t) for t in port] if isinstance(port, list) else [] for port in wires]


def rewire(graph: HostGraph, node_id: str, wires: list[list[str]]) -> int:
    """Drop all links leaving node_id and relink from wires; returns links made."""
    for link in graph.links_from(node_id):
        graph.remove_link(link)
    graph.set_field(node_id, "wires", [list(port) for port in wires])
    made = 0
    for port, targets in enumerate(wires):
        for target in targets:
            if graph.node(target) is None:
                logger.debug("Wire %s[%d] -> %s skipped: target not in graph", node_id, port, target)
                continue
            graph.add_link(node_id, port, target)
            made += 1
    return made


def apply_op(graph: HostGraph, op: PatchOp) -> None:
    if isinstance(op, AddNodes):
        graph.import_nodes(copy.deepcopy(op.nodes))
    elif isinstance(op, SetField):
        graph.set_field(op.node_id, op.key, op.value)
    elif isinstance(op, SetPosition):
        node = graph.node(op.node_id)
        if node is None:
            raise KeyError(f"Node {op.node_id!r} not found")
        if op.x is not None:
            graph.set_field(op.node_id, "x", op.x)
        if op.y is not None:
            graph.set_field(op.node_id, "y", op.y)
    elif isinstance(op, SetWires):
        rewire(graph, op.node_id, op.wires)
    elif isinstance(op, RemoveNode):
        graph.remove_node(op.node_id)
    else:
        raise TypeError(f"Not a patch op: {op!r}")


def apply_patch(graph: HostGraph, ops: list[PatchOp]) -> None:
    """Apply ops strictly in order."""
    for op in ops:
        apply_op(graph, op)
