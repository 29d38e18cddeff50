"""Host graph model.

Nodes travel in the editor's wire format: plain dicts with ``id``, ``type``,
``name``, ``info``, ``x``/``y``, ``z`` (owning tab) and ``wires`` (one list of
downstream ids per output port), plus opaque type-specific fields.

The live graph belongs to the host editor. The core only talks to it through
the HostGraph primitives below. InMemoryGraph is a complete host
implementation used by the CLI and the tests; it mirrors the editor's
behaviour of creating links from declared wires when nodes are imported.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Protocol, runtime_checkable

from semantic_flow.prompts import CONTAINER_TYPES
from semantic_flow.sync import FUNCTIONAL_KEYS

logger = logging.getLogger("semantic_flow.graph.model")

# Extra keys carried into the single-node config sent for resync.
DISPLAY_KEYS: tuple[str, ...] = (
    "payloadType",
    "repeat",
    "crontab",
    "once",
    "active",
    "tosidebar",
    "console",
    "tostatus",
)


@dataclass(frozen=True)
class Link:
    """One connection: output port ``port`` of ``source`` feeds ``target``."""

    source: str
    port: int
    target: str


@runtime_checkable
class HostGraph(Protocol):
    """Mutation primitives the core is allowed to use on the live graph."""

    def node(self, node_id: str) -> dict[str, Any] | None: ...

    def nodes_in(self, tab_id: str) -> list[dict[str, Any]]: ...

    def import_nodes(self, nodes: Iterable[dict[str, Any]]) -> list[str]: ...

    def set_field(self, node_id: str, key: str, value: Any) -> None: ...

    def remove_node(self, node_id: str) -> None: ...

    def links_from(self, node_id: str) -> list[Link]: ...

    def add_link(self, source: str, port: int, target: str) -> Link: ...

    def remove_link(self, link: Link) -> None: ...

    def mark_changed(self, node_id: str) -> None: ...


class InMemoryGraph:
    """Dict-backed HostGraph with editor-like import semantics."""

    def __init__(self, nodes: Iterable[dict[str, Any]] | None = None) -> None:
        self._nodes: dict[str, dict[str, Any]] = {}
        self._links: list[Link] = []
        self.changed: set[str] = set()
        self.dirty = False
        if nodes:
            self.import_nodes(nodes)
            self.changed.clear()
            self.dirty = False

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def node(self, node_id: str) -> dict[str, Any] | None:
        return self._nodes.get(node_id)

    def all_nodes(self) -> list[dict[str, Any]]:
        return list(self._nodes.values())

    def tabs(self) -> list[dict[str, Any]]:
        return [n for n in self._nodes.values() if n.get("type") == "tab"]

    def nodes_in(self, tab_id: str) -> list[dict[str, Any]]:
        return [
            n for n in self._nodes.values()
            if n.get("z") == tab_id and n.get("type") not in CONTAINER_TYPES
        ]

    def links(self) -> list[Link]:
        return list(self._links)

    def links_from(self, node_id: str) -> list[Link]:
        return [link for link in self._links if link.source == node_id]

    def wires_of(self, node_id: str) -> list[list[str]]:
        """Port-indexed downstream ids as currently linked."""
        node = self._nodes.get(node_id) or {}
        outgoing = self.links_from(node_id)
        ports = max([len(node.get("wires") or [])] + [link.port + 1 for link in outgoing])
        wires: list[list[str]] = [[] for _ in range(ports)]
        for link in outgoing:
            wires[link.port].append(link.target)
        return wires

    def export(self, tab_id: str | None = None) -> list[dict[str, Any]]:
        """Complete node set with wires taken from the live links."""
        result = []
        for node in self._nodes.values():
            if tab_id is not None and node.get("z") != tab_id and node.get("id") != tab_id:
                continue
            exported = copy.deepcopy(node)
            if node.get("type") not in CONTAINER_TYPES:
                exported["wires"] = self.wires_of(node["id"])
            result.append(exported)
        return result

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def import_nodes(self, nodes: Iterable[dict[str, Any]]) -> list[str]:
        """Add nodes, then link each declared wire whose target exists."""
        incoming = [copy.deepcopy(n) for n in nodes]
        for node in incoming:
            node_id = node.get("id")
            if not node_id:
                raise ValueError(f"Cannot import a node without an id: {node!r}")
            if node_id in self._nodes:
                raise ValueError(f"Node {node_id!r} already exists")
        for node in incoming:
            self._nodes[node["id"]] = node
            self.changed.add(node["id"])
        for node in incoming:
            for port, targets in enumerate(node.get("wires") or []):
                for target in targets or []:
                    if target in self._nodes:
                        self._links.append(Link(node["id"], port, target))
        self.dirty = True
        return [n["id"] for n in incoming]

    def set_field(self, node_id: str, key: str, value: Any) -> None:
        self._require(node_id)[key] = copy.deepcopy(value)
        self.mark_changed(node_id)

    def remove_node(self, node_id: str) -> None:
        self._require(node_id)
        del self._nodes[node_id]
        self._links = [l for l in self._links if l.source != node_id and l.target != node_id]
        self.changed.discard(node_id)
        self.dirty = True

    def add_link(self, source: str, port: int, target: str) -> Link:
        self._require(source)
        self._require(target)
        link = Link(source, port, target)
        self._links.append(link)
        self.dirty = True
        return link

    def remove_link(self, link: Link) -> None:
        try:
            self._links.remove(link)
        except ValueError:
            logger.debug("Link %s already removed", link)
            return
        self.dirty = True

    def mark_changed(self, node_id: str) -> None:
        self.changed.add(node_id)
        self.dirty = True

    def _require(self, node_id: str) -> dict[str, Any]:
        node = self._nodes.get(node_id)
        if node is None:
            raise KeyError(f"Node {node_id!r} not found")
        return node


def extract_node_config(node: dict[str, Any], graph: HostGraph | None = None) -> dict[str, Any]:
    """Serializable snapshot of a node for single-node AI calls.

    Wires come from the node itself, or from the graph's links when the node
    carries none.
    """
    wires = node.get("wires")
    if not wires and graph is not None:
        wires = _wires_from_links(graph, node["id"])
    config: dict[str, Any] = {
        "id": node.get("id"),
        "type": node.get("type"),
        "name": node.get("name"),
        "info": node.get("info"),
        "x": node.get("x"),
        "y": node.get("y"),
        "z": node.get("z"),
        "wires": wires or [],
    }
    for key in FUNCTIONAL_KEYS + DISPLAY_KEYS:
        if node.get(key) is not None:
            config[key] = copy.deepcopy(node[key])
    return config


def _wires_from_links(graph: HostGraph, node_id: str) -> list[list[str]]:
    outputs: list[list[str]] = []
    for link in graph.links_from(node_id):
        while len(outputs) <= link.port:
            outputs.append([])
        outputs[link.port].append(link.target)
    return outputs
