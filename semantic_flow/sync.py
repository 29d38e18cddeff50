"""Per-node synchronization state.

SyncTracker is the session-scoped store behind the sync indicator shown on
each node. For every node id it keeps:

  status       idle / syncing / waiting (rate limited)
  info         the intent text as of the last successful sync
  fingerprint  a hash of the node's functional fields as of that sync
  last_synced  unix timestamp of that sync

Entries are created the first time a node is observed, refreshed on every
successful sync and dropped when the node leaves the graph.

Status transitions are restricted to idle -> syncing -> {idle, waiting} and
waiting -> syncing. At most one sync per node id runs at a time: syncing()
holds a per-node asyncio.Lock, so a second request for the same id queues
behind the one in flight.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Callable

from semantic_flow.errors import SemanticFlowError

logger = logging.getLogger("semantic_flow.sync")

# Fields whose change means the node's logic was edited.
FUNCTIONAL_KEYS: tuple[str, ...] = (
    "func",
    "rules",
    "url",
    "method",
    "ret",
    "property",
    "payload",
    "topic",
    "to",
    "outputs",
    "split",
    "fixdmax",
    "complete",
    "finalize",
    "initialize",
)

INFO_TO_LOGIC = "info-to-logic"
LOGIC_TO_INFO = "logic-to-info"


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    WAITING = "waiting"


_TRANSITIONS: dict[SyncStatus, frozenset[SyncStatus]] = {
    SyncStatus.IDLE: frozenset({SyncStatus.SYNCING}),
    SyncStatus.SYNCING: frozenset({SyncStatus.IDLE, SyncStatus.WAITING}),
    SyncStatus.WAITING: frozenset({SyncStatus.SYNCING}),
}


class InvalidTransitionError(SemanticFlowError):
    """A status change outside the allowed transition table."""


def extract_functional(node: dict[str, Any]) -> dict[str, Any]:
    return {key: node[key] for key in FUNCTIONAL_KEYS if key in node}


def functional_fingerprint(node: dict[str, Any]) -> str:
    """SHA-256 over the node's functional fields, key order independent."""
    payload = json.dumps(extract_functional(node), sort_keys=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@dataclass
class NodeSyncState:
    info: str = ""
    fingerprint: str | None = None
    last_synced: float | None = None
    status: SyncStatus = SyncStatus.IDLE


StatusListener = Callable[[str, SyncStatus], None]


class SyncTracker:
    """Session store of NodeSyncState keyed by node id."""

    def __init__(self) -> None:
        self._states: dict[str, NodeSyncState] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._listeners: list[StatusListener] = []

    # ------------------------------------------------------------------
    # Lookup / lifecycle
    # ------------------------------------------------------------------

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._states

    def get(self, node_id: str) -> NodeSyncState | None:
        return self._states.get(node_id)

    def status(self, node_id: str) -> SyncStatus:
        state = self._states.get(node_id)
        return state.status if state else SyncStatus.IDLE

    def observe(self, node: dict[str, Any]) -> NodeSyncState:
        """Create the entry for a node seen for the first time."""
        node_id = node["id"]
        state = self._states.get(node_id)
        if state is None:
            state = NodeSyncState(
                info=node.get("info") or "",
                fingerprint=functional_fingerprint(node),
            )
            self._states[node_id] = state
        return state

    def record_sync(self, node: dict[str, Any]) -> NodeSyncState:
        """Store the node's intent and logic as the new synchronized baseline."""
        state = self.observe(node)
        state.info = node.get("info") or ""
        state.fingerprint = functional_fingerprint(node)
        state.last_synced = time.time()
        return state

    def forget(self, node_id: str) -> None:
        self._states.pop(node_id, None)
        lock = self._locks.get(node_id)
        if lock is not None and not lock.locked():
            del self._locks[node_id]

    def detect_drift(self, node: dict[str, Any]) -> str | None:
        """Which direction a node needs syncing in, if any.

        An edited intent wins over edited logic when both changed. Nodes that
        were never observed have no baseline and report no drift.
        """
        state = self._states.get(node.get("id", ""))
        if state is None:
            return None
        if (node.get("info") or "") != state.info:
            return INFO_TO_LOGIC
        if state.fingerprint is not None and functional_fingerprint(node) != state.fingerprint:
            return LOGIC_TO_INFO
        return None

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def add_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def set_status(self, node_id: str, status: SyncStatus) -> None:
        state = self._states.setdefault(node_id, NodeSyncState())
        if state.status == status:
            return
        if status not in _TRANSITIONS[state.status]:
            raise InvalidTransitionError(
                f"Node {node_id}: cannot go from {state.status.value} to {status.value}"
            )
        state.status = status
        logger.debug("Node %s -> %s", node_id, status.value)
        for listener in self._listeners:
            listener(node_id, status)

    def is_busy(self, node_id: str) -> bool:
        lock = self._locks.get(node_id)
        return bool(lock and lock.locked())

    @asynccontextmanager
    async def syncing(self, node_id: str) -> AsyncIterator[NodeSyncState]:
        """Hold the node's sync slot; status is syncing inside, idle after."""
        lock = self._locks.setdefault(node_id, asyncio.Lock())
        if lock.locked():
            logger.info("Node %s already syncing; request queued", node_id)
        async with lock:
            self.set_status(node_id, SyncStatus.SYNCING)
            try:
                yield self._states[node_id]
            finally:
                state = self._states.get(node_id)
                if state is not None:
                    if state.status == SyncStatus.WAITING:
                        self.set_status(node_id, SyncStatus.SYNCING)
                    self.set_status(node_id, SyncStatus.IDLE)
