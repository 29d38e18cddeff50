"""Command-line entry point.

Usage:
    semantic-flow serve [--host H] [--port P] [--reload]
    semantic-flow check
    semantic-flow build "create a flow that logs hello" [--flow flows.json] [--tab TAB] [--out out.json]
    semantic-flow resync NODE_ID --flow flows.json [--direction logic-to-info] [--out out.json]

build and resync work on a flow file exported from the editor (a JSON list of
nodes) held in memory; the updated node list is written to --out, or back
to --flow when --out is omitted.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from argparse import ArgumentParser
from pathlib import Path

from semantic_flow.config import ServerSettings
from semantic_flow.connectors import available_connectors, create_connector
from semantic_flow.graph.model import InMemoryGraph
from semantic_flow.markdown import preview_text
from semantic_flow.retry import RetryController
from semantic_flow.service import FlowBuilder, NodeSynchronizer
from semantic_flow.sync import INFO_TO_LOGIC, LOGIC_TO_INFO, SyncTracker

logger = logging.getLogger("semantic_flow.cli")


def _load_graph(path: str | None) -> InMemoryGraph:
    if not path:
        return InMemoryGraph()
    nodes = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(nodes, list):
        raise SystemExit(f"{path}: expected a JSON list of nodes")
    return InMemoryGraph(nodes)


def _write_graph(graph: InMemoryGraph, path: str | None) -> None:
    text = json.dumps(graph.export(), indent=2)
    if path:
        Path(path).write_text(text + "\n", encoding="utf-8")
        print(f"Wrote {len(graph)} nodes to {path}")
    else:
        print(text)


def _default_tab(graph: InMemoryGraph) -> str | None:
    tabs = graph.tabs()
    return tabs[0]["id"] if tabs else None


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_check() -> int:
    settings = ServerSettings()
    try:
        connector = create_connector(settings.connector_name())
    except ValueError as e:
        print(str(e))
        return 1
    validation = connector.validate_config(connector.get_config())
    print(f"Connector : {connector.name}")
    print(f"Available : {', '.join(available_connectors())}")
    if validation.valid:
        print("Config    : ok")
        return 0
    print("Config    : incomplete")
    for error in validation.errors:
        print(f"  - {error}")
    return 1


async def _build(prompt: str, flow: str | None, tab: str | None, out: str | None) -> int:
    graph = _load_graph(flow)
    tracker = SyncTracker()
    connector = create_connector(ServerSettings().connector_name(), retry=RetryController(tracker=tracker))
    try:
        outcome = await FlowBuilder(connector, graph, tracker).build(prompt, tab or _default_tab(graph))
    finally:
        await connector.close()
    print(outcome.message)
    if not outcome.success:
        return 1
    for mark, ids in (("+", outcome.merge.added), ("~", outcome.merge.updated)):
        for node_id in ids:
            print(f"  {mark} {node_id}  {preview_text(graph.node(node_id), limit=80)}")
    _write_graph(graph, out or flow)
    return 0


async def _resync(node_id: str, flow: str, direction: str, out: str | None) -> int:
    graph = _load_graph(flow)
    tracker = SyncTracker()
    connector = create_connector(ServerSettings().connector_name(), retry=RetryController(tracker=tracker))
    try:
        outcome = await NodeSynchronizer(connector, graph, tracker).resync(node_id, direction)
    finally:
        await connector.close()
    if not outcome.success:
        print(f"Failed to sync node {node_id}: {outcome.error}")
        return 1
    print(f"Node {node_id} synced ({direction}, {len(outcome.ops)} changes)")
    _write_graph(graph, out or flow)
    return 0


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")

    parser = ArgumentParser(
        prog="semantic-flow",
        description="Semantic Flow AI: natural-language flows kept in sync with their logic",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve_p = sub.add_parser("serve", help="Run the HTTP service")
    serve_p.add_argument("--host", default="127.0.0.1")
    serve_p.add_argument("--port", type=int, default=8000)
    serve_p.add_argument("--reload", action="store_true")

    sub.add_parser("check", help="Show the configured connector and validate its settings")

    build_p = sub.add_parser("build", help="Build or update a flow from a prompt")
    build_p.add_argument("prompt", help="Natural-language description of the flow")
    build_p.add_argument("--flow", help="Flow file to update (JSON list of nodes)")
    build_p.add_argument("--tab", help="Tab to merge into (default: first tab in the file)")
    build_p.add_argument("--out", help="Where to write the result (default: --flow, else stdout)")

    resync_p = sub.add_parser("resync", help="Re-synchronize one node's intent and logic")
    resync_p.add_argument("node_id")
    resync_p.add_argument("--flow", required=True, help="Flow file holding the node")
    resync_p.add_argument("--direction", choices=(INFO_TO_LOGIC, LOGIC_TO_INFO), default=INFO_TO_LOGIC)
    resync_p.add_argument("--out", help="Where to write the result (default: --flow)")

    args = parser.parse_args(argv)

    if args.command == "serve":
        from semantic_flow.api import serve

        serve(host=args.host, port=args.port, reload=args.reload)
    elif args.command == "check":
        sys.exit(cmd_check())
    elif args.command == "build":
        sys.exit(asyncio.run(_build(args.prompt, args.flow, args.tab, args.out)))
    elif args.command == "resync":
        sys.exit(asyncio.run(_resync(args.node_id, args.flow, args.direction, args.out)))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
