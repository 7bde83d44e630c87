"""
Command-line entrypoint for checking and running persisted graph documents.

Usage examples:
    python main.py validate graph.json
    python main.py run graph.json --no-branch-tracking
    python main.py run graph.json --only n1 n2
    python main.py run graph.json --direction output_to_input

Only the built-in node types are available to documents loaded here.
Exit codes: 0 on success, 1 when the graph has validation issues or a node
faults, 2 when the document cannot be read.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from config.settings import EngineSettings, load_settings
from core.graph import Graph
from core.graph_executor import RunResult
from core.types_registry import DocumentError, ExecutionDirection, GraphValidationError
from nodes.core import register_core_nodes
from utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def build_graph(settings: EngineSettings) -> Graph:
    graph = Graph(settings=settings)
    register_core_nodes(graph)
    return graph


def _load(graph: Graph, path: Path) -> bool:
    try:
        text = path.read_text(encoding="utf-8")
        warnings = graph.deserialize(text)
    except OSError as e:
        print(f"Cannot read {path}: {e}", file=sys.stderr)
        return False
    except DocumentError as e:
        print(f"Cannot load {path}: {e}", file=sys.stderr)
        return False
    for warning in warnings:
        print(f"warning [{warning.code}] {warning.message}", file=sys.stderr)
    return True


def _result_to_dict(result: RunResult) -> dict:
    return {
        "total_nodes": result.total_nodes,
        "executed_count": result.executed_count,
        "cancelled": result.cancelled,
        "faulted": {node_id: str(error) for node_id, error in result.faulted.items()},
        "skipped": {node_id: reason.value for node_id, reason in result.skipped.items()},
        "outputs": {
            f"{node_id}.{socket}": value for (node_id, socket), value in result.outputs.items()
        },
    }


def cmd_validate(graph: Graph, args: argparse.Namespace) -> int:
    issues = graph.validate()
    for issue in issues:
        print(f"{issue.code}: {issue.message}")
    if not issues:
        print(f"OK: {len(graph.nodes)} node(s), {len(graph.edges)} edge(s)")
    return 1 if issues else 0


def cmd_run(graph: Graph, args: argparse.Namespace) -> int:
    branch_tracking = False if args.no_branch_tracking else None
    try:
        result = asyncio.run(
            graph.execute(
                branch_tracking=branch_tracking,
                only=args.only,
                direction=ExecutionDirection(args.direction),
            )
        )
    except GraphValidationError as e:
        for issue in e.issues:
            print(f"{issue.code}: {issue.message}", file=sys.stderr)
        return 1
    print(json.dumps(_result_to_dict(result), indent=2, default=str))
    return 0 if result.succeeded else 1


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Validate or execute a node graph document")
    parser.add_argument("--log-level", default=None, help="Override FLOWGRAPH_LOG_LEVEL (default: INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    validate = sub.add_parser("validate", help="Load a document and report structural problems")
    validate.add_argument("path", type=Path, help="Graph document (JSON)")

    run = sub.add_parser("run", help="Load a document and execute it once")
    run.add_argument("path", type=Path, help="Graph document (JSON)")
    run.add_argument(
        "--no-branch-tracking",
        action="store_true",
        help="Invoke every reachable node even when its inputs were never written",
    )
    run.add_argument("--only", nargs="+", default=None, metavar="NODE_ID", help="Run only these nodes")
    run.add_argument(
        "--direction",
        choices=[d.value for d in ExecutionDirection],
        default=ExecutionDirection.INPUT_TO_OUTPUT.value,
        help="Dependency direction used to order nodes (default: input_to_output)",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    settings = load_settings()
    if args.log_level:
        settings.log_level = args.log_level.upper()
    setup_logging(settings.log_level)

    graph = build_graph(settings)
    if not _load(graph, args.path):
        return 2

    if args.command == "validate":
        return cmd_validate(graph, args)
    return cmd_run(graph, args)


if __name__ == "__main__":
    sys.exit(main())
