"""Structural validation of a graph before it is executed.

Every check runs; the caller gets all problems at once rather than the first.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from core.scheduler import topological_order
from core.types_registry import CycleDetectedError, SocketDirection

if TYPE_CHECKING:
    from core.graph import Graph

logger = logging.getLogger(__name__)

DANGLING_EDGE = "DANGLING_EDGE"
DIRECTION_MISMATCH = "DIRECTION_MISMATCH"
SELF_LOOP = "SELF_LOOP"
CONNECTION_LIMIT_EXCEEDED = "CONNECTION_LIMIT_EXCEEDED"
CYCLE_DETECTED = "CYCLE_DETECTED"


@dataclass
class ValidationIssue:
    """Represents a single validation problem."""

    code: str
    message: str
    node_id: str | None = None
    edge_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


def validate_graph(graph: "Graph") -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    _check_edge_endpoints(graph, issues)
    _check_self_loops(graph, issues)
    _check_connection_limits(graph, issues)
    _check_cycles(graph, issues)
    if issues:
        logger.info(f"Validation found {len(issues)} issue(s): {[i.code for i in issues]}")
    return issues


def _check_edge_endpoints(graph: "Graph", issues: list[ValidationIssue]) -> None:
    for edge in graph.edges.values():
        for node_id, socket_name, expected in (
            (edge.from_node_id, edge.from_socket, SocketDirection.OUTPUT),
            (edge.to_node_id, edge.to_socket, SocketDirection.INPUT),
        ):
            node = graph.nodes.get(node_id)
            if node is None:
                issues.append(
                    ValidationIssue(
                        DANGLING_EDGE,
                        f"Edge '{edge.id}' references non-existent node '{node_id}'",
                        node_id=node_id,
                        edge_id=edge.id,
                    )
                )
                continue
            socket = node.get_socket(socket_name)
            if socket is None:
                issues.append(
                    ValidationIssue(
                        DANGLING_EDGE,
                        f"Edge '{edge.id}' references non-existent socket '{socket_name}' on node '{node_id}'",
                        node_id=node_id,
                        edge_id=edge.id,
                        details={"socket": socket_name},
                    )
                )
            elif socket.direction != expected:
                issues.append(
                    ValidationIssue(
                        DIRECTION_MISMATCH,
                        f"Edge '{edge.id}' uses {socket.direction.value} socket '{socket_name}' "
                        f"on node '{node_id}' where an {expected.value} socket is required",
                        node_id=node_id,
                        edge_id=edge.id,
                        details={"socket": socket_name, "expected": expected.value},
                    )
                )


def _check_self_loops(graph: "Graph", issues: list[ValidationIssue]) -> None:
    for edge in graph.edges.values():
        if edge.from_node_id == edge.to_node_id:
            issues.append(
                ValidationIssue(
                    SELF_LOOP,
                    f"Edge '{edge.id}' connects node '{edge.from_node_id}' to itself",
                    node_id=edge.from_node_id,
                    edge_id=edge.id,
                )
            )


def _check_connection_limits(graph: "Graph", issues: list[ValidationIssue]) -> None:
    counts: Counter[tuple[str, str]] = Counter()
    for edge in graph.edges.values():
        counts[(edge.from_node_id, edge.from_socket)] += 1
        counts[(edge.to_node_id, edge.to_socket)] += 1

    for (node_id, socket_name), count in counts.items():
        node = graph.nodes.get(node_id)
        socket = node.get_socket(socket_name) if node is not None else None
        if socket is None or socket.max_connections is None:
            continue
        if count > socket.max_connections:
            issues.append(
                ValidationIssue(
                    CONNECTION_LIMIT_EXCEEDED,
                    f"Socket '{socket_name}' on node '{node_id}' has {count} connections "
                    f"(limit {socket.max_connections})",
                    node_id=node_id,
                    details={"socket": socket_name, "count": count, "limit": socket.max_connections},
                )
            )


def _check_cycles(graph: "Graph", issues: list[ValidationIssue]) -> None:
    try:
        topological_order(graph)
    except CycleDetectedError as e:
        issues.append(
            ValidationIssue(
                CYCLE_DETECTED,
                f"Graph contains circular dependencies involving nodes: {e.node_ids}",
                details={"cycle_nodes": e.node_ids, "cycle": e.cycle},
            )
        )
