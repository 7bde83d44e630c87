import heapq
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import rustworkx as rx

from core.types_registry import CycleDetectedError, ExecutionDirection

if TYPE_CHECKING:
    from core.graph import Graph

logger = logging.getLogger(__name__)


@dataclass
class DependencyMaps:
    """Distinct upstream/downstream node ids per node, in graph insertion order."""

    order_index: dict[str, int] = field(default_factory=dict)
    predecessors: dict[str, list[str]] = field(default_factory=dict)
    successors: dict[str, list[str]] = field(default_factory=dict)


def build_dependency_maps(
    graph: "Graph",
    only: Iterable[str] | None = None,
    direction: ExecutionDirection = ExecutionDirection.INPUT_TO_OUTPUT,
) -> DependencyMaps:
    """Collapse edges into node-level dependencies.

    When ``only`` is given, nodes outside the subset are dropped along with the
    edges that touch them. ``OUTPUT_TO_INPUT`` flips every edge, so a node
    depends on the nodes it feeds.
    """
    selected = set(only) if only is not None else None
    maps = DependencyMaps()
    for index, node_id in enumerate(graph.nodes):
        if selected is not None and node_id not in selected:
            continue
        maps.order_index[node_id] = index
        maps.predecessors[node_id] = []
        maps.successors[node_id] = []

    for edge in graph.edges.values():
        src, dst = edge.from_node_id, edge.to_node_id
        if direction == ExecutionDirection.OUTPUT_TO_INPUT:
            src, dst = dst, src
        if src not in maps.order_index or dst not in maps.order_index:
            continue
        if src not in maps.predecessors[dst]:
            maps.predecessors[dst].append(src)
            maps.successors[src].append(dst)
    return maps


def topological_order(
    graph: "Graph",
    only: Iterable[str] | None = None,
    direction: ExecutionDirection = ExecutionDirection.INPUT_TO_OUTPUT,
) -> list[str]:
    """Order node ids so that every edge u -> v has u before v (v before u in reverse).

    Kahn's algorithm over in-degree counts. Among nodes that are ready at the
    same time the earliest-inserted one is taken first, which keeps independent
    nodes in insertion order and makes the order reproducible.

    Raises:
        CycleDetectedError: if some nodes can never reach in-degree zero.
    """
    maps = build_dependency_maps(graph, only, direction)
    return order_from_maps(maps)


def order_from_maps(maps: DependencyMaps) -> list[str]:
    in_degree = {node_id: len(preds) for node_id, preds in maps.predecessors.items()}
    ready: list[tuple[int, str]] = [
        (maps.order_index[node_id], node_id)
        for node_id, degree in in_degree.items()
        if degree == 0
    ]
    heapq.heapify(ready)

    order: list[str] = []
    while ready:
        _, node_id = heapq.heappop(ready)
        order.append(node_id)
        for successor in maps.successors[node_id]:
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                heapq.heappush(ready, (maps.order_index[successor], successor))

    if len(order) != len(in_degree):
        scheduled = set(order)
        remaining = sorted(
            (node_id for node_id in in_degree if node_id not in scheduled),
            key=lambda node_id: maps.order_index[node_id],
        )
        cycle = find_cycle(maps, remaining)
        logger.warning(f"Scheduling failed, unresolved nodes: {remaining}")
        raise CycleDetectedError(remaining, cycle)
    return order


def build_dag(maps: DependencyMaps) -> tuple[rx.PyDiGraph, dict[str, int]]:
    """Mirror the node-level dependencies into a rustworkx digraph."""
    dag: rx.PyDiGraph = rx.PyDiGraph()
    id_to_idx: dict[str, int] = {}
    for node_id in maps.predecessors:
        id_to_idx[node_id] = dag.add_node(node_id)
    for node_id, successors in maps.successors.items():
        for successor in successors:
            dag.add_edge(id_to_idx[node_id], id_to_idx[successor], None)
    return dag, id_to_idx


def find_cycle(maps: DependencyMaps, candidates: Iterable[str] | None = None) -> list[str]:
    """Return the node ids along one concrete cycle, or [] if the graph is acyclic.

    The search starts from each of ``candidates`` in turn (every node by default)
    until a cycle is reachable.
    """
    dag, id_to_idx = build_dag(maps)
    for node_id in candidates if candidates is not None else maps.order_index:
        cycle_edges = _rx_find_cycle(dag, id_to_idx[node_id])
        if cycle_edges:
            return [dag[source] for source, _target in cycle_edges]
    return []


def is_acyclic(graph: "Graph") -> bool:
    dag, _ = build_dag(build_dependency_maps(graph))
    return _rx_is_dag(dag)


def execution_levels(graph: "Graph") -> list[list[str]]:
    """Group nodes into generations; nodes in one generation share no ordering constraint."""
    maps = build_dependency_maps(graph)
    dag, _ = build_dag(maps)
    if not _rx_is_dag(dag):
        order_from_maps(maps)  # raises with the unresolved node set
    levels = []
    for generation in _rx_levels(dag):
        node_ids = [dag[idx] for idx in generation]
        levels.append(sorted(node_ids, key=lambda node_id: maps.order_index[node_id]))
    return levels


def downstream_of(graph: "Graph", node_id: str) -> set[str]:
    """All nodes that depend on ``node_id`` directly or transitively."""
    maps = build_dependency_maps(graph)
    if node_id not in maps.order_index:
        return set()
    dag, id_to_idx = build_dag(maps)
    return {dag[idx] for idx in _rx_descendants(dag, id_to_idx[node_id])}


# ---- rustworkx helper shims with precise typing to satisfy the type checker ----
def _rx_levels(dag: Any) -> Any:
    return list(rx.topological_generations(dag))


def _rx_is_dag(dag: Any) -> bool:
    return rx.is_directed_acyclic_graph(dag)


def _rx_find_cycle(dag: Any, source: int) -> list[tuple[int, int]]:
    return [tuple(edge) for edge in rx.digraph_find_cycle(dag, source)]  # type: ignore[misc]


def _rx_descendants(dag: Any, idx: int) -> set[int]:
    return set(rx.descendants(dag, idx))
