"""Undoable structural edits and the linear history that holds them.

Commands call back into the graph with ``record=False`` so replaying one never
pushes a new entry onto the history.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from core.events import UndoRedoStackChanged
from core.models import EdgeSnapshot, NodeSnapshot
from core.types_registry import CommandError, GraphError, SerialisableGraph

if TYPE_CHECKING:
    from core.graph import Graph
    from core.serializer import LoadWarning

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FailedEdge:
    edge: EdgeSnapshot
    reason: str


@dataclass
class RestoreResult:
    """What undoing a node removal managed to put back."""

    node_id: str
    restored_edge_ids: list[str] = field(default_factory=list)
    failed_edges: list[FailedEdge] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed_edges


class Command(ABC):
    description: str = ""

    def __init__(self, graph: "Graph"):
        self.graph = graph

    @abstractmethod
    def execute(self) -> Any:
        """Apply (or re-apply) the edit."""

    @abstractmethod
    def undo(self) -> Any:
        """Revert the edit."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.description}>"


class AddNodeCommand(Command):
    def __init__(self, graph: "Graph", snapshot: NodeSnapshot):
        super().__init__(graph)
        self.snapshot = snapshot
        self.description = f"add node {snapshot.id}"

    def execute(self) -> None:
        s = self.snapshot
        self.graph.create_node(s.type_id, s.x, s.y, s.params_copy(), node_id=s.id, record=False)

    def undo(self) -> None:
        node = self.graph.get_node(self.snapshot.id)
        if node is None:
            raise CommandError(f"Cannot undo: node '{self.snapshot.id}' no longer exists")
        # keep position and parameter edits made since the node was added
        self.snapshot = NodeSnapshot.of(node)
        self.graph.remove_node(self.snapshot.id, record=False)


class RemoveNodeCommand(Command):
    def __init__(self, graph: "Graph", snapshot: NodeSnapshot, edges: list[EdgeSnapshot]):
        super().__init__(graph)
        self.snapshot = snapshot
        self.edges = list(edges)
        self.description = f"remove node {snapshot.id}"

    def execute(self) -> None:
        self.graph.remove_node(self.snapshot.id, record=False)

    def undo(self) -> RestoreResult:
        """Recreate the node, then reconnect its former edges under their original ids.

        Each edge is reconnected only once both endpoints resolve. Edges whose
        far end is gone are reported in the result, not raised.
        """
        s = self.snapshot
        self.graph.create_node(s.type_id, s.x, s.y, s.params_copy(), node_id=s.id, record=False)
        if not self.graph.is_node_ready(s.id):
            raise CommandError(f"Node '{s.id}' did not become ready after being recreated")

        result = RestoreResult(s.id)
        for edge in self.edges:
            missing = self.graph.unresolved_sockets(edge)
            if missing:
                result.failed_edges.append(FailedEdge(edge, f"unresolved endpoint(s): {', '.join(missing)}"))
                continue
            try:
                self.graph.connect(
                    edge.from_node_id,
                    edge.from_socket,
                    edge.to_node_id,
                    edge.to_socket,
                    check_types=False,
                    edge_id=edge.id,
                    record=False,
                )
                result.restored_edge_ids.append(edge.id)
            except GraphError as e:
                result.failed_edges.append(FailedEdge(edge, str(e)))

        if result.failed_edges:
            logger.warning(
                f"Restored node {s.id} with {len(result.failed_edges)} edge(s) that could not be reconnected: "
                f"{[failed.edge.id for failed in result.failed_edges]}"
            )
        return result


class AddEdgeCommand(Command):
    def __init__(self, graph: "Graph", snapshot: EdgeSnapshot):
        super().__init__(graph)
        self.snapshot = snapshot
        self.description = f"add edge {snapshot.id}"

    def execute(self) -> None:
        e = self.snapshot
        self.graph.connect(
            e.from_node_id, e.from_socket, e.to_node_id, e.to_socket,
            check_types=False, edge_id=e.id, record=False,
        )

    def undo(self) -> None:
        self.graph.remove_edge(self.snapshot.id, record=False)


class RemoveEdgeCommand(AddEdgeCommand):
    def __init__(self, graph: "Graph", snapshot: EdgeSnapshot):
        super().__init__(graph, snapshot)
        self.description = f"remove edge {snapshot.id}"

    def execute(self) -> None:
        super().undo()

    def undo(self) -> None:
        super().execute()


class StateSnapshotCommand(Command):
    """Swap the whole graph between two serialized states."""

    def __init__(self, graph: "Graph", before: SerialisableGraph, after: SerialisableGraph):
        super().__init__(graph)
        self.before = before
        self.after = after
        self.description = "replace graph state"

    def execute(self) -> "list[LoadWarning]":
        return self.graph.serializer.deserialize(self.after, reset_history=False)

    def undo(self) -> "list[LoadWarning]":
        return self.graph.serializer.deserialize(self.before, reset_history=False)


class CommandManager:
    """Linear undo/redo history.

    Recording a command clears the redo stack. While the graph is read-only,
    recording, undo and redo are all no-ops.
    """

    def __init__(self, graph: "Graph", max_depth: int | None = None):
        self.graph = graph
        self.max_depth = max_depth
        self._undo_stack: list[Command] = []
        self._redo_stack: list[Command] = []

    @property
    def can_undo(self) -> bool:
        return bool(self._undo_stack) and not self.graph.read_only

    @property
    def can_redo(self) -> bool:
        return bool(self._redo_stack) and not self.graph.read_only

    @property
    def undo_count(self) -> int:
        return len(self._undo_stack)

    @property
    def redo_count(self) -> int:
        return len(self._redo_stack)

    def record(self, command: Command) -> bool:
        """Push an already-applied command. Returns False when ignored.

        A read-only graph keeps no history, but the mutation still invalidates
        whatever could have been redone.
        """
        if self.graph.read_only:
            if self._redo_stack:
                self._redo_stack.clear()
                self._notify()
            return False
        self._undo_stack.append(command)
        self._redo_stack.clear()
        if self.max_depth is not None and len(self._undo_stack) > self.max_depth:
            del self._undo_stack[: len(self._undo_stack) - self.max_depth]
        self._notify()
        return True

    def undo(self) -> Any:
        """Revert the most recent command and return whatever its ``undo`` returned.

        If the command fails it stays on the undo stack and the error propagates.
        """
        if not self.can_undo:
            return None
        command = self._undo_stack.pop()
        try:
            outcome = command.undo()
        except Exception:
            self._undo_stack.append(command)
            raise
        self._redo_stack.append(command)
        logger.debug(f"Undid {command!r}")
        self._notify()
        return outcome

    def redo(self) -> Any:
        if not self.can_redo:
            return None
        command = self._redo_stack.pop()
        try:
            outcome = command.execute()
        except Exception:
            self._redo_stack.append(command)
            raise
        self._undo_stack.append(command)
        logger.debug(f"Redid {command!r}")
        self._notify()
        return outcome

    def clear(self) -> None:
        if not self._undo_stack and not self._redo_stack:
            return
        self._undo_stack.clear()
        self._redo_stack.clear()
        self._notify()

    def _notify(self) -> None:
        self.graph.events.publish(UndoRedoStackChanged(self.undo_count, self.redo_count))
