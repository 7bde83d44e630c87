"""The mutable node graph and its public mutation API.

Structural mutation is single-writer: nothing here takes a lock, and mutating
the graph while a run is in progress is not supported.
"""

import copy
import logging
import uuid
from collections.abc import Callable, Iterable, Mapping
from types import MappingProxyType
from typing import Any

from config.settings import EngineSettings
from core.commands import (
    AddEdgeCommand,
    AddNodeCommand,
    CommandManager,
    RemoveEdgeCommand,
    RemoveNodeCommand,
    StateSnapshotCommand,
)
from core.events import (
    EdgeAdded,
    EdgeRemoved,
    EventDispatcher,
    GraphCleared,
    GraphEvent,
    NodeAdded,
    NodeMoved,
    NodeRemoved,
)
from core.execution_context import CancellationSignal
from core.graph_executor import GraphExecutor, RunResult
from core.models import CanvasState, Edge, EdgeSnapshot, Node, NodeDescriptor, NodeSnapshot, Socket
from core.node_registry import NodeTypeRegistry
from core.serializer import GraphSerializer, LoadWarning
from core.type_compatibility import TypeCompatibilityRegistry
from core.types_registry import (
    DirectionMismatchError,
    DuplicateEdgeError,
    DuplicateNodeError,
    ConnectionLimitError,
    EdgeNotFoundError,
    ExecutionDirection,
    NodeNotFoundError,
    ProgressCallback,
    SerialisableGraph,
    SocketDirection,
    SocketNotFoundError,
    TypeMismatchError,
)
from core.validation import ValidationIssue, validate_graph
from core.value_codecs import ValueCodecRegistry
from nodes.base.base_node import Base

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex


class Graph:
    def __init__(
        self,
        node_registry: NodeTypeRegistry | None = None,
        type_registry: TypeCompatibilityRegistry | None = None,
        codecs: ValueCodecRegistry | None = None,
        settings: EngineSettings | None = None,
    ):
        self.settings = settings or EngineSettings()
        self.node_registry = node_registry or NodeTypeRegistry()
        self.type_registry = type_registry or TypeCompatibilityRegistry()
        self.events = EventDispatcher()
        self.commands = CommandManager(self, max_depth=self.settings.undo_limit)
        self.serializer = GraphSerializer(self, codecs or ValueCodecRegistry())
        self.canvas = CanvasState()
        self.read_only = False
        self._nodes: dict[str, Node] = {}
        self._edges: dict[str, Edge] = {}
        # node id -> edge ids (dicts used as insertion-ordered sets)
        self._in_edges: dict[str, dict[str, None]] = {}
        self._out_edges: dict[str, dict[str, None]] = {}

    # ============================================================================
    # Read access
    # ============================================================================

    @property
    def nodes(self) -> Mapping[str, Node]:
        return MappingProxyType(self._nodes)

    @property
    def edges(self) -> Mapping[str, Edge]:
        return MappingProxyType(self._edges)

    def get_node(self, node_id: str) -> Node | None:
        return self._nodes.get(node_id)

    def get_edge(self, edge_id: str) -> Edge | None:
        return self._edges.get(edge_id)

    def incoming_edges(self, node_id: str) -> list[Edge]:
        return [self._edges[eid] for eid in self._in_edges.get(node_id, {})]

    def outgoing_edges(self, node_id: str) -> list[Edge]:
        return [self._edges[eid] for eid in self._out_edges.get(node_id, {})]

    def incident_edges(self, node_id: str) -> list[Edge]:
        edge_ids = {**self._in_edges.get(node_id, {}), **self._out_edges.get(node_id, {})}
        return [edge for eid, edge in self._edges.items() if eid in edge_ids]

    def connection_count(self, node_id: str, socket_name: str) -> int:
        return sum(
            1
            for edge in self.incident_edges(node_id)
            if (edge.from_node_id == node_id and edge.from_socket == socket_name)
            or (edge.to_node_id == node_id and edge.to_socket == socket_name)
        )

    def find_edge(
        self, from_node_id: str, from_socket: str, to_node_id: str, to_socket: str
    ) -> Edge | None:
        for edge in self.outgoing_edges(from_node_id):
            if edge.endpoints == (from_node_id, from_socket, to_node_id, to_socket):
                return edge
        return None

    # ============================================================================
    # Node types
    # ============================================================================

    def register_node_type(
        self, type_id: str, descriptor: NodeDescriptor | type[Base], replace: bool = False
    ) -> None:
        if isinstance(descriptor, type) and issubclass(descriptor, Base):
            descriptor = descriptor.descriptor(type_id)
        self.node_registry.register(type_id, descriptor, replace=replace)

    # ============================================================================
    # Mutation API
    # ============================================================================

    def create_node(
        self,
        type_id: str,
        x: float = 0.0,
        y: float = 0.0,
        params: dict[str, Any] | None = None,
        node_id: str | None = None,
        record: bool = True,
    ) -> str:
        """Add a node of a registered type and return its id.

        The node's sockets are resolvable as soon as this returns.
        """
        descriptor = self.node_registry.get(type_id)
        node_id = node_id or _new_id()
        if node_id in self._nodes:
            raise DuplicateNodeError(node_id)

        merged = copy.deepcopy(descriptor.default_params)
        merged.update(params or {})
        node = Node(
            id=node_id,
            type_id=type_id,
            x=float(x),
            y=float(y),
            params=merged,
            sockets=[
                Socket(node_id, spec.name, spec.direction, spec.value_type, spec.max_connections)
                for spec in descriptor.sockets
            ],
        )
        node.logic = descriptor.factory(node)

        self._nodes[node_id] = node
        self._in_edges[node_id] = {}
        self._out_edges[node_id] = {}
        logger.debug(f"Created node {node_id} ({type_id}) at ({node.x}, {node.y})")

        self.events.publish(NodeAdded(node_id, type_id, node.x, node.y))
        if record:
            self.commands.record(AddNodeCommand(self, NodeSnapshot.of(node)))
        return node_id

    def remove_node(self, node_id: str, record: bool = True) -> None:
        """Remove a node and every edge touching it."""
        node = self._nodes.get(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)

        snapshot = NodeSnapshot.of(node)
        incident = [EdgeSnapshot.of(edge) for edge in self.incident_edges(node_id)]
        for edge in incident:
            self._detach_edge(edge.id)

        del self._nodes[node_id]
        del self._in_edges[node_id]
        del self._out_edges[node_id]
        if node.logic is not None:
            node.logic.force_stop()
        logger.debug(f"Removed node {node_id} with {len(incident)} incident edge(s)")

        self.events.publish(NodeRemoved(node_id))
        if record:
            self.commands.record(RemoveNodeCommand(self, snapshot, incident))

    def move_node(self, node_id: str, x: float, y: float) -> None:
        node = self._nodes.get(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        node.x, node.y = float(x), float(y)
        self.events.publish(NodeMoved(node_id, node.x, node.y))

    def connect(
        self,
        from_node_id: str,
        from_socket: str,
        to_node_id: str,
        to_socket: str,
        check_types: bool | None = None,
        edge_id: str | None = None,
        record: bool = True,
    ) -> str:
        """Link an output socket to an input socket and return the new edge id.

        Raises a ``ConnectionRejectedError`` subclass (or ``NodeNotFoundError``)
        when the edge cannot be created; the graph is left unchanged.
        """
        if check_types is None:
            check_types = self.settings.check_types_on_connect

        if self.find_edge(from_node_id, from_socket, to_node_id, to_socket) is not None:
            raise DuplicateEdgeError(
                f"Link already exists: {from_node_id}.{from_socket} -> {to_node_id}.{to_socket}"
            )

        source = self._resolve_socket(from_node_id, from_socket, SocketDirection.OUTPUT)
        target = self._resolve_socket(to_node_id, to_socket, SocketDirection.INPUT)

        if check_types and not self.type_registry.is_compatible(source.value_type, target.value_type):
            raise TypeMismatchError(source.value_type, target.value_type)

        for socket in (source, target):
            if socket.max_connections is not None:
                if self.connection_count(socket.node_id, socket.name) >= socket.max_connections:
                    raise ConnectionLimitError(socket.node_id, socket.name, socket.max_connections)

        edge_id = edge_id or _new_id()
        if edge_id in self._edges:
            raise DuplicateEdgeError(f"Edge id '{edge_id}' is already in use")

        edge = Edge(edge_id, from_node_id, from_socket, to_node_id, to_socket)
        self._edges[edge_id] = edge
        self._out_edges[from_node_id][edge_id] = None
        self._in_edges[to_node_id][edge_id] = None
        logger.debug(f"Connected {from_node_id}.{from_socket} -> {to_node_id}.{to_socket} ({edge_id})")

        self.events.publish(EdgeAdded(edge_id, from_node_id, from_socket, to_node_id, to_socket))
        if record:
            self.commands.record(AddEdgeCommand(self, EdgeSnapshot.of(edge)))
        return edge_id

    def remove_edge(self, edge_id: str, record: bool = True) -> None:
        edge = self._edges.get(edge_id)
        if edge is None:
            raise EdgeNotFoundError(edge_id)
        self._detach_edge(edge_id)
        if record:
            self.commands.record(RemoveEdgeCommand(self, EdgeSnapshot.of(edge)))

    def clear(self) -> None:
        """Drop every node and edge. Not recorded in the command log."""
        self._edges.clear()
        self._nodes.clear()
        self._in_edges.clear()
        self._out_edges.clear()
        self.events.publish(GraphCleared())

    def replace_with(self, document: SerialisableGraph) -> list[LoadWarning]:
        """Load a document as a single undoable step."""
        before = self.serialize()
        warnings = self.serializer.deserialize(document, reset_history=False)
        after = self.serialize()
        self.commands.record(StateSnapshotCommand(self, before, after))
        return warnings

    def _detach_edge(self, edge_id: str) -> None:
        edge = self._edges.pop(edge_id)
        self._out_edges.get(edge.from_node_id, {}).pop(edge_id, None)
        self._in_edges.get(edge.to_node_id, {}).pop(edge_id, None)
        logger.debug(f"Removed edge {edge_id}")
        self.events.publish(EdgeRemoved(edge_id))

    def _resolve_socket(self, node_id: str, socket_name: str, direction: SocketDirection) -> Socket:
        node = self._nodes.get(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        socket = node.get_socket(socket_name)
        if socket is None:
            raise SocketNotFoundError(node_id, socket_name, direction)
        if socket.direction != direction:
            raise DirectionMismatchError(
                f"Socket '{socket_name}' on node '{node_id}' is an {socket.direction.value} socket, "
                f"expected {direction.value}"
            )
        return socket

    # ============================================================================
    # Readiness
    # ============================================================================

    def is_node_ready(self, node_id: str) -> bool:
        """True once the node exists with its logic and socket set in place."""
        node = self._nodes.get(node_id)
        return node is not None and node.logic is not None

    def unresolved_sockets(self, edge: EdgeSnapshot) -> list[str]:
        """Endpoints of ``edge`` that cannot currently be resolved, as ``node.socket`` strings."""
        missing = []
        for node_id, socket_name, direction in (
            (edge.from_node_id, edge.from_socket, SocketDirection.OUTPUT),
            (edge.to_node_id, edge.to_socket, SocketDirection.INPUT),
        ):
            node = self._nodes.get(node_id)
            if node is None or not self.is_node_ready(node_id) or node.get_socket(socket_name, direction) is None:
                missing.append(f"{node_id}.{socket_name}")
        return missing

    # ============================================================================
    # Validation, execution, persistence, history
    # ============================================================================

    def validate(self) -> list[ValidationIssue]:
        return validate_graph(self)

    async def execute(
        self,
        branch_tracking: bool | None = None,
        cancel_signal: CancellationSignal | None = None,
        only: Iterable[str] | None = None,
        progress_callback: ProgressCallback | None = None,
        direction: ExecutionDirection = ExecutionDirection.INPUT_TO_OUTPUT,
    ) -> RunResult:
        executor = GraphExecutor(
            self,
            branch_tracking=(
                self.settings.branch_tracking if branch_tracking is None else branch_tracking
            ),
            cancel_signal=cancel_signal,
            only=only,
            max_concurrency=self.settings.max_concurrency,
            direction=direction,
        )
        if progress_callback is not None:
            executor.set_progress_callback(progress_callback)
        return await executor.execute()

    def serialize(self) -> SerialisableGraph:
        return self.serializer.serialize()

    def deserialize(self, document: SerialisableGraph | str | bytes) -> list[LoadWarning]:
        return self.serializer.deserialize(document)

    def to_json(self, indent: int | None = None) -> str:
        return self.serializer.to_json(indent=indent)

    def from_json(self, text: str | bytes) -> list[LoadWarning]:
        return self.serializer.from_json(text)

    def undo(self) -> Any:
        return self.commands.undo()

    def redo(self) -> Any:
        return self.commands.redo()

    def set_read_only(self, read_only: bool) -> None:
        self.read_only = read_only

    def subscribe(
        self, callback: Callable[[Any], None], *event_types: type[GraphEvent]
    ) -> Callable[[], None]:
        return self.events.subscribe(callback, *event_types)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes
