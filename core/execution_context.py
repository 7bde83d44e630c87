import asyncio
import logging
from typing import TYPE_CHECKING, Any

from core.models import Edge, Node
from core.type_compatibility import TypeCompatibilityRegistry
from core.types_registry import NodeValidationError, OutputKey, SocketDirection

if TYPE_CHECKING:
    from core.graph import Graph

logger = logging.getLogger(__name__)


class CancellationSignal:
    """Cooperative cancellation flag for one run.

    ``cancel()`` may be called before or during a run. Node logic polls
    ``is_cancelled`` or awaits ``wait()``.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    def cancel(self, reason: str = "user") -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        logger.debug(f"Cancellation requested: {reason}")

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    async def wait(self) -> None:
        await self._event.wait()


class ExecutionContext:
    """State owned by a single run: output cache, shared store, cancellation.

    The shared store is visible to every node and is not synchronised; nodes
    running concurrently that write the same key race with each other.
    """

    def __init__(
        self,
        graph: "Graph",
        type_registry: TypeCompatibilityRegistry,
        cancel_signal: CancellationSignal | None = None,
        branch_tracking: bool = True,
    ):
        self.graph = graph
        self.type_registry = type_registry
        self.cancel_signal = cancel_signal or CancellationSignal()
        self.branch_tracking = branch_tracking
        self.outputs: dict[OutputKey, Any] = {}
        self.shared: dict[str, Any] = {}
        self._inactive_nodes: set[str] = set()

    @property
    def is_cancelled(self) -> bool:
        return self.cancel_signal.is_cancelled

    def for_node(self, node: Node) -> "NodeExecutionContext":
        return NodeExecutionContext(self, node)

    def write_output(self, node_id: str, socket_name: str, value: Any) -> None:
        self.outputs[(node_id, socket_name)] = value

    def is_output_active(self, node_id: str, socket_name: str) -> bool:
        """An output is active once written during this run by a node that was not skipped or faulted."""
        if node_id in self._inactive_nodes:
            return False
        return (node_id, socket_name) in self.outputs

    def deactivate_node(self, node_id: str) -> None:
        """Mark every output of a skipped or faulted node as inactive for the rest of the run."""
        self._inactive_nodes.add(node_id)

    def discard_outputs(self, node_id: str) -> None:
        for key in [key for key in self.outputs if key[0] == node_id]:
            del self.outputs[key]

    def is_edge_active(self, edge: Edge) -> bool:
        return self.is_output_active(edge.from_node_id, edge.from_socket)

    def node_outputs(self, node_id: str) -> dict[str, Any]:
        return {socket: value for (nid, socket), value in self.outputs.items() if nid == node_id}


class NodeExecutionContext:
    """View of the run handed to one node's logic."""

    def __init__(self, run: ExecutionContext, node: Node):
        self.run = run
        self.node = node

    @property
    def node_id(self) -> str:
        return self.node.id

    @property
    def params(self) -> dict[str, Any]:
        return self.node.params

    @property
    def shared(self) -> dict[str, Any]:
        return self.run.shared

    @property
    def is_cancelled(self) -> bool:
        return self.run.is_cancelled

    @property
    def cancel_signal(self) -> CancellationSignal:
        return self.run.cancel_signal

    def _input_edges(self, socket_name: str) -> list[Edge]:
        return [
            edge
            for edge in self.run.graph.incoming_edges(self.node.id)
            if edge.to_socket == socket_name
        ]

    def get_inputs(self, socket_name: str) -> list[Any]:
        """Values on every active edge feeding ``socket_name``, coerced to the socket's type."""
        socket = self.node.get_socket(socket_name, SocketDirection.INPUT)
        if socket is None:
            raise NodeValidationError(self.node.id, f"No input socket named '{socket_name}'")

        values: list[Any] = []
        for edge in self._input_edges(socket_name):
            if not self.run.is_edge_active(edge):
                continue
            source = self.run.graph.nodes[edge.from_node_id].get_socket(
                edge.from_socket, SocketDirection.OUTPUT
            )
            source_type = source.value_type if source is not None else socket.value_type
            raw = self.run.outputs[(edge.from_node_id, edge.from_socket)]
            values.append(self.run.type_registry.coerce(raw, source_type, socket.value_type))
        return values

    def get_input(self, socket_name: str, default: Any = None) -> Any:
        """First active value feeding ``socket_name``.

        Unconnected or inactive inputs read as ``default`` when given, otherwise
        as the socket type's default value.
        """
        values = self.get_inputs(socket_name)
        if values:
            return values[0]
        if default is not None:
            return default
        socket = self.node.get_socket(socket_name, SocketDirection.INPUT)
        assert socket is not None
        return self.run.type_registry.default_for(socket.value_type)

    def has_input(self, socket_name: str) -> bool:
        return any(self.run.is_edge_active(edge) for edge in self._input_edges(socket_name))

    def set_output(self, socket_name: str, value: Any) -> None:
        socket = self.node.get_socket(socket_name, SocketDirection.OUTPUT)
        if socket is None:
            raise NodeValidationError(self.node.id, f"No output socket named '{socket_name}'")
        self.run.write_output(self.node.id, socket_name, value)

    def get_output(self, socket_name: str, default: Any = None) -> Any:
        return self.run.outputs.get((self.node.id, socket_name), default)
