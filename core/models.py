import copy
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from core.types_registry import ANY_TYPE, NodeParams, SocketDirection

if TYPE_CHECKING:
    from nodes.base.base_node import Base

NodeFactory = Callable[["Node"], "Base"]


@dataclass(frozen=True)
class SocketSpec:
    """Socket declaration carried by a node-type descriptor."""

    name: str
    direction: SocketDirection
    value_type: str = ANY_TYPE
    max_connections: int | None = None
    label: str | None = None


@dataclass(frozen=True)
class Socket:
    node_id: str
    name: str
    direction: SocketDirection
    value_type: str = ANY_TYPE
    max_connections: int | None = None

    @property
    def is_input(self) -> bool:
        return self.direction == SocketDirection.INPUT

    @property
    def is_output(self) -> bool:
        return self.direction == SocketDirection.OUTPUT


@dataclass(frozen=True)
class NodeDescriptor:
    """Everything a host needs to know about a node type, supplied at registration."""

    type_id: str
    factory: NodeFactory
    sockets: tuple[SocketSpec, ...] = ()
    title: str = ""
    category: str = "General"
    description: str = ""
    icon: str = ""
    order: int = 0
    default_params: NodeParams = field(default_factory=dict)

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for spec in self.sockets:
            if spec.name in seen:
                raise ValueError(
                    f"Node type '{self.type_id}' declares socket '{spec.name}' more than once"
                )
            seen.add(spec.name)

    @property
    def display_title(self) -> str:
        return self.title or self.type_id


@dataclass
class Node:
    id: str
    type_id: str
    x: float = 0.0
    y: float = 0.0
    params: NodeParams = field(default_factory=dict)
    sockets: list[Socket] = field(default_factory=list)
    logic: "Base | None" = field(default=None, repr=False, compare=False)

    @property
    def inputs(self) -> list[Socket]:
        return [s for s in self.sockets if s.is_input]

    @property
    def outputs(self) -> list[Socket]:
        return [s for s in self.sockets if s.is_output]

    def get_socket(self, name: str, direction: SocketDirection | None = None) -> Socket | None:
        for socket in self.sockets:
            if socket.name == name and (direction is None or socket.direction == direction):
                return socket
        return None


@dataclass(frozen=True)
class Edge:
    id: str
    from_node_id: str
    from_socket: str
    to_node_id: str
    to_socket: str

    @property
    def endpoints(self) -> tuple[str, str, str, str]:
        return (self.from_node_id, self.from_socket, self.to_node_id, self.to_socket)


@dataclass
class CanvasState:
    """Viewport fields persisted with the graph. The core never interprets them."""

    offset_x: float = 0.0
    offset_y: float = 0.0
    zoom: float = 1.0


@dataclass(frozen=True)
class EdgeSnapshot:
    id: str
    from_node_id: str
    from_socket: str
    to_node_id: str
    to_socket: str

    @classmethod
    def of(cls, edge: Edge) -> "EdgeSnapshot":
        return cls(edge.id, edge.from_node_id, edge.from_socket, edge.to_node_id, edge.to_socket)


@dataclass(frozen=True)
class NodeSnapshot:
    id: str
    type_id: str
    x: float
    y: float
    params: NodeParams

    @classmethod
    def of(cls, node: Node) -> "NodeSnapshot":
        return cls(node.id, node.type_id, node.x, node.y, copy.deepcopy(node.params))

    def params_copy(self) -> dict[str, Any]:
        return copy.deepcopy(self.params)
