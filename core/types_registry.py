from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Required, TypeAlias, TypedDict

# Type checking only import for circular dependency avoidance
if TYPE_CHECKING:
    from core.validation import ValidationIssue


class SocketDirection(str, Enum):
    INPUT = "input"
    OUTPUT = "output"


class NodeOutcome(str, Enum):
    """Terminal state of a node within one run."""

    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAULTED = "faulted"
    CANCELLED = "cancelled"


class SkipReason(str, Enum):
    INACTIVE_BRANCH = "inactive_branch"
    UPSTREAM_FAULT = "upstream_fault"


class ExecutionDirection(str, Enum):
    # Data flows along edges: a node runs after the nodes feeding its inputs
    INPUT_TO_OUTPUT = "input_to_output"
    # Reverse pass: a node runs after the nodes its outputs feed
    OUTPUT_TO_INPUT = "output_to_input"


class NodeCategory(str, Enum):
    IO = "io"
    MATH = "math"
    LOGIC = "logic"
    BASE = "base"


# Progress/lifecycle enums for node execution
class ProgressState(str, Enum):
    START = "start"
    UPDATE = "update"
    DONE = "done"
    ERROR = "error"
    STOPPED = "stopped"


# Persisted document shape. Keys follow the document format, not Python naming.
class SerialisedCanvas(TypedDict, total=False):
    offsetX: float
    offsetY: float
    zoom: float


class StoredValue(TypedDict):
    typeTag: str
    value: Any


class SerialisedNode(TypedDict, total=False):
    typeId: Required[str]
    id: Required[str]
    x: float
    y: float
    data: dict[str, StoredValue]


class SerialisedEdge(TypedDict, total=True):
    id: str
    fromNodeId: str
    toNodeId: str
    fromSocket: str
    toSocket: str


class SerialisableGraph(TypedDict, total=False):
    version: int
    Canvas: SerialisedCanvas
    Nodes: list[SerialisedNode]
    Edges: list[SerialisedEdge]


# Structured progress event contract for execution reporting
class ProgressEvent(TypedDict, total=False):
    node_id: str
    state: ProgressState
    progress: float
    text: str
    meta: dict[str, Any]


ProgressCallback = Callable[[ProgressEvent], None]

NodeParams: TypeAlias = dict[str, Any]
NodeOutputs: TypeAlias = dict[str, Any]
OutputKey: TypeAlias = tuple[str, str]  # (node_id, socket_name)

ANY_TYPE = "any"

# Socket value types. Socket declarations and the compatibility registry refer
# to these stable ids, never to Python type names.
TYPE_REGISTRY: dict[str, type[Any]] = {
    ANY_TYPE: object,
    "bool": bool,
    "int": int,
    "float": float,
    "str": str,
    "list": list,
    "dict": dict,
    "decimal": Decimal,
    "datetime": datetime,
}


# Type registry functions
def get_type(type_name: str) -> type[Any]:
    """Get a type from the registry by name."""
    if type_name not in TYPE_REGISTRY:
        raise ValueError(f"Unknown type: {type_name}")
    return TYPE_REGISTRY[type_name]


def register_type(type_name: str, py_type: type[Any]) -> None:
    """Make a new socket value type available to node declarations."""
    existing = TYPE_REGISTRY.get(type_name)
    if existing is not None and existing is not py_type:
        raise ValueError(f"Type '{type_name}' is already registered as {existing!r}")
    TYPE_REGISTRY[type_name] = py_type


# Graph exceptions
class GraphError(Exception):
    """Base exception for structural graph errors."""

    pass


class NodeNotFoundError(GraphError):
    def __init__(self, node_id: str):
        super().__init__(f"Node '{node_id}' does not exist")
        self.node_id = node_id


class EdgeNotFoundError(GraphError):
    def __init__(self, edge_id: str):
        super().__init__(f"Edge '{edge_id}' does not exist")
        self.edge_id = edge_id


class DuplicateNodeError(GraphError):
    def __init__(self, node_id: str):
        super().__init__(f"Node '{node_id}' already exists")
        self.node_id = node_id


class ConnectionRejectedError(GraphError):
    """Raised by connect() when no edge can be created."""

    pass


class SocketNotFoundError(ConnectionRejectedError):
    def __init__(self, node_id: str, socket_name: str, direction: SocketDirection):
        super().__init__(
            f"Node '{node_id}' has no {direction.value} socket named '{socket_name}'"
        )
        self.node_id = node_id
        self.socket_name = socket_name
        self.direction = direction


class DirectionMismatchError(ConnectionRejectedError):
    pass


class DuplicateEdgeError(ConnectionRejectedError):
    pass


class ConnectionLimitError(ConnectionRejectedError):
    def __init__(self, node_id: str, socket_name: str, limit: int):
        super().__init__(
            f"Socket '{socket_name}' on node '{node_id}' allows at most {limit} connection(s)"
        )
        self.node_id = node_id
        self.socket_name = socket_name
        self.limit = limit


class TypeMismatchError(ConnectionRejectedError):
    def __init__(self, source_type: str, target_type: str):
        super().__init__(f"Incompatible data types {source_type} -> {target_type}")
        self.source_type = source_type
        self.target_type = target_type


class CycleDetectedError(GraphError):
    def __init__(self, node_ids: list[str], cycle: list[str] | None = None):
        super().__init__(f"Graph contains cycles involving nodes: {node_ids}")
        self.node_ids = node_ids
        self.cycle = cycle or []


class GraphValidationError(GraphError):
    """Raised when a run is refused because validation reported problems."""

    def __init__(self, issues: "list[ValidationIssue]"):
        summary = "; ".join(issue.message for issue in issues)
        super().__init__(f"Graph failed validation ({len(issues)} issue(s)): {summary}")
        self.issues = issues


class UnknownNodeTypeError(GraphError):
    def __init__(self, type_id: str):
        super().__init__(f"Node type '{type_id}' is not registered")
        self.type_id = type_id


class DocumentError(GraphError):
    """The persisted document shell could not be loaded."""

    pass


class ValueEncodingError(GraphError):
    pass


class ValueDecodingError(GraphError):
    pass


class CommandError(GraphError):
    pass


# Node exceptions
class NodeError(Exception):
    """Base exception for all node-related errors."""

    pass


class NodeValidationError(NodeError):
    """Raised when node inputs or outputs fail validation."""

    def __init__(self, node_id: str, message: str):
        super().__init__(f"Node {node_id}: {message}")
        self.node_id = node_id


class NodeExecutionError(NodeError):
    """Raised when node execution fails."""

    def __init__(self, node_id: str, message: str, original_exc: Exception | None = None):
        super().__init__(f"Node {node_id}: {message}")
        self.node_id = node_id
        self.original_exc = original_exc


__all__ = [
    "SocketDirection",
    "ExecutionDirection",
    "NodeOutcome",
    "SkipReason",
    "NodeCategory",
    "ProgressState",
    "ProgressEvent",
    "ProgressCallback",
    "SerialisedCanvas",
    "StoredValue",
    "SerialisedNode",
    "SerialisedEdge",
    "SerialisableGraph",
    "NodeParams",
    "NodeOutputs",
    "OutputKey",
    "ANY_TYPE",
    "TYPE_REGISTRY",
    "get_type",
    "register_type",
    "GraphError",
    "NodeNotFoundError",
    "EdgeNotFoundError",
    "DuplicateNodeError",
    "ConnectionRejectedError",
    "SocketNotFoundError",
    "DirectionMismatchError",
    "DuplicateEdgeError",
    "ConnectionLimitError",
    "TypeMismatchError",
    "CycleDetectedError",
    "GraphValidationError",
    "UnknownNodeTypeError",
    "DocumentError",
    "ValueEncodingError",
    "ValueDecodingError",
    "CommandError",
    "NodeError",
    "NodeValidationError",
    "NodeExecutionError",
]
