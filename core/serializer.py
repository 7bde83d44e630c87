"""Persisted document format.

A document looks like::

    {
      "version": 1,
      "Canvas": {"offsetX": 0.0, "offsetY": 0.0, "zoom": 1.0},
      "Nodes": [{"typeId": "Sum", "id": "n1", "x": 0, "y": 0,
                 "data": {"label": {"typeTag": "str", "value": "total"}}}],
      "Edges": [{"id": "e1", "fromNodeId": "n0", "toNodeId": "n1",
                 "fromSocket": "value", "toSocket": "a"}]
    }

Loading is tolerant below the document shell: nodes of unknown types, values
that cannot be decoded and edges whose endpoints cannot be resolved are
dropped and reported as warnings while the rest of the graph loads.
"""

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from core.models import CanvasState
from core.types_registry import (
    ConnectionRejectedError,
    DocumentError,
    DuplicateNodeError,
    NodeNotFoundError,
    SerialisableGraph,
    SocketNotFoundError,
    UnknownNodeTypeError,
    ValueDecodingError,
)
from core.value_codecs import ValueCodecRegistry

if TYPE_CHECKING:
    from core.graph import Graph

logger = logging.getLogger(__name__)

DOCUMENT_VERSION = 1

UNKNOWN_NODE_TYPE = "UNKNOWN_NODE_TYPE"
UNDECODABLE_VALUE = "UNDECODABLE_VALUE"
DANGLING_EDGE = "DANGLING_EDGE"
REJECTED_EDGE = "REJECTED_EDGE"
DUPLICATE_NODE = "DUPLICATE_NODE"
INVALID_NODE = "INVALID_NODE"
INVALID_EDGE = "INVALID_EDGE"


@dataclass
class LoadWarning:
    code: str
    message: str
    node_id: str | None = None
    edge_id: str | None = None


class _DocumentModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CanvasModel(_DocumentModel):
    offset_x: float = Field(default=0.0, alias="offsetX")
    offset_y: float = Field(default=0.0, alias="offsetY")
    zoom: float = Field(default=1.0, gt=0)


class NodeModel(_DocumentModel):
    type_id: str = Field(alias="typeId", min_length=1)
    id: str = Field(min_length=1)
    x: float = 0.0
    y: float = 0.0
    # Stored values are decoded one by one so a bad value only loses that parameter
    data: dict[str, Any] = Field(default_factory=dict)


class EdgeModel(_DocumentModel):
    id: str = Field(min_length=1)
    from_node_id: str = Field(alias="fromNodeId")
    to_node_id: str = Field(alias="toNodeId")
    from_socket: str = Field(alias="fromSocket")
    to_socket: str = Field(alias="toSocket")


class GraphDocument(_DocumentModel):
    version: int = DOCUMENT_VERSION
    canvas: CanvasModel = Field(default_factory=CanvasModel, alias="Canvas")
    nodes: list[Any] = Field(default_factory=list, alias="Nodes")
    edges: list[Any] = Field(default_factory=list, alias="Edges")


class GraphSerializer:
    def __init__(self, graph: "Graph", codecs: ValueCodecRegistry):
        self.graph = graph
        self.codecs = codecs

    def serialize(self) -> SerialisableGraph:
        """Snapshot the graph as a JSON-compatible document.

        Raises ValueEncodingError if a parameter value has no registered codec.
        """
        canvas = self.graph.canvas
        document = GraphDocument(
            version=DOCUMENT_VERSION,
            canvas=CanvasModel(offset_x=canvas.offset_x, offset_y=canvas.offset_y, zoom=canvas.zoom),
            nodes=[
                NodeModel(
                    type_id=node.type_id,
                    id=node.id,
                    x=node.x,
                    y=node.y,
                    data={name: self.codecs.encode(value) for name, value in node.params.items()},
                ).model_dump(by_alias=True)
                for node in self.graph.nodes.values()
            ],
            edges=[
                EdgeModel(
                    id=edge.id,
                    from_node_id=edge.from_node_id,
                    to_node_id=edge.to_node_id,
                    from_socket=edge.from_socket,
                    to_socket=edge.to_socket,
                ).model_dump(by_alias=True)
                for edge in self.graph.edges.values()
            ],
        )
        return document.model_dump(by_alias=True)  # type: ignore[return-value]

    def to_json(self, indent: int | None = None) -> str:
        return json.dumps(self.serialize(), indent=indent)

    def from_json(self, text: str | bytes) -> list[LoadWarning]:
        return self.deserialize(text)

    def deserialize(
        self, document: SerialisableGraph | str | bytes, reset_history: bool = True
    ) -> list[LoadWarning]:
        """Replace the graph's contents with ``document``.

        Raises DocumentError when the document shell is unreadable; the graph is
        left untouched in that case. Per-element problems come back as warnings.
        """
        shell = self._parse_shell(document)

        self.graph.clear()
        self.graph.canvas = CanvasState(shell.canvas.offset_x, shell.canvas.offset_y, shell.canvas.zoom)

        warnings: list[LoadWarning] = []
        for raw in shell.nodes:
            self._load_node(raw, warnings)
        for raw in shell.edges:
            self._load_edge(raw, warnings)

        if reset_history:
            self.graph.commands.clear()
        for warning in warnings:
            logger.warning(f"Load warning [{warning.code}]: {warning.message}")
        logger.info(
            f"Loaded graph with {len(self.graph.nodes)} node(s), {len(self.graph.edges)} edge(s), "
            f"{len(warnings)} warning(s)"
        )
        return warnings

    def _parse_shell(self, document: SerialisableGraph | str | bytes) -> GraphDocument:
        if isinstance(document, (str, bytes)):
            try:
                document = json.loads(document)
            except json.JSONDecodeError as e:
                raise DocumentError(f"Document is not valid JSON: {e}") from e
        if not isinstance(document, dict):
            raise DocumentError(f"Document must be a JSON object, got {type(document).__name__}")
        try:
            shell = GraphDocument.model_validate(document)
        except ValidationError as e:
            raise DocumentError(f"Malformed document: {e}") from e
        if shell.version > DOCUMENT_VERSION:
            raise DocumentError(
                f"Document version {shell.version} is newer than supported version {DOCUMENT_VERSION}"
            )
        return shell

    def _load_node(self, raw: Any, warnings: list[LoadWarning]) -> None:
        try:
            model = NodeModel.model_validate(raw)
        except ValidationError as e:
            warnings.append(LoadWarning(INVALID_NODE, f"Skipping malformed node entry: {e}"))
            return

        params: dict[str, Any] = {}
        for name, stored in model.data.items():
            try:
                params[name] = self.codecs.decode(stored)
            except ValueDecodingError as e:
                warnings.append(
                    LoadWarning(
                        UNDECODABLE_VALUE,
                        f"Parameter '{name}' of node '{model.id}' dropped: {e}",
                        node_id=model.id,
                    )
                )

        try:
            self.graph.create_node(model.type_id, model.x, model.y, params, node_id=model.id, record=False)
        except UnknownNodeTypeError as e:
            warnings.append(LoadWarning(UNKNOWN_NODE_TYPE, f"Skipping node '{model.id}': {e}", node_id=model.id))
        except DuplicateNodeError as e:
            warnings.append(LoadWarning(DUPLICATE_NODE, f"Skipping node: {e}", node_id=model.id))

    def _load_edge(self, raw: Any, warnings: list[LoadWarning]) -> None:
        try:
            model = EdgeModel.model_validate(raw)
        except ValidationError as e:
            warnings.append(LoadWarning(INVALID_EDGE, f"Skipping malformed edge entry: {e}"))
            return

        try:
            self.graph.connect(
                model.from_node_id,
                model.from_socket,
                model.to_node_id,
                model.to_socket,
                check_types=False,
                edge_id=model.id,
                record=False,
            )
        except (NodeNotFoundError, SocketNotFoundError) as e:
            warnings.append(LoadWarning(DANGLING_EDGE, f"Skipping edge '{model.id}': {e}", edge_id=model.id))
        except ConnectionRejectedError as e:
            warnings.append(LoadWarning(REJECTED_EDGE, f"Skipping edge '{model.id}': {e}", edge_id=model.id))
