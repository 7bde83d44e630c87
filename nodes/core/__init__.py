from typing import TYPE_CHECKING

from nodes.base.base_node import Base
from nodes.core.io.number_input_node import NumberInput
from nodes.core.io.text_input_node import TextInput
from nodes.core.io.watch_node import Watch
from nodes.core.logic.if_else_node import IfElse
from nodes.core.math.sum_node import Sum

if TYPE_CHECKING:
    from core.graph import Graph

CORE_NODES: dict[str, type[Base]] = {
    "NumberInput": NumberInput,
    "TextInput": TextInput,
    "Sum": Sum,
    "IfElse": IfElse,
    "Watch": Watch,
}


def register_core_nodes(graph: "Graph") -> None:
    """Register every built-in node type on ``graph`` under its class name."""
    for type_id, node_class in CORE_NODES.items():
        graph.register_node_type(type_id, node_class)


__all__ = ["CORE_NODES", "register_core_nodes", "NumberInput", "TextInput", "Sum", "IfElse", "Watch"]
