# nodes/__init__.py
# This package contains the node logic base class and the built-in node types.
# Submodules:
# - base/: Abstract base class Base that every node logic derives from.
# - core/: Built-in node implementations organized by domain (io, math, logic).
#
# Node types are not discovered automatically; register them on a Graph with
# graph.register_node_type(type_id, NodeClass) or nodes.core.register_core_nodes(graph).
