"""Core package for the node graph model, scheduling, execution and persistence.

Modules:
- graph: the mutable graph and its public mutation API
- graph_executor: dependency-driven async execution of a graph
- scheduler: topological ordering and cycle detection
- validation: structural checks run before execution
- commands: undoable edits and the undo/redo history
- serializer: the persisted document format
- type_compatibility / value_codecs: socket type rules and parameter codecs
- node_registry: registry of node type descriptors
- types_registry: shared enums, document shapes and exceptions
"""

# No explicit imports to avoid circular dependencies
# Import these modules directly (e.g., from core.graph import Graph)
# instead of from core import graph

__all__ = []
