# core/node_registry.py
# Node types are registered explicitly at startup. Each registration supplies a
# descriptor (sockets, category, title, factory); nothing is discovered by scanning.

import logging
from collections import defaultdict

from core.models import NodeDescriptor
from core.types_registry import UnknownNodeTypeError

logger = logging.getLogger(__name__)


class NodeTypeRegistry:
    def __init__(self) -> None:
        self._descriptors: dict[str, NodeDescriptor] = {}

    def register(self, type_id: str, descriptor: NodeDescriptor, replace: bool = False) -> None:
        if descriptor.type_id != type_id:
            raise ValueError(
                f"Descriptor type id '{descriptor.type_id}' does not match '{type_id}'"
            )
        if type_id in self._descriptors and not replace:
            raise ValueError(f"Node type '{type_id}' is already registered")
        self._descriptors[type_id] = descriptor
        logger.debug(f"Registered node type {type_id} ({descriptor.category})")

    def unregister(self, type_id: str) -> None:
        self._descriptors.pop(type_id, None)

    def get(self, type_id: str) -> NodeDescriptor:
        descriptor = self._descriptors.get(type_id)
        if descriptor is None:
            raise UnknownNodeTypeError(type_id)
        return descriptor

    def __contains__(self, type_id: object) -> bool:
        return type_id in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)

    @property
    def type_ids(self) -> list[str]:
        return list(self._descriptors)

    def by_category(self) -> dict[str, list[NodeDescriptor]]:
        """Descriptors grouped by category, each group sorted by order then title."""
        groups: dict[str, list[NodeDescriptor]] = defaultdict(list)
        for descriptor in self._descriptors.values():
            groups[descriptor.category].append(descriptor)
        return {
            category: sorted(items, key=lambda d: (d.order, d.display_title))
            for category, items in sorted(groups.items())
        }
