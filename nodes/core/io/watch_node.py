import logging
from typing import Any

from core.types_registry import NodeCategory
from nodes.base.base_node import Base

logger = logging.getLogger(__name__)

WATCHED_KEY = "watched"


class Watch(Base):
    """Sink that records whatever reaches its input.

    The last value is kept on the node and published into the run's shared
    store under ``shared["watched"][node_id]`` for hosts to display.
    """

    CATEGORY = NodeCategory.IO
    TITLE = "Watch"
    ORDER = 10
    inputs = {"value": "any"}
    outputs = {}

    def __init__(self, id: str, params: dict[str, Any] | None = None):
        super().__init__(id, params)
        self.last_value: Any = None

    async def _execute_impl(self, context) -> None:
        value = context.get_input("value")
        self.last_value = value
        context.shared.setdefault(WATCHED_KEY, {})[self.id] = value
        logger.info(f"Watch {self.id}: {value!r}")
