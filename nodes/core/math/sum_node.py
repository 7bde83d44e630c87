from typing import Any

from core.types_registry import NodeCategory
from nodes.base.base_node import Base


class Sum(Base):
    """Adds its two inputs. Unconnected inputs count as 0."""

    CATEGORY = NodeCategory.MATH
    TITLE = "Sum"
    inputs = {"a": "float", "b": "float"}
    outputs = {"sum": "float"}

    async def _execute_impl(self, context) -> dict[str, Any]:
        return {"sum": context.get_input("a") + context.get_input("b")}
