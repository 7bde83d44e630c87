from typing import Any

from core.types_registry import NodeCategory
from nodes.base.base_node import Base


class NumberInput(Base):
    """Outputs the number held in its ``value`` parameter."""

    CATEGORY = NodeCategory.IO
    TITLE = "Number Input"
    ORDER = 0
    inputs = {}
    outputs = {"value": "float"}
    default_params = {"value": 0.0}

    async def _execute_impl(self, context) -> dict[str, Any]:
        return {"value": float(self.params.get("value") or 0.0)}
