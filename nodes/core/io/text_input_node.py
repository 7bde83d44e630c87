from typing import Any

from core.types_registry import NodeCategory
from nodes.base.base_node import Base


class TextInput(Base):
    """Simple node that outputs a static text value from parameters."""

    CATEGORY = NodeCategory.IO
    TITLE = "Text Input"
    inputs = {}
    outputs = {"text": "str"}
    default_params = {"text": ""}

    async def _execute_impl(self, context) -> dict[str, Any]:
        value = self.params.get("text")
        return {"text": "" if value is None else str(value)}
