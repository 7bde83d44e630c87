from typing import Any

from core.types_registry import NodeCategory
from nodes.base.base_node import Base


class IfElse(Base):
    """Routes ``value`` to the ``true`` or ``false`` output depending on ``condition``.

    Only the selected output is written; the other stays inactive, so with
    branch tracking on everything fed solely by it is skipped.
    """

    CATEGORY = NodeCategory.LOGIC
    TITLE = "If / Else"
    inputs = {"condition": "bool", "value": "any"}
    outputs = {"true": "any", "false": "any"}
    max_connections = {"condition": 1}

    async def _execute_impl(self, context) -> dict[str, Any]:
        condition = bool(context.get_input("condition"))
        value = context.get_input("value") if context.has_input("value") else condition
        return {"true": value} if condition else {"false": value}
