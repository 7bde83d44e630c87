import logging
from collections.abc import Callable
from typing import Any

from core.types_registry import ANY_TYPE, TYPE_REGISTRY

logger = logging.getLogger(__name__)

Converter = Callable[[Any], Any]

_DEFAULT_FACTORIES: dict[str, Callable[[], Any]] = {
    "bool": bool,
    "int": int,
    "float": float,
    "str": str,
    "list": list,
    "dict": dict,
}


class TypeCompatibilityRegistry:
    """Directional type-acceptance rules between socket value types.

    ``register("float", "int")`` lets an ``int`` output feed a ``float`` input.
    It says nothing about the reverse direction.
    """

    def __init__(self, with_builtin_rules: bool = True):
        # target type -> source type -> optional converter
        self._accepts: dict[str, dict[str, Converter | None]] = {}
        if with_builtin_rules:
            self.register("float", "int", "bool")
            self.register("int", "bool")

    def register(
        self, target_type: str, *source_types: str, converter: Converter | None = None
    ) -> None:
        accepted = self._accepts.setdefault(target_type, {})
        for source_type in source_types:
            accepted[source_type] = converter
            logger.debug(f"Registered type rule {source_type} -> {target_type}")

    def unregister(self, target_type: str, source_type: str) -> None:
        accepted = self._accepts.get(target_type)
        if accepted is not None:
            accepted.pop(source_type, None)

    def is_compatible(self, source_type: str, target_type: str) -> bool:
        if source_type == target_type or target_type == ANY_TYPE:
            return True
        return source_type in self._accepts.get(target_type, {})

    def accepted_sources(self, target_type: str) -> set[str]:
        return set(self._accepts.get(target_type, {}))

    def default_for(self, type_id: str) -> Any:
        """Value read from an unconnected or inactive input of this type."""
        factory = _DEFAULT_FACTORIES.get(type_id)
        return factory() if factory is not None else None

    def coerce(self, value: Any, source_type: str, target_type: str) -> Any:
        """Convert a value produced on a ``source_type`` socket for a ``target_type`` input.

        Without a registered converter the value is cast with the target's Python
        type, but only when the cast loses nothing: text must parse, and any other
        value must survive being cast back. Anything else reads as the target
        type's default and is logged as a warning.
        """
        if value is None:
            return self.default_for(target_type)
        if source_type == target_type or target_type == ANY_TYPE:
            return value

        converter = self._accepts.get(target_type, {}).get(source_type)
        if converter is not None:
            return converter(value)

        py_type = TYPE_REGISTRY.get(target_type)
        if py_type is None or isinstance(value, py_type):
            return value
        try:
            converted = py_type(value)
        except (TypeError, ValueError, ArithmeticError) as e:
            logger.warning(
                f"Could not coerce {value!r} from {source_type} to {target_type}: {e}"
            )
            return self.default_for(target_type)
        if not _round_trips(value, converted):
            logger.warning(
                f"Refusing lossy coercion of {value!r} from {source_type} to {target_type} "
                f"(would read as {converted!r})"
            )
            return self.default_for(target_type)
        return converted


def _round_trips(original: Any, converted: Any) -> bool:
    if isinstance(original, str):
        # bool("false") is True: truthiness of text is not a parse
        return not isinstance(converted, bool)
    try:
        return type(original)(converted) == original
    except (TypeError, ValueError, ArithmeticError):
        return False
