"""Closed registry of parameter value codecs.

Every persisted parameter is stored as ``{"typeTag": tag, "value": encoded}``.
Tags are stable identifiers owned by this registry; they never depend on
Python class or module names, so refactors cannot break saved documents.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from core.types_registry import StoredValue, ValueDecodingError, ValueEncodingError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValueCodec:
    tag: str
    py_type: type[Any] | None
    encode: Callable[[Any], Any]
    decode: Callable[[Any], Any]


class ValueCodecRegistry:
    def __init__(self) -> None:
        self._by_tag: dict[str, ValueCodec] = {}
        self._by_type: dict[type[Any], ValueCodec] = {}
        self._register_builtins()

    def register_codec(
        self,
        tag: str,
        py_type: type[Any] | None,
        encode: Callable[[Any], Any],
        decode: Callable[[Any], Any],
    ) -> None:
        if tag in self._by_tag:
            raise ValueError(f"Codec tag '{tag}' is already registered")
        codec = ValueCodec(tag, py_type, encode, decode)
        self._by_tag[tag] = codec
        if py_type is not None:
            self._by_type[py_type] = codec

    def tags(self) -> list[str]:
        return list(self._by_tag)

    def encode(self, value: Any) -> StoredValue:
        codec = self._codec_for_value(value)
        return {"typeTag": codec.tag, "value": codec.encode(value)}

    def decode(self, stored: Any) -> Any:
        if not isinstance(stored, dict) or "typeTag" not in stored:
            raise ValueDecodingError(f"Stored value has no type tag: {stored!r}")
        tag = stored["typeTag"]
        codec = self._by_tag.get(tag)
        if codec is None:
            raise ValueDecodingError(f"Unknown value type tag '{tag}'")
        try:
            return codec.decode(stored.get("value"))
        except ValueDecodingError:
            raise
        except (TypeError, ValueError, ArithmeticError, KeyError) as e:
            raise ValueDecodingError(f"Cannot decode '{tag}' value {stored.get('value')!r}: {e}") from e

    def _codec_for_value(self, value: Any) -> ValueCodec:
        if value is None:
            return self._by_tag["null"]
        # Exact type first so bool is never encoded as int
        codec = self._by_type.get(type(value))
        if codec is not None:
            return codec
        for py_type, candidate in self._by_type.items():
            if isinstance(value, py_type):
                return candidate
        raise ValueEncodingError(
            f"No codec registered for value of type {type(value).__name__}"
        )

    def _register_builtins(self) -> None:
        identity: Callable[[Any], Any] = lambda v: v  # noqa: E731

        self.register_codec("null", None, lambda v: None, lambda v: None)
        self.register_codec("bool", bool, identity, _strict(bool))
        self.register_codec("int", int, identity, _decode_int)
        self.register_codec("float", float, identity, float)
        self.register_codec("str", str, identity, _strict(str))
        self.register_codec("decimal", Decimal, str, Decimal)
        self.register_codec("datetime", datetime, lambda v: v.isoformat(), datetime.fromisoformat)
        self.register_codec(
            "list", list, lambda v: [self.encode(item) for item in v], self._decode_items
        )
        self.register_codec(
            "tuple",
            tuple,
            lambda v: [self.encode(item) for item in v],
            lambda v: tuple(self._decode_items(v)),
        )
        self.register_codec("dict", dict, self._encode_mapping, self._decode_mapping)

    def _decode_items(self, raw: Any) -> list[Any]:
        if not isinstance(raw, list):
            raise ValueDecodingError(f"Expected a list, got {type(raw).__name__}")
        return [self.decode(item) for item in raw]

    def _encode_mapping(self, value: dict[Any, Any]) -> dict[str, StoredValue]:
        encoded: dict[str, StoredValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueEncodingError(f"Mapping keys must be strings, got {key!r}")
            encoded[key] = self.encode(item)
        return encoded

    def _decode_mapping(self, raw: Any) -> dict[str, Any]:
        if not isinstance(raw, dict):
            raise ValueDecodingError(f"Expected a mapping, got {type(raw).__name__}")
        return {key: self.decode(item) for key, item in raw.items()}


def _strict(py_type: type[Any]) -> Callable[[Any], Any]:
    def decode(raw: Any) -> Any:
        if not isinstance(raw, py_type):
            raise ValueDecodingError(f"Expected {py_type.__name__}, got {type(raw).__name__}")
        return raw

    return decode


def _decode_int(raw: Any) -> int:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise ValueDecodingError(f"Expected int, got {type(raw).__name__}")
    if isinstance(raw, float) and not raw.is_integer():
        raise ValueDecodingError(f"Expected int, got non-integral {raw!r}")
    return int(raw)
