"""Record serialization.

``record_to_dict`` turns any engine record (frozen dataclass) into plain
JSON-compatible data: Decimals become fixed-point strings, enums their
values, nested records nested dicts.

Round-trip property (tested): ``record_from_dict(type(r), record_to_dict(r)) == r``.
"""

from __future__ import annotations

import dataclasses
import typing
from decimal import Decimal
from enum import Enum
from functools import lru_cache
from typing import Any, Mapping, TypeVar

from ..core.fixed_point import to_decimal

T = TypeVar("T")


def decimal_text(d: Decimal) -> str:
    """Fixed-point text without exponent or trailing zeros (``1E-18`` -> ``0.000000000000000001``)."""
    if d.is_zero():
        return "0"
    text = format(d, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _plain(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, Decimal):
        return decimal_text(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, int):
        return int(value)
    if isinstance(value, str):
        return value
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return record_to_dict(value)
    if isinstance(value, Mapping):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    raise TypeError(f"cannot serialize {type(value).__name__}")


def record_to_dict(record: Any) -> dict[str, Any]:
    """Serialize a record to a plain dict."""
    if not dataclasses.is_dataclass(record) or isinstance(record, type):
        raise TypeError(f"not a record: {type(record).__name__}")
    return {f.name: _plain(getattr(record, f.name)) for f in dataclasses.fields(record)}


@lru_cache(maxsize=None)
def _hints(cls: type) -> dict[str, Any]:
    return typing.get_type_hints(cls)


def _restore(tp: Any, value: Any, name: str) -> Any:
    origin = typing.get_origin(tp)
    if origin is dict:
        _, value_tp = typing.get_args(tp)
        if not isinstance(value, Mapping):
            raise TypeError(f"{name!r} must be a mapping")
        return {str(k): _restore(value_tp, v, f"{name}.{k}") for k, v in value.items()}
    if origin is tuple:
        item_tp = typing.get_args(tp)[0]
        return tuple(_restore(item_tp, v, f"{name}[{i}]") for i, v in enumerate(value))
    if tp is Decimal:
        if isinstance(value, float):
            raise TypeError(f"{name!r} must be a decimal string, got float")
        return to_decimal(value)
    if tp is bool:
        if not isinstance(value, bool):
            raise TypeError(f"{name!r} must be bool, got {type(value).__name__}")
        return value
    if tp is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"{name!r} must be int, got {type(value).__name__}")
        return int(value)
    if tp is str:
        return str(value)
    if isinstance(tp, type) and issubclass(tp, Enum):
        return tp(value)
    if isinstance(tp, type) and dataclasses.is_dataclass(tp):
        if not isinstance(value, Mapping):
            raise TypeError(f"{name!r} must be a mapping")
        return record_from_dict(tp, value)
    raise TypeError(f"unsupported field type for {name!r}: {tp!r}")


def record_from_dict(cls: type[T], d: Mapping[str, Any]) -> T:
    """Deserialize a dict into *cls*. Raises KeyError on missing fields."""
    hints = _hints(cls)
    kwargs: dict[str, Any] = {}
    for f in dataclasses.fields(cls):
        kwargs[f.name] = _restore(hints[f.name], d[f.name], f.name)
    return cls(**kwargs)
