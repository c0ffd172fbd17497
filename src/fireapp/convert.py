"""Reflective conversion between plain JSON trees and Python types.

:func:`coerce_value` is the typed-conversion routine backends use to
materialise a concrete class from a stored value.  :func:`to_plain` goes the
other way and reduces caller objects to JSON-compatible trees before a
backend encodes them.
"""

from __future__ import annotations

import dataclasses
import enum
import types
import typing
from typing import Any, Union, get_args, get_origin

from fireapp.errors import UnsupportedValueError, ValueConversionError

_SEQUENCE_ORIGINS = (list, tuple, set, frozenset)


def _fail(raw: Any, type_: Any) -> ValueConversionError:
    name = getattr(type_, "__name__", repr(type_))
    return ValueConversionError(
        f"Cannot convert {type(raw).__name__} value {raw!r} to {name}",
        code="conversion",
    )


def index_keyed(items: list[Any]) -> dict[str, Any]:
    """Map a list read back from the store to its index-keyed form, skipping holes."""
    return {str(i): v for i, v in enumerate(items) if v is not None}


def _coerce_dataclass(raw: Any, type_: type) -> Any:
    if not isinstance(raw, dict):
        raise _fail(raw, type_)
    hints = typing.get_type_hints(type_)
    kwargs: dict[str, Any] = {}
    for f in dataclasses.fields(type_):
        if not f.init:
            continue
        if f.name in raw:
            kwargs[f.name] = coerce_value(raw[f.name], hints.get(f.name, Any))
        elif f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING:
            # Absent keys behave like Firebase POJO mapping: the field stays unset.
            kwargs[f.name] = None
    return type_(**kwargs)


def coerce_value(raw: Any, type_: Any) -> Any:
    """Convert the plain value *raw* into an instance of *type_*.

    Supports scalars, ``list``/``dict`` (optionally parameterised), ``Optional``
    and unions, enums, dataclasses and classes exposing ``from_dict``.

    Raises :class:`ValueConversionError` when *raw* does not fit.
    """
    if type_ is None or type_ is object or type_ is Any:
        return raw
    if raw is None:
        return None

    origin = get_origin(type_)
    if origin is Union or origin is types.UnionType:
        last: ValueConversionError | None = None
        for arg in get_args(type_):
            if arg is type(None):
                continue
            try:
                return coerce_value(raw, arg)
            except ValueConversionError as exc:
                last = exc
        raise last or _fail(raw, type_)

    if origin in _SEQUENCE_ORIGINS:
        if isinstance(raw, dict):
            raw = list(raw.values())
        if not isinstance(raw, list):
            raise _fail(raw, type_)
        args = get_args(type_)
        item_type = args[0] if args else Any
        return origin(coerce_value(item, item_type) for item in raw)

    if origin is dict:
        if isinstance(raw, list):
            raw = index_keyed(raw)
        if not isinstance(raw, dict):
            raise _fail(raw, type_)
        args = get_args(type_)
        value_type = args[1] if len(args) == 2 else Any
        return {str(k): coerce_value(v, value_type) for k, v in raw.items()}

    if type_ is bool:
        if isinstance(raw, bool):
            return raw
        raise _fail(raw, type_)
    if type_ is int:
        if isinstance(raw, bool):
            raise _fail(raw, type_)
        if isinstance(raw, int):
            return raw
        if isinstance(raw, float) and raw.is_integer():
            return int(raw)
        raise _fail(raw, type_)
    if type_ is float:
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            return float(raw)
        raise _fail(raw, type_)
    if type_ is str:
        if isinstance(raw, str):
            return raw
        raise _fail(raw, type_)
    if type_ is dict and isinstance(raw, list):
        return index_keyed(raw)
    if type_ in (list, dict):
        if isinstance(raw, type_):
            return raw
        raise _fail(raw, type_)

    if isinstance(type_, type):
        if issubclass(type_, enum.Enum):
            try:
                return type_(raw)
            except ValueError as exc:
                raise _fail(raw, type_) from exc
        if dataclasses.is_dataclass(type_):
            try:
                return _coerce_dataclass(raw, type_)
            except TypeError as exc:
                raise _fail(raw, type_) from exc
        from_dict = getattr(type_, "from_dict", None)
        if callable(from_dict) and isinstance(raw, dict):
            try:
                return from_dict(raw)
            except (KeyError, TypeError, ValueError) as exc:
                raise _fail(raw, type_) from exc
        if isinstance(raw, type_):
            return raw

    raise _fail(raw, type_)


def to_plain(value: Any) -> Any:
    """Reduce *value* to a tree of ``dict``/``list``/scalars."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, enum.Enum):
        return to_plain(value.value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_plain(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, dict):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return [to_plain(v) for v in sorted(value, key=repr)]
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_plain(to_dict())
    raise UnsupportedValueError(f"Cannot store value of type {type(value).__name__}")
