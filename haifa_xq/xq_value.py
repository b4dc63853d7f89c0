"""JSON value model shared by the evaluator and the builtins.

Values are plain Python objects as produced by :mod:`json`: ``None``,
``bool``, ``int``/``float``, ``str``, ``list`` and ``dict``.  The engine never
mutates a list or dict it did not just create, so composite values can be
shared freely between environments and intermediate results.
"""
from __future__ import annotations

import json
import math
from functools import cmp_to_key
from typing import Any, Dict, Iterable, Optional, Tuple

from .xq_errors import (
    ArrayIndexByNonInt,
    DivModByZero,
    IncompatibleBinaryOperator,
    IndexOnNonIndexable,
    IterateOnNonIterable,
    NonIntegralNumber,
    ObjectIndexByNonString,
    ObjectNonStringKey,
    SliceByNonInt,
    SliceOnNonArrayNorString,
    StringRepeatByNonUSize,
    UnaryOnNonNumeric,
)

# Largest magnitude at which every integer is exactly representable as a double.
_EXACT_INT_LIMIT = 2 ** 53


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_truthy(value: Any) -> bool:
    return not (value is None or value is False)


def type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    raise TypeError(f"Not a JSON value: {value!r}")


def normalize_number(value: Any) -> Any:
    """Store integral floats as ints so integrality and output match jq."""
    if isinstance(value, float) and value.is_integer() and abs(value) < _EXACT_INT_LIMIT:
        return int(value)
    return value


def normalize_value(value: Any) -> Any:
    """Apply :func:`normalize_number` throughout a decoded document."""
    if isinstance(value, float):
        return normalize_number(value)
    if isinstance(value, list):
        return [normalize_value(item) for item in value]
    if isinstance(value, dict):
        return {key: normalize_value(item) for key, item in value.items()}
    return value


def require_integer(number: Any) -> int:
    if isinstance(number, int):
        return number
    if isinstance(number, float) and number.is_integer():
        return int(number)
    raise NonIntegralNumber(number)


def dumps(value: Any, *, indent: Optional[int] = None) -> str:
    if indent is None:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return json.dumps(value, ensure_ascii=False, indent=indent)


# ---------------------------------------------------------------- ordering
def _rank(value: Any) -> int:
    if value is None:
        return 0
    if value is False:
        return 1
    if value is True:
        return 2
    if isinstance(value, (int, float)):
        return 3
    if isinstance(value, str):
        return 4
    if isinstance(value, list):
        return 5
    return 6


def compare_values(lhs: Any, rhs: Any) -> int:
    """jq total order: null < false < true < numbers < strings < arrays < objects."""
    left_rank, right_rank = _rank(lhs), _rank(rhs)
    if left_rank != right_rank:
        return -1 if left_rank < right_rank else 1
    if left_rank in (3, 4):
        return (lhs > rhs) - (lhs < rhs)
    if left_rank == 5:
        for left_item, right_item in zip(lhs, rhs):
            result = compare_values(left_item, right_item)
            if result:
                return result
        return (len(lhs) > len(rhs)) - (len(lhs) < len(rhs))
    if left_rank == 6:
        left_keys, right_keys = sorted(lhs), sorted(rhs)
        result = compare_values(left_keys, right_keys)
        if result:
            return result
        for key in left_keys:
            result = compare_values(lhs[key], rhs[key])
            if result:
                return result
    return 0


def values_equal(lhs: Any, rhs: Any) -> bool:
    return compare_values(lhs, rhs) == 0


sort_key = cmp_to_key(compare_values)


# ---------------------------------------------------------------- access
def index(base: Any, key: Any) -> Any:
    if base is None:
        return None
    if isinstance(base, dict):
        if not isinstance(key, str):
            raise ObjectIndexByNonString(key)
        return base.get(key)
    if isinstance(base, list):
        if not is_number(key):
            raise ArrayIndexByNonInt(key)
        try:
            position = require_integer(key)
        except NonIntegralNumber as exc:
            raise ArrayIndexByNonInt(key) from exc
        if position < 0:
            position += len(base)
        if 0 <= position < len(base):
            return base[position]
        return None
    raise IndexOnNonIndexable(base)


def _slice_bound(bound: Any, length: int, default: int) -> int:
    if bound is None:
        return default
    if not is_number(bound):
        raise SliceByNonInt(bound)
    try:
        position = require_integer(bound)
    except NonIntegralNumber as exc:
        raise SliceByNonInt(bound) from exc
    if position < 0:
        position += length
    return min(max(position, 0), length)


def slice_value(base: Any, start: Any = None, end: Any = None) -> Any:
    if not isinstance(base, (list, str)):
        raise SliceOnNonArrayNorString(base)
    length = len(base)
    lower = _slice_bound(start, length, 0)
    upper = _slice_bound(end, length, length)
    if upper < lower:
        upper = lower
    return base[lower:upper]


def iterate(base: Any) -> Iterable[Any]:
    if isinstance(base, list):
        return base
    if isinstance(base, dict):
        return base.values()
    raise IterateOnNonIterable(base)


def construct_object(pairs: Iterable[Tuple[Any, Any]]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for key, value in pairs:
        if not isinstance(key, str):
            raise ObjectNonStringKey(key)
        result[key] = value
    return result


# ---------------------------------------------------------------- operators
def unary_negate(value: Any) -> Any:
    if not is_number(value):
        raise UnaryOnNonNumeric("-", value)
    return -value


def _repeat_string(text: str, count: Any) -> str:
    try:
        times = require_integer(count)
    except NonIntegralNumber as exc:
        raise StringRepeatByNonUSize(count) from exc
    if times < 0:
        raise StringRepeatByNonUSize(count)
    return text * times


def _split_string(text: str, separator: str) -> list:
    if not text:
        return []
    if not separator:
        return list(text)
    return text.split(separator)


def _deep_merge(lhs: Dict[str, Any], rhs: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(lhs)
    for key, value in rhs.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def _add(lhs: Any, rhs: Any) -> Any:
    if lhs is None:
        return rhs
    if rhs is None:
        return lhs
    if is_number(lhs) and is_number(rhs):
        return normalize_number(lhs + rhs)
    if isinstance(lhs, str) and isinstance(rhs, str):
        return lhs + rhs
    if isinstance(lhs, list) and isinstance(rhs, list):
        return lhs + rhs
    if isinstance(lhs, dict) and isinstance(rhs, dict):
        return {**lhs, **rhs}
    raise IncompatibleBinaryOperator("+", lhs, rhs)


def _sub(lhs: Any, rhs: Any) -> Any:
    if is_number(lhs) and is_number(rhs):
        return normalize_number(lhs - rhs)
    if isinstance(lhs, list) and isinstance(rhs, list):
        return [item for item in lhs if not any(values_equal(item, other) for other in rhs)]
    raise IncompatibleBinaryOperator("-", lhs, rhs)


def _mul(lhs: Any, rhs: Any) -> Any:
    if is_number(lhs) and is_number(rhs):
        return normalize_number(lhs * rhs)
    if isinstance(lhs, str) and is_number(rhs):
        return _repeat_string(lhs, rhs)
    if is_number(lhs) and isinstance(rhs, str):
        return _repeat_string(rhs, lhs)
    if isinstance(lhs, dict) and isinstance(rhs, dict):
        return _deep_merge(lhs, rhs)
    raise IncompatibleBinaryOperator("*", lhs, rhs)


def _div(lhs: Any, rhs: Any) -> Any:
    if is_number(lhs) and is_number(rhs):
        if rhs == 0:
            raise DivModByZero()
        return normalize_number(lhs / rhs)
    if isinstance(lhs, str) and isinstance(rhs, str):
        return _split_string(lhs, rhs)
    raise IncompatibleBinaryOperator("/", lhs, rhs)


def _mod(lhs: Any, rhs: Any) -> Any:
    if is_number(lhs) and is_number(rhs):
        if math.isnan(lhs) or math.isnan(rhs):
            return math.nan
        if math.isinf(lhs) or math.isinf(rhs):
            raise IncompatibleBinaryOperator("%", lhs, rhs)
        dividend, divisor = int(lhs), int(rhs)
        if divisor == 0:
            raise DivModByZero()
        remainder = abs(dividend) % abs(divisor)
        return -remainder if dividend < 0 else remainder
    raise IncompatibleBinaryOperator("%", lhs, rhs)


_ARITHMETIC = {
    "+": _add,
    "-": _sub,
    "*": _mul,
    "/": _div,
    "%": _mod,
}

_COMPARISONS = {
    "==": lambda order: order == 0,
    "!=": lambda order: order != 0,
    "<": lambda order: order < 0,
    "<=": lambda order: order <= 0,
    ">": lambda order: order > 0,
    ">=": lambda order: order >= 0,
}

BINARY_OPERATORS = frozenset(_ARITHMETIC) | frozenset(_COMPARISONS)


def binary_op(op: str, lhs: Any, rhs: Any) -> Any:
    handler = _ARITHMETIC.get(op)
    if handler is not None:
        return handler(lhs, rhs)
    test = _COMPARISONS.get(op)
    if test is not None:
        return test(compare_values(lhs, rhs))
    raise ValueError(f"Unknown binary operator {op!r}")


__all__ = [
    "BINARY_OPERATORS",
    "binary_op",
    "compare_values",
    "construct_object",
    "dumps",
    "index",
    "is_number",
    "is_truthy",
    "iterate",
    "normalize_number",
    "require_integer",
    "slice_value",
    "sort_key",
    "type_name",
    "unary_negate",
    "values_equal",
]
