from __future__ import annotations

import json
from typing import Any, Tuple


def _show(value: Any) -> str:
    try:
        text = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError):
        text = repr(value)
    if len(text) > 64:
        text = text[:61] + "..."
    return text


class QueryExecutionError(RuntimeError):
    """Base class for recoverable failures raised while evaluating a filter.

    Each subclass is tied to one precondition of a primitive operation and
    carries the offending values as its ``args``.  Two errors compare equal
    when they are of the same kind and carry equal payloads, so tests and
    ``try``/``catch`` handlers can match on them directly.
    """

    template = "query execution failed"

    def __init__(self, *payload: Any) -> None:
        super().__init__(*payload)

    @property
    def payload(self) -> Tuple[Any, ...]:
        return tuple(self.args)

    @property
    def value(self) -> Any:
        """Value handed to a ``catch`` branch as its subject."""
        return str(self)

    def __str__(self) -> str:
        return self.template.format(*(_show(item) for item in self.args))

    def __eq__(self, other: object) -> bool:
        if type(self) is not type(other):
            return NotImplemented
        return self.args == other.args  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        return hash((type(self).__name__, _show(list(self.args))))

    def __repr__(self) -> str:
        inner = ", ".join(repr(item) for item in self.args)
        return f"{type(self).__name__}({inner})"


class ObjectIndexByNonString(QueryExecutionError):
    template = "Object was indexed by non-string value `{0}`"


class ArrayIndexByNonInt(QueryExecutionError):
    template = "Array was indexed by non-integer value `{0}`"


class SliceByNonInt(QueryExecutionError):
    template = "Slice bound is not an integer `{0}`"


class IterateOnNonIterable(QueryExecutionError):
    template = "Cannot iterate over non-iterable value `{0}`"


class IndexOnNonIndexable(QueryExecutionError):
    template = "Cannot index on non-indexable value `{0}`"


class SliceOnNonArrayNorString(QueryExecutionError):
    template = "Slice on not an array nor a string `{0}`"


class NonIntegralNumber(QueryExecutionError):
    template = "Expected an integer but got a non-integral value `{0}`"


class UnaryOnNonNumeric(QueryExecutionError):
    """Payload: ``(operator, value)``."""

    def __str__(self) -> str:
        op, value = self.args
        return f"Unary {op} negation was applied to non-numeric value `{_show(value)}`"


class IncompatibleBinaryOperator(QueryExecutionError):
    """Payload: ``(operator, lhs, rhs)``."""

    def __str__(self) -> str:
        op, lhs, rhs = self.args
        return f"Cannot {op} `{_show(lhs)}` and `{_show(rhs)}`"


class StringRepeatByNonUSize(QueryExecutionError):
    template = "Cannot repeat string `{0}` times"


class DivModByZero(QueryExecutionError):
    template = "Cannot divide/modulo by zero"


class ObjectNonStringKey(QueryExecutionError):
    template = "Tried to construct an object with non-string key `{0}`"


class UndefinedVariable(QueryExecutionError):
    def __str__(self) -> str:
        return f"${self.args[0]} is not defined"


class UndefinedFunction(QueryExecutionError):
    def __str__(self) -> str:
        name, arity = self.args
        return f"{name}/{arity} is not defined"


class InvalidBuiltinArgument(QueryExecutionError):
    """Payload: ``(builtin name, offending value, reason)``."""

    def __str__(self) -> str:
        name, value, reason = self.args
        return f"{name}: {_show(value)} {reason}"


class UserError(QueryExecutionError):
    """Raised by the ``error`` builtin; ``value`` is the payload unchanged."""

    @property
    def value(self) -> Any:
        return self.args[0]

    def __str__(self) -> str:
        payload = self.args[0]
        if isinstance(payload, str):
            return payload
        return f"{_show(payload)} (not a string)"


__all__ = [
    "QueryExecutionError",
    "ObjectIndexByNonString",
    "ArrayIndexByNonInt",
    "SliceByNonInt",
    "IterateOnNonIterable",
    "IndexOnNonIndexable",
    "SliceOnNonArrayNorString",
    "NonIntegralNumber",
    "UnaryOnNonNumeric",
    "IncompatibleBinaryOperator",
    "StringRepeatByNonUSize",
    "DivModByZero",
    "ObjectNonStringKey",
    "UndefinedVariable",
    "UndefinedFunction",
    "InvalidBuiltinArgument",
    "UserError",
]
