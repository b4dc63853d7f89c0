"""Native builtin filters and the jq-source prelude of derived builtins.

Natives are registered by ``(name, arity)`` and receive the evaluator, the
calling environment, the unevaluated argument nodes and the emission
continuation.  Builtins that are naturally written in jq itself live in
``PRELUDE`` and are linked around every program by the compiler.
"""
from __future__ import annotations

import json
import math
import re
import string
from typing import Any, Callable, Dict, List, Sequence, Tuple

from .xq_errors import InvalidBuiltinArgument, UserError
from .xq_value import (
    compare_values,
    dumps,
    index,
    is_number,
    is_truthy,
    normalize_number,
    normalize_value,
    require_integer,
    sort_key,
    type_name,
    values_equal,
)

Emit = Callable[[Any], None]


class BuiltinFunction:
    __slots__ = ("name", "arity", "func", "doc")

    def __init__(self, name: str, arity: int, func: Callable[..., None], doc: str = "") -> None:
        self.name = name
        self.arity = arity
        self.func = func
        self.doc = doc

    def __call__(self, evaluator: Any, env: Any, args: Sequence[Any], emit: Emit) -> None:
        self.func(evaluator, env, args, emit)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<BuiltinFunction {self.name}/{self.arity}>"


BUILTINS: Dict[Tuple[str, int], BuiltinFunction] = {}


def builtin(name: str, arity: int = 0) -> Callable[[Callable[..., None]], Callable[..., None]]:
    def register(func: Callable[..., None]) -> Callable[..., None]:
        BUILTINS[(name, arity)] = BuiltinFunction(name, arity, func, func.__doc__ or "")
        return func

    return register


def unary(name: str) -> Callable[[Callable[[Any], Any]], Callable[[Any], Any]]:
    """Register a zero-arity builtin mapping the subject to one value."""

    def register(func: Callable[[Any], Any]) -> Callable[[Any], Any]:
        def run(evaluator, env, args, emit):
            emit(func(env.subject))

        BUILTINS[(name, 0)] = BuiltinFunction(name, 0, run, func.__doc__ or "")
        return func

    return register


def valued(name: str, arity: int) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Register a builtin called once per combination of argument values.

    The first argument varies slowest, as in ``range(0, 1; 3, 4)``.
    """

    def register(func: Callable[..., Any]) -> Callable[..., Any]:
        def run(evaluator, env, args, emit):
            def bind(position: int, values: Tuple[Any, ...]) -> None:
                if position == len(args):
                    emit(func(env.subject, *values))
                    return
                evaluator.evaluate(args[position], env, lambda value: bind(position + 1, values + (value,)))

            bind(0, ())

        BUILTINS[(name, arity)] = BuiltinFunction(name, arity, run, func.__doc__ or "")
        return func

    return register


def _keys_by(evaluator, env, items: List[Any], node) -> List[List[Any]]:
    return [evaluator.collect(node, env.with_subject(item)) for item in items]


def _require_array(name: str, value: Any) -> List[Any]:
    if not isinstance(value, list):
        raise InvalidBuiltinArgument(name, value, f"({type_name(value)}) is not an array")
    return value


def _require_string(name: str, value: Any) -> str:
    if not isinstance(value, str):
        raise InvalidBuiltinArgument(name, value, f"({type_name(value)}) is not a string")
    return value


# ---------------------------------------------------------------- core
@builtin("empty")
def _empty(evaluator, env, args, emit):
    """Produce no output."""


@builtin("error")
def _error(evaluator, env, args, emit):
    raise UserError(env.subject)


@builtin("error", 1)
def _error_message(evaluator, env, args, emit):
    def fail(message: Any) -> None:
        raise UserError(message)

    evaluator.evaluate(args[0], env, fail)


@builtin("not")
def _not(evaluator, env, args, emit):
    emit(not is_truthy(env.subject))


@builtin("limit", 2)
def _limit(evaluator, env, args, emit):
    """Emit at most ``n`` outputs of the generator, stopping it afterwards."""

    def on_count(count: Any) -> None:
        if not is_number(count):
            raise InvalidBuiltinArgument("limit", count, "is not a number")
        evaluator.take(args[1], env, require_integer(count), emit)

    evaluator.evaluate(args[0], env, on_count)


@builtin("range", 2)
def _range(evaluator, env, args, emit):
    def on_start(start: Any) -> None:
        def on_stop(stop: Any) -> None:
            if not (is_number(start) and is_number(stop)):
                raise InvalidBuiltinArgument("range", [start, stop], "Range bounds must be numeric")
            current = start
            while current < stop:
                emit(current)
                current = normalize_number(current + 1)

        evaluator.evaluate(args[1], env, on_stop)

    evaluator.evaluate(args[0], env, on_start)


@builtin("range", 3)
def _range_by(evaluator, env, args, emit):
    def on_start(start: Any) -> None:
        def on_stop(stop: Any) -> None:
            def on_step(step: Any) -> None:
                if not (is_number(start) and is_number(stop) and is_number(step)):
                    raise InvalidBuiltinArgument(
                        "range", [start, stop, step], "Range bounds must be numeric"
                    )
                current = start
                if step > 0:
                    while current < stop:
                        emit(current)
                        current = normalize_number(current + step)
                elif step < 0:
                    while current > stop:
                        emit(current)
                        current = normalize_number(current + step)

            evaluator.evaluate(args[2], env, on_step)

        evaluator.evaluate(args[1], env, on_stop)

    evaluator.evaluate(args[0], env, on_start)


@valued("getpath", 1)
def _getpath(value, path):
    if not isinstance(path, list):
        raise InvalidBuiltinArgument("getpath", path, "Path must be specified as an array")
    for key in path:
        if value is None:
            return None
        value = index(value, key)
    return value


# ---------------------------------------------------------------- inspection
@unary("length")
def _length(value):
    if value is None:
        return 0
    if isinstance(value, bool):
        raise InvalidBuiltinArgument("length", value, "(boolean) has no length")
    if is_number(value):
        return abs(value)
    return len(value)


@unary("utf8bytelength")
def _utf8bytelength(value):
    return len(_require_string("utf8bytelength", value).encode("utf-8"))


@unary("type")
def _type(value):
    return type_name(value)


@unary("keys")
def _keys(value):
    if isinstance(value, dict):
        return sorted(value.keys())
    if isinstance(value, list):
        return list(range(len(value)))
    raise InvalidBuiltinArgument("keys", value, f"({type_name(value)}) has no keys")


@unary("keys_unsorted")
def _keys_unsorted(value):
    if isinstance(value, dict):
        return list(value.keys())
    if isinstance(value, list):
        return list(range(len(value)))
    raise InvalidBuiltinArgument("keys_unsorted", value, f"({type_name(value)}) has no keys")


@valued("has", 1)
def _has(container, key):
    if isinstance(container, dict) and isinstance(key, str):
        return key in container
    if isinstance(container, list) and is_number(key):
        return 0 <= key < len(container)
    raise InvalidBuiltinArgument(
        "has", [container, key], f"Cannot check whether {type_name(container)} has a {type_name(key)} key"
    )


def _contains(container: Any, needle: Any) -> bool:
    if isinstance(container, dict) and isinstance(needle, dict):
        return all(
            key in container and _contains(container[key], value) for key, value in needle.items()
        )
    if isinstance(container, list) and isinstance(needle, list):
        return all(any(_contains(item, wanted) for item in container) for wanted in needle)
    if isinstance(container, str) and isinstance(needle, str):
        return needle in container
    return values_equal(container, needle)


@valued("contains", 1)
def _contains_builtin(container, needle):
    if type_name(container) != type_name(needle):
        raise InvalidBuiltinArgument(
            "contains",
            [container, needle],
            f"{type_name(container)} and {type_name(needle)} cannot have their containment checked",
        )
    return _contains(container, needle)


# ---------------------------------------------------------------- conversion
@unary("tostring")
def _tostring(value):
    if isinstance(value, str):
        return value
    return dumps(value)


@unary("tojson")
def _tojson(value):
    return dumps(value)


@unary("fromjson")
def _fromjson(value):
    text = _require_string("fromjson", value)
    try:
        return normalize_value(json.loads(text))
    except json.JSONDecodeError as exc:
        raise InvalidBuiltinArgument("fromjson", value, f"cannot be parsed as JSON ({exc.msg})") from exc


@unary("tonumber")
def _tonumber(value):
    if is_number(value):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            parsed = None
        if is_number(parsed):
            return normalize_number(parsed)
    raise InvalidBuiltinArgument("tonumber", value, "cannot be parsed as a number")


@unary("floor")
def _floor(value):
    if not is_number(value):
        raise InvalidBuiltinArgument("floor", value, "number required")
    if not math.isfinite(value):
        raise InvalidBuiltinArgument("floor", value, "number must be finite")
    return math.floor(value)


@unary("sqrt")
def _sqrt(value):
    if not is_number(value):
        raise InvalidBuiltinArgument("sqrt", value, "number required")
    if value < 0:
        return math.nan
    return normalize_number(math.sqrt(value))


@unary("explode")
def _explode(value):
    return [ord(ch) for ch in _require_string("explode", value)]


def _codepoint(code) -> str:
    point = require_integer(code)
    if not 0 <= point <= 0x10FFFF or 0xD800 <= point <= 0xDFFF:
        raise InvalidBuiltinArgument("implode", code, "is not a valid codepoint")
    return chr(point)


@unary("implode")
def _implode(value):
    if not isinstance(value, list) or not all(is_number(code) for code in value):
        raise InvalidBuiltinArgument("implode", value, "Implode input must be an array of codepoints")
    return "".join(_codepoint(code) for code in value)


# ---------------------------------------------------------------- strings
_LOWER = str.maketrans(string.ascii_uppercase, string.ascii_lowercase)
_UPPER = str.maketrans(string.ascii_lowercase, string.ascii_uppercase)


@unary("ascii_downcase")
def _ascii_downcase(value):
    return _require_string("ascii_downcase", value).translate(_LOWER)


@unary("ascii_upcase")
def _ascii_upcase(value):
    return _require_string("ascii_upcase", value).translate(_UPPER)


@valued("startswith", 1)
def _startswith(value, prefix):
    if not (isinstance(value, str) and isinstance(prefix, str)):
        raise InvalidBuiltinArgument("startswith", [value, prefix], "startswith() requires string inputs")
    return value.startswith(prefix)


@valued("endswith", 1)
def _endswith(value, suffix):
    if not (isinstance(value, str) and isinstance(suffix, str)):
        raise InvalidBuiltinArgument("endswith", [value, suffix], "endswith() requires string inputs")
    return value.endswith(suffix)


@valued("ltrimstr", 1)
def _ltrimstr(value, prefix):
    if isinstance(value, str) and isinstance(prefix, str) and value.startswith(prefix):
        return value[len(prefix):]
    return value


@valued("rtrimstr", 1)
def _rtrimstr(value, suffix):
    if isinstance(value, str) and isinstance(suffix, str) and suffix and value.endswith(suffix):
        return value[: -len(suffix)]
    return value


@valued("split", 1)
def _split(value, separator):
    text = _require_string("split", value)
    separator = _require_string("split", separator)
    if not text:
        return []
    if not separator:
        return list(text)
    return text.split(separator)


@valued("join", 1)
def _join(value, separator):
    separator = _require_string("join", separator)
    if not isinstance(value, list):
        raise InvalidBuiltinArgument("join", value, "Cannot iterate over non-array value")
    parts = []
    for item in value:
        if item is None:
            parts.append("")
        elif isinstance(item, str):
            parts.append(item)
        elif isinstance(item, (bool, int, float)):
            parts.append(dumps(item))
        else:
            raise InvalidBuiltinArgument("join", item, f"({type_name(item)}) cannot be joined")
    return separator.join(parts)


def _compile_regex(name: str, pattern: Any) -> "re.Pattern[str]":
    pattern = _require_string(name, pattern)
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise InvalidBuiltinArgument(name, pattern, f"is not a valid regex: {exc}") from exc


@valued("test", 1)
def _test(value, pattern):
    return _compile_regex("test", pattern).search(_require_string("test", value)) is not None


@valued("sub", 2)
def _sub(value, pattern, replacement):
    replacement = _require_string("sub", replacement)
    return _compile_regex("sub", pattern).sub(lambda _: replacement, _require_string("sub", value), count=1)


@valued("gsub", 2)
def _gsub(value, pattern, replacement):
    replacement = _require_string("gsub", replacement)
    return _compile_regex("gsub", pattern).sub(lambda _: replacement, _require_string("gsub", value))


# ---------------------------------------------------------------- collections
@unary("sort")
def _sort(value):
    return sorted(_require_array("sort", value), key=sort_key)


@builtin("sort_by", 1)
def _sort_by(evaluator, env, args, emit):
    items = _require_array("sort_by", env.subject)
    keys = _keys_by(evaluator, env, items, args[0])
    order = sorted(range(len(items)), key=lambda i: sort_key(keys[i]))
    emit([items[i] for i in order])


@builtin("group_by", 1)
def _group_by(evaluator, env, args, emit):
    items = _require_array("group_by", env.subject)
    keys = _keys_by(evaluator, env, items, args[0])
    order = sorted(range(len(items)), key=lambda i: sort_key(keys[i]))
    groups: List[List[Any]] = []
    previous: Any = None
    for position in order:
        if groups and compare_values(keys[position], previous) == 0:
            groups[-1].append(items[position])
        else:
            groups.append([items[position]])
        previous = keys[position]
    emit(groups)


@unary("unique")
def _unique(value):
    result: List[Any] = []
    for item in sorted(_require_array("unique", value), key=sort_key):
        if not result or not values_equal(result[-1], item):
            result.append(item)
    return result


@builtin("unique_by", 1)
def _unique_by(evaluator, env, args, emit):
    items = _require_array("unique_by", env.subject)
    keys = _keys_by(evaluator, env, items, args[0])
    order = sorted(range(len(items)), key=lambda i: sort_key(keys[i]))
    result: List[Any] = []
    previous: Any = None
    for position in order:
        if not result or compare_values(keys[position], previous) != 0:
            result.append(items[position])
        previous = keys[position]
    emit(result)


@unary("min")
def _min(value):
    items = _require_array("min", value)
    return min(items, key=sort_key) if items else None


@unary("max")
def _max(value):
    items = _require_array("max", value)
    return max(items, key=sort_key) if items else None


@builtin("min_by", 1)
def _min_by(evaluator, env, args, emit):
    items = _require_array("min_by", env.subject)
    if not items:
        emit(None)
        return
    keys = _keys_by(evaluator, env, items, args[0])
    emit(items[min(range(len(items)), key=lambda i: sort_key(keys[i]))])


@builtin("max_by", 1)
def _max_by(evaluator, env, args, emit):
    items = _require_array("max_by", env.subject)
    if not items:
        emit(None)
        return
    keys = _keys_by(evaluator, env, items, args[0])
    # jq keeps the last of several maximal elements
    best = 0
    for position in range(1, len(items)):
        if compare_values(keys[position], keys[best]) >= 0:
            best = position
    emit(items[best])


@unary("reverse")
def _reverse(value):
    if value is None:
        return []
    if isinstance(value, (list, str)):
        return value[::-1]
    raise InvalidBuiltinArgument("reverse", value, "cannot be reversed, as it is not an array")


def _flatten(items: List[Any], depth: int) -> List[Any]:
    flattened: List[Any] = []
    for item in items:
        if isinstance(item, list) and depth > 0:
            flattened.extend(_flatten(item, depth - 1))
        else:
            flattened.append(item)
    return flattened


@unary("flatten")
def _flatten_all(value):
    if not isinstance(value, list):
        raise InvalidBuiltinArgument("flatten", value, "Cannot iterate over non-array value")
    return _flatten(value, 1_000_000)


@valued("flatten", 1)
def _flatten_depth(value, depth):
    if not isinstance(value, list):
        raise InvalidBuiltinArgument("flatten", value, "Cannot iterate over non-array value")
    if not is_number(depth) or depth < 0:
        raise InvalidBuiltinArgument("flatten", depth, "flatten depth must not be negative")
    if not math.isfinite(depth):
        raise InvalidBuiltinArgument("flatten", depth, "flatten depth must be finite")
    return _flatten(value, math.floor(depth))


# ---------------------------------------------------------------- prelude
PRELUDE = r"""
def values: select(. != null);
def nulls: select(. == null);
def booleans: select(type == "boolean");
def numbers: select(type == "number");
def strings: select(type == "string");
def arrays: select(type == "array");
def objects: select(type == "object");
def iterables: select(type == "array" or type == "object");
def scalars: select(type != "array" and type != "object");
def select(f): if f then . else empty end;
def map(f): [.[] | f];
def recurse(f): def r: ., (f | r); r;
def recurse(f; cond): def r: ., (f | select(cond) | r); r;
def recurse: recurse(.[]?);
def add: reduce .[] as $x (null; . + $x);
def any: reduce .[] as $x (false; . or $x);
def all: reduce .[] as $x (true; . and $x);
def any(f): reduce (.[] | f) as $x (false; . or $x);
def all(f): reduce (.[] | f) as $x (true; . and $x);
def range($x): range(0; $x);
def first(f): label $__first | (f | ., break $__first);
def isempty(g): first((g | false), true);
def any(g; cond): isempty(first(g | cond or empty)) | not;
def all(g; cond): isempty(first(g | cond and empty));
def last(f): reduce f as $x (null; $x);
def nth($n; f): if $n < 0 then error("Out of bounds negative array index") else last(limit($n + 1; f)) end;
def first: .[0];
def last: .[-1];
def nth($n): .[$n];
def in(xs): . as $x | xs | has($x);
def inside(xs): . as $x | xs | contains($x);
def repeat(f): def _repeat: ., (f | _repeat); _repeat;
def while(cond; update): def _while: if cond then ., (update | _while) else empty end; _while;
def until(cond; update): def _until: if cond then . else (update | _until) end; _until;
def to_entries: [keys_unsorted[] as $k | {key: $k, value: .[$k]}];
def from_entries: reduce .[] as $x ({};
    . + { ($x | if has("key") then .key elif has("k") then .k elif has("name") then .name else .Key end
            | if type == "string" then . else tojson end):
          ($x | if has("value") then .value else .v end) });
def with_entries(f): to_entries | map(f) | from_entries;
def walk(f): def w: if type == "object" then reduce keys_unsorted[] as $k (.; . + {($k): (.[$k] | w)})
                    elif type == "array" then map(w)
                    else . end | f; w;
"""


__all__ = ["BUILTINS", "BuiltinFunction", "PRELUDE", "builtin"]
