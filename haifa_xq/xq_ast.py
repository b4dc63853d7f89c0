from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple


class JQNode:
    """Base class for program nodes. Nodes are immutable once built."""


@dataclass(frozen=True)
class Identity(JQNode):
    pass


@dataclass(frozen=True)
class Literal(JQNode):
    value: object


@dataclass(frozen=True)
class Field(JQNode):
    name: str
    source: JQNode


@dataclass(frozen=True)
class Index(JQNode):
    source: JQNode
    index: JQNode


@dataclass(frozen=True)
class Slice(JQNode):
    source: JQNode
    start: Optional[JQNode]
    end: Optional[JQNode]


@dataclass(frozen=True)
class IndexAll(JQNode):
    source: JQNode


@dataclass(frozen=True)
class Pipe(JQNode):
    left: JQNode
    right: JQNode


@dataclass(frozen=True)
class Sequence(JQNode):
    expressions: Tuple[JQNode, ...]


@dataclass(frozen=True)
class ArrayLiteral(JQNode):
    body: Optional[JQNode]


@dataclass(frozen=True)
class ObjectLiteral(JQNode):
    entries: Tuple[Tuple[JQNode, JQNode], ...]


@dataclass(frozen=True)
class UnaryOp(JQNode):
    op: str  # "-"
    operand: JQNode


@dataclass(frozen=True)
class BinaryOp(JQNode):
    op: str  # "+", "-", "*", "/", "%", "==", "!=", ">", ">=", "<", "<=", "and", "or", "//"
    left: JQNode
    right: JQNode


@dataclass(frozen=True)
class IfElse(JQNode):
    condition: JQNode
    then_branch: JQNode
    else_branch: Optional[JQNode]


@dataclass(frozen=True)
class VarRef(JQNode):
    name: str  # without leading '$'


@dataclass(frozen=True)
class AsBinding(JQNode):
    source: JQNode  # expression to evaluate and bind
    name: str       # variable name without leading '$'
    body: JQNode


@dataclass(frozen=True)
class FunctionDef(JQNode):
    name: str
    params: Tuple[str, ...]  # "$x" for value parameters, "f" for filter parameters
    body: JQNode
    rest: JQNode


@dataclass(frozen=True)
class FunctionCall(JQNode):
    name: str
    args: Tuple[JQNode, ...]


@dataclass(frozen=True)
class TryCatch(JQNode):
    try_expr: JQNode
    catch_expr: Optional[JQNode]


@dataclass(frozen=True)
class OptionalMarker(JQNode):
    source: JQNode


@dataclass(frozen=True)
class Reduce(JQNode):
    source: JQNode
    var_name: str
    init: JQNode
    update: JQNode


@dataclass(frozen=True)
class Foreach(JQNode):
    source: JQNode
    var_name: str
    init: JQNode
    update: JQNode
    extract: Optional[JQNode]


@dataclass(frozen=True)
class Label(JQNode):
    name: str
    body: JQNode


@dataclass(frozen=True)
class Break(JQNode):
    name: str


__all__ = [
    "JQNode",
    "Identity",
    "Literal",
    "Field",
    "Index",
    "Slice",
    "IndexAll",
    "Pipe",
    "Sequence",
    "ArrayLiteral",
    "ObjectLiteral",
    "UnaryOp",
    "BinaryOp",
    "IfElse",
    "VarRef",
    "AsBinding",
    "FunctionDef",
    "FunctionCall",
    "TryCatch",
    "OptionalMarker",
    "Reduce",
    "Foreach",
    "Label",
    "Break",
]
