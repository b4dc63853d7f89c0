from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import FrozenSet, Iterable, Iterator, Optional, Tuple, Union

from .xq_ast import (
    AsBinding,
    Break,
    Foreach,
    FunctionCall,
    FunctionDef,
    JQNode,
    Label,
    Reduce,
    VarRef,
)
from .xq_builtins import BUILTINS, PRELUDE
from .xq_parser import FunctionDefinition, parse_definitions, parse_jq_program

logger = logging.getLogger(__name__)


class XQCompileError(ValueError):
    """Raised when a parsed program refers to something that is not defined."""


@dataclass(frozen=True)
class Program:
    """A linked program: the user body plus the prelude it runs inside."""

    body: JQNode
    definitions: Tuple[FunctionDefinition, ...]
    variables: Tuple[str, ...] = ()


class _Scope:
    """Names visible at one point of the program; chained like the runtime environment."""

    __slots__ = ("parent", "variables", "functions", "labels")

    def __init__(
        self,
        parent: Optional["_Scope"] = None,
        variables: Iterable[str] = (),
        functions: Iterable[Tuple[str, int]] = (),
        labels: Iterable[str] = (),
    ) -> None:
        self.parent = parent
        self.variables: FrozenSet[str] = frozenset(variables)
        self.functions: FrozenSet[Tuple[str, int]] = frozenset(functions)
        self.labels: FrozenSet[str] = frozenset(labels)

    def child(self, **names: Iterable) -> "_Scope":
        return _Scope(self, **names)

    def _chain(self) -> Iterator["_Scope"]:
        scope: Optional[_Scope] = self
        while scope is not None:
            yield scope
            scope = scope.parent

    def has_variable(self, name: str) -> bool:
        return any(name in scope.variables for scope in self._chain())

    def has_function(self, name: str, arity: int) -> bool:
        key = (name, arity)
        return any(key in scope.functions for scope in self._chain())

    def has_label(self, name: str) -> bool:
        return any(name in scope.labels for scope in self._chain())


def _children(node: JQNode) -> Iterator[JQNode]:
    for value in vars(node).values():
        if isinstance(value, JQNode):
            yield value
        elif isinstance(value, tuple):
            for item in value:
                if isinstance(item, JQNode):
                    yield item
                elif isinstance(item, tuple):
                    yield from (part for part in item if isinstance(part, JQNode))


def _param_scope(scope: _Scope, params: Tuple[str, ...]) -> _Scope:
    variables = [param[1:] for param in params if param.startswith("$")]
    functions = [(param.lstrip("$"), 0) for param in params]
    return scope.child(variables=variables, functions=functions)


class XQCompiler:
    """Resolve every function, variable and label reference before evaluation."""

    def __init__(self, definitions: Tuple[FunctionDefinition, ...]) -> None:
        self.definitions = definitions

    def link(self, body: JQNode, variables: Iterable[str] = ()) -> Program:
        variables = tuple(variables)
        prelude = _Scope(functions=[(d.name, len(d.params)) for d in self.definitions])
        for definition in self.definitions:
            self._check(definition.body, _param_scope(prelude, definition.params))
        self._check(body, prelude.child(variables=variables))
        return Program(body, self.definitions, variables)

    def _check(self, node: JQNode, scope: _Scope) -> None:
        if isinstance(node, VarRef):
            if not scope.has_variable(node.name):
                raise XQCompileError(f"${node.name} is not defined")
            return
        if isinstance(node, FunctionCall):
            arity = len(node.args)
            if not scope.has_function(node.name, arity) and (node.name, arity) not in BUILTINS:
                raise XQCompileError(f"{node.name}/{arity} is not defined")
            for arg in node.args:
                self._check(arg, scope)
            return
        if isinstance(node, FunctionDef):
            inner = scope.child(functions=[(node.name, len(node.params))])
            self._check(node.body, _param_scope(inner, node.params))
            self._check(node.rest, inner)
            return
        if isinstance(node, AsBinding):
            self._check(node.source, scope)
            self._check(node.body, scope.child(variables=[node.name]))
            return
        if isinstance(node, (Reduce, Foreach)):
            self._check(node.source, scope)
            self._check(node.init, scope)
            bound = scope.child(variables=[node.var_name])
            self._check(node.update, bound)
            if isinstance(node, Foreach) and node.extract is not None:
                self._check(node.extract, bound)
            return
        if isinstance(node, Label):
            self._check(node.body, scope.child(labels=[node.name]))
            return
        if isinstance(node, Break):
            if not scope.has_label(node.name):
                raise XQCompileError(f"$*label-{node.name} is not defined")
            return
        for child in _children(node):
            self._check(child, scope)


@lru_cache(maxsize=1)
def prelude_definitions() -> Tuple[FunctionDefinition, ...]:
    return tuple(parse_definitions(PRELUDE))


def compile_program(source: Union[str, JQNode], variables: Iterable[str] = ()) -> Program:
    """Parse (when given text) and link a program against the builtin prelude."""
    body = parse_jq_program(source) if isinstance(source, str) else source
    program = XQCompiler(prelude_definitions()).link(body, variables)
    logger.debug("linked program %r with variables %s", body, program.variables)
    return program


__all__ = ["Program", "XQCompileError", "XQCompiler", "compile_program", "prelude_definitions"]
