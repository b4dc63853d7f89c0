from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence as SequenceType, Tuple

from .xq_ast import (
    ArrayLiteral,
    AsBinding,
    BinaryOp,
    Break,
    Field,
    Foreach,
    FunctionCall,
    FunctionDef,
    Identity,
    IfElse,
    Index,
    IndexAll,
    JQNode,
    Label,
    Literal,
    ObjectLiteral,
    OptionalMarker,
    Pipe,
    Reduce,
    Sequence,
    Slice,
    TryCatch,
    UnaryOp,
    VarRef,
)
from .xq_builtins import BUILTINS
from .xq_env import Closure, Environment
from .xq_errors import QueryExecutionError, UndefinedFunction
from .xq_value import (
    binary_op,
    construct_object,
    index,
    is_truthy,
    iterate,
    slice_value,
    unary_negate,
)

logger = logging.getLogger(__name__)

Emit = Callable[[Any], None]

_MISSING = object()


class BreakOut(Exception):
    """Stops a generator early on behalf of ``label``/``break`` and ``limit``.

    Not a :class:`QueryExecutionError`, so ``try``/``catch`` never sees it;
    only the frame holding the matching ``token`` stops it.
    """

    def __init__(self, token: object) -> None:
        super().__init__(token)
        self.token = token


class _Escaped(Exception):
    """Carries a consumer's error through the ``try`` that emitted to it."""

    def __init__(self, owner: object, error: QueryExecutionError) -> None:
        super().__init__(error)
        self.owner = owner
        self.error = error


class Evaluator:
    """Walks a program tree, streaming every output through ``emit``.

    ``evaluate`` returns once the node has produced all of its outputs.  A
    :class:`QueryExecutionError` propagates out of it otherwise; outputs that
    were emitted before the failure stay delivered.
    """

    def __init__(self, builtins: Optional[Mapping[Tuple[str, int], Any]] = None) -> None:
        self.builtins = BUILTINS if builtins is None else builtins
        # Node dispatch table
        self._handlers: Dict[type, Callable[[Any, Environment, Emit], None]] = {
            Identity: self._eval_Identity,
            Literal: self._eval_Literal,
            Field: self._eval_Field,
            Index: self._eval_Index,
            Slice: self._eval_Slice,
            IndexAll: self._eval_IndexAll,
            Pipe: self._eval_Pipe,
            Sequence: self._eval_Sequence,
            ArrayLiteral: self._eval_ArrayLiteral,
            ObjectLiteral: self._eval_ObjectLiteral,
            UnaryOp: self._eval_UnaryOp,
            BinaryOp: self._eval_BinaryOp,
            IfElse: self._eval_IfElse,
            VarRef: self._eval_VarRef,
            AsBinding: self._eval_AsBinding,
            FunctionDef: self._eval_FunctionDef,
            FunctionCall: self._eval_FunctionCall,
            TryCatch: self._eval_TryCatch,
            OptionalMarker: self._eval_OptionalMarker,
            Reduce: self._eval_Reduce,
            Foreach: self._eval_Foreach,
            Label: self._eval_Label,
            Break: self._eval_Break,
        }

    def evaluate(self, node: JQNode, env: Environment, emit: Emit) -> None:
        handler = self._handlers.get(type(node))
        if handler is None:
            raise TypeError(f"Unsupported program node: {type(node).__name__}")
        handler(node, env, emit)

    def collect(self, node: JQNode, env: Environment) -> List[Any]:
        results: List[Any] = []
        self.evaluate(node, env, results.append)
        return results

    def take(self, node: JQNode, env: Environment, count: int, emit: Emit) -> None:
        """Forward at most ``count`` outputs of ``node``, then stop evaluating it."""
        if count <= 0:
            return
        token = object()
        seen = [0]

        def forward(value: Any) -> None:
            seen[0] += 1
            emit(value)
            if seen[0] >= count:
                raise BreakOut(token)

        try:
            self.evaluate(node, env, forward)
        except BreakOut as stop:
            if stop.token is not token:
                raise

    def guard(self, node: JQNode, env: Environment, emit: Emit) -> Optional[QueryExecutionError]:
        """Evaluate ``node`` and return the error it raised, if any.

        Errors raised by ``emit`` itself belong to the consumer and are
        re-raised untouched instead of being returned.
        """
        owner = object()

        def forward(value: Any) -> None:
            try:
                emit(value)
            except QueryExecutionError as exc:
                raise _Escaped(owner, exc) from None

        try:
            self.evaluate(node, env, forward)
        except _Escaped as escaped:
            if escaped.owner is not owner:
                raise
            raise escaped.error from None
        except QueryExecutionError as exc:
            return exc
        return None

    # ---------- simple filters ----------
    def _eval_Identity(self, node: Identity, env: Environment, emit: Emit) -> None:
        emit(env.subject)

    def _eval_Literal(self, node: Literal, env: Environment, emit: Emit) -> None:
        emit(node.value)

    def _eval_VarRef(self, node: VarRef, env: Environment, emit: Emit) -> None:
        emit(env.lookup_variable(node.name))

    # ---------- access ----------
    def _eval_Field(self, node: Field, env: Environment, emit: Emit) -> None:
        self.evaluate(node.source, env, lambda base: emit(index(base, node.name)))

    def _eval_Index(self, node: Index, env: Environment, emit: Emit) -> None:
        def on_base(base: Any) -> None:
            self.evaluate(node.index, env, lambda key: emit(index(base, key)))

        self.evaluate(node.source, env, on_base)

    def _eval_Slice(self, node: Slice, env: Environment, emit: Emit) -> None:
        def bounds(bound: Optional[JQNode], then: Emit) -> None:
            if bound is None:
                then(None)
            else:
                self.evaluate(bound, env, then)

        def on_base(base: Any) -> None:
            def on_start(start: Any) -> None:
                bounds(node.end, lambda end: emit(slice_value(base, start, end)))

            bounds(node.start, on_start)

        self.evaluate(node.source, env, on_base)

    def _eval_IndexAll(self, node: IndexAll, env: Environment, emit: Emit) -> None:
        def on_base(base: Any) -> None:
            for item in iterate(base):
                emit(item)

        self.evaluate(node.source, env, on_base)

    # ---------- composition ----------
    def _eval_Pipe(self, node: Pipe, env: Environment, emit: Emit) -> None:
        self.evaluate(
            node.left,
            env,
            lambda value: self.evaluate(node.right, env.with_subject(value), emit),
        )

    def _eval_Sequence(self, node: Sequence, env: Environment, emit: Emit) -> None:
        for expr in node.expressions:
            self.evaluate(expr, env, emit)

    # ---------- construction ----------
    def _eval_ArrayLiteral(self, node: ArrayLiteral, env: Environment, emit: Emit) -> None:
        if node.body is None:
            emit([])
            return
        emit(self.collect(node.body, env))

    def _eval_ObjectLiteral(self, node: ObjectLiteral, env: Environment, emit: Emit) -> None:
        entries = node.entries

        def build(position: int, pairs: Tuple[Tuple[Any, Any], ...]) -> None:
            if position == len(entries):
                emit(construct_object(pairs))
                return
            key_node, value_node = entries[position]

            def on_key(key: Any) -> None:
                self.evaluate(
                    value_node,
                    env,
                    lambda value: build(position + 1, pairs + ((key, value),)),
                )

            self.evaluate(key_node, env, on_key)

        build(0, ())

    # ---------- operators ----------
    def _eval_UnaryOp(self, node: UnaryOp, env: Environment, emit: Emit) -> None:
        if node.op != "-":
            raise ValueError(f"Unknown unary operator {node.op!r}")
        self.evaluate(node.operand, env, lambda value: emit(unary_negate(value)))

    def _eval_BinaryOp(self, node: BinaryOp, env: Environment, emit: Emit) -> None:
        op = node.op
        if op == "and":
            self._eval_and(node, env, emit)
            return
        if op == "or":
            self._eval_or(node, env, emit)
            return
        if op == "//":
            self._eval_alternative(node, env, emit)
            return

        # Right operand outer, left operand inner: (1,2) + (10,20) -> 11, 12, 21, 22
        def on_right(rhs: Any) -> None:
            self.evaluate(node.left, env, lambda lhs: emit(binary_op(op, lhs, rhs)))

        self.evaluate(node.right, env, on_right)

    def _eval_and(self, node: BinaryOp, env: Environment, emit: Emit) -> None:
        def on_left(lhs: Any) -> None:
            if not is_truthy(lhs):
                emit(False)
                return
            self.evaluate(node.right, env, lambda rhs: emit(is_truthy(rhs)))

        self.evaluate(node.left, env, on_left)

    def _eval_or(self, node: BinaryOp, env: Environment, emit: Emit) -> None:
        def on_left(lhs: Any) -> None:
            if is_truthy(lhs):
                emit(True)
                return
            self.evaluate(node.right, env, lambda rhs: emit(is_truthy(rhs)))

        self.evaluate(node.left, env, on_left)

    def _eval_alternative(self, node: BinaryOp, env: Environment, emit: Emit) -> None:
        found = [False]

        def on_left(value: Any) -> None:
            if is_truthy(value):
                found[0] = True
                emit(value)

        self.guard(node.left, env, on_left)
        if not found[0]:
            self.evaluate(node.right, env, emit)

    # ---------- control ----------
    def _eval_IfElse(self, node: IfElse, env: Environment, emit: Emit) -> None:
        def on_condition(value: Any) -> None:
            if is_truthy(value):
                self.evaluate(node.then_branch, env, emit)
            elif node.else_branch is not None:
                self.evaluate(node.else_branch, env, emit)
            else:
                emit(env.subject)

        self.evaluate(node.condition, env, on_condition)

    def _eval_AsBinding(self, node: AsBinding, env: Environment, emit: Emit) -> None:
        self.evaluate(
            node.source,
            env,
            lambda value: self.evaluate(node.body, env.bind_variable(node.name, value), emit),
        )

    def _eval_TryCatch(self, node: TryCatch, env: Environment, emit: Emit) -> None:
        error = self.guard(node.try_expr, env, emit)
        if error is None:
            return
        logger.debug("try caught %s", error)
        if node.catch_expr is not None:
            self.evaluate(node.catch_expr, env.with_subject(error.value), emit)

    def _eval_OptionalMarker(self, node: OptionalMarker, env: Environment, emit: Emit) -> None:
        self.guard(node.source, env, emit)

    def _eval_Reduce(self, node: Reduce, env: Environment, emit: Emit) -> None:
        def on_init(initial: Any) -> None:
            state = [initial]

            def on_item(item: Any) -> None:
                last = [_MISSING]

                def keep(value: Any) -> None:
                    last[0] = value

                scope = env.bind_variable(node.var_name, item).with_subject(state[0])
                self.evaluate(node.update, scope, keep)
                state[0] = None if last[0] is _MISSING else last[0]

            self.evaluate(node.source, env, on_item)
            emit(state[0])

        self.evaluate(node.init, env, on_init)

    def _eval_Foreach(self, node: Foreach, env: Environment, emit: Emit) -> None:
        def on_init(initial: Any) -> None:
            state = [initial]

            def on_item(item: Any) -> None:
                bound = env.bind_variable(node.var_name, item)

                def on_update(value: Any) -> None:
                    state[0] = value
                    if node.extract is None:
                        emit(value)
                    else:
                        self.evaluate(node.extract, bound.with_subject(value), emit)

                self.evaluate(node.update, bound.with_subject(state[0]), on_update)

            self.evaluate(node.source, env, on_item)

        self.evaluate(node.init, env, on_init)

    def _eval_Label(self, node: Label, env: Environment, emit: Emit) -> None:
        token = object()
        try:
            self.evaluate(node.body, env.bind_label(node.name, token), emit)
        except BreakOut as stop:
            if stop.token is not token:
                raise

    def _eval_Break(self, node: Break, env: Environment, emit: Emit) -> None:
        raise BreakOut(env.lookup_label(node.name))

    # ---------- functions ----------
    def _eval_FunctionDef(self, node: FunctionDef, env: Environment, emit: Emit) -> None:
        self.evaluate(node.rest, env.define_function(node.name, node.params, node.body), emit)

    def _eval_FunctionCall(self, node: FunctionCall, env: Environment, emit: Emit) -> None:
        self.call_function(env, node.name, node.args, emit)

    def call_function(
        self, env: Environment, name: str, args: SequenceType[JQNode], emit: Emit
    ) -> None:
        closure = env.lookup_function(name, len(args))
        if closure is not None:
            self._invoke(closure, env, args, emit)
            return
        builtin = self.builtins.get((name, len(args)))
        if builtin is None:
            raise UndefinedFunction(name, len(args))
        builtin(self, env, args, emit)

    def _invoke(
        self, closure: Closure, env: Environment, args: SequenceType[JQNode], emit: Emit
    ) -> None:
        # Filter arguments close over the caller's scope and run lazily at each use.
        functions: Dict[Tuple[str, int], Closure] = {}
        value_params: List[Tuple[str, JQNode]] = []
        for param, arg in zip(closure.params, args):
            name = param[1:] if param.startswith("$") else param
            functions[(name, 0)] = Closure(name, (), arg, env)
            if param.startswith("$"):
                value_params.append((name, arg))

        def bind(position: int, variables: Dict[str, Any]) -> None:
            if position == len(value_params):
                scope = Environment.enter(closure, env.subject, variables, functions)
                self.evaluate(closure.body, scope, emit)
                return
            name, arg = value_params[position]
            self.evaluate(arg, env, lambda value: bind(position + 1, {**variables, name: value}))

        bind(0, {})


__all__ = ["BreakOut", "Emit", "Evaluator"]
