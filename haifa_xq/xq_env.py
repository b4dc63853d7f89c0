from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Tuple

from .xq_ast import JQNode
from .xq_errors import UndefinedVariable


@dataclass(frozen=True, eq=False)
class Closure:
    """A function body paired with the environment active at its definition."""

    name: str
    params: Tuple[str, ...]
    body: JQNode
    env: "Environment" = field(repr=False)

    @property
    def arity(self) -> int:
        return len(self.params)


class Environment:
    """Persistent evaluation scope.

    Every node holds the current subject plus the bindings it introduced and
    points at its parent for everything else, so deriving a child scope is
    O(1) and never touches the parent.
    """

    __slots__ = ("subject", "parent", "_variables", "_functions", "_labels")

    def __init__(
        self,
        subject: Any = None,
        parent: Optional["Environment"] = None,
        *,
        variables: Optional[Mapping[str, Any]] = None,
        functions: Optional[Mapping[Tuple[str, int], Closure]] = None,
        labels: Optional[Mapping[str, object]] = None,
    ) -> None:
        self.subject = subject
        self.parent = parent
        self._variables = dict(variables) if variables else None
        self._functions = dict(functions) if functions else None
        self._labels = dict(labels) if labels else None

    @classmethod
    def root(
        cls,
        subject: Any,
        variables: Optional[Mapping[str, Any]] = None,
        definitions: Iterable[Tuple[str, Tuple[str, ...], JQNode]] = (),
    ) -> "Environment":
        env = cls(subject, variables=variables)
        definitions = list(definitions)
        if definitions:
            env = env.define_functions(definitions)
        return env

    # ------------------------------------------------------------ children
    def with_subject(self, value: Any) -> "Environment":
        return Environment(value, self)

    def bind_variable(self, name: str, value: Any) -> "Environment":
        return Environment(self.subject, self, variables={name: value})

    def bind_label(self, name: str, token: object) -> "Environment":
        return Environment(self.subject, self, labels={name: token})

    def define_function(self, name: str, params: Tuple[str, ...], body: JQNode) -> "Environment":
        return self.define_functions([(name, params, body)])

    def define_functions(
        self, definitions: Iterable[Tuple[str, Tuple[str, ...], JQNode]]
    ) -> "Environment":
        """Bind several functions in one scope; each closure sees all of them."""
        env = Environment(self.subject, self)
        env._functions = {
            (name, len(params)): Closure(name, tuple(params), body, env)
            for name, params, body in definitions
        }
        return env

    @staticmethod
    def enter(
        closure: Closure,
        subject: Any,
        variables: Mapping[str, Any],
        functions: Mapping[Tuple[str, int], Closure],
    ) -> "Environment":
        """Scope for one call of ``closure``: a child of its definition scope."""
        return Environment(
            subject, closure.env, variables=variables, functions=functions
        )

    # ------------------------------------------------------------ lookups
    def lookup_variable(self, name: str) -> Any:
        env: Optional[Environment] = self
        while env is not None:
            if env._variables is not None and name in env._variables:
                return env._variables[name]
            env = env.parent
        raise UndefinedVariable(name)

    def lookup_function(self, name: str, arity: int) -> Optional[Closure]:
        key = (name, arity)
        env: Optional[Environment] = self
        while env is not None:
            if env._functions is not None:
                closure = env._functions.get(key)
                if closure is not None:
                    return closure
            env = env.parent
        return None

    def lookup_label(self, name: str) -> object:
        env: Optional[Environment] = self
        while env is not None:
            if env._labels is not None and name in env._labels:
                return env._labels[name]
            env = env.parent
        raise UndefinedVariable(f"*label-{name}")

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"Environment(subject={self.subject!r})"


__all__ = ["Closure", "Environment"]
