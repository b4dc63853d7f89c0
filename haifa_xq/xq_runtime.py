from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from .xq_compiler import Program, compile_program
from .xq_env import Environment
from .xq_errors import QueryExecutionError
from .xq_eval import Emit, Evaluator
from .xq_value import normalize_value

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[int, BaseException], None]


class XQRuntimeError(RuntimeError):
    """Raised when a document fails and no error handler was supplied."""

    def __init__(self, message: str, index: int, results: Tuple[Any, ...] = ()) -> None:
        super().__init__(message)
        self.index = index
        self.results = results


@lru_cache(maxsize=128)
def _compile_expression(expression: str, variables: Tuple[str, ...]) -> Program:
    program = compile_program(expression, variables)
    logger.info("compiled query %r", expression)
    return program


def compile_expression(expression: str, variables: Iterable[str] = ()) -> Program:
    """Compile ``expression`` once; later calls with the same names hit the cache."""
    return _compile_expression(expression, tuple(sorted(variables)))


def root_environment(
    value: Any, program: Program, variables: Optional[Mapping[str, Any]] = None
) -> Environment:
    definitions = [(d.name, d.params, d.body) for d in program.definitions]
    if variables:
        variables = {name: normalize_value(item) for name, item in variables.items()}
    return Environment.root(None, variables, definitions).with_subject(normalize_value(value))


def run(env: Environment, program: Program, emit: Emit, evaluator: Optional[Evaluator] = None) -> None:
    """Evaluate ``program`` against ``env``, handing every output to ``emit``."""
    (evaluator or Evaluator()).evaluate(program.body, env, emit)


def run_filter_stream(
    expression: str,
    inputs: Iterable[Any],
    env: Optional[Dict[str, Any]] = None,
    on_error: Optional[ErrorHandler] = None,
) -> Iterator[Any]:
    """Yield the outputs of ``expression`` for every input document in order.

    A document that fails still yields the outputs produced before the
    failure.  With ``on_error`` the failure is reported and the next document
    runs; without it :class:`XQRuntimeError` is raised.
    """
    variables = env or {}
    program = compile_expression(expression, variables)
    evaluator = Evaluator()

    for index, item in enumerate(inputs):
        results: List[Any] = []
        try:
            run(root_environment(item, program, variables), program, results.append, evaluator)
        except (QueryExecutionError, RecursionError) as exc:
            logger.debug("input #%d failed after %d result(s)", index, len(results))
            yield from results
            if on_error is None:
                raise XQRuntimeError(
                    f"query execution failed on input #{index}: {exc}", index, tuple(results)
                ) from exc
            on_error(index, exc)
            continue
        yield from results


def run_filter(expression: str, data: Any, env: Optional[Dict[str, Any]] = None) -> List[Any]:
    return list(run_filter_stream(expression, [data], env=env))


def run_filter_many(expression: str, inputs: Iterable[Any], env: Optional[Dict[str, Any]] = None) -> List[Any]:
    return list(run_filter_stream(expression, inputs, env=env))


__all__ = [
    "XQRuntimeError",
    "compile_expression",
    "root_environment",
    "run",
    "run_filter",
    "run_filter_many",
    "run_filter_stream",
]
