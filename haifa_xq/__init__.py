"""haifa_xq package exposes the jq query engine and its runtime helpers."""
from .xq_compiler import Program, XQCompileError, compile_program
from .xq_env import Environment
from .xq_errors import QueryExecutionError
from .xq_eval import Evaluator
from .xq_parser import XQSyntaxError, parse_jq_program
from .xq_runtime import (
    XQRuntimeError,
    compile_expression,
    root_environment,
    run,
    run_filter,
    run_filter_many,
    run_filter_stream,
)

__all__ = [
    "run_filter",
    "run_filter_many",
    "run_filter_stream",
    "run",
    "root_environment",
    "compile_expression",
    "compile_program",
    "parse_jq_program",
    "Program",
    "Environment",
    "Evaluator",
    "QueryExecutionError",
    "XQCompileError",
    "XQRuntimeError",
    "XQSyntaxError",
]
