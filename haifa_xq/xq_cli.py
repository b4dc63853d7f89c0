import argparse
import json
import logging
import sys
from typing import Any, Dict, Iterator, List, Optional

from .xq_compiler import XQCompileError
from .xq_parser import XQSyntaxError
from .xq_runtime import compile_expression, run_filter_stream
from .xq_value import dumps

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_BAD_INPUT = 2
EXIT_COMPILE = 3
EXIT_RUNTIME = 5

_LOG_LEVELS = [logging.ERROR, logging.WARNING, logging.INFO, logging.DEBUG]


def _configure_logging(verbosity: int) -> None:
    level = _LOG_LEVELS[min(verbosity, len(_LOG_LEVELS) - 1)]
    logging.basicConfig(
        level=level,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )


def _read_text(path: Optional[str]) -> str:
    if path:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    return sys.stdin.read()


def _iter_documents(raw: str) -> Iterator[Any]:
    """Decode whitespace-separated JSON documents one at a time."""
    decoder = json.JSONDecoder()
    pos = 0
    length = len(raw)
    while True:
        while pos < length and raw[pos].isspace():
            pos += 1
        if pos >= length:
            return
        value, pos = decoder.raw_decode(raw, pos)
        yield value


def _format(value: Any, args: argparse.Namespace) -> str:
    if args.raw_output and isinstance(value, str):
        return value
    if args.compact_output:
        return dumps(value)
    return dumps(value, indent=2)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="haifa-xq", description="Run jq filters on JSON input")
    parser.add_argument("query", nargs="?", help="jq filter expression (default: .)")
    parser.add_argument("-f", "--from-file", dest="query_path", help="Read the filter from a file")
    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="Increase log verbosity (repeatable)"
    )
    parser.add_argument("--input", "-i", dest="input_path", help="Path to JSON input file")
    parser.add_argument("--slurp", "-s", action="store_true", help="Read all inputs into one array")
    parser.add_argument("-n", "--null-input", action="store_true", help="Use null as the single input value")
    parser.add_argument("-r", "--raw-output", action="store_true", help="Output strings without JSON quotes")
    parser.add_argument("-c", "--compact-output", action="store_true", help="Compact JSON output (no spaces)")
    parser.add_argument("--arg", action="append", nargs=2, metavar=("name", "value"), help="Set variable $name to string value")
    parser.add_argument("--argjson", action="append", nargs=2, metavar=("name", "json"), help="Set variable $name to JSON value")
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Print stack traces when a query fails",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.query_path and args.query is not None:
        parser.error("a query argument cannot be combined with --from-file")
    _configure_logging(args.verbose)

    try:
        if args.query_path:
            with open(args.query_path, "r", encoding="utf-8") as f:
                query = f.read()
        else:
            query = args.query if args.query is not None else "."

        variables: Dict[str, Any] = {}
        for name, value in args.arg or []:
            variables[name] = value
        for name, value in args.argjson or []:
            try:
                variables[name] = json.loads(value)
            except json.JSONDecodeError as exc:
                logger.error("Invalid JSON text passed to --argjson %s: %s", name, exc)
                return EXIT_BAD_INPUT
    except OSError as exc:
        logger.error("%s", exc)
        return EXIT_BAD_INPUT

    try:
        compile_expression(query, variables)
    except (XQSyntaxError, XQCompileError) as exc:
        logger.error("Failed to compile query: %s", exc, exc_info=args.debug)
        return EXIT_COMPILE

    failures = []

    def report(index: int, exc: BaseException) -> None:
        failures.append(index)
        logger.error("Error on input #%d: %s", index, exc, exc_info=exc if args.debug else None)

    try:
        if args.null_input:
            inputs: Any = [None]
        else:
            raw = _read_text(args.input_path)
            inputs = [list(_iter_documents(raw))] if args.slurp else _iter_documents(raw)

        for item in run_filter_stream(query, inputs, env=variables, on_error=report):
            print(_format(item, args))
    except OSError as exc:
        logger.error("%s", exc)
        return EXIT_BAD_INPUT
    except json.JSONDecodeError as exc:
        logger.error("Failed to parse JSON input: %s", exc, exc_info=args.debug)
        return EXIT_BAD_INPUT

    return EXIT_RUNTIME if failures else EXIT_OK


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
