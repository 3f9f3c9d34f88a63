"""BF-Lang entry point."""

from __future__ import annotations
import argparse
import os
import sys
from typing import List, Optional

from interpreter import Interpreter, TracebackFormatter
from machine import BFInputError, BFRuntimeError


EPILOG = "Literal programs starting with '-' must follow '--': bf-lang -source -- '<program>'"


def _read_program(path: str) -> Optional[str]:
    if not os.path.exists(path):
        print("Error: Path does not exist.", file=sys.stderr)
        return None
    if not os.path.isfile(path):
        print("Error: Target is not a file.", file=sys.stderr)
        return None
    try:
        # newline="" keeps a lone '\r' as a column, as with -source
        with open(path, "r", encoding="utf-8", newline="") as handle:
            return handle.read()
    except (OSError, UnicodeDecodeError) as exc:
        print(f"Failed to read {path}: {exc}", file=sys.stderr)
        return None


def _positive_int(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: '{text}'")
    if value <= 0:
        raise argparse.ArgumentTypeError("must be positive")
    return value


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="bf-lang", description="BF-Lang tape interpreter", epilog=EPILOG)
    parser.add_argument("program", help="Source file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Record tape snapshots and print a loop traceback on failure")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument("--step-limit", type=_positive_int, default=None, metavar="N", help="Abort after N executed instructions")
    args = parser.parse_args(argv)

    if args.source_mode:
        source_text = args.program
        filename = "<string>"
    else:
        filename = args.program
        source_text = _read_program(filename)
        if source_text is None:
            return 1

    interpreter = Interpreter(source=source_text, filename=filename, verbose=args.verbose, step_limit=args.step_limit)
    try:
        interpreter.run()
    except BFInputError as exc:
        sys.stdout.flush()
        print(f"Couldn't read from stdin: {exc}", file=sys.stderr)
        return 1
    except BFRuntimeError as error:
        formatter = TracebackFormatter(interpreter)
        print("\n" + formatter.format_line(error))
        sys.stdout.flush()
        if args.verbose:
            print(formatter.format_text(error, verbose=True), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(run_cli())
