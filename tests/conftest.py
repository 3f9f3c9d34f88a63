from __future__ import annotations

from pathlib import Path
from typing import Any, List, Optional, Tuple

import pytest

from interpreter import Interpreter, byte_source
from machine import BFRuntimeError


HELLO_WORLD = (
    "++++++++[>++++[>++>+++>+++>+<<<<-]>+>+>->>+[<]<-]"
    ">>.>---.+++++++..+++.>>.<-.<.+++.------.--------.>>+.>++."
)


def make_interpreter(source: str, stdin: bytes = b"", **kwargs: Any) -> Tuple[Interpreter, List[str]]:
    output: List[str] = []
    interp = Interpreter(
        source=source,
        filename="<string>",
        input_provider=byte_source(stdin),
        output_sink=output.append,
        **kwargs,
    )
    return interp, output


def execute(source: str, stdin: bytes = b"", **kwargs: Any) -> Tuple[Interpreter, str, Optional[BFRuntimeError]]:
    """Run `source` to completion; returns the interpreter, its output and the halting error."""
    interp, output = make_interpreter(source, stdin, **kwargs)
    error: Optional[BFRuntimeError] = None
    try:
        interp.run()
    except BFRuntimeError as exc:
        error = exc
    return interp, "".join(output), error


@pytest.fixture
def hello_file(tmp_path: Path) -> Path:
    path = tmp_path / "hello.bf"
    path.write_text("Prints a greeting.\n" + HELLO_WORLD + "\n", encoding="utf-8")
    return path
