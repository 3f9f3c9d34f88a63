from __future__ import annotations
import json
import os
import sys
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional

from scanner import BFError, Scanner, SourceLocation
from machine import (
    MAX_LOOP_DEPTH,
    TAPE_SIZE,
    BFInputError,
    BFRuntimeError,
    CallFrameStack,
    Tape,
)


HISTORY_SIZE = 1000

# Hook signatures: handler(interp, *args) with args per event:
# program_start (), before_instruction/after_instruction (symbol, location),
# on_error (error), program_end (code).
EVENTS = (
    "program_start",
    "before_instruction",
    "after_instruction",
    "on_error",
    "program_end",
)

# Largest Unicode scalar value; the surrogate block below it is excluded too.
MAX_CODEPOINT = 0x10FFFF
SURROGATES = range(0xD800, 0xE000)

STATUS_RUNNING = "running"
STATUS_SUCCESS = "halted-success"
STATUS_ERROR = "halted-error"


def _read_stdin_byte() -> bytes:
    return sys.stdin.buffer.read(1)


def _write_stdout(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


def byte_source(data: bytes) -> Callable[[], bytes]:
    """Input provider that replays `data` one byte at a time, then b"" forever."""
    view = memoryview(bytes(data))
    index = 0

    def _next() -> bytes:
        nonlocal index
        if index >= len(view):
            return b""
        index += 1
        return view[index - 1:index].tobytes()

    return _next


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    source_location: Optional[SourceLocation]
    instruction: Optional[str]
    tape_snapshot: Optional[Dict[str, int]]
    rewrite_record: Optional[Dict[str, Any]]


class StateLogger:
    """Step log of executed instructions.

    Only the most recent `history` entries are kept; step numbering keeps
    counting past the window.
    """

    def __init__(self, verbose: bool, history: int = HISTORY_SIZE) -> None:
        self.verbose = verbose
        self.entries: Deque[StateEntry] = deque(maxlen=history)
        self.next_state_index = 0
        self.last_state_id = "seed"

    def record(
        self,
        *,
        location: Optional[SourceLocation],
        instruction: Optional[str],
        rewrite_record: Optional[Dict[str, Any]] = None,
        tape_snapshot: Optional[Dict[str, int]] = None,
    ) -> StateEntry:
        rewrite = {} if rewrite_record is None else rewrite_record
        if "from_state_id" not in rewrite:
            rewrite["from_state_id"] = self.last_state_id
        step_index = self.next_state_index
        state_id = f"s_{step_index:06d}"
        rewrite["to_state_id"] = state_id
        entry = StateEntry(
            step_index=step_index,
            state_id=state_id,
            source_location=location,
            instruction=instruction,
            tape_snapshot=tape_snapshot,
            rewrite_record=rewrite,
        )
        self.entries.append(entry)
        self.last_state_id = state_id
        self.next_state_index += 1
        return entry

    @property
    def last_entry(self) -> Optional[StateEntry]:
        return self.entries[-1] if self.entries else None


class Interpreter:
    def __init__(
        self,
        *,
        source: str,
        filename: str,
        verbose: bool = False,
        input_provider: Optional[Callable[[], bytes]] = None,
        output_sink: Optional[Callable[[str], None]] = None,
        tape_size: int = TAPE_SIZE,
        max_depth: int = MAX_LOOP_DEPTH,
        history: int = HISTORY_SIZE,
        step_limit: Optional[int] = None,
    ) -> None:
        self.source = source
        normalized_filename = filename if filename == "<string>" else os.path.abspath(filename)
        self.filename = normalized_filename
        self.verbose = verbose
        self.hooks: Dict[str, List[Callable[..., None]]] = {event: [] for event in EVENTS}
        if step_limit is not None and step_limit <= 0:
            raise ValueError("Step limit must be positive")
        self.step_limit = step_limit
        self.input_provider = input_provider or _read_stdin_byte
        self.output_sink = output_sink or _write_stdout

        self.scanner = Scanner(source, normalized_filename)
        self.tape = Tape(tape_size)
        self.frames = CallFrameStack(max_depth)
        self.status = STATUS_RUNNING
        self.error: Optional[BFRuntimeError] = None

        self.logger = StateLogger(verbose=verbose, history=history)
        self.logger.record(location=None, instruction="<seed>", rewrite_record={"rule": "SEED"})
        self.io_log: Deque[Dict[str, Any]] = deque(maxlen=history)

        self._dispatch: Dict[str, Callable[[], None]] = {
            "<": self.tape.move_left,
            ">": self.tape.move_right,
            "+": self.tape.increment,
            "-": self.tape.decrement,
            "[": self._loop_open,
            "]": self._loop_close,
            ".": self._output,
            ",": self._input,
        }

    @property
    def steps(self) -> int:
        # The seed entry is not an executed instruction.
        return self.logger.next_state_index - 1

    def run(self) -> None:
        try:
            self._emit_event("program_start")
            step = self.step
            while step():
                pass
        except BFInputError:
            self.status = STATUS_ERROR
            raise
        except BFRuntimeError as error:
            self._halt(error)
            self._emit_event("on_error", error)
            raise
        except Exception as exc:
            # Convert unexpected Python-level exceptions into BFRuntimeError
            # so the CLI can report them like any other halt.
            wrapped = BFRuntimeError(
                f"Internal interpreter error: {exc}",
                location=self.scanner.location(),
                rule="internal",
            )
            self._halt(wrapped)
            self._emit_event("on_error", wrapped)
            raise wrapped from exc
        else:
            self.status = STATUS_SUCCESS
            self._emit_event("program_end", 0)

    def step(self) -> bool:
        """Execute the next instruction. Returns False once the program is exhausted."""
        symbol = self.scanner.next_instruction()
        if symbol is None:
            return False
        location = self.scanner.location(symbol)
        try:
            extra = {"depth": len(self.frames)} if symbol in "[]" else None
            self._log_step(rule=symbol, location=location, extra=extra)
            if self.hooks["before_instruction"]:
                self._emit_event("before_instruction", symbol, location)
            handler = self._dispatch.get(symbol)
            if handler is None:
                raise BFRuntimeError("Unexpected instruction", rule=symbol)
            handler()
            if self.hooks["after_instruction"]:
                self._emit_event("after_instruction", symbol, location)
        except BFRuntimeError as error:
            if error.location is None:
                error.location = location
            if error.rule is None:
                error.rule = symbol
            raise
        return True

    def _halt(self, error: BFRuntimeError) -> None:
        self.status = STATUS_ERROR
        self.error = error
        if error.step_index is None and self.logger.last_entry is not None:
            error.step_index = self.logger.last_entry.step_index

    # ---- instructions ----

    def _loop_open(self) -> None:
        end = self.scanner.find_loop_end()
        if end is None:
            raise BFRuntimeError("Loop not closed", rule="[")
        if self.tape.read() == 0:
            self.scanner.skip_to(end + 1)
        else:
            self.frames.push(self.scanner.position())

    def _loop_close(self) -> None:
        if not len(self.frames):
            raise BFRuntimeError("Obsolete loop close bracket", rule="]")
        if self.tape.read() != 0:
            self.scanner.restore(self.frames.peek().position())
        else:
            self.frames.pop()

    def _output(self) -> None:
        value = self.tape.read()
        if value > MAX_CODEPOINT or value in SURROGATES:
            raise BFRuntimeError("Could not print character", rule=".")
        self.output_sink(chr(value))
        self.io_log.append({"event": "PRINT", "value": value})

    def _input(self) -> None:
        data = self._read_byte()
        while data == b"\n":
            data = self._read_byte()
        self.tape.write(data[0])
        self.io_log.append({"event": "INPUT", "value": data[0]})

    def _read_byte(self) -> bytes:
        try:
            data = self.input_provider()
        except OSError as exc:
            raise BFInputError(str(exc)) from exc
        if not data:
            raise BFInputError("end of input")
        return data[:1]

    # ---- hooks / logging ----

    def on(self, event: str, handler: Callable[..., None]) -> Callable[..., None]:
        """Attach `handler` to one of EVENTS; handlers run in attach order."""
        if event not in self.hooks:
            raise ValueError(f"Unknown event '{event}'")
        self.hooks[event].append(handler)
        return handler

    def _emit_event(self, event: str, *args: Any) -> None:
        try:
            for handler in self.hooks[event]:
                handler(self, *args)
        except BFError:
            raise
        except Exception as exc:
            entry = self.logger.last_entry
            loc = entry.source_location if entry else None
            raise BFRuntimeError(
                f"Hook '{event}' failed: {exc}",
                location=loc,
                rule="HOOK",
            )

    def _log_step(
        self,
        *,
        rule: str,
        location: Optional[SourceLocation],
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        snapshot = None
        if self.verbose:
            snapshot = {
                "pointer": self.tape.pointer,
                "cell": self.tape.read(),
                "depth": len(self.frames),
            }
        rewrite = {"rule": rule}
        if extra:
            rewrite.update(extra)
        entry = self.logger.record(
            location=location,
            instruction=location.statement if location else None,
            tape_snapshot=snapshot,
            rewrite_record=rewrite,
        )
        if self.step_limit is not None and entry.step_index > self.step_limit:
            raise BFRuntimeError(
                f"Step limit exceeded ({self.step_limit} steps)",
                location=location,
                rule="STEPLIMIT",
            )


@dataclass
class TracebackFrame:
    name: str
    location: Optional[SourceLocation]
    statement: Optional[str]
    state_entry: Optional[StateEntry]


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def build_frames(self, error: BFRuntimeError) -> List[TracebackFrame]:
        frames: List[TracebackFrame] = []
        filename = self.interpreter.filename
        for depth, frame in enumerate(self.interpreter.frames, start=1):
            # A frame holds the cursor just past its '['.
            location = SourceLocation(filename, frame.line, frame.column - 1, "[")
            frames.append(TracebackFrame(name=f"loop {depth}", location=location, statement="[", state_entry=None))
        entry = self.interpreter.logger.last_entry
        frames.append(
            TracebackFrame(
                name="<top-level>" if not frames else frames[-1].name,
                location=error.location,
                statement=error.location.statement if error.location else None,
                state_entry=entry,
            )
        )
        return frames

    def format_line(self, error: BFRuntimeError) -> str:
        location = error.location or self.interpreter.scanner.location()
        return f"Error: {error.message} ({location.line}: {location.column})"

    def format_text(self, error: BFRuntimeError, verbose: bool) -> str:
        lines = ["Traceback (most recent loop last):"]
        for frame in self.build_frames(error):
            if frame.location:
                lines.append(
                    f"  File \"{frame.location.file}\", line {frame.location.line}, column {frame.location.column}, in {frame.name}"
                )
                if frame.statement:
                    lines.append(f"    {frame.statement}")
            else:
                lines.append(f"  <unknown location> in {frame.name}")
            if frame.state_entry:
                lines.append(
                    f"    State log index: {frame.state_entry.step_index}  State id: {frame.state_entry.state_id}"
                )
                if verbose and frame.state_entry.tape_snapshot is not None:
                    snapshot = ", ".join(f"{k}={v}" for k, v in frame.state_entry.tape_snapshot.items())
                    lines.append(f"    Tape snapshot: {snapshot}")
        if verbose:
            tape = self.interpreter.tape
            window = " ".join(f"{v:03}" for v in tape.window())
            lines.append(f"  Tape near pointer {tape.pointer}: {window}")
        rule = error.rule or "runtime"
        lines.append(f"{error.__class__.__name__}: {error.message} (rule: {rule})")
        return "\n".join(lines)

    def to_json(self, error: BFRuntimeError) -> str:
        frames_json: List[Dict[str, Any]] = []
        for index, frame in enumerate(self.build_frames(error)):
            entry: Dict[str, Any] = {"frame_index": index, "name": frame.name}
            if frame.location:
                entry["source_location"] = {
                    "file": frame.location.file,
                    "line": frame.location.line,
                    "column": frame.location.column,
                    "statement": frame.location.statement,
                }
            if frame.state_entry:
                entry["state_id"] = frame.state_entry.state_id
                entry["step_index"] = frame.state_entry.step_index
                if frame.state_entry.tape_snapshot is not None:
                    entry["tape_snapshot"] = frame.state_entry.tape_snapshot
                if frame.state_entry.rewrite_record is not None:
                    entry["rewrite_record"] = frame.state_entry.rewrite_record
            frames_json.append(entry)
        tape = self.interpreter.tape
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "rule": error.rule,
                "failing_step_index": error.step_index,
            },
            "tape": {"pointer": tape.pointer, "used": tape.used()},
            "traceback": frames_json,
        }
        return json.dumps(data, indent=2)
