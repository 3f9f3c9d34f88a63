from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional

import numpy as np
from numpy.typing import NDArray

from scanner import BFError, Position, SourceLocation


TAPE_SIZE = 30000
CELL_DTYPE = np.uint32
MAX_CELL_VALUE = int(np.iinfo(CELL_DTYPE).max)
# Loop nesting is bounded by the range of a signed 16-bit stack pointer.
MAX_LOOP_DEPTH = int(np.iinfo(np.int16).max)


class BFRuntimeError(BFError):
    """Raised for runtime faults."""

    def __init__(
        self,
        message: str,
        *,
        location: Optional[SourceLocation] = None,
        rule: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.rule = rule
        self.step_index: Optional[int] = None


class BFInputError(BFError):
    """Raised when the input source is exhausted or unreadable."""


class Tape:
    def __init__(self, size: int = TAPE_SIZE) -> None:
        if size <= 0:
            raise ValueError("Tape size must be positive")
        self.cells: NDArray[np.uint32] = np.zeros(size, dtype=CELL_DTYPE)
        self.pointer = 0

    def __len__(self) -> int:
        return int(self.cells.shape[0])

    def read(self) -> int:
        return int(self.cells[self.pointer])

    def write(self, value: int) -> None:
        if value < 0 or value > MAX_CELL_VALUE:
            raise BFRuntimeError(f"Cell value {value} out of range")
        self.cells[self.pointer] = value

    def move_left(self) -> None:
        if self.pointer == 0:
            raise BFRuntimeError("Tried to access memory out of range (underflow)", rule="<")
        self.pointer -= 1

    def move_right(self) -> None:
        if self.pointer == len(self) - 1:
            raise BFRuntimeError("Tried to access memory out of range (overflow)", rule=">")
        self.pointer += 1

    def increment(self) -> None:
        value = self.read()
        if value == MAX_CELL_VALUE:
            raise BFRuntimeError("Exceeded max cell value", rule="+")
        self.cells[self.pointer] = value + 1

    def decrement(self) -> None:
        value = self.read()
        if value == 0:
            raise BFRuntimeError("Cells cannot have negative values", rule="-")
        self.cells[self.pointer] = value - 1

    def window(self, radius: int = 8) -> List[int]:
        start = max(0, self.pointer - radius)
        end = min(len(self), self.pointer + radius + 1)
        return [int(v) for v in self.cells[start:end]]

    def used(self) -> int:
        """Index one past the last non-zero cell."""
        nonzero = np.flatnonzero(self.cells)
        return int(nonzero[-1]) + 1 if nonzero.size else 0


@dataclass(frozen=True)
class Frame:
    offset: int
    line: int
    column: int

    @classmethod
    def at(cls, position: Position) -> "Frame":
        return cls(position.offset, position.line, position.column)

    def position(self) -> Position:
        return Position(self.offset, self.line, self.column)


class CallFrameStack:
    def __init__(self, max_depth: int = MAX_LOOP_DEPTH) -> None:
        if max_depth <= 0:
            raise ValueError("Loop depth limit must be positive")
        self.max_depth = max_depth
        self._frames: List[Frame] = []

    def __len__(self) -> int:
        return len(self._frames)

    def __iter__(self):
        return iter(self._frames)

    def push(self, position: Position) -> Frame:
        if len(self._frames) >= self.max_depth:
            raise BFRuntimeError("Nested loop limit reached.", rule="[")
        frame = Frame.at(position)
        self._frames.append(frame)
        return frame

    def pop(self) -> Frame:
        if not self._frames:
            raise BFRuntimeError("Unpaired ']'.", rule="]")
        return self._frames.pop()

    def peek(self) -> Frame:
        if not self._frames:
            raise BFRuntimeError("Tried to peek empty stack", rule="]")
        return self._frames[-1]
