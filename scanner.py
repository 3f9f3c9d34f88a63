from __future__ import annotations
from dataclasses import dataclass
from typing import Optional


class BFError(Exception):
    """Base class for interpreter errors."""


INSTRUCTIONS = frozenset("<>+-.,[]")

LOOP_OPEN = "["
LOOP_CLOSE = "]"


@dataclass(frozen=True)
class Position:
    offset: int
    line: int
    column: int


@dataclass
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str


class Scanner:
    """Pulls instructions out of program text one at a time.

    The cursor (offset, line, column) always points just past the last
    character examined. Any character outside INSTRUCTIONS is skipped, a
    newline bumps the line and resets the column to 1.
    """

    def __init__(self, text: str, filename: str) -> None:
        self.text = text
        self.filename = filename
        self.index = 0
        self.line = 1
        self.column = 1

    def next_instruction(self) -> Optional[str]:
        text = self.text
        n = len(text)
        instructions = INSTRUCTIONS
        _advance = self._advance

        while self.index < n:
            ch: str = text[self.index]
            _advance()
            if ch in instructions:
                return ch
        return None

    def find_loop_end(self, start: Optional[int] = None) -> Optional[int]:
        """Return the offset of the ']' matching the '[' just before `start`.

        `start` defaults to the current offset, i.e. the loop-open has already
        been consumed. Returns None when the text runs out first.
        """
        text = self.text
        n = len(text)
        i = self.index if start is None else start
        depth = 0
        while i < n:
            ch = text[i]
            if ch == LOOP_CLOSE:
                if depth == 0:
                    return i
                depth -= 1
            elif ch == LOOP_OPEN:
                depth += 1
            i += 1
        return None

    def skip_to(self, offset: int) -> None:
        # Walk rather than assign so line/column follow skipped newlines.
        if offset < self.index:
            raise ValueError(f"Cannot skip backwards from {self.index} to {offset}")
        target = min(offset, len(self.text))
        _advance = self._advance
        while self.index < target:
            _advance()

    def position(self) -> Position:
        return Position(self.index, self.line, self.column)

    def restore(self, position: Position) -> None:
        self.index, self.line, self.column = position.offset, position.line, position.column

    def location(self, statement: str = "") -> SourceLocation:
        return SourceLocation(self.filename, self.line, self.column, statement)

    @property
    def eof(self) -> bool:
        return self.index >= len(self.text)

    def _advance(self) -> None:
        if self.text[self.index] == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self.index += 1
