"""Source span tracking for diagnostics."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Span:
    """A range within a source file."""

    file: str
    start_line: int
    start_col: int
    end_line: int
    end_col: int

    def __str__(self) -> str:
        return f"{self.file}:{self.start_line}:{self.start_col}"

    def sort_key(self) -> tuple[str, int, int]:
        return (self.file, self.start_line, self.start_col)


def point(file: str, line: int = 0, col: int = 0) -> Span:
    """A zero-width span at a single position."""
    return Span(file, line, col, line, col)
