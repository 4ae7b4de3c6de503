"""Diagnostic records, the error hierarchy, and Rust-style rendering."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from verity.source import Span


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"
    NOTE = "note"


class DiagnosticKind(Enum):
    """Every failure the core can report, with its stable code."""

    PARSE_CONTRACT_VIOLATION = ("E100", Severity.ERROR)
    UNDEFINED_TYPE = ("E300", Severity.ERROR)
    DUPLICATE_DEFINITION = ("E301", Severity.ERROR)
    DUPLICATE_BINDING = ("E302", Severity.ERROR)
    UNDEFINED_NAME = ("E310", Severity.ERROR)
    UNDEFINED_FUNCTION = ("E311", Severity.ERROR)
    TYPE_MISMATCH = ("E321", Severity.ERROR)
    ARITY_MISMATCH = ("E330", Severity.ERROR)
    UNKNOWN_CONSTRUCTOR = ("E370", Severity.ERROR)
    NON_EXHAUSTIVE_MATCH = ("E371", Severity.ERROR)
    UNREACHABLE_CLAUSE = ("W301", Severity.WARNING)
    OBLIGATION_REFUTED = ("E390", Severity.ERROR)
    OBLIGATION_UNKNOWN = ("W390", Severity.WARNING)

    @property
    def code(self) -> str:
        return self.value[0]

    @property
    def default_severity(self) -> Severity:
        return self.value[1]

    @property
    def label(self) -> str:
        """CamelCase name, e.g. NonExhaustiveMatch."""
        return "".join(part.capitalize() for part in self.name.split("_"))


# ANSI color codes
_COLORS = {
    Severity.ERROR: "\033[1;31m",    # bold red
    Severity.WARNING: "\033[1;33m",  # bold yellow
    Severity.NOTE: "\033[1;36m",     # bold cyan
}
_BOLD = "\033[1m"
_BLUE = "\033[1;34m"
_RESET = "\033[0m"


@dataclass(frozen=True)
class Diagnostic:
    """A single diagnostic message.

    ``witness`` is a rendered concrete input: an uncovered input shape for
    NonExhaustiveMatch, a counterexample for ObligationRefuted.
    """

    severity: Severity
    kind: DiagnosticKind
    message: str
    span: Span
    function: str | None = None
    witness: str | None = None
    expected: str | None = None
    found: str | None = None
    notes: tuple[str, ...] = field(default_factory=tuple)

    @property
    def code(self) -> str:
        return self.kind.code

    @classmethod
    def of(cls, kind: DiagnosticKind, message: str, span: Span, **kwargs) -> Diagnostic:
        """Build a diagnostic at the kind's default severity."""
        return cls(severity=kind.default_severity, kind=kind, message=message,
                   span=span, **kwargs)


class DiagnosticRenderer:
    """Renders diagnostics in Rust-style format with colors."""

    def __init__(self, *, color: bool = True) -> None:
        self.color = color
        self._file_cache: dict[str, list[str]] = {}

    def _c(self, code: str) -> str:
        return code if self.color else ""

    def _get_source_line(self, filename: str, line_num: int) -> str | None:
        """Load and cache source file, return the 1-indexed line."""
        if filename not in self._file_cache:
            try:
                path = Path(filename)
                if path.is_file():
                    self._file_cache[filename] = path.read_text().splitlines()
                else:
                    self._file_cache[filename] = []
            except OSError:
                self._file_cache[filename] = []
        lines = self._file_cache[filename]
        if 1 <= line_num <= len(lines):
            return lines[line_num - 1]
        return None

    def render(self, diag: Diagnostic) -> str:
        lines: list[str] = []
        sev = diag.severity
        color = _COLORS[sev]

        # Header: error[E321]: message
        lines.append(
            f"{self._c(color)}{sev.value}[{diag.code}]{self._c(_RESET)}"
            f"{self._c(_BOLD)}: {diag.message}{self._c(_RESET)}"
        )

        span = diag.span
        lines.append(f"  {self._c(_BLUE)}-->{self._c(_RESET)} {span}")
        source_line = self._get_source_line(span.file, span.start_line)
        if source_line is not None:
            gutter = f"{span.start_line:>4}"
            lines.append(f"  {self._c(_BLUE)}   |{self._c(_RESET)}")
            lines.append(f"  {self._c(_BLUE)}{gutter} |{self._c(_RESET)} {source_line}")
            if span.start_line == span.end_line and span.start_col > 0:
                caret_len = max(1, span.end_col - span.start_col + 1)
                padding = " " * (span.start_col - 1)
                lines.append(
                    f"  {self._c(_BLUE)}   |{self._c(_RESET)} "
                    f"{padding}{self._c(color)}{'^' * caret_len}{self._c(_RESET)}"
                )

        if diag.expected is not None and diag.found is not None:
            lines.append(
                f"  {self._c(_BLUE)}={self._c(_RESET)} expected '{diag.expected}', "
                f"found '{diag.found}'"
            )
        if diag.witness is not None:
            lines.append(f"  {self._c(_BLUE)}={self._c(_RESET)} witness: {diag.witness}")
        for note in diag.notes:
            lines.append(f"  {self._c(_BLUE)}={self._c(_RESET)} note: {note}")

        return "\n".join(lines)


# ── Exceptions ──────────────────────────────────────────────────


class CompileError(Exception):
    """Batch compilation error carrying multiple diagnostics."""

    def __init__(self, diagnostics: list[Diagnostic]) -> None:
        self.diagnostics = diagnostics
        messages = [d.message for d in diagnostics]
        super().__init__(f"{len(diagnostics)} error(s): {'; '.join(messages)}")


class ParseContractViolation(CompileError):
    """The external front-end handed over a malformed syntax tree. Fatal."""

    def __init__(self, message: str, span: Span) -> None:
        super().__init__([
            Diagnostic.of(DiagnosticKind.PARSE_CONTRACT_VIOLATION, message, span),
        ])


class EvaluationError(Exception):
    """Concrete evaluation could not produce a value."""


class DivisionByZero(EvaluationError):
    pass


class OutOfFuel(EvaluationError):
    pass


class MatchFailure(EvaluationError):
    pass


class InvalidOperation(EvaluationError):
    pass
