"""Diagnostics collector and the per-unit analysis report.

The collector is the only channel from the core to a reporting layer. It
merges batches from independent functions and orders them by source
location with a stable sort, so the output for a given input does not
depend on the order in which workers finished.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field, replace

from verity.errors import Diagnostic, DiagnosticKind, Severity
from verity.prover import Verdict, VerificationResult


def _order(diag: Diagnostic) -> tuple:
    return (*diag.span.sort_key(), diag.code, diag.message)


class DiagnosticCollector:
    """Accumulates diagnostics; with warnings_as_errors, warnings are promoted."""

    def __init__(self, *, warnings_as_errors: bool = False) -> None:
        self.warnings_as_errors = warnings_as_errors
        self._items: list[Diagnostic] = []

    def add(self, diag: Diagnostic) -> None:
        if self.warnings_as_errors and diag.severity == Severity.WARNING:
            diag = replace(diag, severity=Severity.ERROR)
        self._items.append(diag)

    def extend(self, diags: Iterable[Diagnostic]) -> None:
        for diag in diags:
            self.add(diag)

    def __len__(self) -> int:
        return len(self._items)

    def sorted(self) -> list[Diagnostic]:
        return sorted(self._items, key=_order)

    def has_errors(self) -> bool:
        return any(d.severity == Severity.ERROR for d in self._items)


@dataclass(frozen=True)
class AnalysisReport:
    """Everything the core produces for one compilation unit."""

    diagnostics: tuple[Diagnostic, ...] = field(default_factory=tuple)
    results: tuple[VerificationResult, ...] = field(default_factory=tuple)

    @property
    def errors(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == Severity.ERROR]

    @property
    def warnings(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == Severity.WARNING]

    @property
    def ok(self) -> bool:
        return not self.errors

    def of_kind(self, kind: DiagnosticKind) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.kind is kind]

    def for_function(self, name: str) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.function == name]

    def result(self, function: str, obligation: str) -> VerificationResult:
        """The result for one named obligation. Raises KeyError if absent."""
        for r in self.results:
            if r.function == function and r.name == obligation:
                return r
        raise KeyError(f"{function}.{obligation}")

    def verdict_counts(self) -> Counter[Verdict]:
        return Counter(r.verdict for r in self.results)
