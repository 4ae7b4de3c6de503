"""Tests for per-unit orchestration and the diagnostics collector."""

from __future__ import annotations

import pytest

from verity.config import CheckConfig, RunConfig, VerityConfig
from verity.diagnostics import AnalysisReport, DiagnosticCollector
from verity.errors import Diagnostic, DiagnosticKind, ParseContractViolation, Severity
from verity.pipeline import _map, analyze, analyze_raw
from verity.prover import Verdict
from verity.source import Span
from tests.helpers import (
    adt,
    binop,
    boolean,
    call,
    clause,
    ctor_p,
    factorial,
    fn,
    lit_p,
    num,
    program,
    raw_factorial,
    require,
    var,
    var_p,
)


def _mixed_program():
    """One function per outcome: proved, refuted, unknown, ill-formed, ill-typed."""
    tree = adt("Tree", {"Leaf": [], "Node": ["Tree", "Tree"]})
    size = fn("size", ["Tree"], "Natural", [
        clause([ctor_p("Leaf")], num(1), line=10),
        clause([ctor_p("Node", var_p("l"), var_p("r"))],
               binop(call("size", var("l")), "+", call("size", var("r"))), line=11),
    ], [require({"t": "Tree"}, call("size", var("t")), "Odd", line=12)], line=9)
    square = fn("sq", ["Integer"], "Integer", [
        clause([var_p("x")], binop(var("x"), "*", var("x")), line=21),
    ], [require({"x": "Integer"}, call("sq", var("x")), "Natural", line=22)], line=20)
    partial = fn("p", ["Natural"], "Natural", [
        clause([lit_p(0)], num(1), line=31),
        clause([lit_p(0)], num(2), line=32),
    ], [require({"n": "Natural"}, call("p", var("n")), "Natural", line=33)], line=30)
    bad = fn("b", ["Natural"], "Natural", [
        clause([var_p("n")], boolean(False), line=41),
    ], [require({"n": "Natural"}, call("b", var("n")), "Natural", line=42)], line=40)
    return program(tree, factorial(), size, square, partial, bad)


def _summary(report: AnalysisReport):
    diags = [(d.code, d.message, d.span, d.severity, d.witness) for d in report.diagnostics]
    results = [(r.function, r.name, r.verdict, r.witness, r.reason) for r in report.results]
    return diags, results


class TestAnalyze:
    def test_outcomes(self):
        report = analyze(_mixed_program())
        assert report.result("f", "require#1").verdict is Verdict.PROVED
        assert report.result("size", "require#1").verdict is Verdict.REFUTED
        assert report.result("sq", "require#1").verdict is Verdict.UNKNOWN
        assert report.result("p", "require#1").verdict is Verdict.UNKNOWN
        assert report.result("b", "require#1").verdict is Verdict.UNKNOWN
        assert report.verdict_counts() == {
            Verdict.PROVED: 1, Verdict.REFUTED: 1, Verdict.UNKNOWN: 3,
        }
        assert not report.ok

    def test_errors_stay_with_their_function(self):
        report = analyze(_mixed_program())
        assert report.for_function("f") == []
        assert {d.code for d in report.for_function("p")} == {"W301", "E371", "W390"}
        assert {d.code for d in report.for_function("b")} == {"E321", "W390"}

    def test_workers_do_not_change_the_report(self):
        sequential = analyze(_mixed_program(), VerityConfig(run=RunConfig(workers=1)))
        parallel = analyze(_mixed_program(), VerityConfig(run=RunConfig(workers=4)))
        assert _summary(sequential) == _summary(parallel)

    def test_diagnostics_in_source_order(self):
        report = analyze(_mixed_program())
        lines = [d.span.start_line for d in report.diagnostics]
        assert lines == sorted(lines)

    def test_warnings_as_errors(self):
        prog = program(fn("f", ["Natural"], "Natural", [
            clause([lit_p(0)], num(1)),
            clause([lit_p(0)], num(2)),
            clause([var_p("n")], var("n")),
        ]))
        assert analyze(prog).ok
        strict = analyze(prog, VerityConfig(check=CheckConfig(warnings_as_errors=True)))
        (diag,) = strict.diagnostics
        assert diag.code == "W301"
        assert diag.severity is Severity.ERROR
        assert not strict.ok

    def test_empty_program(self):
        report = analyze(program())
        assert report.diagnostics == ()
        assert report.results == ()
        assert report.ok

    def test_missing_result(self):
        with pytest.raises(KeyError):
            analyze(program(factorial())).result("f", "nope")


class TestAnalyzeRaw:
    def test_raw_tree(self):
        report = analyze_raw(raw_factorial(), "fact.json")
        (result,) = report.results
        assert result.proved
        assert str(result.obligation.span) == "fact.json:4:1"

    def test_contract_violation_aborts(self):
        with pytest.raises(ParseContractViolation):
            analyze_raw({"declarations": [{"kind": "function"}]})


class TestCollector:
    def _diag(self, line: int, kind=DiagnosticKind.UNREACHABLE_CLAUSE, message="m"):
        return Diagnostic.of(kind, message, Span("a", line, 1, line, 1))

    def test_sorted_by_location_then_code(self):
        collector = DiagnosticCollector()
        collector.extend([
            self._diag(5),
            self._diag(2, DiagnosticKind.TYPE_MISMATCH),
            self._diag(2, DiagnosticKind.DUPLICATE_DEFINITION),
        ])
        assert [(d.span.start_line, d.code) for d in collector.sorted()] == [
            (2, "E301"), (2, "E321"), (5, "W301"),
        ]
        assert len(collector) == 3

    def test_promotion(self):
        collector = DiagnosticCollector(warnings_as_errors=True)
        collector.add(self._diag(1))
        assert collector.has_errors()

    def test_warnings_are_not_errors(self):
        collector = DiagnosticCollector()
        collector.add(self._diag(1))
        assert not collector.has_errors()


def test_map_keeps_order():
    items = list(range(20))
    assert _map(lambda x: x * x, items, 4) == [x * x for x in items]
    assert _map(lambda x: x * x, items, 1) == [x * x for x in items]
