"""Tests for property verification."""

from __future__ import annotations

import random

import pytest

from verity.checker import Checker
from verity.config import VerifyConfig, VerityConfig
from verity.errors import DiagnosticKind, Severity
from verity.evaluator import Evaluator
from verity.prover import Verdict, candidates
from verity.types import BUILTINS, AlgebraicType, value_has_type
from tests.helpers import (
    adt,
    arena,
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
    pronic,
    require,
    var,
    var_p,
    verify,
)

TREE = adt("Tree", {"Leaf": [], "Node": ["Tree", "Tree"]})


def _config(**verify_options) -> VerityConfig:
    return VerityConfig(verify=VerifyConfig(**verify_options))


def _only(report):
    (result,) = report.results
    return result


def _twice(goal_type: str):
    """e(0) = 0; e(n) = e(n - 1) + 2."""
    return fn("e", ["Natural"], "Natural", [
        clause([lit_p(0)], num(0)),
        clause([var_p("n")], binop(call("e", binop(var("n"), "-", num(1))), "+", num(2))),
    ], [require({"n": "Natural"}, call("e", var("n")), goal_type)])


def _steps(goal_type: str):
    """g(0) = 1; g(n) = g(n - 1) + 1."""
    return fn("g", ["Natural"], "Natural", [
        clause([lit_p(0)], num(1)),
        clause([var_p("n")], binop(call("g", binop(var("n"), "-", num(1))), "+", num(1))),
    ], [require({"n": "Natural"}, call("g", var("n")), goal_type)])


def _square_plus(goal_type: str = "Even"):
    """s(x) = x * x + x over Integer."""
    return fn("s", ["Integer"], "Integer", [
        clause([var_p("x")], binop(binop(var("x"), "*", var("x")), "+", var("x"))),
    ], [require({"x": "Integer"}, call("s", var("x")), goal_type)])


def _square(goal_type: str = "Natural"):
    return fn("sq", ["Integer"], "Integer", [
        clause([var_p("x")], binop(var("x"), "*", var("x"))),
    ], [require({"x": "Integer"}, call("sq", var("x")), goal_type)])


def _size(goal_type: str):
    return fn("size", ["Tree"], "Natural", [
        clause([ctor_p("Leaf")], num(1)),
        clause([ctor_p("Node", var_p("l"), var_p("r"))],
               binop(binop(call("size", var("l")), "+", call("size", var("r"))), "+", num(1))),
    ], [require({"t": "Tree"}, call("size", var("t")), goal_type)])


def _integer_steps(step: int):
    """g(0) = 0; ...; g(step - 1) = 0; g(x) = g(x - step) + 2, over Integer."""
    literals = [clause([lit_p(k)], num(0)) for k in range(step)]
    return fn("g", ["Integer"], "Integer", literals + [
        clause([var_p("x")],
               binop(call("g", binop(var("x"), "-", num(step))), "+", num(2))),
    ], [require({"x": "Natural"}, call("g", var("x")), "Even")])


def _tower():
    """b(0) = 2; b(n) = b(n - 1) ^ 2 - 1: never below 2, but the rules cannot see it."""
    return fn("b", ["Natural"], "Integer", [
        clause([lit_p(0)], num(2)),
        clause([var_p("n")],
               binop(binop(call("b", binop(var("n"), "-", num(1))), "^", num(2)), "-", num(1))),
    ], [require({"n": "Natural"}, call("b", var("n")), "Natural")])


def _add():
    """add(0, n) = n; add(m, n) = add(m - 1, n) + 1."""
    return fn("add", ["Natural", "Natural"], "Natural", [
        clause([lit_p(0), var_p("n")], var("n")),
        clause([var_p("m"), var_p("n")],
               binop(call("add", binop(var("m"), "-", num(1)), var("n")), "+", num(1))),
    ], [require({"a": "Natural", "b": "Natural"}, call("add", var("a"), var("b")), "Natural")])


class TestProved:
    def test_factorial_is_natural(self):
        result = _only(verify(program(factorial("Natural"))))
        assert result.verdict is Verdict.PROVED
        assert result.witness is None
        assert [c.verdict for c in result.cases] == [Verdict.PROVED, Verdict.PROVED]
        recursive = result.cases[1]
        assert any("induction hypothesis" in step for step in recursive.justification)

    def test_consecutive_product_is_even(self):
        report = verify(program(pronic("Even")))
        result = _only(report)
        assert result.verdict is Verdict.PROVED
        assert "Even(n * (n + 1)) for consecutive integers" in result.cases[0].justification
        assert report.diagnostics == ()

    def test_parity_split(self):
        result = _only(verify(program(_square_plus())))
        assert result.verdict is Verdict.PROVED
        assert result.cases[0].justification[0] == "parity split on x"

    def test_induction_keeps_parity(self):
        assert _only(verify(program(_twice("Even")))).proved

    def test_structural_induction_on_trees(self):
        assert _only(verify(program(TREE, _size("Natural")))).proved
        assert _only(verify(program(TREE, _size("Odd")))).proved

    @pytest.mark.parametrize("step", [1, 2, 3])
    def test_induction_past_integer_literals(self, step):
        result = _only(verify(program(_integer_steps(step))))
        assert result.verdict is Verdict.PROVED
        recursive = result.cases[-1]
        assert any("induction hypothesis" in s for s in recursive.justification)

    def test_large_literal_clause(self):
        fd = fn("f", ["Natural"], "Natural", [
            clause([lit_p(5000)], num(1)),
            clause([var_p("n")], binop(var("n"), "+", num(1))),
        ], [require({"n": "Natural"}, call("f", var("n")), "Natural")])
        report = verify(program(fd))
        assert _only(report).proved
        assert report.diagnostics == ()

    def test_induction_over_two_arguments(self):
        assert _only(verify(program(_add()))).proved

    def test_refinement_codomain(self):
        d = fn("d", ["Natural"], "Even", [clause([var_p("n")], binop(num(2), "*", var("n")))])
        report = verify(program(d))
        result = report.result("d", "signature")
        assert result.proved
        assert result.obligation.implicit

    def test_other_functions_contribute_their_codomain(self):
        k = fn("k", ["Natural"], "Natural", [
            clause([var_p("n")], binop(call("f", var("n")), "+", num(1))),
        ], [require({"n": "Natural"}, call("k", var("n")), "Natural")])
        report = verify(program(factorial(), k))
        assert report.result("k", "require#1").proved

    def test_unreachable_case_is_vacuous(self):
        partial = fn("h", ["Integer"], "Integer", [
            clause([lit_p(-1)], num(-1)),
            clause([var_p("x")], binop(var("x"), "*", num(2))),
        ], [require({"x": "Natural"}, call("h", var("x")), "Even")])
        result = _only(verify(program(partial)))
        assert result.verdict is Verdict.PROVED


class TestRefuted:
    def test_consecutive_product_is_not_odd(self):
        report = verify(program(pronic("Odd")))
        result = _only(report)
        assert result.verdict is Verdict.REFUTED
        assert result.witness == "x = 0"
        (diag,) = report.of_kind(DiagnosticKind.OBLIGATION_REFUTED)
        assert diag.code == "E390"
        assert diag.witness == "x = 0"
        assert diag.span.start_line == 3
        assert "f(0) = 0, which is not Odd" in diag.notes

    def test_witness_reaches_the_failing_case(self):
        result = _only(verify(program(_steps("Odd"))))
        assert result.verdict is Verdict.REFUTED
        assert result.witness == "n = 1"
        assert [c.verdict for c in result.cases] == [Verdict.PROVED, Verdict.REFUTED]

    def test_refinement_codomain(self):
        o = fn("o", ["Natural"], "Odd", [clause([var_p("n")], binop(var("n"), "+", var("n")))])
        result = verify(program(o)).result("o", "signature")
        assert result.verdict is Verdict.REFUTED
        assert result.witness == "x1 = 0"

    def test_calls_into_other_functions(self):
        k = fn("k", ["Natural"], "Natural", [
            clause([var_p("n")], binop(call("f", var("n")), "+", num(1))),
        ], [require({"n": "Natural"}, call("k", var("n")), "Odd")])
        result = verify(program(factorial(), k)).result("k", "require#1")
        assert result.verdict is Verdict.REFUTED
        assert result.witness == "n = 0"

    def test_general_goal(self):
        fd = factorial()
        shifted = require({"n": "Natural"}, binop(call("f", var("n")), "+", num(1)), "Even",
                          name="shifted")
        fd = fn("f", ["Natural"], "Natural", list(fd.clauses), [shifted])
        result = _only(verify(program(fd)))
        assert result.verdict is Verdict.REFUTED
        assert result.witness == "n = 2"


class TestUnknown:
    def test_true_but_beyond_the_rules(self):
        report = verify(program(_square()))
        result = _only(report)
        assert result.verdict is Verdict.UNKNOWN
        assert result.witness is None
        (diag,) = report.of_kind(DiagnosticKind.OBLIGATION_UNKNOWN)
        assert diag.code == "W390"
        assert diag.severity is Severity.WARNING
        assert report.ok

    def test_unknown_as_error(self):
        report = verify(program(_square()), _config(unknown_is_error=True))
        (diag,) = report.of_kind(DiagnosticKind.OBLIGATION_UNKNOWN)
        assert diag.severity is Severity.ERROR
        assert not report.ok

    def test_case_splits_are_bounded(self):
        result = _only(verify(program(_square_plus()), _config(max_case_splits=0)))
        assert result.verdict is Verdict.UNKNOWN

    def test_no_induction_without_a_smaller_argument(self):
        loop = fn("h", ["Natural"], "Natural", [
            clause([lit_p(0)], num(0)),
            clause([var_p("n")], call("h", var("n"))),
        ], [require({"n": "Natural"}, call("h", var("n")), "Even")])
        result = _only(verify(program(loop)))
        assert result.verdict is Verdict.UNKNOWN
        assert [c.verdict for c in result.cases] == [Verdict.PROVED, Verdict.UNKNOWN]

    def test_explosive_growth_stays_bounded(self):
        report = verify(program(_tower()))
        result = _only(report)
        assert result.verdict is Verdict.UNKNOWN
        assert result.witness is None
        assert report.ok

    def test_general_goal_without_counterexample(self):
        fd = fn("f", ["Natural"], "Natural", list(factorial().clauses),
                [require({"n": "Natural"}, binop(call("f", var("n")), "+", num(0)), "Natural")])
        result = _only(verify(program(fd)))
        assert result.verdict is Verdict.UNKNOWN
        assert result.reason.startswith("only goals of the form")

    def test_ill_formed_function(self):
        partial = fn("p", ["Natural"], "Natural", [clause([lit_p(0)], num(1))],
                     [require({"n": "Natural"}, call("p", var("n")), "Natural")])
        report = verify(program(partial, factorial()))
        skipped = report.result("p", "require#1")
        assert skipped.verdict is Verdict.UNKNOWN
        assert "ill-formed" in skipped.reason
        assert report.result("f", "require#1").proved
        assert report.of_kind(DiagnosticKind.NON_EXHAUSTIVE_MATCH)

    def test_ill_typed_function(self):
        bad = fn("b", ["Natural"], "Natural", [clause([var_p("n")], boolean(True))],
                 [require({"n": "Natural"}, call("b", var("n")), "Natural")])
        result = _only(verify(program(bad)))
        assert result.verdict is Verdict.UNKNOWN
        assert "ill-typed" in result.reason

    def test_duplicate_function(self):
        report = verify(program(factorial(), factorial()))
        verdicts = sorted(r.verdict.value for r in report.results)
        assert verdicts == ["proved", "unknown"]


class TestSoundness:
    """PROVED obligations are spot-checked by evaluating random inputs."""

    @pytest.mark.parametrize("build, inputs", [
        (lambda: program(factorial()), lambda rng: (rng.randint(0, 20),)),
        (lambda: program(pronic("Even")), lambda rng: (rng.randint(-10**6, 10**6),)),
        (lambda: program(_square_plus()), lambda rng: (rng.randint(-10**6, 10**6),)),
        (lambda: program(_twice("Even")), lambda rng: (rng.randint(0, 100),)),
        (lambda: program(_add()), lambda rng: (rng.randint(0, 60), rng.randint(0, 10**6))),
    ])
    def test_proved_holds_on_samples(self, build, inputs):
        prog = build()
        (result,) = verify(prog).results
        assert result.proved
        fd = prog.functions[0]
        required = BUILTINS[result.obligation.goal_type.name]
        functions = arena(prog)
        rng = random.Random(20240611)
        for _ in range(200):
            value = Evaluator(functions).call(fd.name, inputs(rng))
            assert value_has_type(value, required)

    def test_trees(self):
        prog = program(TREE, _size("Odd"))
        (result,) = verify(prog).results
        assert result.proved
        table = Checker().register(prog).constructor_table
        evaluator = Evaluator(arena(prog))
        for tree in candidates(AlgebraicType("Tree"), 40, table):
            assert evaluator.call("size", (tree,)) % 2 == 1


class TestHonesty:
    @pytest.mark.parametrize("prog", [
        program(factorial("Natural")),
        program(factorial("Even")),
        program(pronic("Even")),
        program(pronic("Odd")),
        program(_steps("Odd")),
        program(_square()),
        program(_square("Odd")),
    ], ids=["fact-nat", "fact-even", "pronic-even", "pronic-odd", "steps", "square", "square-odd"])
    def test_verdicts_agree_with_witnesses(self, prog):
        for result in verify(prog).results:
            if result.verdict is Verdict.REFUTED:
                assert result.witness is not None
                assert any(c.verdict is Verdict.REFUTED for c in result.cases)
            else:
                assert result.witness is None
            if result.verdict is Verdict.PROVED:
                assert all(c.verdict is Verdict.PROVED for c in result.cases)

    def test_refuting_witness_really_fails(self):
        prog = program(factorial("Even"))
        result = _only(verify(prog))
        assert result.verdict is Verdict.REFUTED
        name, value = result.witness.split(" = ")
        assert name == "n"
        assert Evaluator(arena(prog)).call("f", (int(value),)) % 2 == 1


class TestCandidates:
    def test_simplest_first(self):
        assert candidates(BUILTINS["Natural"], 4) == [0, 1, 2, 3]
        assert candidates(BUILTINS["Integer"], 5) == [0, 1, -1, 2, -2]
        assert candidates(BUILTINS["Even"], 3) == [0, 2, -2]
        assert candidates(BUILTINS["Odd"], 4) == [1, -1, 3, -3]
        assert candidates(BUILTINS["Boolean"], 10) == [False, True]

    def test_reals_include_fractions(self):
        reals = candidates(BUILTINS["Real"], 6)
        assert len(reals) == 6
        assert any(not isinstance(v, int) for v in reals)
