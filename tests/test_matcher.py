"""Tests for the pattern-match compiler."""

from __future__ import annotations

import pytest

from verity.checker import Checker
from verity.errors import DiagnosticKind, MatchFailure
from verity.evaluator import ConstructorValue
from verity.matcher import (
    ConstructorSwitch,
    LiteralSwitch,
    MatchCompiler,
    bind,
    natural_lower_bound,
    select,
)
from tests.helpers import (
    adt,
    call,
    clause,
    ctor_p,
    fn,
    lit_p,
    num,
    program,
    var,
    var_p,
    wild,
)


def _compile(fd, *type_defs):
    checker = Checker()
    symbols = checker.register(program(*type_defs, fd))
    sig = symbols.resolve_function(fd.name)
    return MatchCompiler(symbols).compile(fd, sig.param_types)


def _codes(compiled):
    return [d.code for d in compiled.diagnostics]


def _first_match(value: int, literals: list[int | None]) -> int:
    """Index of the first clause matching *value*; None stands for a variable."""
    for i, lit in enumerate(literals):
        if lit is None or lit == value:
            return i
    raise AssertionError("no clause matches")


TREE = adt("Tree", {"Leaf": [], "Node": ["Tree", "Tree"]})


class TestReachability:
    def test_duplicate_literal_is_unreachable(self):
        fd = fn("f", ["Natural"], "Natural", [
            clause([lit_p(0)], num(1), line=2),
            clause([lit_p(0)], num(2), line=3),
            clause([var_p("n")], var("n"), line=4),
        ])
        cm = _compile(fd)
        (diag,) = cm.diagnostics
        assert diag.kind is DiagnosticKind.UNREACHABLE_CLAUSE
        assert diag.code == "W301"
        assert diag.span.start_line == 3
        assert not cm.ill_formed

    def test_duplicate_literal_without_fallback(self):
        fd = fn("f", ["Natural"], "Natural", [
            clause([lit_p(0)], num(1), line=2),
            clause([lit_p(0)], num(2), line=3),
        ])
        cm = _compile(fd)
        assert "W301" in _codes(cm)
        assert "E371" in _codes(cm)
        assert cm.ill_formed

    def test_clause_after_catch_all(self):
        fd = fn("f", ["Natural"], "Natural", [
            clause([wild()], num(1), line=2),
            clause([lit_p(5)], num(2), line=3),
        ])
        (diag,) = _compile(fd).diagnostics
        assert diag.code == "W301"
        assert diag.span.start_line == 3


class TestExhaustiveness:
    def test_zero_and_successor_cover_natural(self):
        fd = fn("f", ["Natural"], "Natural", [
            clause([lit_p(0)], num(1)),
            clause([ctor_p("Succ", var_p("n"))], var("n")),
        ])
        cm = _compile(fd)
        assert cm.diagnostics == ()
        assert isinstance(cm.tree, ConstructorSwitch)

    def test_missing_successor_names_witness(self):
        fd = fn("f", ["Natural"], "Natural", [clause([ctor_p("Zero")], num(1))])
        (diag,) = _compile(fd).diagnostics
        assert diag.kind is DiagnosticKind.NON_EXHAUSTIVE_MATCH
        assert diag.witness == "Succ(_)"
        assert diag.function == "f"

    def test_missing_number_after_literals(self):
        fd = fn("f", ["Natural"], "Natural", [clause([lit_p(0)], num(1)), clause([lit_p(1)], num(1))])
        (diag,) = _compile(fd).diagnostics
        assert diag.witness == "2"

    def test_wildcard_restores_exhaustiveness(self):
        fd = fn("f", ["Natural"], "Natural", [
            clause([lit_p(0)], num(1)),
            clause([wild()], num(2)),
        ])
        assert _compile(fd).diagnostics == ()

    def test_missing_zero(self):
        fd = fn("f", ["Natural"], "Natural", [clause([ctor_p("Succ", wild())], num(1))])
        (diag,) = _compile(fd).diagnostics
        assert diag.witness == "0"

    def test_literal_chain_witness_is_next_number(self):
        fd = fn("f", ["Natural"], "Natural", [
            clause([lit_p(0)], num(1)),
            clause([lit_p(1)], num(1)),
            clause([ctor_p("Succ", ctor_p("Succ", ctor_p("Succ", wild())))], num(1)),
        ])
        (diag,) = _compile(fd).diagnostics
        assert diag.witness == "2"

    def test_open_integer_needs_catch_all(self):
        fd = fn("f", ["Integer"], "Integer", [clause([lit_p(0)], num(1))])
        (diag,) = _compile(fd).diagnostics
        assert diag.code == "E371"
        assert diag.witness == "1"

    def test_booleans(self):
        fd = fn("f", ["Boolean"], "Natural", [clause([lit_p(True)], num(1))])
        (diag,) = _compile(fd).diagnostics
        assert diag.witness == "false"

    def test_multi_column_witness(self):
        fd = fn("f", ["Boolean", "Natural"], "Natural", [
            clause([lit_p(True), wild()], num(1)),
            clause([lit_p(False), lit_p(0)], num(1)),
        ])
        (diag,) = _compile(fd).diagnostics
        assert diag.witness == "(false, 1)"

    def test_algebraic_type(self):
        fd = fn("size", ["Tree"], "Natural", [
            clause([ctor_p("Leaf")], num(1)),
            clause([ctor_p("Node", var_p("l"), var_p("r"))],
                   call("size", var("l"))),
        ])
        assert _compile(fd, TREE).diagnostics == ()

    def test_algebraic_type_missing_constructor(self):
        fd = fn("size", ["Tree"], "Natural", [clause([ctor_p("Leaf")], num(1))])
        (diag,) = _compile(fd, TREE).diagnostics
        assert diag.witness == "Node(_, _)"

    def test_no_clauses(self):
        cm = _compile(fn("f", ["Natural"], "Natural", []))
        assert _codes(cm) == ["E371"]
        assert cm.tree is None


class TestInvalidPatterns:
    def test_clause_arity(self):
        fd = fn("f", ["Natural"], "Natural", [clause([var_p("a"), var_p("b")], num(1))])
        cm = _compile(fd)
        assert _codes(cm) == ["E330"]
        assert cm.ill_formed

    def test_foreign_constructor(self):
        fd = fn("f", ["Natural"], "Natural", [clause([ctor_p("Leaf")], num(1))])
        assert _codes(_compile(fd, TREE)) == ["E370"]

    def test_constructor_field_count(self):
        fd = fn("size", ["Tree"], "Natural", [clause([ctor_p("Node", wild())], num(1))])
        assert _codes(_compile(fd, TREE)) == ["E330"]

    @pytest.mark.parametrize("value", [-1, "1.5", True])
    def test_literal_outside_domain(self, value):
        fd = fn("f", ["Natural"], "Natural", [
            clause([lit_p(value)], num(1)),
            clause([wild()], num(1)),
        ])
        (diag,) = _compile(fd).diagnostics
        assert diag.code == "E321"
        assert diag.expected == "Natural"

    def test_variable_bound_twice(self):
        fd = fn("f", ["Natural", "Natural"], "Natural", [clause([var_p("x"), var_p("x")], num(1))])
        assert _codes(_compile(fd)) == ["E302"]


class TestDecisionTree:
    def test_every_natural_reaches_its_first_clause(self):
        literals = [0, 1, None]
        fd = fn("f", ["Natural"], "Natural", [
            clause([lit_p(0)], num(1)),
            clause([lit_p(1)], num(1)),
            clause([var_p("n")], var("n")),
        ])
        cm = _compile(fd)
        assert isinstance(cm.tree, LiteralSwitch)
        for v in range(50):
            assert select(cm.tree, (v,)).clause_index == _first_match(v, literals)

    def test_large_natural_literal(self):
        fd = fn("f", ["Natural"], "Natural", [
            clause([lit_p(5000)], num(1)),
            clause([lit_p(5000)], num(2), line=3),
            clause([var_p("n")], var("n")),
        ])
        cm = _compile(fd)
        assert _codes(cm) == ["W301"]
        assert isinstance(cm.tree, LiteralSwitch)
        assert select(cm.tree, (5000,)).clause_index == 0
        assert select(cm.tree, (4999,)).clause_index == 2
        (leaf,) = cm.leaves_for(2)
        assert natural_lower_bound(leaf.constraint_map(), (0,)) == 0

    def test_large_literal_beside_successor_pattern(self):
        fd = fn("f", ["Natural"], "Natural", [
            clause([lit_p(5000)], num(1)),
            clause([ctor_p("Succ", var_p("m"))], var("m")),
        ])
        cm = _compile(fd)
        (diag,) = cm.diagnostics
        assert diag.witness == "0"
        assert isinstance(cm.tree, ConstructorSwitch)
        assert select(cm.tree, (5000,)).clause_index == 0
        reached = select(cm.tree, (4000,))
        assert reached.clause_index == 1
        assert bind(reached, (4000,)) == {"m": 3999}
        (first,) = cm.leaves_for(0)
        assert natural_lower_bound(first.constraint_map(), (0,)) == 5000

    def test_every_integer_reaches_its_first_clause(self):
        literals = [0, -1, None]
        fd = fn("f", ["Integer"], "Integer", [
            clause([lit_p(0)], num(1)),
            clause([lit_p(-1)], num(1)),
            clause([var_p("x")], var("x")),
        ])
        cm = _compile(fd)
        assert isinstance(cm.tree, LiteralSwitch)
        for v in range(-25, 25):
            assert select(cm.tree, (v,)).clause_index == _first_match(v, literals)

    def test_leaves_partition_the_input(self):
        fd = fn("f", ["Boolean", "Natural"], "Natural", [
            clause([lit_p(True), lit_p(0)], num(1)),
            clause([wild(), var_p("n")], var("n")),
        ])
        cm = _compile(fd)
        assert select(cm.tree, (True, 0)).clause_index == 0
        assert select(cm.tree, (True, 3)).clause_index == 1
        assert select(cm.tree, (False, 0)).clause_index == 1
        assert [leaf.clause_index for leaf in cm.leaves()] == [1, 0, 1]

    def test_bindings(self):
        fd = fn("size", ["Tree"], "Natural", [
            clause([ctor_p("Leaf")], num(1)),
            clause([ctor_p("Node", var_p("l"), var_p("r"))], num(1)),
        ])
        cm = _compile(fd, TREE)
        leaf = ConstructorValue("Leaf")
        node = ConstructorValue("Node", (leaf, ConstructorValue("Node", (leaf, leaf))))
        reached = select(cm.tree, (node,))
        env = bind(reached, (node,))
        assert env == {"l": leaf, "r": node.args[1]}

    def test_predecessor_binding(self):
        fd = fn("f", ["Natural"], "Natural", [
            clause([lit_p(0)], num(1)),
            clause([ctor_p("Succ", var_p("m"))], var("m")),
        ])
        cm = _compile(fd)
        reached = select(cm.tree, (7,))
        assert bind(reached, (7,)) == {"m": 6}

    def test_lower_bound_from_successor_tests(self):
        fd = fn("f", ["Natural"], "Natural", [
            clause([lit_p(0)], num(1)),
            clause([lit_p(1)], num(1)),
            clause([var_p("n")], var("n")),
        ])
        (leaf,) = _compile(fd).leaves_for(2)
        assert natural_lower_bound(leaf.constraint_map(), (0,)) == 2

    def test_unmatched_input_fails_at_runtime(self):
        fd = fn("f", ["Natural"], "Natural", [clause([lit_p(0)], num(1))])
        cm = _compile(fd)
        with pytest.raises(MatchFailure):
            select(cm.tree, (3,))
