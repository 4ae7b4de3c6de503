"""Shared test helpers for the verity test suite.

AST shorthands build programs directly (the external parser is not part
of verity); ``check``/``check_fails``/``check_warns`` mirror the usual
assert-on-diagnostic-code style.
"""

from __future__ import annotations

from verity.ast_nodes import (
    AlgebraicTypeDef,
    ArrowType,
    BinaryExpr,
    BindingPattern,
    BooleanLit,
    CallExpr,
    Clause,
    ConstructorDef,
    ConstructorExpr,
    ConstructorPattern,
    DecimalLit,
    Expr,
    FunctionDef,
    Hypothesis,
    IdentifierExpr,
    IntegerLit,
    LiteralPattern,
    Obligation,
    Pattern,
    Program,
    SimpleType,
    TypeExpr,
    UnaryExpr,
    WildcardPattern,
)
from verity.checker import Checker, check_program
from verity.config import VerityConfig
from verity.diagnostics import AnalysisReport
from verity.matcher import MatchCompiler
from verity.pipeline import analyze
from verity.source import Span
from verity.symbols import SymbolTable

S = Span("<test>", 1, 1, 1, 1)


def at(line: int, col: int = 1) -> Span:
    return Span("<test>", line, col, line, col)


# ── Types ───────────────────────────────────────────────────────


def ty(name: str) -> SimpleType:
    return SimpleType(name, S)


def arrow(params: list[str], result: str) -> ArrowType:
    return ArrowType(tuple(ty(p) for p in params), ty(result), S)


def _type(t: str | TypeExpr) -> TypeExpr:
    return ty(t) if isinstance(t, str) else t


# ── Patterns ────────────────────────────────────────────────────


def lit_p(value: object) -> LiteralPattern:
    if isinstance(value, bool):
        return LiteralPattern("true" if value else "false", S)
    return LiteralPattern(str(value), S)


def var_p(name: str) -> BindingPattern:
    return BindingPattern(name, S)


def wild() -> WildcardPattern:
    return WildcardPattern(S)


def ctor_p(name: str, *args: Pattern) -> ConstructorPattern:
    return ConstructorPattern(name, tuple(args), S)


# ── Expressions ─────────────────────────────────────────────────


def num(value: int) -> IntegerLit:
    return IntegerLit(str(value), S)


def dec(text: str) -> DecimalLit:
    return DecimalLit(text, S)


def boolean(value: bool) -> BooleanLit:
    return BooleanLit(value, S)


def var(name: str) -> IdentifierExpr:
    return IdentifierExpr(name, S)


def call(name: str, *args: Expr) -> CallExpr:
    return CallExpr(var(name), tuple(args), S)


def ctor(name: str, *args: Expr) -> ConstructorExpr:
    return ConstructorExpr(name, tuple(args), S)


def binop(left: Expr, op: str, right: Expr) -> BinaryExpr:
    return BinaryExpr(left, op, right, S)


def neg(operand: Expr) -> UnaryExpr:
    return UnaryExpr("-", operand, S)


# ── Declarations ────────────────────────────────────────────────


def clause(patterns: list[Pattern], body: Expr, line: int = 1) -> Clause:
    return Clause(tuple(patterns), body, at(line))


def require(
    hyps: dict[str, str], goal: Expr, goal_type: str, name: str = "require#1", line: int = 1,
) -> Obligation:
    return Obligation(
        name=name,
        hypotheses=tuple(Hypothesis(n, ty(t), S) for n, t in hyps.items()),
        goal=goal,
        goal_type=ty(goal_type),
        span=at(line),
    )


def fn(
    name: str,
    domain: list[str | TypeExpr],
    codomain: str | TypeExpr,
    clauses: list[Clause],
    obligations: list[Obligation] | None = None,
    line: int = 1,
) -> FunctionDef:
    return FunctionDef(
        name=name,
        params=tuple(_type(d) for d in domain),
        return_type=_type(codomain),
        clauses=tuple(clauses),
        obligations=tuple(obligations or ()),
        span=at(line),
    )


def adt(name: str, constructors: dict[str, list[str]], line: int = 1) -> AlgebraicTypeDef:
    return AlgebraicTypeDef(
        name,
        tuple(ConstructorDef(c, tuple(ty(f) for f in fields), S) for c, fields in constructors.items()),
        at(line),
    )


def program(*decls) -> Program:
    return Program(tuple(decls), S)


# ── Canonical programs ──────────────────────────────────────────


def factorial(obligation_type: str = "Natural") -> FunctionDef:
    """f(0) = 1; f(n) = n * f(n - 1) over Natural."""
    return fn(
        "f", ["Natural"], "Natural",
        [
            clause([lit_p(0)], num(1), line=2),
            clause([var_p("n")], binop(var("n"), "*", call("f", binop(var("n"), "-", num(1)))), line=3),
        ],
        [require({"n": "Natural"}, call("f", var("n")), obligation_type, line=4)],
    )


def pronic(obligation_type: str = "Even") -> FunctionDef:
    """f(x) = x * (x + 1) over Real."""
    return fn(
        "f", ["Real"], "Real",
        [clause([var_p("x")], binop(var("x"), "*", binop(var("x"), "+", num(1))), line=2)],
        [require({"x": "Integer"}, call("f", var("x")), obligation_type, line=3)],
    )


# ── Assertions ──────────────────────────────────────────────────


def check(prog: Program) -> SymbolTable:
    """Register, compile and check, asserting no errors. Returns the symbol table."""
    symbols, diagnostics = check_program(prog)
    errors = [d for d in diagnostics if d.severity.value == "error"]
    assert not errors, f"Unexpected errors: {[f'{d.code}: {d.message}' for d in errors]}"
    return symbols


def check_fails(prog: Program, error_code: str) -> list:
    """Check a program, asserting the given error code appears."""
    _, diagnostics = check_program(prog)
    matching = [d for d in diagnostics if d.code == error_code]
    assert matching, (
        f"Expected error {error_code} but got: "
        f"{[f'{d.code}: {d.message}' for d in diagnostics] or 'no diagnostics'}"
    )
    return matching


def check_warns(prog: Program, warning_code: str) -> list:
    """Check a program, asserting the given warning code appears."""
    _, diagnostics = check_program(prog)
    matching = [d for d in diagnostics if d.code == warning_code]
    assert matching, (
        f"Expected warning {warning_code} but got: "
        f"{[f'{d.code}: {d.message}' for d in diagnostics] or 'no diagnostics'}"
    )
    return matching


def verify(prog: Program, config: VerityConfig | None = None) -> AnalysisReport:
    """Run the whole pipeline on a program."""
    return analyze(prog, config)


def arena(prog: Program) -> dict:
    """Compile every function of a program for concrete evaluation."""
    symbols = Checker().register(prog)
    return {
        fd.name: (fd, MatchCompiler(symbols).compile(fd, symbols.resolve_function(fd.name).param_types))
        for fd in prog.functions
    }


# ── Raw syntax trees (front-end output) ─────────────────────────


def raw_factorial() -> dict:
    n = {"kind": "var", "name": "n"}
    return {
        "declarations": [
            {
                "kind": "function",
                "name": "f",
                "span": [1, 1],
                "domain": ["Natural"],
                "codomain": "Natural",
                "clauses": [
                    {"span": [2, 1],
                     "patterns": [{"kind": "literal", "value": "0"}],
                     "body": {"kind": "int", "value": "1"}},
                    {"span": [3, 1],
                     "patterns": [{"kind": "var", "name": "n"}],
                     "body": {"kind": "binary", "op": "*", "left": n,
                              "right": {"kind": "call", "func": "f", "args": [
                                  {"kind": "binary", "op": "-", "left": n,
                                   "right": {"kind": "int", "value": "1"}}]}}},
                ],
                "require": [
                    {"span": [4, 1],
                     "hypotheses": [{"name": "n", "type": "Natural"}],
                     "goal": {"kind": "call", "func": "f", "args": [n]},
                     "type": "Natural"},
                ],
            },
        ],
    }


def raw_pronic(goal_type: str) -> dict:
    x = {"kind": "var", "name": "x"}
    return {
        "declarations": [
            {
                "kind": "function",
                "name": "f",
                "span": [1, 1],
                "domain": ["Real"],
                "codomain": "Real",
                "clauses": [
                    {"patterns": [{"kind": "var", "name": "x"}],
                     "body": {"kind": "binary", "op": "*", "left": x,
                              "right": {"kind": "binary", "op": "+", "left": x,
                                        "right": {"kind": "int", "value": "1"}}}},
                ],
                "require": [
                    {"hypotheses": [{"name": "x", "type": "Integer"}],
                     "goal": {"kind": "call", "func": "f", "args": [x]},
                     "type": goal_type},
                ],
            },
        ],
    }
