"""AST node definitions for verity programs.

Every node is a frozen dataclass holding tuples, so a parsed program is
immutable: analyses produce separate reports and never rewrite the tree.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from verity.source import Span

# ── Type expressions ─────────────────────────────────────────────


@dataclass(frozen=True)
class SimpleType:
    name: str
    span: Span


@dataclass(frozen=True)
class ArrowType:
    params: tuple[TypeExpr, ...]
    result: TypeExpr
    span: Span


TypeExpr = Union[SimpleType, ArrowType]


# ── Patterns ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class ConstructorPattern:
    name: str
    args: tuple[Pattern, ...]
    span: Span


@dataclass(frozen=True)
class WildcardPattern:
    span: Span


@dataclass(frozen=True)
class LiteralPattern:
    value: str  # "0", "-3", "1.5", "true"
    span: Span


@dataclass(frozen=True)
class BindingPattern:
    name: str
    span: Span


Pattern = Union[ConstructorPattern, WildcardPattern, LiteralPattern, BindingPattern]


# ── Expressions ──────────────────────────────────────────────────


@dataclass(frozen=True)
class IntegerLit:
    value: str
    span: Span


@dataclass(frozen=True)
class DecimalLit:
    value: str
    span: Span


@dataclass(frozen=True)
class BooleanLit:
    value: bool
    span: Span


@dataclass(frozen=True)
class IdentifierExpr:
    name: str
    span: Span


@dataclass(frozen=True)
class ConstructorExpr:
    name: str
    args: tuple[Expr, ...]
    span: Span


@dataclass(frozen=True)
class CallExpr:
    func: Expr
    args: tuple[Expr, ...]
    span: Span


@dataclass(frozen=True)
class BinaryExpr:
    left: Expr
    op: str
    right: Expr
    span: Span


@dataclass(frozen=True)
class UnaryExpr:
    op: str
    operand: Expr
    span: Span


Expr = Union[
    IntegerLit, DecimalLit, BooleanLit,
    IdentifierExpr, ConstructorExpr, CallExpr,
    BinaryExpr, UnaryExpr,
]

ARITHMETIC_OPS = frozenset({"+", "-", "*", "/", "^"})
COMPARISON_OPS = frozenset({"==", "!=", "<", ">", "<=", ">="})
UNARY_OPS = frozenset({"-"})


# ── Function parts ───────────────────────────────────────────────


@dataclass(frozen=True)
class Clause:
    """One equation `f(p1, ..., pn) = body`."""

    patterns: tuple[Pattern, ...]
    body: Expr
    span: Span


@dataclass(frozen=True)
class Hypothesis:
    name: str
    type_expr: TypeExpr
    span: Span


@dataclass(frozen=True)
class Obligation:
    """A `require` clause: `(x: T, ...) => goal: goal_type`."""

    name: str
    hypotheses: tuple[Hypothesis, ...]
    goal: Expr
    goal_type: TypeExpr
    span: Span
    implicit: bool = False


# ── Type definitions ─────────────────────────────────────────────


@dataclass(frozen=True)
class ConstructorDef:
    name: str
    fields: tuple[TypeExpr, ...]
    span: Span


@dataclass(frozen=True)
class AlgebraicTypeDef:
    name: str
    constructors: tuple[ConstructorDef, ...]
    span: Span


# ── Top-level declarations ───────────────────────────────────────


@dataclass(frozen=True)
class FunctionDef:
    name: str
    params: tuple[TypeExpr, ...]
    return_type: TypeExpr
    clauses: tuple[Clause, ...]
    obligations: tuple[Obligation, ...]
    span: Span


Declaration = Union[FunctionDef, AlgebraicTypeDef]


@dataclass(frozen=True)
class Program:
    declarations: tuple[Declaration, ...]
    span: Span

    @property
    def functions(self) -> tuple[FunctionDef, ...]:
        return tuple(d for d in self.declarations if isinstance(d, FunctionDef))

    @property
    def type_defs(self) -> tuple[AlgebraicTypeDef, ...]:
        return tuple(d for d in self.declarations if isinstance(d, AlgebraicTypeDef))


# ── Structural helpers ───────────────────────────────────────────


def expr_key(expr: Expr) -> tuple:
    """Span-free structural key: two expressions are the same term iff keys match."""
    if isinstance(expr, IntegerLit):
        return ("int", int(expr.value))
    if isinstance(expr, DecimalLit):
        return ("dec", expr.value)
    if isinstance(expr, BooleanLit):
        return ("bool", expr.value)
    if isinstance(expr, IdentifierExpr):
        return ("id", expr.name)
    if isinstance(expr, ConstructorExpr):
        return ("ctor", expr.name, tuple(expr_key(a) for a in expr.args))
    if isinstance(expr, CallExpr):
        return ("call", expr_key(expr.func), tuple(expr_key(a) for a in expr.args))
    if isinstance(expr, BinaryExpr):
        return ("bin", expr.op, expr_key(expr.left), expr_key(expr.right))
    if isinstance(expr, UnaryExpr):
        return ("un", expr.op, expr_key(expr.operand))
    raise TypeError(f"not an expression: {expr!r}")


def format_expr(expr: Expr) -> str:
    """Compact infix rendering used in diagnostics and justifications."""
    if isinstance(expr, (IntegerLit, DecimalLit)):
        return expr.value
    if isinstance(expr, BooleanLit):
        return "true" if expr.value else "false"
    if isinstance(expr, IdentifierExpr):
        return expr.name
    if isinstance(expr, ConstructorExpr):
        if not expr.args:
            return expr.name
        return f"{expr.name}({', '.join(format_expr(a) for a in expr.args)})"
    if isinstance(expr, CallExpr):
        return f"{format_expr(expr.func)}({', '.join(format_expr(a) for a in expr.args)})"
    if isinstance(expr, BinaryExpr):
        return f"({format_expr(expr.left)} {expr.op} {format_expr(expr.right)})"
    if isinstance(expr, UnaryExpr):
        return f"{expr.op}{format_expr(expr.operand)}"
    return repr(expr)


def format_type_expr(te: TypeExpr) -> str:
    if isinstance(te, SimpleType):
        return te.name
    params = ", ".join(format_type_expr(p) for p in te.params)
    return f"({params}) -> {format_type_expr(te.result)}"


def pattern_names(pattern: Pattern) -> list[str]:
    """Variables bound by a pattern, in left-to-right order."""
    if isinstance(pattern, BindingPattern):
        return [pattern.name]
    if isinstance(pattern, ConstructorPattern):
        names: list[str] = []
        for sub in pattern.args:
            names.extend(pattern_names(sub))
        return names
    return []
