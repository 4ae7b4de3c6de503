"""Fuel-bounded concrete evaluation over compiled decision trees.

The verifier never proves anything by running code; evaluation is only
used to search for counterexample witnesses and to spot-check proofs.
Every call consumes fuel and call depth is capped. Numbers may not grow
past ``max_bits``, so evaluation of a non-terminating or explosively
growing definition stops with OutOfFuel instead of hanging.

Runtime values:
- ``Natural``/``Integer``: ``int`` (``Zero``/``Succ`` construct ints)
- ``Real``: ``int`` or ``fractions.Fraction`` (exact arithmetic)
- ``Boolean``: ``bool``
- user algebraic types: ``ConstructorValue``
- function references: ``FunctionRef``
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from fractions import Fraction

from verity.ast_nodes import (
    BinaryExpr,
    BooleanLit,
    CallExpr,
    ConstructorExpr,
    DecimalLit,
    Expr,
    FunctionDef,
    IdentifierExpr,
    IntegerLit,
    UnaryExpr,
)
from verity.errors import DivisionByZero, InvalidOperation, OutOfFuel
from verity.matcher import CompiledMatch, bind, select

Value = object


@dataclass(frozen=True)
class ConstructorValue:
    name: str
    args: tuple[Value, ...] = ()

    def __str__(self) -> str:
        if not self.args:
            return self.name
        return f"{self.name}({', '.join(format_value(a) for a in self.args)})"


@dataclass(frozen=True)
class FunctionRef:
    name: str

    def __str__(self) -> str:
        return self.name


def format_value(value: Value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _normalize(value: Value) -> Value:
    """Collapse integral fractions to int so parity and equality stay exact."""
    if isinstance(value, Fraction) and value.denominator == 1:
        return int(value)
    return value


def _bits(value: int | Fraction) -> int:
    if isinstance(value, Fraction):
        return value.numerator.bit_length() + value.denominator.bit_length()
    return value.bit_length()


def _number(value: Value, op: str) -> int | Fraction:
    if isinstance(value, bool) or not isinstance(value, (int, Fraction)):
        raise InvalidOperation(f"operator '{op}' needs numbers, got {format_value(value)}")
    return value


class Evaluator:
    """Evaluate functions of one program by name.

    *functions* maps a function name to its definition and compiled match;
    calls are resolved by name against it.
    """

    def __init__(
        self,
        functions: Mapping[str, tuple[FunctionDef, CompiledMatch]],
        *,
        fuel: int = 20_000,
        max_depth: int = 150,
        max_bits: int = 1 << 16,
    ) -> None:
        self.functions = functions
        self.fuel = fuel
        self.max_depth = max_depth
        self.max_bits = max_bits
        self._depth = 0

    def call(self, name: str, args: tuple[Value, ...]) -> Value:
        fd, compiled = self.functions[name]
        if compiled.tree is None:
            raise InvalidOperation(f"function '{name}' is ill-formed")
        if len(args) != len(compiled.param_types):
            raise InvalidOperation(
                f"'{name}' expects {len(compiled.param_types)} argument(s), got {len(args)}"
            )
        self._spend()
        if self._depth >= self.max_depth:
            raise OutOfFuel(f"call depth limit {self.max_depth} reached in '{name}'")
        leaf = select(compiled.tree, args)
        env = bind(leaf, args)
        self._depth += 1
        try:
            return self.eval(fd.clauses[leaf.clause_index].body, env)
        finally:
            self._depth -= 1

    def _spend(self) -> None:
        self.fuel -= 1
        if self.fuel < 0:
            raise OutOfFuel("evaluation fuel exhausted")

    def eval(self, expr: Expr, env: Mapping[str, Value]) -> Value:
        if isinstance(expr, IntegerLit):
            return int(expr.value)
        if isinstance(expr, DecimalLit):
            return _normalize(Fraction(expr.value))
        if isinstance(expr, BooleanLit):
            return expr.value
        if isinstance(expr, IdentifierExpr):
            if expr.name in env:
                return env[expr.name]
            if expr.name in self.functions:
                return FunctionRef(expr.name)
            return self._construct(expr.name, ())
        if isinstance(expr, ConstructorExpr):
            return self._construct(expr.name, tuple(self.eval(a, env) for a in expr.args))
        if isinstance(expr, CallExpr):
            callee = self.eval(expr.func, env)
            if not isinstance(callee, FunctionRef):
                raise InvalidOperation(f"cannot apply {format_value(callee)}")
            return self.call(callee.name, tuple(self.eval(a, env) for a in expr.args))
        if isinstance(expr, UnaryExpr):
            return -_number(self.eval(expr.operand, env), expr.op)
        if isinstance(expr, BinaryExpr):
            return self._binary(expr.op, self.eval(expr.left, env), self.eval(expr.right, env))
        raise InvalidOperation(f"cannot evaluate {expr!r}")

    def _construct(self, name: str, args: tuple[Value, ...]) -> Value:
        if name == "Zero" and not args:
            return 0
        if name == "Succ" and len(args) == 1:
            return _number(args[0], "Succ") + 1
        if name in ("True", "False") and not args:
            return name == "True"
        if not name[:1].isupper():
            raise InvalidOperation(f"unbound variable '{name}'")
        return ConstructorValue(name, args)

    def _sized(self, value: int | Fraction) -> Value:
        if _bits(value) > self.max_bits:
            raise OutOfFuel(f"intermediate result exceeds {self.max_bits} bits")
        return _normalize(value)

    def _binary(self, op: str, a: Value, b: Value) -> Value:
        if op == "==":
            return a == b
        if op == "!=":
            return a != b
        x, y = _number(a, op), _number(b, op)
        if op == "+":
            return self._sized(x + y)
        if op == "-":
            return self._sized(x - y)
        if op == "*":
            return self._sized(x * y)
        if op == "/":
            if y == 0:
                raise DivisionByZero("division by zero")
            return self._sized(Fraction(x) / Fraction(y))
        if op == "^":
            if not isinstance(y, int):
                raise InvalidOperation("exponent must be an integer")
            if y < 0 and x == 0:
                raise DivisionByZero("zero raised to a negative power")
            # Checked before computing: the power itself could exhaust memory.
            if x not in (0, 1, -1) and _bits(x) * abs(y) > self.max_bits:
                raise OutOfFuel(f"{format_value(x)} ^ {y} exceeds {self.max_bits} bits")
            if y < 0:
                return self._sized(Fraction(x) ** y)
            return self._sized(x ** y)
        if op == "<":
            return x < y
        if op == ">":
            return x > y
        if op == "<=":
            return x <= y
        if op == ">=":
            return x >= y
        raise InvalidOperation(f"unknown operator '{op}'")
