"""Abstract facts and the exact property-propagation rule table.

A Facts value over-approximates the set of values an expression can take:
its kind (integer, real, boolean, ...), its parity when known, and a
closed rational interval with ``None`` for an unbounded side. Every rule
here is exact in the sense that it never claims a property some concrete
result lacks; when a rule cannot decide, it forgets the property.

``BOTTOM`` is the empty set of values. It arises when the constraints on
a case contradict each other, and it satisfies every property vacuously.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum, auto
from fractions import Fraction

from verity.ast_nodes import BinaryExpr, Expr, IntegerLit, expr_key
from verity.types import AlgebraicType, ErrorType, FunctionType, Type


class Kind(Enum):
    INTEGER = auto()
    REAL = auto()
    BOOLEAN = auto()
    ADT = auto()
    FUNCTION = auto()


class Parity(Enum):
    EVEN = "Even"
    ODD = "Odd"


@dataclass(frozen=True)
class Facts:
    kind: Kind | None = None
    parity: Parity | None = None
    lo: Fraction | None = None
    hi: Fraction | None = None
    adt: str | None = None
    empty: bool = False

    @property
    def numeric(self) -> bool:
        return self.kind in (Kind.INTEGER, Kind.REAL)

    @property
    def constant(self) -> Fraction | None:
        if self.lo is not None and self.lo == self.hi:
            return self.lo
        return None

    def describe(self) -> str:
        if self.empty:
            return "no value"
        if self.kind is None:
            return "anything"
        parts = [self.adt or self.kind.name.capitalize()]
        if self.parity is not None:
            parts.append(self.parity.value)
        if self.numeric and (self.lo is not None or self.hi is not None):
            lo = "-inf" if self.lo is None else str(self.lo)
            hi = "inf" if self.hi is None else str(self.hi)
            parts.append(f"[{lo}, {hi}]")
        return " ".join(parts)


TOP = Facts()
BOTTOM = Facts(empty=True)


def make(
    kind: Kind | None,
    parity: Parity | None = None,
    lo: Fraction | None = None,
    hi: Fraction | None = None,
    adt: str | None = None,
) -> Facts:
    """Normalize: tighten integer bounds, derive parity of constants, detect emptiness."""
    if kind is not Kind.INTEGER:
        parity = None
    if kind is Kind.INTEGER:
        if lo is not None:
            lo = Fraction(math.ceil(lo))
        if hi is not None:
            hi = Fraction(math.floor(hi))
    if kind not in (Kind.INTEGER, Kind.REAL):
        lo = hi = None
    if lo is not None and hi is not None and lo > hi:
        return BOTTOM
    if kind is Kind.INTEGER and lo is not None and lo == hi:
        exact = Parity.EVEN if int(lo) % 2 == 0 else Parity.ODD
        if parity is not None and parity is not exact:
            return BOTTOM
        parity = exact
    if kind is Kind.INTEGER and parity is not None:
        # Shrink to the nearest endpoints of the right parity.
        if lo is not None and _parity_of(lo) is not parity:
            lo += 1
        if hi is not None and _parity_of(hi) is not parity:
            hi -= 1
        if lo is not None and hi is not None and lo > hi:
            return BOTTOM
    return Facts(kind, parity, lo, hi, adt)


def _parity_of(n: Fraction) -> Parity:
    return Parity.EVEN if int(n) % 2 == 0 else Parity.ODD


# ── Facts from types and values ─────────────────────────────────


def of_type(ty: Type) -> Facts:
    """Everything a value of *ty* is known to satisfy."""
    if isinstance(ty, ErrorType):
        return TOP
    if isinstance(ty, FunctionType):
        return make(Kind.FUNCTION)
    name = getattr(ty, "name", None)
    if name == "Natural":
        return make(Kind.INTEGER, lo=Fraction(0))
    if name == "Integer":
        return make(Kind.INTEGER)
    if name == "Even":
        return make(Kind.INTEGER, Parity.EVEN)
    if name == "Odd":
        return make(Kind.INTEGER, Parity.ODD)
    if name == "Real":
        return make(Kind.REAL)
    if name == "Boolean":
        return make(Kind.BOOLEAN)
    if isinstance(ty, AlgebraicType):
        return make(Kind.ADT, adt=ty.name)
    return TOP


def of_value(value: object) -> Facts:
    if isinstance(value, bool):
        return make(Kind.BOOLEAN)
    if isinstance(value, (int, Fraction)):
        v = Fraction(value)
        kind = Kind.INTEGER if v.denominator == 1 else Kind.REAL
        return make(kind, lo=v, hi=v)
    return TOP


def satisfies(facts: Facts, ty: Type) -> bool:
    """Do the facts guarantee membership in *ty*?"""
    if facts.empty:
        return True
    if isinstance(ty, ErrorType) or facts.kind is None:
        return False
    if isinstance(ty, FunctionType):
        return facts.kind is Kind.FUNCTION
    name = getattr(ty, "name", None)
    if name == "Real":
        return facts.numeric
    if name == "Integer":
        return facts.kind is Kind.INTEGER
    if name == "Natural":
        return facts.kind is Kind.INTEGER and facts.lo is not None and facts.lo >= 0
    if name in ("Even", "Odd"):
        return facts.kind is Kind.INTEGER and facts.parity is not None and facts.parity.value == name
    if name == "Boolean":
        return facts.kind is Kind.BOOLEAN
    if isinstance(ty, AlgebraicType):
        return facts.kind is Kind.ADT and facts.adt == ty.name
    return False


def meet(a: Facts, b: Facts) -> Facts:
    """Facts known to hold when both *a* and *b* hold."""
    if a.empty or b.empty:
        return BOTTOM
    if a.kind is None:
        return b
    if b.kind is None:
        return a
    numeric = {Kind.INTEGER, Kind.REAL}
    if a.kind == b.kind:
        kind = a.kind
    elif a.kind in numeric and b.kind in numeric:
        kind = Kind.INTEGER
    else:
        return BOTTOM
    if a.parity and b.parity and a.parity is not b.parity:
        return BOTTOM
    if a.adt and b.adt and a.adt != b.adt:
        return BOTTOM
    return make(
        kind,
        a.parity or b.parity,
        _max_lo(a.lo, b.lo),
        _min_hi(a.hi, b.hi),
        a.adt or b.adt,
    )


def with_parity(facts: Facts, parity: Parity) -> Facts:
    return meet(facts, make(Kind.INTEGER, parity))


def _max_lo(x: Fraction | None, y: Fraction | None) -> Fraction | None:
    if x is None:
        return y
    if y is None:
        return x
    return max(x, y)


def _min_hi(x: Fraction | None, y: Fraction | None) -> Fraction | None:
    if x is None:
        return y
    if y is None:
        return x
    return min(x, y)


# ── Interval arithmetic ─────────────────────────────────────────


def _ext(v: Fraction | None, side: int) -> Fraction | float:
    """Endpoint as an extended real; *side* is -1 for a lower bound, 1 for upper."""
    if v is None:
        return math.copysign(math.inf, side)
    return v


def _product(x: Fraction | float, y: Fraction | float) -> Fraction | float:
    # 0 * inf is 0 for closed-interval bounds.
    if x == 0 or y == 0:
        return Fraction(0)
    if math.isinf(x) or math.isinf(y):
        return math.copysign(math.inf, (1 if x > 0 else -1) * (1 if y > 0 else -1))
    return x * y


def _back(v: Fraction | float) -> Fraction | None:
    return None if isinstance(v, float) and math.isinf(v) else Fraction(v)


def _add(x: Fraction | None, y: Fraction | None) -> Fraction | None:
    return None if x is None or y is None else x + y


def _numeric_kind(a: Facts, b: Facts) -> Kind | None:
    if not (a.numeric and b.numeric):
        return None
    return Kind.INTEGER if a.kind is b.kind is Kind.INTEGER else Kind.REAL


# ── Rules ───────────────────────────────────────────────────────
#
# Each rule returns the result facts and the names of the rules that
# established something about it.


Derivation = tuple[Facts, tuple[str, ...]]


def _sum_parity(a: Facts, b: Facts) -> Parity | None:
    if a.parity is None or b.parity is None:
        return None
    return Parity.EVEN if a.parity is b.parity else Parity.ODD


def _parity_rule(op: str, a: Facts, b: Facts, result: Parity | None) -> tuple[str, ...]:
    if result is None:
        return ()
    return (f"{a.parity.value} {op} {b.parity.value} -> {result.value}"
            if a.parity and b.parity
            else f"{(a.parity or b.parity).value} {op} Integer -> {result.value}",)


def add(a: Facts, b: Facts) -> Derivation:
    if a.empty or b.empty:
        return BOTTOM, ()
    kind = _numeric_kind(a, b)
    if kind is None:
        return TOP, ()
    parity = _sum_parity(a, b) if kind is Kind.INTEGER else None
    result = make(kind, parity, _add(a.lo, b.lo), _add(a.hi, b.hi))
    return result, _parity_rule("+", a, b, result.parity) + _bound_rule("+", result)


def negate(a: Facts) -> Derivation:
    if a.empty:
        return BOTTOM, ()
    if not a.numeric:
        return TOP, ()
    lo = None if a.hi is None else -a.hi
    hi = None if a.lo is None else -a.lo
    result = make(a.kind, a.parity, lo, hi)
    rules = (f"-{a.parity.value} -> {a.parity.value}",) if a.parity else ()
    return result, rules


def sub(a: Facts, b: Facts) -> Derivation:
    if a.empty or b.empty:
        return BOTTOM, ()
    kind = _numeric_kind(a, b)
    if kind is None:
        return TOP, ()
    nb, _ = negate(b)
    parity = _sum_parity(a, nb) if kind is Kind.INTEGER else None
    result = make(kind, parity, _add(a.lo, nb.lo), _add(a.hi, nb.hi))
    return result, _parity_rule("-", a, b, result.parity) + _bound_rule("-", result)


def _interval_mul(a: Facts, b: Facts) -> tuple[Fraction | None, Fraction | None]:
    corners = [
        _product(x, y)
        for x in (_ext(a.lo, -1), _ext(a.hi, 1))
        for y in (_ext(b.lo, -1), _ext(b.hi, 1))
    ]
    return _back(min(corners)), _back(max(corners))


def mul(a: Facts, b: Facts) -> Derivation:
    if a.empty or b.empty:
        return BOTTOM, ()
    kind = _numeric_kind(a, b)
    if kind is None:
        return TOP, ()
    parity: Parity | None = None
    rules: tuple[str, ...] = ()
    if kind is Kind.INTEGER:
        if a.parity is Parity.EVEN or b.parity is Parity.EVEN:
            parity = Parity.EVEN
            rules = ("Even * Integer -> Even",)
        elif a.parity is Parity.ODD and b.parity is Parity.ODD:
            parity = Parity.ODD
            rules = ("Odd * Odd -> Odd",)
    lo, hi = _interval_mul(a, b)
    result = make(kind, parity, lo, hi)
    return result, rules + _bound_rule("*", result)


def div(a: Facts, b: Facts) -> Derivation:
    if a.empty or b.empty:
        return BOTTOM, ()
    if not (a.numeric and b.numeric):
        return TOP, ()
    positive = b.lo is not None and b.lo > 0
    negative = b.hi is not None and b.hi < 0
    if not (positive or negative):
        return make(Kind.REAL), ()
    # 1/b for a divisor interval that excludes zero.
    if positive:
        recip = make(Kind.REAL, lo=Fraction(0) if b.hi is None else 1 / b.hi, hi=1 / b.lo)
    else:
        recip = make(Kind.REAL, lo=1 / b.hi, hi=Fraction(0) if b.lo is None else 1 / b.lo)
    lo, hi = _interval_mul(a, recip)
    result = make(Kind.REAL, lo=lo, hi=hi)
    return result, _bound_rule("/", result)


def power(a: Facts, b: Facts) -> Derivation:
    if a.empty or b.empty:
        return BOTTOM, ()
    if not (a.numeric and b.kind is Kind.INTEGER):
        return TOP, ()
    c = b.constant
    if c is not None:
        return _power_const(a, int(c))
    if b.lo is None or b.lo < 0:
        return make(Kind.REAL), ()
    # Non-negative but unknown exponent.
    kind = a.kind
    parity = Parity.ODD if a.parity is Parity.ODD else None
    lo = None
    if a.lo is not None and a.lo >= 1:
        lo = Fraction(1)
    elif a.lo is not None and a.lo >= 0:
        lo = Fraction(0)
    rules = ("Odd ^ Natural -> Odd",) if parity else ()
    result = make(kind, parity, lo, None)
    return result, rules + _bound_rule("^", result)


def _power_const(a: Facts, c: int) -> Derivation:
    if c == 0:
        return make(Kind.INTEGER, lo=Fraction(1), hi=Fraction(1)), ("x ^ 0 -> 1",)
    if c < 0:
        return make(Kind.REAL), ()
    parity = a.parity if a.kind is Kind.INTEGER else None
    if c % 2:
        lo = None if a.lo is None else _pow_bound(a.lo, c)
        hi = None if a.hi is None else _pow_bound(a.hi, c)
        # Odd powers keep the endpoint when it is at least 1 away from zero.
        if lo is None and a.lo is not None and a.lo >= 1:
            lo = a.lo
        if hi is None and a.hi is not None and a.hi <= -1:
            hi = a.hi
    else:
        mags = [abs(v) for v in (a.lo, a.hi) if v is not None]
        spans_zero = (a.lo is None or a.lo <= 0) and (a.hi is None or a.hi >= 0)
        if spans_zero:
            lo = Fraction(0)
        else:
            low = min(mags)
            lo = _pow_bound(low, c)
            if lo is None:
                lo = low if low >= 1 else Fraction(0)
        hi = _pow_bound(max(mags), c) if len(mags) == 2 else None
    rules = (f"{parity.value} ^ {c} -> {parity.value}",) if parity else ()
    result = make(a.kind, parity, lo, hi)
    return result, rules + _bound_rule("^", result)


_MAX_BOUND_BITS = 1 << 12


def _pow_bound(v: Fraction, c: int) -> Fraction | None:
    """``v ** c``, or None when the exact endpoint would be too large to keep."""
    size = v.numerator.bit_length() + v.denominator.bit_length()
    if v not in (0, 1, -1) and size * c > _MAX_BOUND_BITS:
        return None
    return v ** c


def _bound_rule(op: str, result: Facts) -> tuple[str, ...]:
    if result.lo is not None and result.lo >= 0:
        return (f"interval({op}) >= {result.lo}",)
    if result.hi is not None:
        return (f"interval({op}) <= {result.hi}",)
    return ()


def compare() -> Derivation:
    return make(Kind.BOOLEAN), ()


def succ(a: Facts) -> Derivation:
    return add(a, make(Kind.INTEGER, lo=Fraction(1), hi=Fraction(1)))


def apply(op: str, a: Facts, b: Facts) -> Derivation:
    if op == "+":
        return add(a, b)
    if op == "-":
        return sub(a, b)
    if op == "*":
        return mul(a, b)
    if op == "/":
        return div(a, b)
    if op == "^":
        return power(a, b)
    return compare()


# ── Composite rules ─────────────────────────────────────────────


def _offset(expr: Expr) -> tuple[tuple, int] | None:
    """Split `e + k`, `k + e`, `e - k` (k an integer literal) into (key(e), ±k)."""
    if isinstance(expr, BinaryExpr) and expr.op in ("+", "-"):
        if isinstance(expr.right, IntegerLit):
            k = int(expr.right.value)
            return expr_key(expr.left), (k if expr.op == "+" else -k)
        if expr.op == "+" and isinstance(expr.left, IntegerLit):
            return expr_key(expr.right), int(expr.left.value)
    return None


def consecutive(left: Expr, right: Expr) -> bool:
    """Are the two factors consecutive integers, e.g. `n` and `n + 1`?"""
    lbase, loff = _offset(left) or (expr_key(left), 0)
    rbase, roff = _offset(right) or (expr_key(right), 0)
    return lbase == rbase and abs(loff - roff) == 1


def consecutive_product(a: Facts, b: Facts) -> Derivation:
    """n * (n + 1) is Even for every integer n."""
    result, rules = mul(a, b)
    if result.empty or result.kind is not Kind.INTEGER:
        return result, rules
    bounds = tuple(r for r in rules if "->" not in r)
    return meet(result, make(Kind.INTEGER, Parity.EVEN)), (
        "Even(n * (n + 1)) for consecutive integers",
    ) + bounds
