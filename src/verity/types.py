"""Resolved type representations for the verity type system.

These are distinct from AST TypeExpr nodes (which are syntactic).
Resolved types are produced when declarations are registered.

Subtyping between the built-in numeric types is a closed DAG
(Natural <: Integer <: Real, Even <: Integer, Odd <: Integer). Its
reflexive-transitive closure is computed once, at import time, and every
subtype query is a table lookup.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from fractions import Fraction

# ── Resolved types ──────────────────────────────────────────────


@dataclass(frozen=True)
class PrimitiveType:
    name: str


@dataclass(frozen=True)
class RefinementType:
    name: str
    base: Type = None  # type: ignore[assignment]


@dataclass(frozen=True)
class AlgebraicType:
    """A named sum type; its constructors live in the TypeEnvironment."""
    name: str


@dataclass(frozen=True)
class ConstructorInfo:
    name: str
    type_name: str
    fields: tuple[Type, ...] = field(default_factory=tuple)

    @property
    def arity(self) -> int:
        return len(self.fields)


@dataclass(frozen=True)
class FunctionType:
    param_types: tuple[Type, ...] = field(default_factory=tuple)
    return_type: Type = None  # type: ignore[assignment]


@dataclass(frozen=True)
class ErrorType:
    """Poison type that suppresses cascading errors."""
    pass


Type = PrimitiveType | RefinementType | AlgebraicType | FunctionType | ErrorType


# ── Built-in type constants ─────────────────────────────────────

NATURAL = PrimitiveType("Natural")
INTEGER = PrimitiveType("Integer")
REAL = PrimitiveType("Real")
EVEN = RefinementType("Even", INTEGER)
ODD = RefinementType("Odd", INTEGER)
BOOLEAN = AlgebraicType("Boolean")
ERROR_TY = ErrorType()

BUILTINS: dict[str, Type] = {
    "Natural": NATURAL,
    "Integer": INTEGER,
    "Real": REAL,
    "Even": EVEN,
    "Odd": ODD,
    "Boolean": BOOLEAN,
}

# Constructor view of the finite/inductive built-ins, used by pattern matching.
BUILTIN_CONSTRUCTORS: dict[str, tuple[ConstructorInfo, ...]] = {
    "Natural": (
        ConstructorInfo("Zero", "Natural"),
        ConstructorInfo("Succ", "Natural", (NATURAL,)),
    ),
    "Boolean": (
        ConstructorInfo("False", "Boolean"),
        ConstructorInfo("True", "Boolean"),
    ),
}

# ── Subtype table ───────────────────────────────────────────────

_DIRECT_SUPERTYPES: dict[str, tuple[str, ...]] = {
    "Natural": ("Integer",),
    "Even": ("Integer",),
    "Odd": ("Integer",),
    "Integer": ("Real",),
    "Real": (),
}


def _close(direct: dict[str, tuple[str, ...]]) -> dict[str, frozenset[str]]:
    """Reflexive-transitive closure of the direct-supertype relation.

    Raises ValueError if the relation has a cycle.
    """
    closed: dict[str, frozenset[str]] = {}
    visiting: set[str] = set()

    def _ancestors(name: str) -> frozenset[str]:
        if name in closed:
            return closed[name]
        if name in visiting:
            raise ValueError(f"subtype cycle through '{name}'")
        visiting.add(name)
        acc = {name}
        for parent in direct.get(name, ()):
            acc |= _ancestors(parent)
        visiting.discard(name)
        closed[name] = frozenset(acc)
        return closed[name]

    for name in direct:
        _ancestors(name)
    return closed


ANCESTORS: dict[str, frozenset[str]] = _close(_DIRECT_SUPERTYPES)

NUMERIC_NAMES = frozenset(ANCESTORS)


# ── Type utilities ──────────────────────────────────────────────


def type_name(ty: Type) -> str:
    """Human-readable name for diagnostics."""
    if isinstance(ty, (PrimitiveType, RefinementType, AlgebraicType)):
        return ty.name
    if isinstance(ty, FunctionType):
        params = ", ".join(type_name(p) for p in ty.param_types)
        ret = type_name(ty.return_type)
        return f"({params}) -> {ret}"
    if isinstance(ty, ErrorType):
        return "<error>"
    return str(ty)


def is_numeric(ty: Type) -> bool:
    return isinstance(ty, (PrimitiveType, RefinementType)) and ty.name in NUMERIC_NAMES


def base_type(ty: Type) -> Type:
    """Strip refinement tags: Even -> Integer."""
    while isinstance(ty, RefinementType) and ty.base is not None:
        ty = ty.base
    return ty


def is_subtype(sub: Type, sup: Type) -> bool:
    """True if every value of *sub* is a value of *sup*.

    ErrorType is compatible with anything to prevent cascading errors.
    Function types are contravariant in parameters, covariant in result.
    """
    if isinstance(sub, ErrorType) or isinstance(sup, ErrorType):
        return True
    if is_numeric(sub) and is_numeric(sup):
        return sup.name in ANCESTORS[sub.name]
    if isinstance(sub, FunctionType) and isinstance(sup, FunctionType):
        if len(sub.param_types) != len(sup.param_types):
            return False
        if not all(is_subtype(s, p) for s, p in zip(sup.param_types, sub.param_types)):
            return False
        return is_subtype(sub.return_type, sup.return_type)
    return sub == sup


def join(a: Type, b: Type) -> Type | None:
    """Least common supertype, or None if the types are unrelated."""
    if isinstance(a, ErrorType) or isinstance(b, ErrorType):
        return ERROR_TY
    if is_subtype(a, b):
        return b
    if is_subtype(b, a):
        return a
    if is_numeric(a) and is_numeric(b):
        common = ANCESTORS[a.name] & ANCESTORS[b.name]
        # The least element is the one whose own ancestors cover the rest.
        for name in common:
            if common <= ANCESTORS[name]:
                return BUILTINS[name]
    return None


def comparable(a: Type, b: Type) -> bool:
    return join(a, b) is not None


def literal_type(value: int | Fraction | bool) -> Type:
    """Principal type of a literal value."""
    if isinstance(value, bool):
        return BOOLEAN
    if isinstance(value, int):
        return NATURAL if value >= 0 else INTEGER
    if value.denominator == 1:
        return NATURAL if value >= 0 else INTEGER
    return REAL


def value_has_type(value: object, ty: Type, constructors=None) -> bool:
    """Does a concrete runtime value inhabit *ty*?

    *constructors* maps an algebraic type name to its ConstructorInfo tuple
    and is needed only for user-defined algebraic types.
    """
    from verity.evaluator import ConstructorValue, FunctionRef

    if isinstance(ty, ErrorType):
        return True
    if ty == BOOLEAN:
        return isinstance(value, bool)
    if isinstance(value, bool):
        return False
    if is_numeric(ty):
        if not isinstance(value, (int, Fraction)):
            return False
        name = ty.name
        if name == "Real":
            return True
        integral = isinstance(value, int) or value.denominator == 1
        if not integral:
            return False
        n = int(value)
        if name == "Integer":
            return True
        if name == "Natural":
            return n >= 0
        if name == "Even":
            return n % 2 == 0
        if name == "Odd":
            return n % 2 == 1
        return False
    if isinstance(ty, AlgebraicType):
        if not isinstance(value, ConstructorValue):
            return False
        infos = (constructors or {}).get(ty.name, ())
        for info in infos:
            if info.name == value.name and info.arity == len(value.args):
                return all(
                    value_has_type(v, ft, constructors)
                    for v, ft in zip(value.args, info.fields)
                )
        return False
    if isinstance(ty, FunctionType):
        return isinstance(value, FunctionRef)
    return False
