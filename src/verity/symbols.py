"""Symbol table with lexical scoping for the verity type checker."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto

from verity.source import Span
from verity.types import (
    BUILTIN_CONSTRUCTORS,
    BUILTINS,
    ConstructorInfo,
    FunctionType,
    Type,
)


class SymbolKind(Enum):
    VARIABLE = auto()
    HYPOTHESIS = auto()


@dataclass
class Symbol:
    name: str
    kind: SymbolKind
    resolved_type: Type
    span: Span
    lower_bound: int = 0  # statically known minimum for Natural variables


@dataclass(frozen=True)
class FunctionSignature:
    name: str
    param_types: tuple[Type, ...]
    return_type: Type
    span: Span

    @property
    def function_type(self) -> FunctionType:
        return FunctionType(self.param_types, self.return_type)


class Scope:
    """A single lexical scope level."""

    def __init__(self, parent: Scope | None = None, name: str = "") -> None:
        self.parent = parent
        self.name = name
        self._symbols: dict[str, Symbol] = {}

    def define(self, symbol: Symbol) -> Symbol | None:
        """Define a symbol in this scope. Returns existing symbol if duplicate."""
        existing = self._symbols.get(symbol.name)
        if existing is not None:
            return existing
        self._symbols[symbol.name] = symbol
        return None

    def lookup(self, name: str) -> Symbol | None:
        """Look up a name in this scope and all parent scopes."""
        sym = self._symbols.get(name)
        if sym is not None:
            return sym
        if self.parent is not None:
            return self.parent.lookup(name)
        return None


class SymbolTable:
    """Type registry, constructor registry and function arena for one program.

    Functions are resolved by name; a recursive call is a plain lookup in
    the same table, never a pointer cycle.
    """

    def __init__(self) -> None:
        self._types: dict[str, Type] = dict(BUILTINS)
        self._constructors_by_type: dict[str, tuple[ConstructorInfo, ...]] = dict(
            BUILTIN_CONSTRUCTORS
        )
        self._constructors: dict[str, ConstructorInfo] = {
            info.name: info
            for infos in BUILTIN_CONSTRUCTORS.values()
            for info in infos
        }
        self._functions: dict[str, FunctionSignature] = {}

    # ── Types and constructors ──────────────────────────────────

    def define_type(self, name: str, resolved: Type) -> None:
        self._types[name] = resolved

    def resolve_type(self, name: str) -> Type | None:
        return self._types.get(name)

    def define_constructors(self, type_name: str, infos: tuple[ConstructorInfo, ...]) -> None:
        self._constructors_by_type[type_name] = infos
        for info in infos:
            self._constructors[info.name] = info

    def constructors_of(self, type_name: str) -> tuple[ConstructorInfo, ...] | None:
        """Constructors of a finite or inductive type, or None for open types."""
        return self._constructors_by_type.get(type_name)

    def resolve_constructor(self, name: str) -> ConstructorInfo | None:
        return self._constructors.get(name)

    @property
    def constructor_table(self) -> dict[str, tuple[ConstructorInfo, ...]]:
        return dict(self._constructors_by_type)

    # ── Functions ───────────────────────────────────────────────

    def define_function(self, sig: FunctionSignature) -> FunctionSignature | None:
        """Register a function signature. Returns the existing one if duplicate."""
        existing = self._functions.get(sig.name)
        if existing is not None:
            return existing
        self._functions[sig.name] = sig
        return None

    def resolve_function(self, name: str) -> FunctionSignature | None:
        return self._functions.get(name)

    def all_functions(self) -> dict[str, FunctionSignature]:
        return dict(self._functions)
