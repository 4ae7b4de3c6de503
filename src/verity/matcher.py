"""Pattern-match compiler: clause lists to decision trees.

A function's ordered clauses are lowered into a tree that tests
constructor tags (for ``Natural``, ``Boolean`` and user algebraic types)
or literal equality (for the open numeric types) one occurrence at a
time. Every input value reaches exactly one node: a Leaf naming the
first textual clause that matches, or an Unmatched node when the clause
set is not exhaustive.

Occurrences are paths into the argument tuple: ``(i,)`` is the i-th
argument, ``(i, j)`` the j-th field of whatever constructor matched at
``(i,)``. ``Natural`` is matched through the constructor view
``Zero | Succ(Natural)`` when a ``Zero`` or ``Succ`` pattern appears in a
column; a literal pattern ``k`` there is ``Succ(k - 1)``. A column of
Natural literals alone switches on the literal value.

Diagnostics:
- E371: non-exhaustive match (names an uncovered input shape)
- W301: unreachable clause
- E330: clause arity differs from the function's domain
- E370: constructor does not belong to the matched type
- E321: literal pattern of the wrong type
- E302: variable bound twice in one clause
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Union

from verity.ast_nodes import (
    BindingPattern,
    Clause,
    ConstructorPattern,
    FunctionDef,
    LiteralPattern,
    Pattern,
    WildcardPattern,
    pattern_names,
)
from verity.errors import Diagnostic, DiagnosticKind, MatchFailure
from verity.source import Span
from verity.symbols import SymbolTable
from verity.types import (
    ConstructorInfo,
    ErrorType,
    FunctionType,
    Type,
    is_numeric,
    type_name,
    value_has_type,
)

logger = logging.getLogger(__name__)

Occurrence = tuple[int, ...]

_INT_RE = re.compile(r"^-?[0-9]+$")


# ── Decision tree ───────────────────────────────────────────────


@dataclass(frozen=True)
class ConstructorTest:
    name: str
    arity: int = 0


@dataclass(frozen=True)
class LiteralTest:
    value: int | Fraction


@dataclass(frozen=True)
class ExcludedLiterals:
    values: frozenset


Test = Union[ConstructorTest, LiteralTest, ExcludedLiterals]


@dataclass(frozen=True)
class Constraint:
    """What is known about one occurrence on the path to a node."""

    occurrence: Occurrence
    type: Type
    test: Test


@dataclass(frozen=True)
class Binding:
    name: str
    occurrence: Occurrence
    type: Type


@dataclass(frozen=True)
class Leaf:
    clause_index: int
    bindings: tuple[Binding, ...]
    constraints: tuple[Constraint, ...]

    def constraint_map(self) -> dict[Occurrence, Constraint]:
        return {c.occurrence: c for c in self.constraints}


@dataclass(frozen=True)
class Unmatched:
    constraints: tuple[Constraint, ...]
    witness: str


@dataclass(frozen=True)
class ConstructorSwitch:
    occurrence: Occurrence
    type: Type
    cases: tuple[tuple[str, Decision], ...]


@dataclass(frozen=True)
class LiteralSwitch:
    occurrence: Occurrence
    type: Type
    cases: tuple[tuple[object, Decision], ...]
    default: Decision


Decision = Union[Leaf, Unmatched, ConstructorSwitch, LiteralSwitch]


@dataclass(frozen=True)
class CompiledMatch:
    """Output of the compiler for one function."""

    function: str
    param_types: tuple[Type, ...]
    tree: Decision | None
    diagnostics: tuple[Diagnostic, ...] = field(default_factory=tuple)

    @property
    def ill_formed(self) -> bool:
        return self.tree is None or any(
            d.kind is DiagnosticKind.NON_EXHAUSTIVE_MATCH for d in self.diagnostics
        )

    def leaves(self) -> list[Leaf]:
        """Leaves in tree order; together they partition the input space."""
        found: list[Leaf] = []
        if self.tree is not None:
            _collect_leaves(self.tree, found)
        return found

    def leaves_for(self, clause_index: int) -> list[Leaf]:
        return [leaf for leaf in self.leaves() if leaf.clause_index == clause_index]


def _collect_leaves(node: Decision, out: list[Leaf]) -> None:
    if isinstance(node, Leaf):
        out.append(node)
    elif isinstance(node, ConstructorSwitch):
        for _, sub in node.cases:
            _collect_leaves(sub, out)
    elif isinstance(node, LiteralSwitch):
        for _, sub in node.cases:
            _collect_leaves(sub, out)
        _collect_leaves(node.default, out)


def _collect_unmatched(node: Decision) -> list[Unmatched]:
    if isinstance(node, Unmatched):
        return [node]
    if isinstance(node, Leaf):
        return []
    found: list[Unmatched] = []
    for _, sub in node.cases:
        found.extend(_collect_unmatched(sub))
    if isinstance(node, LiteralSwitch):
        found.extend(_collect_unmatched(node.default))
    return found


# ── Literal helpers ─────────────────────────────────────────────


def parse_literal(text: str) -> int | Fraction | bool:
    if text == "true":
        return True
    if text == "false":
        return False
    if _INT_RE.match(text):
        return int(text)
    return Fraction(text)


def natural_lower_bound(constraints: dict[Occurrence, Constraint], occ: Occurrence) -> int:
    """Minimum value of a Natural occurrence implied by the tests along the path."""
    bound = 0
    while True:
        c = constraints.get(occ)
        if c is None:
            return bound
        if isinstance(c.test, LiteralTest):
            return bound + int(c.test.value)
        if isinstance(c.test, ExcludedLiterals):
            low = 0
            while low in c.test.values:
                low += 1
            return bound + low
        if c.test.name != "Succ":
            return bound
        bound += 1
        occ = occ + (0,)


def _sample_outside(ty: Type, excluded: frozenset) -> str:
    """Pick an inhabitant of an open numeric type that avoids *excluded*."""
    name = getattr(ty, "name", "Integer")
    k = 0
    while True:
        for candidate in ((k,) if k == 0 else (k, -k)):
            if name == "Natural" and candidate < 0:
                continue
            if name == "Even" and candidate % 2:
                continue
            if name == "Odd" and not candidate % 2:
                continue
            if candidate not in excluded:
                return str(candidate)
        k += 1


# ── Compiler ────────────────────────────────────────────────────


@dataclass(frozen=True)
class _Row:
    patterns: tuple[Pattern, ...]
    clause_index: int
    bindings: tuple[Binding, ...]


_WILDCARD = WildcardPattern(Span("<matcher>", 0, 0, 0, 0))


class MatchCompiler:
    """Compile the clauses of one function against its resolved domain."""

    def __init__(self, symbols: SymbolTable) -> None:
        self.symbols = symbols
        self.diagnostics: list[Diagnostic] = []
        self._reached: set[int] = set()
        self._function = ""
        self._arity = 0

    def compile(self, fd: FunctionDef, param_types: tuple[Type, ...]) -> CompiledMatch:
        self.diagnostics = []
        self._reached = set()
        self._function = fd.name
        self._arity = len(param_types)

        valid = True
        for clause in fd.clauses:
            valid = self._validate_clause(clause, param_types) and valid
        if not fd.clauses:
            self._report(
                DiagnosticKind.NON_EXHAUSTIVE_MATCH,
                f"function '{fd.name}' has no clauses",
                fd.span,
                witness=render_shape((), len(param_types)),
            )
            valid = False
        if not valid:
            return CompiledMatch(fd.name, param_types, None, tuple(self.diagnostics))

        rows = [
            _Row(clause.patterns, i, ())
            for i, clause in enumerate(fd.clauses)
        ]
        columns = [((i,), ty) for i, ty in enumerate(param_types)]
        tree = self._compile(rows, columns, ())

        for gap in _collect_unmatched(tree):
            self._report(
                DiagnosticKind.NON_EXHAUSTIVE_MATCH,
                f"non-exhaustive clauses in '{fd.name}': no clause matches {gap.witness}",
                fd.span,
                witness=gap.witness,
            )
        for i, clause in enumerate(fd.clauses):
            if i not in self._reached:
                self._report(
                    DiagnosticKind.UNREACHABLE_CLAUSE,
                    f"clause {i + 1} of '{fd.name}' is unreachable: "
                    f"earlier clauses match every input it matches",
                    clause.span,
                )

        logger.debug(
            "compiled %s: %d clause(s), %d diagnostic(s)",
            fd.name, len(fd.clauses), len(self.diagnostics),
        )
        return CompiledMatch(fd.name, param_types, tree, tuple(self.diagnostics))

    # ── Diagnostics ─────────────────────────────────────────────

    def _report(self, kind: DiagnosticKind, message: str, span: Span, **kwargs) -> None:
        self.diagnostics.append(
            Diagnostic.of(kind, message, span, function=self._function, **kwargs)
        )

    # ── Validation ──────────────────────────────────────────────

    def _validate_clause(self, clause: Clause, param_types: tuple[Type, ...]) -> bool:
        if len(clause.patterns) != len(param_types):
            self._report(
                DiagnosticKind.ARITY_MISMATCH,
                f"clause has {len(clause.patterns)} pattern(s) but "
                f"'{self._function}' takes {len(param_types)} argument(s)",
                clause.span,
            )
            return False
        ok = all(self._validate_pattern(p, t) for p, t in zip(clause.patterns, param_types))
        seen: set[str] = set()
        for p in clause.patterns:
            for name in pattern_names(p):
                if name in seen:
                    self._report(
                        DiagnosticKind.DUPLICATE_BINDING,
                        f"variable '{name}' is bound more than once in one clause",
                        clause.span,
                    )
                    ok = False
                seen.add(name)
        return ok

    def _validate_pattern(self, pattern: Pattern, ty: Type) -> bool:
        if isinstance(pattern, (BindingPattern, WildcardPattern)) or isinstance(ty, ErrorType):
            return True
        infos = self.symbols.constructors_of(getattr(ty, "name", ""))
        if isinstance(pattern, LiteralPattern):
            try:
                value = parse_literal(pattern.value)
            except ValueError:
                value = None
            fits = value is not None and value_has_type(value, ty, self.symbols.constructor_table)
            if not fits:
                self._report(
                    DiagnosticKind.TYPE_MISMATCH,
                    f"literal pattern '{pattern.value}' is not a value of "
                    f"type '{type_name(ty)}'",
                    pattern.span,
                    expected=type_name(ty),
                    found=pattern.value,
                )
            return fits
        # ConstructorPattern
        info = self.symbols.resolve_constructor(pattern.name)
        if infos is None or info is None or info not in infos:
            self._report(
                DiagnosticKind.UNKNOWN_CONSTRUCTOR,
                f"constructor '{pattern.name}' does not belong to type '{type_name(ty)}'",
                pattern.span,
            )
            return False
        if info.arity != len(pattern.args):
            self._report(
                DiagnosticKind.ARITY_MISMATCH,
                f"constructor '{info.name}' takes {info.arity} field(s), "
                f"pattern gives {len(pattern.args)}",
                pattern.span,
            )
            return False
        return all(self._validate_pattern(p, t) for p, t in zip(pattern.args, info.fields))

    # ── Heads ───────────────────────────────────────────────────

    def _head(
        self, pattern: Pattern, ty: Type, peel: bool = True,
    ) -> tuple[object, tuple[Pattern, ...]] | None:
        """Constructor (or literal) a pattern tests for, with its sub-patterns.

        With *peel* a Natural literal ``k`` reads as ``Succ(k - 1)``; without
        it the literal is its own head.
        """
        if isinstance(pattern, (BindingPattern, WildcardPattern)):
            return None
        name = getattr(ty, "name", "")
        if isinstance(pattern, ConstructorPattern):
            return pattern.name, pattern.args
        value = parse_literal(pattern.value)
        if name == "Natural":
            if not peel:
                return int(value), ()
            if value == 0:
                return "Zero", ()
            return "Succ", (LiteralPattern(str(int(value) - 1), pattern.span),)
        if name == "Boolean":
            return ("True" if value else "False"), ()
        if name == "Real":
            return Fraction(value), ()
        return value, ()

    def _constructors(self, ty: Type) -> tuple[ConstructorInfo, ...] | None:
        if isinstance(ty, FunctionType) or is_numeric(ty) and ty.name != "Natural":
            return None
        return self.symbols.constructors_of(getattr(ty, "name", ""))

    # ── Core algorithm ──────────────────────────────────────────

    def _compile(
        self,
        rows: list[_Row],
        columns: list[tuple[Occurrence, Type]],
        constraints: tuple[Constraint, ...],
    ) -> Decision:
        if not rows:
            witness = render_shape(constraints, self._arity)
            return Unmatched(constraints, witness)

        first = rows[0]
        col = next(
            (i for i, p in enumerate(first.patterns)
             if not isinstance(p, (BindingPattern, WildcardPattern))),
            None,
        )
        if col is None:
            bindings = list(first.bindings)
            for p, (occ, ty) in zip(first.patterns, columns):
                if isinstance(p, BindingPattern):
                    bindings.append(Binding(p.name, occ, ty))
            self._reached.add(first.clause_index)
            return Leaf(first.clause_index, tuple(bindings), constraints)

        occ, ty = columns[col]
        infos = self._constructors(ty)
        # Natural literals switch on their value unless Zero/Succ patterns share the column.
        peel = getattr(ty, "name", "") != "Natural" or any(
            isinstance(row.patterns[col], ConstructorPattern) for row in rows
        )
        if infos is not None and peel:
            cases: list[tuple[str, Decision]] = []
            for info in infos:
                sub_columns = [(occ + (j,), ft) for j, ft in enumerate(info.fields)]
                specialized = self._specialize(rows, col, occ, ty, info.name, info.arity)
                new_columns = columns[:col] + sub_columns + columns[col + 1:]
                test = Constraint(occ, ty, ConstructorTest(info.name, info.arity))
                cases.append(
                    (info.name, self._compile(specialized, new_columns, constraints + (test,)))
                )
            return ConstructorSwitch(occ, ty, tuple(cases))

        values: list[object] = []
        for row in rows:
            head = self._head(row.patterns[col], ty, peel)
            if head is not None and head[0] not in values:
                values.append(head[0])
        new_columns = columns[:col] + columns[col + 1:]
        lit_cases: list[tuple[object, Decision]] = []
        for value in values:
            specialized = self._specialize(rows, col, occ, ty, value, 0, peel)
            test = Constraint(occ, ty, LiteralTest(value))
            lit_cases.append((value, self._compile(specialized, new_columns, constraints + (test,))))
        defaults = self._specialize(rows, col, occ, ty, _NO_HEAD, 0, peel)
        test = Constraint(occ, ty, ExcludedLiterals(frozenset(values)))
        default = self._compile(defaults, new_columns, constraints + (test,))
        return LiteralSwitch(occ, ty, tuple(lit_cases), default)

    def _specialize(
        self, rows: list[_Row], col: int, occ: Occurrence, ty: Type, tag: object, arity: int,
        peel: bool = True,
    ) -> list[_Row]:
        """Rows that can match *tag* at column *col*, with its fields spliced in."""
        out: list[_Row] = []
        for row in rows:
            p = row.patterns[col]
            head = self._head(p, ty, peel)
            bindings = row.bindings
            if head is None:
                sub: tuple[Pattern, ...] = (_WILDCARD,) * arity
                if isinstance(p, BindingPattern):
                    bindings = bindings + (Binding(p.name, occ, ty),)
            elif head[0] == tag:
                sub = head[1]
            else:
                continue
            patterns = row.patterns[:col] + sub + row.patterns[col + 1:]
            out.append(_Row(patterns, row.clause_index, bindings))
        return out


class _NoHead:
    """Tag that no pattern head equals: selects only wildcard rows."""


_NO_HEAD = _NoHead()


# ── Witness rendering ───────────────────────────────────────────


def render_shape(constraints: tuple[Constraint, ...], arity: int) -> str:
    """Render the input shape described by *constraints*; `_` is unconstrained."""
    by_occ = {c.occurrence: c for c in constraints}
    parts = [_render(by_occ, (i,)) for i in range(arity)]
    if len(parts) == 1:
        return parts[0]
    return f"({', '.join(parts)})"


def _render(by_occ: dict[Occurrence, Constraint], occ: Occurrence) -> str:
    c = by_occ.get(occ)
    if c is None:
        return "_"
    test = c.test
    if isinstance(test, LiteralTest):
        return str(test.value)
    if isinstance(test, ExcludedLiterals):
        return _sample_outside(c.type, test.values)
    if test.name == "Zero":
        return "0"
    if test.name == "Succ":
        inner = _render(by_occ, occ + (0,))
        if _INT_RE.match(inner):
            return str(int(inner) + 1)
        return f"Succ({inner})"
    if test.name in ("True", "False"):
        return test.name.lower()
    if test.arity == 0:
        return test.name
    fields = ", ".join(_render(by_occ, occ + (j,)) for j in range(test.arity))
    return f"{test.name}({fields})"


# ── Runtime selection ───────────────────────────────────────────


def select(tree: Decision, args: tuple) -> Leaf:
    """Walk *tree* with concrete argument values; return the matching leaf."""
    from verity.evaluator import ConstructorValue

    def value_at(occ: Occurrence):
        v = args[occ[0]]
        for j in occ[1:]:
            if isinstance(v, ConstructorValue):
                v = v.args[j]
            elif isinstance(v, int) and not isinstance(v, bool) and v > 0:
                v = v - 1
            else:
                raise MatchFailure(f"cannot destructure {v!r}")
        return v

    node = tree
    while True:
        if isinstance(node, Leaf):
            return node
        if isinstance(node, Unmatched):
            raise MatchFailure(f"no clause matches input shape {node.witness}")
        v = value_at(node.occurrence)
        if isinstance(node, ConstructorSwitch):
            tag = _tag_of(v)
            for name, sub in node.cases:
                if name == tag:
                    node = sub
                    break
            else:
                raise MatchFailure(f"value {v!r} has no constructor in {type_name(node.type)}")
        else:
            for value, sub in node.cases:
                if not isinstance(v, bool) and v == value:
                    node = sub
                    break
            else:
                node = node.default


def _tag_of(value) -> str:
    from verity.evaluator import ConstructorValue

    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, int):
        return "Zero" if value == 0 else "Succ"
    if isinstance(value, ConstructorValue):
        return value.name
    raise MatchFailure(f"value {value!r} is not constructed")


def bind(leaf: Leaf, args: tuple) -> dict[str, object]:
    """Variable environment for a leaf reached by *args*."""
    from verity.evaluator import ConstructorValue

    env: dict[str, object] = {}
    for b in leaf.bindings:
        v = args[b.occurrence[0]]
        for j in b.occurrence[1:]:
            v = v.args[j] if isinstance(v, ConstructorValue) else v - 1
        env[b.name] = v
    return env
