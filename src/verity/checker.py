"""Two-pass semantic analyzer for verity programs.

Pass 1: Register all top-level declarations (algebraic types, then function
signatures) into a SymbolTable.
Pass 2: Check each function against its own declared signature, one
function at a time. Pass 2 never writes to the shared SymbolTable, so
independent functions can be checked concurrently.

Diagnostics:
- E300: undefined type
- E301: duplicate definition
- E302: duplicate hypothesis name
- E310: undefined name
- E311: undefined function
- E321: type mismatch (carries expected/found)
- E330: wrong number of arguments
- E370: unknown constructor
"""

from __future__ import annotations

from dataclasses import dataclass, field
from fractions import Fraction

from verity.ast_nodes import (
    ARITHMETIC_OPS,
    ArrowType,
    BinaryExpr,
    BindingPattern,
    BooleanLit,
    CallExpr,
    ConstructorExpr,
    ConstructorPattern,
    DecimalLit,
    Expr,
    FunctionDef,
    Hypothesis,
    IdentifierExpr,
    IntegerLit,
    Obligation,
    Pattern,
    Program,
    SimpleType,
    TypeExpr,
    UnaryExpr,
)
from verity.errors import Diagnostic, DiagnosticKind, Severity
from verity.matcher import CompiledMatch, natural_lower_bound
from verity.source import Span
from verity.symbols import FunctionSignature, Scope, Symbol, SymbolKind, SymbolTable
from verity.types import (
    BOOLEAN,
    ERROR_TY,
    INTEGER,
    NATURAL,
    REAL,
    AlgebraicType,
    ConstructorInfo,
    ErrorType,
    FunctionType,
    RefinementType,
    Type,
    base_type,
    comparable,
    is_numeric,
    is_subtype,
    join,
    type_name,
    value_has_type,
)


@dataclass(frozen=True)
class CheckedObligation:
    """An obligation whose hypothesis and goal types have been resolved."""

    obligation: Obligation
    hypothesis_types: tuple[Type, ...]
    required: Type
    well_typed: bool


@dataclass(frozen=True)
class CheckResult:
    """Outcome of pass 2 for one function."""

    function: str
    diagnostics: tuple[Diagnostic, ...]
    obligations: tuple[CheckedObligation, ...] = field(default_factory=tuple)

    @property
    def well_typed(self) -> bool:
        return not any(d.severity == Severity.ERROR for d in self.diagnostics)


def signature_obligation(fd: FunctionDef) -> Obligation:
    """`(x1: D1, ...) => f(x1, ...): Codomain` for a refinement codomain."""
    hyps = tuple(
        Hypothesis(f"x{i + 1}", te, fd.span) for i, te in enumerate(fd.params)
    )
    goal = CallExpr(
        IdentifierExpr(fd.name, fd.span),
        tuple(IdentifierExpr(h.name, fd.span) for h in hyps),
        fd.span,
    )
    return Obligation("signature", hyps, goal, fd.return_type, fd.span, implicit=True)


class Checker:
    """Semantic analyzer for a single program."""

    def __init__(self, symbols: SymbolTable | None = None) -> None:
        self.symbols = symbols if symbols is not None else SymbolTable()
        self.diagnostics: list[Diagnostic] = []
        self._current: FunctionDef | None = None
        self._scope: Scope | None = None
        self._in_body = False

    # ── Public API ──────────────────────────────────────────────

    def register(self, program: Program) -> SymbolTable:
        """Pass 1. Raises nothing; check self.diagnostics."""
        for td in program.type_defs:
            if self.symbols.resolve_type(td.name) is not None:
                self._error(
                    DiagnosticKind.DUPLICATE_DEFINITION,
                    f"duplicate definition of type '{td.name}'", td.span,
                )
                continue
            self.symbols.define_type(td.name, AlgebraicType(td.name))

        # Constructor fields resolve after every type name is known, so
        # recursive and mutually recursive types are allowed.
        for td in program.type_defs:
            if self.symbols.constructors_of(td.name) is not None:
                continue
            infos: list[ConstructorInfo] = []
            for cd in td.constructors:
                if self.symbols.resolve_constructor(cd.name) is not None or any(
                    i.name == cd.name for i in infos
                ):
                    self._error(
                        DiagnosticKind.DUPLICATE_DEFINITION,
                        f"duplicate definition of constructor '{cd.name}'", cd.span,
                    )
                    continue
                fields = tuple(self._resolve_type_expr(f) for f in cd.fields)
                infos.append(ConstructorInfo(cd.name, td.name, fields))
            self.symbols.define_constructors(td.name, tuple(infos))

        for fd in program.functions:
            sig = FunctionSignature(
                name=fd.name,
                param_types=tuple(self._resolve_type_expr(p) for p in fd.params),
                return_type=self._resolve_type_expr(fd.return_type),
                span=fd.span,
            )
            if self.symbols.define_function(sig) is not None:
                self._error(
                    DiagnosticKind.DUPLICATE_DEFINITION,
                    f"duplicate definition of function '{fd.name}'", fd.span,
                )
        return self.symbols

    def check_function(self, fd: FunctionDef, compiled: CompiledMatch) -> CheckResult:
        """Pass 2 for one function whose clauses compiled cleanly."""
        start = len(self.diagnostics)
        self._current = fd
        sig = self.symbols.resolve_function(fd.name)
        param_types = compiled.param_types
        return_type = sig.return_type if sig is not None else ERROR_TY
        # A refinement codomain is proved, not typed: bodies check at its base.
        body_type = base_type(return_type)

        self._in_body = True
        for i, clause in enumerate(fd.clauses):
            self._scope = Scope(name=f"{fd.name}#{i + 1}")
            self._bind_clause(compiled, i, param_types)
            actual = self._infer_expr(clause.body)
            self._expect(body_type, actual, clause.body)
        self._in_body = False

        obligations = list(fd.obligations)
        if isinstance(return_type, RefinementType):
            obligations.append(signature_obligation(fd))
        checked = tuple(self._check_obligation(ob) for ob in obligations)

        self._scope = None
        self._current = None
        return CheckResult(fd.name, tuple(self.diagnostics[start:]), checked)

    # ── Error helpers ───────────────────────────────────────────

    def _error(self, kind: DiagnosticKind, message: str, span: Span, **kwargs) -> None:
        function = self._current.name if self._current is not None else None
        self.diagnostics.append(
            Diagnostic.of(kind, message, span, function=function, **kwargs)
        )

    def _mismatch(self, expected: Type | str, found: Type, span: Span, what: str) -> None:
        exp = expected if isinstance(expected, str) else type_name(expected)
        self._error(
            DiagnosticKind.TYPE_MISMATCH,
            f"type mismatch in {what}: expected '{exp}', found '{type_name(found)}'",
            span,
            expected=exp,
            found=type_name(found),
        )

    def _expect(self, expected: Type, actual: Type, expr: Expr, what: str = "clause body") -> None:
        if is_subtype(actual, expected) or _literal_fits(expr, expected):
            return
        self._mismatch(expected, actual, expr.span, what)

    # ── Scopes ──────────────────────────────────────────────────

    def _bind_clause(
        self, compiled: CompiledMatch, index: int, param_types: tuple[Type, ...],
    ) -> None:
        """Define the variables a clause's patterns bind, with Natural lower bounds."""
        leaves = compiled.leaves_for(index)
        span = self._current.clauses[index].span
        if not leaves:
            # Unreachable clause: still type its body from the patterns alone.
            for pattern, ty in zip(self._current.clauses[index].patterns, param_types):
                for name, bound_ty in self._pattern_bindings(pattern, ty):
                    self._scope.define(Symbol(
                        name=name, kind=SymbolKind.VARIABLE, resolved_type=bound_ty, span=span,
                    ))
            return
        bounds: dict[str, int] = {}
        for leaf in leaves:
            cmap = leaf.constraint_map()
            for b in leaf.bindings:
                lb = natural_lower_bound(cmap, b.occurrence) if b.type == NATURAL else 0
                bounds[b.name] = min(bounds.get(b.name, lb), lb)
        for b in leaves[0].bindings:
            self._scope.define(Symbol(
                name=b.name, kind=SymbolKind.VARIABLE,
                resolved_type=b.type, span=span,
                lower_bound=bounds[b.name],
            ))

    def _pattern_bindings(self, pattern: Pattern, ty: Type) -> list[tuple[str, Type]]:
        if isinstance(pattern, BindingPattern):
            return [(pattern.name, ty)]
        if not isinstance(pattern, ConstructorPattern):
            return []
        info = self.symbols.resolve_constructor(pattern.name)
        if info is None:
            return []
        found: list[tuple[str, Type]] = []
        for sub, field_ty in zip(pattern.args, info.fields):
            found.extend(self._pattern_bindings(sub, field_ty))
        return found

    # ── Obligations ─────────────────────────────────────────────

    def _check_obligation(self, ob: Obligation) -> CheckedObligation:
        start = len(self.diagnostics)
        self._scope = Scope(name=f"{self._current.name}:{ob.name}")
        hyp_types: list[Type] = []
        for h in ob.hypotheses:
            ty = self._resolve_type_expr(h.type_expr)
            hyp_types.append(ty)
            existing = self._scope.define(Symbol(
                name=h.name, kind=SymbolKind.HYPOTHESIS, resolved_type=ty, span=h.span,
            ))
            if existing is not None:
                self._error(
                    DiagnosticKind.DUPLICATE_BINDING,
                    f"hypothesis '{h.name}' is declared more than once in '{ob.name}'",
                    h.span,
                )
        required = self._resolve_type_expr(ob.goal_type)
        goal = self._infer_expr(ob.goal)
        if not isinstance(required, ErrorType) and not comparable(goal, required):
            self._mismatch(required, goal, ob.goal.span, f"obligation '{ob.name}'")
        ok = not any(d.severity == Severity.ERROR for d in self.diagnostics[start:])
        return CheckedObligation(ob, tuple(hyp_types), required, ok)

    # ── Expression type inference ───────────────────────────────

    def _infer_expr(self, expr: Expr) -> Type:
        """Infer the type of an expression."""
        if isinstance(expr, IntegerLit):
            return NATURAL if int(expr.value) >= 0 else INTEGER
        if isinstance(expr, DecimalLit):
            return REAL
        if isinstance(expr, BooleanLit):
            return BOOLEAN
        if isinstance(expr, IdentifierExpr):
            return self._infer_identifier(expr)
        if isinstance(expr, ConstructorExpr):
            return self._infer_constructor(expr.name, expr.args, expr.span)
        if isinstance(expr, CallExpr):
            return self._infer_call(expr)
        if isinstance(expr, BinaryExpr):
            return self._infer_binary(expr)
        if isinstance(expr, UnaryExpr):
            return self._infer_unary(expr)
        return ERROR_TY

    def _infer_identifier(self, expr: IdentifierExpr) -> Type:
        sym = self._scope.lookup(expr.name) if self._scope is not None else None
        if sym is not None:
            return sym.resolved_type
        sig = self.symbols.resolve_function(expr.name)
        if sig is not None:
            return sig.function_type
        if self.symbols.resolve_constructor(expr.name) is not None:
            return self._infer_constructor(expr.name, (), expr.span)
        self._error(DiagnosticKind.UNDEFINED_NAME, f"undefined name '{expr.name}'", expr.span)
        return ERROR_TY

    def _infer_constructor(self, name: str, args: tuple[Expr, ...], span: Span) -> Type:
        arg_types = [self._infer_expr(a) for a in args]
        info = self.symbols.resolve_constructor(name)
        if info is None:
            self._error(
                DiagnosticKind.UNKNOWN_CONSTRUCTOR, f"unknown constructor '{name}'", span,
            )
            return ERROR_TY
        result = self.symbols.resolve_type(info.type_name) or ERROR_TY
        if info.arity != len(args):
            self._error(
                DiagnosticKind.ARITY_MISMATCH,
                f"constructor '{name}' takes {info.arity} field(s), given {len(args)}",
                span,
            )
            return result
        for arg, expected, actual in zip(args, info.fields, arg_types):
            self._expect(expected, actual, arg, f"field of '{name}'")
        return result

    def _infer_call(self, expr: CallExpr) -> Type:
        if not isinstance(expr.func, IdentifierExpr):
            func_type = self._infer_expr(expr.func)
            for a in expr.args:
                self._infer_expr(a)
            if isinstance(func_type, FunctionType):
                return func_type.return_type
            if not isinstance(func_type, ErrorType):
                self._mismatch("function", func_type, expr.func.span, "application")
            return ERROR_TY

        name = expr.func.name
        sym = self._scope.lookup(name) if self._scope is not None else None
        if sym is not None:
            ftype = sym.resolved_type
            if isinstance(ftype, ErrorType):
                for a in expr.args:
                    self._infer_expr(a)
                return ERROR_TY
            if not isinstance(ftype, FunctionType):
                for a in expr.args:
                    self._infer_expr(a)
                self._mismatch("function", ftype, expr.span, f"application of '{name}'")
                return ERROR_TY
            self._check_args(name, ftype.param_types, expr)
            return ftype.return_type

        sig = self.symbols.resolve_function(name)
        if sig is None:
            if self.symbols.resolve_constructor(name) is not None:
                return self._infer_constructor(name, expr.args, expr.span)
            for a in expr.args:
                self._infer_expr(a)
            self._error(
                DiagnosticKind.UNDEFINED_FUNCTION, f"undefined function '{name}'", expr.span,
            )
            return ERROR_TY

        self._check_args(name, sig.param_types, expr)
        if self._in_body and self._current is not None and name == self._current.name:
            # Refinements of a recursive result are the verifier's to prove.
            return base_type(sig.return_type)
        return sig.return_type

    def _check_args(self, name: str, params: tuple[Type, ...], expr: CallExpr) -> None:
        arg_types = [self._infer_expr(a) for a in expr.args]
        if len(params) != len(arg_types):
            self._error(
                DiagnosticKind.ARITY_MISMATCH,
                f"wrong number of arguments to '{name}': "
                f"expected {len(params)}, got {len(arg_types)}",
                expr.span,
            )
            return
        for arg, expected, actual in zip(expr.args, params, arg_types):
            self._expect(expected, actual, arg, f"argument to '{name}'")

    def _infer_binary(self, expr: BinaryExpr) -> Type:
        left = self._infer_expr(expr.left)
        right = self._infer_expr(expr.right)

        # Error types propagate without cascading
        if isinstance(left, ErrorType) or isinstance(right, ErrorType):
            return ERROR_TY

        if expr.op in ("==", "!="):
            if not comparable(left, right):
                self._mismatch(left, right, expr.span, f"'{expr.op}'")
            return BOOLEAN

        ok = True
        for side, ty in ((expr.left, left), (expr.right, right)):
            if not is_numeric(ty):
                self._mismatch("Real", ty, side.span, f"operand of '{expr.op}'")
                ok = False
        if not ok:
            return ERROR_TY if expr.op in ARITHMETIC_OPS else BOOLEAN
        if expr.op not in ARITHMETIC_OPS:
            return BOOLEAN

        a, b = base_type(left), base_type(right)
        common = join(a, b) or REAL
        if expr.op == "/":
            return REAL
        if expr.op == "^":
            if b == REAL:
                self._mismatch("Integer", right, expr.right.span, "exponent")
                return ERROR_TY
            return a if b == NATURAL else REAL
        if expr.op == "-" and common == NATURAL:
            return NATURAL if self._subtraction_stays_natural(expr) else INTEGER
        return common

    def _subtraction_stays_natural(self, expr: BinaryExpr) -> bool:
        """`n - k` is Natural when k is a literal no greater than n's known minimum."""
        if not isinstance(expr.right, IntegerLit):
            return False
        k = int(expr.right.value)
        if isinstance(expr.left, IntegerLit):
            return int(expr.left.value) >= k
        if isinstance(expr.left, IdentifierExpr) and self._scope is not None:
            sym = self._scope.lookup(expr.left.name)
            return sym is not None and sym.lower_bound >= k
        return k == 0

    def _infer_unary(self, expr: UnaryExpr) -> Type:
        operand = self._infer_expr(expr.operand)
        if isinstance(operand, ErrorType):
            return ERROR_TY
        if not is_numeric(operand):
            self._mismatch("Real", operand, expr.operand.span, f"operand of '{expr.op}'")
            return ERROR_TY
        base = base_type(operand)
        return INTEGER if base == NATURAL else base

    # ── Type resolution ─────────────────────────────────────────

    def _resolve_type_expr(self, type_expr: TypeExpr) -> Type:
        """Resolve a syntactic TypeExpr to a semantic Type."""
        if isinstance(type_expr, SimpleType):
            resolved = self.symbols.resolve_type(type_expr.name)
            if resolved is None:
                self._error(
                    DiagnosticKind.UNDEFINED_TYPE,
                    f"undefined type '{type_expr.name}'", type_expr.span,
                )
                return ERROR_TY
            return resolved
        if isinstance(type_expr, ArrowType):
            return FunctionType(
                tuple(self._resolve_type_expr(p) for p in type_expr.params),
                self._resolve_type_expr(type_expr.result),
            )
        return ERROR_TY


def _literal_fits(expr: Expr, expected: Type) -> bool:
    """A numeric literal is accepted wherever its value is (`2` where Even is expected)."""
    if isinstance(expr, UnaryExpr) and expr.op == "-" and isinstance(expr.operand, IntegerLit):
        value: int | Fraction = -int(expr.operand.value)
    elif isinstance(expr, IntegerLit):
        value = int(expr.value)
    elif isinstance(expr, DecimalLit):
        value = Fraction(expr.value)
    else:
        return False
    return value_has_type(value, expected)


def check_program(program: Program) -> tuple[SymbolTable, list[Diagnostic]]:
    """Register, compile and check every function sequentially.

    Convenience entry point for callers that only want typing diagnostics;
    ``verity.pipeline`` runs the same phases with verification.
    """
    from verity.matcher import MatchCompiler

    checker = Checker()
    symbols = checker.register(program)
    diagnostics = list(checker.diagnostics)
    seen: set[str] = set()
    for fd in program.functions:
        if fd.name in seen:
            continue
        seen.add(fd.name)
        sig = symbols.resolve_function(fd.name)
        compiled = MatchCompiler(symbols).compile(fd, sig.param_types)
        diagnostics.extend(compiled.diagnostics)
        if compiled.ill_formed:
            continue
        diagnostics.extend(Checker(symbols).check_function(fd, compiled).diagnostics)
    return symbols, diagnostics
