"""Property verification for verity obligations.

For an obligation ``(x: T) => f(x): R`` the verifier walks the leaves of
f's compiled decision tree. Each leaf is one case of the input space: its
pattern constraints and the hypothesis types give facts about the bound
variables, and the clause body is evaluated abstractly with the rule
table in ``verity.facts``. A recursive call on a structurally smaller
argument may use the obligation itself as an induction hypothesis, one
step deep. A case is PROVED when the body's facts guarantee R.

Cases that cannot be proved are searched for a counterexample by concrete,
fuel-bounded evaluation of small inputs that reach that case. A found
counterexample makes the obligation REFUTED; otherwise it stays UNKNOWN.

Diagnostics:
- E390: obligation refuted (carries a witness)
- W390: obligation could not be decided (an error with unknown_is_error)
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum
from fractions import Fraction
from itertools import islice, product

from verity import facts as rules
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
    Obligation,
    UnaryExpr,
    format_expr,
    format_type_expr,
)
from verity.checker import CheckedObligation
from verity.config import VerifyConfig
from verity.errors import Diagnostic, DiagnosticKind, EvaluationError, Severity
from verity.evaluator import ConstructorValue, Evaluator, format_value
from verity.facts import TOP, Facts, Kind, Parity
from verity.matcher import (
    CompiledMatch,
    Constraint,
    ConstructorTest,
    ExcludedLiterals,
    Leaf,
    LiteralTest,
    Occurrence,
    render_shape,
    select,
)
from verity.symbols import SymbolTable
from verity.types import (
    NATURAL,
    AlgebraicType,
    FunctionType,
    Type,
    base_type,
    type_name,
    value_has_type,
)

logger = logging.getLogger(__name__)


class Verdict(Enum):
    PROVED = "proved"
    REFUTED = "refuted"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class CaseResult:
    """Verdict for one leaf of the decision tree."""

    clause_index: int
    case: str
    verdict: Verdict
    justification: tuple[str, ...] = field(default_factory=tuple)
    witness: str | None = None


@dataclass(frozen=True)
class VerificationResult:
    """Outcome for one obligation. The obligation itself is never modified."""

    function: str
    obligation: Obligation
    verdict: Verdict
    cases: tuple[CaseResult, ...] = field(default_factory=tuple)
    witness: str | None = None
    reason: str = ""

    @property
    def name(self) -> str:
        return self.obligation.name

    @property
    def proved(self) -> bool:
        return self.verdict is Verdict.PROVED


@dataclass(frozen=True)
class _Var:
    facts: Facts
    occurrence: Occurrence
    type: Type


@dataclass(frozen=True)
class _Goal:
    """Everything fixed for one obligation while its cases are examined."""

    fd: FunctionDef
    compiled: CompiledMatch
    checked: CheckedObligation
    hyp_types: tuple[Type, ...]  # by parameter position
    hyp_names: tuple[str, ...]   # by parameter position
    return_facts: Facts
    roots: tuple[Facts, ...] = ()


class ProofVerifier:
    """Decide the obligations of one function at a time."""

    def __init__(
        self,
        symbols: SymbolTable,
        functions: Mapping[str, tuple[FunctionDef, CompiledMatch]],
        config: VerifyConfig | None = None,
    ) -> None:
        self.symbols = symbols
        self.functions = functions
        self.config = config or VerifyConfig()
        self.diagnostics: list[Diagnostic] = []

    # ── Public API ──────────────────────────────────────────────

    def verify(
        self,
        fd: FunctionDef,
        compiled: CompiledMatch,
        obligations: Sequence[CheckedObligation],
    ) -> list[VerificationResult]:
        """Run every obligation of a well-formed, well-typed function."""
        results = [self._verify_obligation(fd, compiled, ob) for ob in obligations]
        for result in results:
            self._report(result)
        return results

    def skip(
        self, fd: FunctionDef, obligations: Sequence[Obligation], reason: str,
    ) -> list[VerificationResult]:
        """Record UNKNOWN for obligations of a function that cannot be verified."""
        results = [
            VerificationResult(fd.name, ob, Verdict.UNKNOWN, reason=reason)
            for ob in obligations
        ]
        for result in results:
            self._report(result)
        return results

    # ── Reporting ───────────────────────────────────────────────

    def _report(self, result: VerificationResult) -> None:
        ob = result.obligation
        goal = f"{format_expr(ob.goal)}: {format_type_expr(ob.goal_type)}"
        logger.debug("%s.%s: %s", result.function, ob.name, result.verdict.value)
        if result.verdict is Verdict.REFUTED:
            self.diagnostics.append(Diagnostic.of(
                DiagnosticKind.OBLIGATION_REFUTED,
                f"obligation '{ob.name}' of '{result.function}' is refuted: "
                f"{goal} fails for {result.witness}",
                ob.span,
                function=result.function,
                witness=result.witness,
                notes=(result.reason,) if result.reason else (),
            ))
        elif result.verdict is Verdict.UNKNOWN:
            notes = [result.reason] if result.reason else []
            for case in result.cases:
                if case.verdict is Verdict.UNKNOWN:
                    notes.append(f"case {case.case}: {'; '.join(case.justification)}")
            severity = Severity.ERROR if self.config.unknown_is_error else Severity.WARNING
            self.diagnostics.append(Diagnostic(
                severity=severity,
                kind=DiagnosticKind.OBLIGATION_UNKNOWN,
                message=f"could not decide obligation '{ob.name}' of "
                        f"'{result.function}': {goal}",
                span=ob.span,
                function=result.function,
                notes=tuple(notes),
            ))

    # ── Obligations ─────────────────────────────────────────────

    def _verify_obligation(
        self, fd: FunctionDef, compiled: CompiledMatch, checked: CheckedObligation,
    ) -> VerificationResult:
        ob = checked.obligation
        if not checked.well_typed:
            return VerificationResult(
                fd.name, ob, Verdict.UNKNOWN, reason="the obligation is ill-typed",
            )
        order = _direct_order(fd, ob)
        if order is None:
            witness = self._search_goal(checked)
            if witness is not None:
                return VerificationResult(
                    fd.name, ob, Verdict.REFUTED, witness=witness[0], reason=witness[1],
                )
            return VerificationResult(
                fd.name, ob, Verdict.UNKNOWN,
                reason=f"only goals of the form {fd.name}(hypotheses...) are proved; "
                       f"no counterexample found",
            )

        sig = self.symbols.resolve_function(fd.name)
        goal = _Goal(
            fd=fd,
            compiled=compiled,
            checked=checked,
            hyp_types=tuple(checked.hypothesis_types[j] for j in order),
            hyp_names=tuple(ob.hypotheses[j].name for j in order),
            return_facts=rules.of_type(base_type(sig.return_type)),
        )
        by_leaf = self._candidates_by_leaf(goal)
        cases = tuple(self._case(goal, leaf, by_leaf.get(id(leaf), [])) for leaf in compiled.leaves())

        refuted = next((c for c in cases if c.verdict is Verdict.REFUTED), None)
        if refuted is not None:
            verdict, witness = Verdict.REFUTED, refuted.witness
            reason = refuted.justification[-1] if refuted.justification else ""
        elif all(c.verdict is Verdict.PROVED for c in cases):
            verdict, witness, reason = Verdict.PROVED, None, ""
        else:
            verdict, witness, reason = Verdict.UNKNOWN, None, ""
        return VerificationResult(fd.name, ob, verdict, cases, witness, reason)

    # ── Cases ───────────────────────────────────────────────────

    def _case(self, goal: _Goal, leaf: Leaf, candidates: list[tuple]) -> CaseResult:
        fd = goal.fd
        shape = render_shape(leaf.constraints, len(goal.hyp_types))
        cmap = leaf.constraint_map()
        roots = tuple(
            _occurrence_facts(cmap, (i,), rules.meet(rules.of_type(pty), rules.of_type(hty)))
            for i, (pty, hty) in enumerate(zip(goal.compiled.param_types, goal.hyp_types))
        )
        if any(r.empty for r in roots):
            return CaseResult(
                leaf.clause_index, shape, Verdict.PROVED,
                ("no input satisfying the hypotheses reaches this case",),
            )
        goal = replace(goal, roots=roots)

        env: dict[str, _Var] = {}
        for b in leaf.bindings:
            if len(b.occurrence) == 1:
                f = roots[b.occurrence[0]]
            else:
                f = _occurrence_facts(cmap, b.occurrence, rules.of_type(b.type))
            env[b.name] = _Var(f, b.occurrence, b.type)

        body = fd.clauses[leaf.clause_index].body
        ok, trail = self._prove(goal, body, env, 0)
        if ok:
            logger.debug("%s case %s: proved", fd.name, shape)
            return CaseResult(leaf.clause_index, shape, Verdict.PROVED, tuple(trail))

        found = self._search_case(goal, candidates)
        if found is not None:
            logger.debug("%s case %s: refuted by %s", fd.name, shape, found[0])
            return CaseResult(
                leaf.clause_index, shape, Verdict.REFUTED, tuple(trail) + (found[1],), found[0],
            )
        logger.debug("%s case %s: unknown", fd.name, shape)
        return CaseResult(leaf.clause_index, shape, Verdict.UNKNOWN, tuple(trail))

    def _prove(
        self, goal: _Goal, body: Expr, env: dict[str, _Var], depth: int,
    ) -> tuple[bool, list[str]]:
        required = goal.checked.required
        trail: list[str] = []
        result = self._derive(goal, body, env, trail)
        trail = _dedupe(trail)
        if rules.satisfies(result, required):
            return True, trail + [f"result is {result.describe()}, hence {type_name(required)}"]
        failure = trail + [f"result is {result.describe()}, not known to be {type_name(required)}"]
        if depth >= self.config.max_case_splits:
            return False, failure

        used = _identifiers(body)
        var = next(
            (name for name, v in env.items()
             if name in used and v.facts.kind is Kind.INTEGER and v.facts.parity is None),
            None,
        )
        if var is None:
            return False, failure
        branches: list[str] = []
        for parity in Parity:
            split = dict(env)
            split[var] = replace(env[var], facts=rules.with_parity(env[var].facts, parity))
            if split[var].facts.empty:
                continue
            ok, sub = self._prove(goal, body, split, depth + 1)
            if not ok:
                return False, failure
            branches.append(f"{var} {parity.value}: {sub[-1]}")
        return True, [f"parity split on {var}"] + branches

    # ── Abstract evaluation ─────────────────────────────────────

    def _derive(self, goal: _Goal, expr: Expr, env: dict[str, _Var], trail: list[str]) -> Facts:
        if isinstance(expr, IntegerLit):
            return rules.of_value(int(expr.value))
        if isinstance(expr, DecimalLit):
            return rules.of_value(Fraction(expr.value))
        if isinstance(expr, BooleanLit):
            return rules.make(Kind.BOOLEAN)
        if isinstance(expr, IdentifierExpr):
            if expr.name in env:
                return env[expr.name].facts
            if self.symbols.resolve_function(expr.name) is not None:
                return rules.make(Kind.FUNCTION)
            return self._constructor_facts(expr.name, [], trail)
        if isinstance(expr, ConstructorExpr):
            args = [self._derive(goal, a, env, trail) for a in expr.args]
            return self._constructor_facts(expr.name, args, trail)
        if isinstance(expr, UnaryExpr):
            result, fired = rules.negate(self._derive(goal, expr.operand, env, trail))
            trail.extend(fired)
            return result
        if isinstance(expr, BinaryExpr):
            left = self._derive(goal, expr.left, env, trail)
            right = self._derive(goal, expr.right, env, trail)
            if (expr.op == "*" and left.kind is Kind.INTEGER and right.kind is Kind.INTEGER
                    and rules.consecutive(expr.left, expr.right)):
                result, fired = rules.consecutive_product(left, right)
            else:
                result, fired = rules.apply(expr.op, left, right)
            trail.extend(fired)
            return result
        if isinstance(expr, CallExpr):
            return self._call_facts(goal, expr, env, trail)
        return TOP

    def _constructor_facts(self, name: str, args: list[Facts], trail: list[str]) -> Facts:
        if name == "Zero":
            return rules.of_value(0)
        if name == "Succ" and len(args) == 1:
            result, fired = rules.succ(args[0])
            trail.extend(fired)
            return result
        if name in ("True", "False"):
            return rules.make(Kind.BOOLEAN)
        info = self.symbols.resolve_constructor(name)
        if info is None:
            return TOP
        return rules.make(Kind.ADT, adt=info.type_name)

    def _call_facts(self, goal: _Goal, expr: CallExpr, env: dict[str, _Var], trail: list[str]) -> Facts:
        args = [self._derive(goal, a, env, trail) for a in expr.args]
        if not isinstance(expr.func, IdentifierExpr):
            return TOP
        name = expr.func.name
        if name in env:
            ftype = env[name].type
            if isinstance(ftype, FunctionType):
                return rules.of_type(base_type(ftype.return_type))
            return TOP
        if name == goal.fd.name:
            required = goal.checked.required
            if self._smaller(goal, expr.args, env) and all(
                rules.satisfies(f, t) for f, t in zip(args, goal.hyp_types)
            ):
                trail.append(
                    f"induction hypothesis: {format_expr(expr)} is {type_name(required)}"
                )
                return rules.meet(goal.return_facts, rules.of_type(required))
            return goal.return_facts
        sig = self.symbols.resolve_function(name)
        if sig is not None:
            # Only well-typed functions are known to return their codomain.
            if name in self.functions:
                return rules.of_type(base_type(sig.return_type))
            return TOP
        if self.symbols.resolve_constructor(name) is not None:
            return self._constructor_facts(name, args, trail)
        return TOP

    def _smaller(self, goal: _Goal, args: Sequence[Expr], env: dict[str, _Var]) -> bool:
        """Every argument is no larger than its parameter and one is strictly smaller."""
        if len(args) != len(goal.hyp_types):
            return False
        strict = False
        for i, arg in enumerate(args):
            rel = self._relation(goal, i, arg, env)
            if rel is None:
                return False
            strict = strict or rel
        return strict

    def _relation(self, goal: _Goal, i: int, arg: Expr, env: dict[str, _Var]) -> bool | None:
        """True if *arg* is strictly smaller than parameter i, False if equal, None if unknown."""
        if isinstance(arg, IdentifierExpr) and arg.name in env:
            occ = env[arg.name].occurrence
            if occ[0] != i:
                return None
            return len(occ) > 1
        if (isinstance(arg, BinaryExpr) and arg.op == "-"
                and isinstance(arg.left, IdentifierExpr) and arg.left.name in env
                and isinstance(arg.right, IntegerLit)):
            var = env[arg.left.name]
            c = int(arg.right.value)
            if var.occurrence[0] == i and c >= 1 and var.facts.lo is not None and var.facts.lo >= c:
                return True
            return None
        if isinstance(arg, IntegerLit):
            k = int(arg.value)
            root = goal.roots[i]
            if k >= 0 and root.lo is not None and root.lo > k:
                return True
        return None

    # ── Counterexample search ───────────────────────────────────

    def _candidates_by_leaf(self, goal: _Goal) -> dict[int, list[tuple]]:
        tree = goal.compiled.tree
        pools = [self._candidates(t) for t in goal.hyp_types]
        grouped: dict[int, list[tuple]] = {}
        limit = self.config.witness_search_bound * 8
        for args in islice(_diagonal(pools), limit):
            try:
                leaf = select(tree, args)
            except EvaluationError:
                continue
            grouped.setdefault(id(leaf), []).append(args)
        return grouped

    def _search_case(self, goal: _Goal, candidates: list[tuple]) -> tuple[str, str] | None:
        fd = goal.fd
        required = goal.checked.required
        table = self.symbols.constructor_table
        for args in candidates[: self.config.witness_search_bound]:
            evaluator = Evaluator(self.functions, fuel=self.config.evaluation_fuel)
            try:
                value = evaluator.call(fd.name, args)
            except EvaluationError:
                continue
            if not value_has_type(value, required, table):
                call = f"{fd.name}({', '.join(format_value(a) for a in args)})"
                return (
                    _render_witness(goal.hyp_names, args),
                    f"{call} = {format_value(value)}, which is not {type_name(required)}",
                )
        return None

    def _search_goal(self, checked: CheckedObligation) -> tuple[str, str] | None:
        """Counterexample search for goals the case analysis does not cover."""
        ob = checked.obligation
        names = tuple(h.name for h in ob.hypotheses)
        pools = [self._candidates(t) for t in checked.hypothesis_types]
        table = self.symbols.constructor_table
        for args in islice(_diagonal(pools), self.config.witness_search_bound):
            evaluator = Evaluator(self.functions, fuel=self.config.evaluation_fuel)
            try:
                value = evaluator.eval(ob.goal, dict(zip(names, args)))
            except EvaluationError:
                continue
            if not value_has_type(value, checked.required, table):
                return (
                    _render_witness(names, args),
                    f"{format_expr(ob.goal)} = {format_value(value)}, "
                    f"which is not {type_name(checked.required)}",
                )
        return None

    def _candidates(self, ty: Type) -> list[object]:
        return candidates(ty, self.config.witness_search_bound, self.symbols.constructor_table)


# ── Candidate inputs ────────────────────────────────────────────


def candidates(ty: Type, bound: int, constructors: Mapping | None = None) -> list[object]:
    """Small inhabitants of *ty*, simplest first."""
    name = getattr(ty, "name", None)
    if name == "Natural":
        return list(range(bound))
    if name == "Integer":
        return [_zigzag(i) for i in range(bound)]
    if name == "Even":
        return [2 * _zigzag(i) for i in range(bound)]
    if name == "Odd":
        return [(2 * (i // 2) + 1) * (-1 if i % 2 else 1) for i in range(bound)]
    if name == "Real":
        out: list[object] = []
        i = 0
        while len(out) < bound:
            out.append(_zigzag(i))
            if i:
                out.append(Fraction(2 * abs(_zigzag(i)) - 1, 2) * (1 if _zigzag(i) > 0 else -1))
            i += 1
        return out[:bound]
    if name == "Boolean":
        return [False, True]
    if isinstance(ty, AlgebraicType):
        return _terms(ty.name, bound, constructors or {})
    return []


def _zigzag(i: int) -> int:
    """0, 1, -1, 2, -2, ..."""
    return (i + 1) // 2 if i % 2 else -(i // 2)


def _terms(type_name_: str, bound: int, constructors: Mapping, max_depth: int = 4) -> list[object]:
    seen: list[object] = []
    for depth in range(max_depth + 1):
        for term in _terms_at(type_name_, constructors, depth, width=3):
            if term not in seen:
                seen.append(term)
                if len(seen) >= bound:
                    return seen
    return seen


def _terms_at(tname: str, constructors: Mapping, depth: int, width: int) -> list[object]:
    out: list[object] = []
    for info in constructors.get(tname, ()):
        if not info.fields:
            out.append(ConstructorValue(info.name))
            continue
        if depth == 0:
            continue
        pools = []
        for ft in info.fields:
            if isinstance(ft, AlgebraicType) and ft.name != "Boolean":
                pools.append(_terms_at(ft.name, constructors, depth - 1, width)[:width])
            else:
                pools.append(candidates(ft, width, constructors))
        for combo in islice(product(*pools), width * width):
            out.append(ConstructorValue(info.name, combo))
    return out


def _diagonal(pools: Sequence[Sequence[object]]) -> Iterator[tuple]:
    """All tuples from *pools* ordered by the sum of their indices."""
    if not pools:
        yield ()
        return
    if any(not p for p in pools):
        return
    top = sum(len(p) - 1 for p in pools)
    for total in range(top + 1):
        yield from _with_sum(pools, 0, total, ())


def _with_sum(pools, i: int, remaining: int, prefix: tuple) -> Iterator[tuple]:
    if i == len(pools) - 1:
        if remaining < len(pools[i]):
            yield prefix + (pools[i][remaining],)
        return
    for k in range(min(remaining, len(pools[i]) - 1) + 1):
        yield from _with_sum(pools, i + 1, remaining - k, prefix + (pools[i][k],))


# ── Helpers ─────────────────────────────────────────────────────


def _direct_order(fd: FunctionDef, ob: Obligation) -> tuple[int, ...] | None:
    """For a goal `f(h_a, h_b, ...)` using each hypothesis once, the hypothesis index per parameter."""
    goal = ob.goal
    if not (isinstance(goal, CallExpr) and isinstance(goal.func, IdentifierExpr)
            and goal.func.name == fd.name):
        return None
    names = [h.name for h in ob.hypotheses]
    if len(goal.args) != len(names) or len(set(names)) != len(names):
        return None
    order: list[int] = []
    for arg in goal.args:
        if not isinstance(arg, IdentifierExpr) or arg.name not in names:
            return None
        order.append(names.index(arg.name))
    if len(set(order)) != len(order):
        return None
    return tuple(order)


def _occurrence_facts(cmap: dict[Occurrence, Constraint], occ: Occurrence, known: Facts) -> Facts:
    """Refine *known*, the facts of occurrence *occ*, with the tests on the path."""
    c = cmap.get(occ)
    if c is None:
        return known
    test = c.test
    if isinstance(test, LiteralTest):
        return rules.meet(known, rules.of_value(test.value))
    if isinstance(test, ExcludedLiterals):
        return _exclude(known, test.values)
    if test.name in ("Zero", "Succ"):
        # Count the Succ chain; it ends in Zero, a literal test, or an open occurrence.
        depth = 0
        while c is not None and isinstance(c.test, ConstructorTest) and c.test.name == "Succ":
            depth += 1
            occ = occ + (0,)
            c = cmap.get(occ)
        if c is not None and isinstance(c.test, ConstructorTest):
            inner = rules.of_value(0)
        else:
            inner = _occurrence_facts(cmap, occ, rules.of_type(NATURAL))
        return rules.meet(known, _shift(inner, depth))
    if test.name in ("True", "False"):
        return rules.meet(known, rules.make(Kind.BOOLEAN))
    return rules.meet(known, rules.make(Kind.ADT, adt=getattr(c.type, "name", None)))


def _exclude(facts: Facts, values: frozenset) -> Facts:
    """Step integer endpoints past the literals an earlier clause already took."""
    if facts.empty or facts.kind is not Kind.INTEGER:
        return facts
    for _ in range(len(values) + 1):
        lo = facts.lo + 1 if facts.lo is not None and facts.lo in values else facts.lo
        hi = facts.hi - 1 if facts.hi is not None and facts.hi in values else facts.hi
        if (lo, hi) == (facts.lo, facts.hi):
            break
        facts = rules.make(Kind.INTEGER, facts.parity, lo=lo, hi=hi)
        if facts.empty:
            break
    return facts


def _shift(facts: Facts, n: int) -> Facts:
    if n == 0 or facts.empty:
        return facts
    lo = facts.lo + n if facts.lo is not None else None
    hi = facts.hi + n if facts.hi is not None else None
    return rules.make(Kind.INTEGER, lo=lo, hi=hi)


def _identifiers(expr: Expr) -> set[str]:
    if isinstance(expr, IdentifierExpr):
        return {expr.name}
    if isinstance(expr, (ConstructorExpr, CallExpr)):
        found = set().union(*(_identifiers(a) for a in expr.args)) if expr.args else set()
        if isinstance(expr, CallExpr):
            found |= _identifiers(expr.func)
        return found
    if isinstance(expr, BinaryExpr):
        return _identifiers(expr.left) | _identifiers(expr.right)
    if isinstance(expr, UnaryExpr):
        return _identifiers(expr.operand)
    return set()


def _dedupe(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


def _render_witness(names: Sequence[str], args: Sequence[object]) -> str:
    return ", ".join(f"{n} = {format_value(v)}" for n, v in zip(names, args))

