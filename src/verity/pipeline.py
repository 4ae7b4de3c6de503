"""Per-unit orchestration: register, compile, check, verify.

Each phase runs per function and only needs the previous phase's output
for the same function, plus the read-only SymbolTable built up front.
With ``run.workers > 1`` the per-function work of each phase is spread
over a thread pool; results are gathered in declaration order and the
collector sorts diagnostics by source location, so both modes report the
same thing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

from verity.ast_nodes import FunctionDef, Obligation, Program
from verity.checker import Checker, CheckResult, signature_obligation
from verity.config import VerityConfig
from verity.diagnostics import AnalysisReport, DiagnosticCollector
from verity.errors import Diagnostic
from verity.matcher import CompiledMatch, MatchCompiler
from verity.prover import ProofVerifier, VerificationResult
from verity.reader import read_program
from verity.symbols import SymbolTable
from verity.types import RefinementType

logger = logging.getLogger(__name__)

_T = TypeVar("_T")
_R = TypeVar("_R")


def _map(fn: Callable[[_T], _R], items: Sequence[_T], workers: int) -> list[_R]:
    """Apply *fn* to every item, in parallel when asked; results keep item order."""
    if workers <= 1 or len(items) <= 1:
        return [fn(item) for item in items]
    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(fn, items))


def _obligations_of(fd: FunctionDef, symbols: SymbolTable) -> tuple[Obligation, ...]:
    sig = symbols.resolve_function(fd.name)
    if sig is not None and isinstance(sig.return_type, RefinementType):
        return fd.obligations + (signature_obligation(fd),)
    return fd.obligations


def analyze(program: Program, config: VerityConfig | None = None) -> AnalysisReport:
    """Run every phase over a program. Never raises for program errors."""
    config = config or VerityConfig()
    workers = config.run.workers
    collector = DiagnosticCollector(warnings_as_errors=config.check.warnings_as_errors)

    registrar = Checker()
    symbols = registrar.register(program)
    collector.extend(registrar.diagnostics)

    unique: list[FunctionDef] = []
    duplicates: list[FunctionDef] = []
    seen: set[str] = set()
    for fd in program.functions:
        (duplicates if fd.name in seen else unique).append(fd)
        seen.add(fd.name)
    logger.info("analyzing %d function(s) with %d worker(s)", len(unique), workers)

    def compile_one(fd: FunctionDef) -> CompiledMatch:
        sig = symbols.resolve_function(fd.name)
        return MatchCompiler(symbols).compile(fd, sig.param_types)

    compiled = _map(compile_one, unique, workers)
    for cm in compiled:
        collector.extend(cm.diagnostics)
    logger.debug("pattern compilation done")

    def check_one(pair: tuple[FunctionDef, CompiledMatch]) -> CheckResult | None:
        fd, cm = pair
        if cm.ill_formed:
            return None
        return Checker(symbols).check_function(fd, cm)

    checked = _map(check_one, list(zip(unique, compiled)), workers)
    for cr in checked:
        if cr is not None:
            collector.extend(cr.diagnostics)
    logger.debug("type checking done")

    # Only well-formed, well-typed functions can be evaluated or trusted.
    arena = {
        fd.name: (fd, cm)
        for fd, cm, cr in zip(unique, compiled, checked)
        if cr is not None and cr.well_typed
    }

    def verify_one(
        item: tuple[FunctionDef, CompiledMatch, CheckResult | None],
    ) -> tuple[list[VerificationResult], list[Diagnostic]]:
        fd, cm, cr = item
        verifier = ProofVerifier(symbols, arena, config.verify)
        if cr is None:
            results = verifier.skip(
                fd, _obligations_of(fd, symbols),
                f"'{fd.name}' is ill-formed: its clauses do not compile to an exhaustive match",
            )
        elif not cr.well_typed:
            results = verifier.skip(
                fd, tuple(c.obligation for c in cr.obligations),
                f"'{fd.name}' is ill-typed",
            )
        else:
            results = verifier.verify(fd, cm, cr.obligations)
        return results, verifier.diagnostics

    verified = _map(verify_one, list(zip(unique, compiled, checked)), workers)

    results: list[VerificationResult] = []
    for batch, diags in verified:
        results.extend(batch)
        collector.extend(diags)
    for fd in duplicates:
        verifier = ProofVerifier(symbols, arena, config.verify)
        results.extend(verifier.skip(
            fd, _obligations_of(fd, symbols), f"'{fd.name}' is defined more than once",
        ))
        collector.extend(verifier.diagnostics)
    logger.debug("verification done: %d obligation(s)", len(results))

    return AnalysisReport(tuple(collector.sorted()), tuple(results))


def analyze_raw(
    raw: Any, filename: str = "<input>", config: VerityConfig | None = None,
) -> AnalysisReport:
    """Read a raw syntax tree and analyze it. Raises ParseContractViolation."""
    return analyze(read_program(raw, filename), config)
