"""Build verity AST nodes from the front-end's raw syntax tree.

The external tokenizer/parser hands over nested mappings and lists (for
example, decoded JSON). Every node carries a ``"kind"`` discriminator and
an optional ``"span"`` given as ``[line, col]`` or
``{"line": .., "col": .., "end_line": .., "end_col": ..}``::

    {"declarations": [
        {"kind": "type", "name": "Tree",
         "constructors": [{"name": "Leaf", "fields": []},
                          {"name": "Node", "fields": ["Tree", "Tree"]}]},
        {"kind": "function", "name": "f",
         "domain": ["Natural"], "codomain": "Natural",
         "clauses": [{"patterns": [{"kind": "literal", "value": "0"}],
                      "body": {"kind": "int", "value": "1"}}],
         "require": [{"hypotheses": [{"name": "n", "type": "Natural"}],
                      "goal": {"kind": "call", "func": "f",
                               "args": [{"kind": "var", "name": "n"}]},
                      "type": "Natural"}]}]}

Anything that does not fit this shape raises ParseContractViolation,
which aborts the whole unit.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any, NoReturn

from verity.ast_nodes import (
    ARITHMETIC_OPS,
    COMPARISON_OPS,
    UNARY_OPS,
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
    Declaration,
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
from verity.errors import ParseContractViolation
from verity.source import Span, point

_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_']*$")
_INT_RE = re.compile(r"^-?[0-9]+$")
_DECIMAL_RE = re.compile(r"^-?[0-9]+(\.[0-9]+)?$")


class Reader:
    """Convert one raw syntax tree into a Program."""

    def __init__(self, filename: str = "<input>") -> None:
        self.filename = filename

    # ── Public API ──────────────────────────────────────────────

    def read(self, raw: Any) -> Program:
        node = self._mapping(raw, "program", point(self.filename, 1, 1))
        span = self._span(node)
        decls = self._sequence(node, "declarations", span)
        declarations: list[Declaration] = []
        for item in decls:
            kind = self._kind(item, span)
            if kind == "function":
                declarations.append(self._function(item))
            elif kind == "type":
                declarations.append(self._type_def(item))
            else:
                self._fail(f"unknown declaration kind '{kind}'", self._span(item))
        return Program(tuple(declarations), span)

    # ── Helpers ─────────────────────────────────────────────────

    def _fail(self, message: str, span: Span) -> NoReturn:
        raise ParseContractViolation(message, span)

    def _span(self, node: Any, fallback: Span | None = None) -> Span:
        default = fallback or point(self.filename)
        if not isinstance(node, Mapping) or "span" not in node:
            return default
        raw = node["span"]
        if isinstance(raw, Sequence) and not isinstance(raw, str) and len(raw) in (2, 4):
            if all(isinstance(v, int) and not isinstance(v, bool) for v in raw):
                if len(raw) == 2:
                    return Span(self.filename, raw[0], raw[1], raw[0], raw[1])
                return Span(self.filename, raw[0], raw[1], raw[2], raw[3])
        if isinstance(raw, Mapping):
            line, col = raw.get("line"), raw.get("col")
            if isinstance(line, int) and isinstance(col, int):
                end_line = raw.get("end_line", line)
                end_col = raw.get("end_col", col)
                if isinstance(end_line, int) and isinstance(end_col, int):
                    return Span(self.filename, line, col, end_line, end_col)
        self._fail(f"malformed span {raw!r}", default)

    def _mapping(self, raw: Any, what: str, span: Span) -> Mapping[str, Any]:
        if not isinstance(raw, Mapping):
            self._fail(f"expected {what} node, got {type(raw).__name__}", span)
        return raw

    def _kind(self, raw: Any, span: Span) -> str:
        node = self._mapping(raw, "syntax", span)
        kind = node.get("kind")
        if not isinstance(kind, str):
            self._fail("node is missing its 'kind'", self._span(node, span))
        return kind

    def _sequence(self, node: Mapping[str, Any], key: str, span: Span) -> Sequence[Any]:
        value = node.get(key, ())
        if isinstance(value, str) or not isinstance(value, Sequence):
            self._fail(f"'{key}' must be a list", span)
        return value

    def _name(self, node: Mapping[str, Any], key: str, span: Span) -> str:
        value = node.get(key)
        if not isinstance(value, str) or not _NAME_RE.match(value):
            self._fail(f"'{key}' must be an identifier, got {value!r}", span)
        return value

    # ── Declarations ────────────────────────────────────────────

    def _function(self, node: Mapping[str, Any]) -> FunctionDef:
        span = self._span(node)
        name = self._name(node, "name", span)
        domain = tuple(self._type_expr(t, span) for t in self._sequence(node, "domain", span))
        if "codomain" not in node:
            self._fail(f"function '{name}' has no codomain", span)
        codomain = self._type_expr(node["codomain"], span)
        clauses = tuple(
            self._clause(c, span) for c in self._sequence(node, "clauses", span)
        )
        obligations = tuple(
            self._obligation(o, i, span)
            for i, o in enumerate(self._sequence(node, "require", span), start=1)
        )
        return FunctionDef(name, domain, codomain, clauses, obligations, span)

    def _type_def(self, node: Mapping[str, Any]) -> AlgebraicTypeDef:
        span = self._span(node)
        name = self._name(node, "name", span)
        ctors: list[ConstructorDef] = []
        for raw in self._sequence(node, "constructors", span):
            c = self._mapping(raw, "constructor", span)
            cspan = self._span(c, span)
            cname = self._name(c, "name", cspan)
            fields = tuple(self._type_expr(t, cspan) for t in self._sequence(c, "fields", cspan))
            ctors.append(ConstructorDef(cname, fields, cspan))
        if not ctors:
            self._fail(f"type '{name}' declares no constructors", span)
        return AlgebraicTypeDef(name, tuple(ctors), span)

    def _clause(self, raw: Any, parent: Span) -> Clause:
        node = self._mapping(raw, "clause", parent)
        span = self._span(node, parent)
        patterns = tuple(self._pattern(p, span) for p in self._sequence(node, "patterns", span))
        if "body" not in node:
            self._fail("clause has no body", span)
        return Clause(patterns, self._expr(node["body"], span), span)

    def _obligation(self, raw: Any, index: int, parent: Span) -> Obligation:
        node = self._mapping(raw, "require", parent)
        span = self._span(node, parent)
        name = node.get("name", f"require#{index}")
        if not isinstance(name, str):
            self._fail("obligation name must be a string", span)
        hyps: list[Hypothesis] = []
        for h in self._sequence(node, "hypotheses", span):
            hnode = self._mapping(h, "hypothesis", span)
            hspan = self._span(hnode, span)
            if "type" not in hnode:
                self._fail("hypothesis has no type", hspan)
            hyps.append(Hypothesis(
                self._name(hnode, "name", hspan), self._type_expr(hnode["type"], hspan), hspan,
            ))
        for key in ("goal", "type"):
            if key not in node:
                self._fail(f"obligation '{name}' has no '{key}'", span)
        return Obligation(
            name=name,
            hypotheses=tuple(hyps),
            goal=self._expr(node["goal"], span),
            goal_type=self._type_expr(node["type"], span),
            span=span,
        )

    # ── Types ───────────────────────────────────────────────────

    def _type_expr(self, raw: Any, parent: Span) -> TypeExpr:
        if isinstance(raw, str):
            if not _NAME_RE.match(raw):
                self._fail(f"invalid type name {raw!r}", parent)
            return SimpleType(raw, parent)
        node = self._mapping(raw, "type", parent)
        span = self._span(node, parent)
        kind = self._kind(node, span)
        if kind == "named":
            return SimpleType(self._name(node, "name", span), span)
        if kind == "arrow":
            params = tuple(self._type_expr(p, span) for p in self._sequence(node, "params", span))
            if "result" not in node:
                self._fail("arrow type has no result", span)
            return ArrowType(params, self._type_expr(node["result"], span), span)
        self._fail(f"unknown type kind '{kind}'", span)

    # ── Patterns ────────────────────────────────────────────────

    def _pattern(self, raw: Any, parent: Span) -> Pattern:
        node = self._mapping(raw, "pattern", parent)
        span = self._span(node, parent)
        kind = self._kind(node, span)
        if kind == "literal":
            return LiteralPattern(self._literal_text(node, span), span)
        if kind == "var":
            return BindingPattern(self._name(node, "name", span), span)
        if kind == "wildcard":
            return WildcardPattern(span)
        if kind == "constructor":
            args = tuple(self._pattern(p, span) for p in self._sequence(node, "args", span))
            return ConstructorPattern(self._name(node, "name", span), args, span)
        self._fail(f"unknown pattern kind '{kind}'", span)

    def _literal_text(self, node: Mapping[str, Any], span: Span) -> str:
        value = node.get("value")
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, int):
            return str(value)
        if isinstance(value, str) and (value in ("true", "false") or _DECIMAL_RE.match(value)):
            return value
        self._fail(f"invalid literal {value!r}", span)

    # ── Expressions ─────────────────────────────────────────────

    def _expr(self, raw: Any, parent: Span) -> Expr:
        node = self._mapping(raw, "expression", parent)
        span = self._span(node, parent)
        kind = self._kind(node, span)
        if kind == "int":
            text = self._literal_text(node, span)
            if not _INT_RE.match(text):
                self._fail(f"invalid integer literal {text!r}", span)
            return IntegerLit(text, span)
        if kind == "real":
            text = self._literal_text(node, span)
            if not _DECIMAL_RE.match(text):
                self._fail(f"invalid decimal literal {text!r}", span)
            return DecimalLit(text, span)
        if kind == "bool":
            value = node.get("value")
            if not isinstance(value, bool):
                self._fail(f"invalid boolean literal {value!r}", span)
            return BooleanLit(value, span)
        if kind == "var":
            return IdentifierExpr(self._name(node, "name", span), span)
        if kind == "constructor":
            args = tuple(self._expr(a, span) for a in self._sequence(node, "args", span))
            return ConstructorExpr(self._name(node, "name", span), args, span)
        if kind == "call":
            func_raw = node.get("func")
            if isinstance(func_raw, str):
                if not _NAME_RE.match(func_raw):
                    self._fail(f"invalid function name {func_raw!r}", span)
                func: Expr = IdentifierExpr(func_raw, span)
            else:
                func = self._expr(func_raw, span)
            args = tuple(self._expr(a, span) for a in self._sequence(node, "args", span))
            return CallExpr(func, args, span)
        if kind == "binary":
            op = node.get("op")
            if op not in ARITHMETIC_OPS and op not in COMPARISON_OPS:
                self._fail(f"unknown binary operator {op!r}", span)
            for key in ("left", "right"):
                if key not in node:
                    self._fail(f"binary expression has no '{key}'", span)
            return BinaryExpr(
                self._expr(node["left"], span), op, self._expr(node["right"], span), span,
            )
        if kind == "unary":
            op = node.get("op")
            if op not in UNARY_OPS:
                self._fail(f"unknown unary operator {op!r}", span)
            if "operand" not in node:
                self._fail("unary expression has no operand", span)
            return UnaryExpr(op, self._expr(node["operand"], span), span)
        self._fail(f"unknown expression kind '{kind}'", span)


def read_program(raw: Any, filename: str = "<input>") -> Program:
    """Build a Program from a raw syntax tree. Raises ParseContractViolation."""
    return Reader(filename).read(raw)
