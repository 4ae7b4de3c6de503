"""verity CLI."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import click

from verity import __version__
from verity.ast_nodes import format_expr, format_type_expr
from verity.config import VerityConfig, find_config, load_config
from verity.errors import CompileError, DiagnosticRenderer, Severity
from verity.pipeline import analyze
from verity.prover import Verdict
from verity.reader import read_program


def _load_tree(file: str) -> object:
    """Decode the raw syntax tree handed over by the front-end."""
    try:
        return json.loads(Path(file).read_text())
    except json.JSONDecodeError as e:
        click.echo(f"error: {file} is not valid JSON: {e}", err=True)
        raise SystemExit(1)


def _resolve_config(file: str, config_path: str | None) -> VerityConfig:
    if config_path is not None:
        return load_config(Path(config_path))
    try:
        return load_config(find_config(Path(file)))
    except FileNotFoundError:
        return VerityConfig()


_VERDICT_COLORS = {
    Verdict.PROVED: "green",
    Verdict.REFUTED: "red",
    Verdict.UNKNOWN: "yellow",
}


@click.group()
@click.version_option(__version__, prog_name="verity")
@click.option("-v", "--verbose", count=True, help="Log phase progress (-vv for debug).")
def main(verbose: int) -> None:
    """Type checker and property verifier for verity programs."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG if verbose > 1 else logging.INFO,
            format="%(levelname)s %(name)s: %(message)s",
        )


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False),
              default=None, help="Use this verity.toml instead of searching for one.")
@click.option("--workers", type=click.IntRange(min=1), default=None,
              help="Analyze functions on this many threads.")
@click.option("--no-color", is_flag=True, help="Render diagnostics without ANSI colors.")
def check(file: str, config_path: str | None, workers: int | None, no_color: bool) -> None:
    """Type-check FILE and verify its obligations."""
    try:
        config = _resolve_config(file, config_path)
    except (ValueError, OSError) as e:
        click.echo(f"error: bad configuration: {e}", err=True)
        raise SystemExit(1)
    if workers is not None:
        config.run.workers = workers

    renderer = DiagnosticRenderer(color=not no_color)
    raw = _load_tree(file)
    try:
        program = read_program(raw, str(file))
    except CompileError as e:
        for diag in e.diagnostics:
            click.echo(renderer.render(diag), err=True)
        raise SystemExit(1)

    report = analyze(program, config)
    for diag in report.diagnostics:
        click.echo(renderer.render(diag), err=True)

    for result in report.results:
        ob = result.obligation
        label = click.style(f"{result.verdict.value:<8}", fg=_VERDICT_COLORS[result.verdict],
                            bold=True) if not no_color else f"{result.verdict.value:<8}"
        line = (f"{label} {result.function}.{ob.name}  "
                f"{format_expr(ob.goal)}: {format_type_expr(ob.goal_type)}")
        if result.witness is not None:
            line += f"  [witness: {result.witness}]"
        click.echo(line)

    errors = sum(1 for d in report.diagnostics if d.severity == Severity.ERROR)
    counts = report.verdict_counts()
    click.echo(
        f"checked {file}: {errors} error(s), "
        f"{counts[Verdict.PROVED]} proved, {counts[Verdict.REFUTED]} refuted, "
        f"{counts[Verdict.UNKNOWN]} unknown"
    )
    if not report.ok:
        raise SystemExit(1)


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
def view(file: str) -> None:
    """View the AST of a raw syntax tree file."""
    raw = _load_tree(file)
    try:
        program = read_program(raw, str(file))
    except CompileError as e:
        renderer = DiagnosticRenderer(color=True)
        for diag in e.diagnostics:
            click.echo(renderer.render(diag), err=True)
        raise SystemExit(1)

    _dump_ast(program, 0)


def _dump_ast(node: object, depth: int) -> None:
    """Print a readable AST dump."""
    indent = "  " * depth
    name = type(node).__name__

    if hasattr(node, "__dataclass_fields__"):
        fields = node.__dataclass_fields__  # type: ignore[union-attr]
        click.echo(f"{indent}{name}")
        for field_name in fields:
            if field_name == "span":
                continue
            value = getattr(node, field_name)
            if isinstance(value, tuple):
                if value:
                    click.echo(f"{indent}  {field_name}:")
                    for item in value:
                        _dump_ast(item, depth + 2)
                else:
                    click.echo(f"{indent}  {field_name}: []")
            elif hasattr(value, "__dataclass_fields__"):
                click.echo(f"{indent}  {field_name}:")
                _dump_ast(value, depth + 2)
            elif value is not None:
                click.echo(f"{indent}  {field_name}: {value!r}")
    else:
        click.echo(f"{indent}{name}: {node!r}")
