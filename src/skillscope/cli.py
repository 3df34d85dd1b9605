"""Command-line interface: ``skillscope resolve`` and ``skillscope list``."""
from __future__ import annotations

import asyncio
import json
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING

import typer
from rich.console import Console
from rich.table import Table

from skillscope._version import __version__
from skillscope.core.config import ResolverConfig
from skillscope.core.errors import ConfigError, InternalError
from skillscope.core.logging import setup_logging
from skillscope.resolver import ContextResolver, parse_duration
from skillscope.router import NoConfidentMatch
from skillscope.snapshot import SnapshotManager

if TYPE_CHECKING:
    from collections.abc import Iterable

    from skillscope.core.errors import SkillscopeError

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="skillscope",
    help="Resolve agent and skill context for a task within a token budget",
    no_args_is_help=True,
)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_NO_CONFIDENT_MATCH = 2


def _load_config(corpus: Path | None) -> ResolverConfig:
    config = ResolverConfig.load()
    if corpus is not None:
        config = replace(config, corpus_root=str(corpus))
    return config


def _print_warnings(warnings: Iterable[SkillscopeError]) -> None:
    for warning in warnings:
        where = f" [dim]({warning.source})[/dim]" if warning.source else ""
        err_console.print(
            f"[yellow]warning[/yellow] {warning.code}: {warning.message}{where}",
            highlight=False,
        )


def _fail(exc: SkillscopeError) -> typer.Exit:
    err_console.print(f"[red]Error:[/red] {exc.message}", highlight=False)
    return typer.Exit(EXIT_ERROR)


@app.command("resolve")
def resolve_command(
    query: str = typer.Option(..., "--query", "-q", help="Task description to resolve"),
    budget: int | None = typer.Option(
        None, "--budget", "-b", min=0, help="Token budget (default from config)"
    ),
    agent: str | None = typer.Option(
        None, "--agent", "-a", help="Pin this manifest id as the top match"
    ),
    deadline: str | None = typer.Option(
        None, "--deadline", "-d", help="Query deadline, e.g. 250ms, 2s, 1.5m"
    ),
    reference: list[str] | None = typer.Option(
        None,
        "--reference",
        "-r",
        help="Reference to load if it fits: references/x.md or skill-id:references/x.md",
    ),
    corpus: Path | None = typer.Option(
        None, "--corpus", "-c", help="Corpus root (overrides CORPUS_ROOT)"
    ),
) -> None:
    """Print the assembled context for a task as a JSON array of entries."""
    try:
        seconds = parse_duration(deadline) if deadline is not None else None
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--deadline") from exc

    try:
        config = _load_config(corpus)
        manager = SnapshotManager(config=config)
        try:
            asyncio.run(manager.rescan())
            result = ContextResolver(manager, config).resolve(
                query,
                budget_tokens=budget,
                explicit_agent=agent,
                deadline=seconds,
                requested_references=reference or (),
            )
        finally:
            manager.close()
    except (ConfigError, InternalError) as exc:
        raise _fail(exc) from exc

    if isinstance(result, NoConfidentMatch):
        typer.echo(json.dumps(result.to_dict(), indent=2))
        err_console.print(
            f"[yellow]No confident match[/yellow] ({result.reason}); "
            "refine the query or pass --agent.",
            highlight=False,
        )
        raise typer.Exit(EXIT_NO_CONFIDENT_MATCH)

    _print_warnings(result.warnings)
    typer.echo(json.dumps(result.entries_payload(), indent=2, ensure_ascii=False))


@app.command("list")
def list_command(
    corpus: Path | None = typer.Option(
        None, "--corpus", "-c", help="Corpus root (overrides CORPUS_ROOT)"
    ),
) -> None:
    """List every manifest in the corpus."""
    try:
        config = _load_config(corpus)
        manager = SnapshotManager(config=config)
        try:
            snapshot = asyncio.run(manager.rescan())
        finally:
            manager.close()
    except (ConfigError, InternalError) as exc:
        raise _fail(exc) from exc

    if not len(snapshot.corpus):
        console.print(
            f"[yellow]No manifests found[/yellow] under {manager.root}. "
            "Expected agents/*.md or skills/<name>/SKILL.md."
        )
        raise typer.Exit(EXIT_OK)

    table = Table(
        title="Manifests",
        show_header=True,
        header_style="bold cyan",
    )
    table.add_column("Id", style="bold")
    table.add_column("Kind", justify="center")
    table.add_column("Name")
    table.add_column("Triggers", justify="right")
    table.add_column("References", justify="right")
    table.add_column("Path", style="dim")

    for manifest in snapshot.corpus:
        table.add_row(
            manifest.id,
            manifest.kind.value,
            manifest.name,
            str(len(manifest.trigger_phrases)),
            str(len(snapshot.references.references_for(manifest.id))),
            manifest.rel_path,
        )

    console.print(table)
    warnings = snapshot.warnings
    console.print(
        f"\n[dim]{len(snapshot.corpus)} manifest(s), "
        f"{len(warnings)} diagnostic(s).[/dim]"
    )
    _print_warnings(warnings)


@app.command("version")
def version_command() -> None:
    """Print the installed version."""
    typer.echo(__version__)


def main() -> None:
    """Entry-point for the ``skillscope`` console script."""
    try:
        config = ResolverConfig.load()
    except ConfigError:
        # reported by the command itself
        config = ResolverConfig()
    setup_logging(config.log_level, json_output=config.log_json)
    app()


if __name__ == "__main__":
    main()
