"""
askdash CLI

Command-line interface for askdash.

Usage:
    askdash ask "Tell me the ROAS for Toyota" -p "read:ads.*" -p "advertiser:*"
    askdash chat -p "read:*"                   # Interactive session
    askdash catalog show catalog.yaml          # Summarize a catalog snapshot
    askdash serve --port 8000                  # Run the HTTP API
"""

import asyncio
import json
import logging
import sys
import uuid
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from askdash import __version__
from askdash.catalog.store import CatalogLoadError, CatalogStore, load_catalog
from askdash.config import get_settings
from askdash.models.result import ResponseEnvelope
from askdash.pipeline.orchestrator import SessionOrchestrator, TurnOutcome, describe_outcome

console = Console()

EXIT_WORDS = {"exit", "quit", "bye", ":q"}


def configure_cli_logging(verbose: bool) -> None:
    if verbose:
        return
    for logger_name in ("askdash", "httpx", "openai", "anthropic", "asyncio"):
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def _catalog_store(catalog_path: str | None) -> CatalogStore:
    path = catalog_path or get_settings().catalog.path
    if not path:
        raise click.UsageError("No catalog snapshot: pass --catalog or set CATALOG_PATH.")
    try:
        return CatalogStore.from_file(path)
    except CatalogLoadError as e:
        raise click.ClickException(str(e)) from e


def format_envelope(envelope: ResponseEnvelope, max_rows: int = 20) -> None:
    """Display a successful turn."""
    console.print(Panel(envelope.explanation, title="[bold green]Answer[/bold green]"))

    console.print("\n[bold cyan]Generated SQL:[/bold cyan]")
    console.print(Panel(envelope.sql_generated, title="SQL", border_style="cyan"))

    data = envelope.data
    table = Table(show_header=True, header_style="bold cyan")
    for column in data.columns:
        table.add_column(column.name, justify="right" if column.type != "text" else "left")
    for row in data.rows[:max_rows]:
        table.add_row(*["" if value is None else str(value) for value in row])
    console.print(table)

    footer = f"{data.row_count} row(s)"
    if data.truncated:
        footer += " (truncated at row cap)"
    if data.row_count > max_rows:
        footer += f", showing first {max_rows}"
    footer += f" | visualization: {envelope.visualization.kind.value}"
    footer += f" | {envelope.elapsed_ms} ms"
    console.print(f"[dim]{footer}[/dim]")


def format_failure(outcome: TurnOutcome) -> None:
    """Display a failed turn."""
    document = describe_outcome(outcome)
    console.print(
        Panel(
            document.get("error", "Unknown error"),
            title=f"[bold red]Failed: {document.get('stage')} / {document.get('reason')}[/bold red]",
            border_style="red",
        )
    )


def _emit(outcome: TurnOutcome, as_json: bool) -> None:
    if as_json:
        if outcome.envelope is not None:
            click.echo(outcome.envelope.model_dump_json(indent=2))
        else:
            click.echo(json.dumps(describe_outcome(outcome), indent=2))
        return
    if outcome.envelope is not None:
        format_envelope(outcome.envelope)
    else:
        format_failure(outcome)


@click.group()
@click.version_option(version=__version__, prog_name="askdash")
@click.option("--verbose", is_flag=True, help="Show pipeline logs.")
def cli(verbose: bool):
    """askdash - ask questions of your analytics databases."""
    configure_cli_logging(verbose)


@cli.command()
@click.argument("question")
@click.option(
    "--permission",
    "-p",
    "permissions",
    multiple=True,
    help="Granted permission (repeatable), e.g. 'read:ads.*' or 'advertiser:42'.",
)
@click.option("--session", "session_id", default=None, help="Session identifier.")
@click.option("--catalog", "catalog_path", default=None, help="Catalog snapshot (YAML).")
@click.option("--json", "as_json", is_flag=True, help="Print the raw response document.")
def ask(
    question: str,
    permissions: tuple[str, ...],
    session_id: str | None,
    catalog_path: str | None,
    as_json: bool,
):
    """Ask a single question and exit."""
    store = _catalog_store(catalog_path)

    async def run_turn() -> TurnOutcome:
        orchestrator = SessionOrchestrator(store)
        try:
            with console.status("[cyan]Processing question...[/cyan]", spinner="dots"):
                return await orchestrator.handle(
                    question,
                    session_id=session_id or f"cli-{uuid.uuid4().hex[:8]}",
                    permissions=set(permissions),
                )
        finally:
            await orchestrator.close()

    outcome = asyncio.run(run_turn())
    _emit(outcome, as_json)
    if not outcome.succeeded:
        sys.exit(1)


@cli.command()
@click.option(
    "--permission",
    "-p",
    "permissions",
    multiple=True,
    help="Granted permission (repeatable).",
)
@click.option("--catalog", "catalog_path", default=None, help="Catalog snapshot (YAML).")
def chat(permissions: tuple[str, ...], catalog_path: str | None):
    """Interactive session; follow-up questions use prior turns as context."""
    store = _catalog_store(catalog_path)
    session_id = f"cli-{uuid.uuid4().hex[:8]}"

    async def run_session() -> None:
        orchestrator = SessionOrchestrator(store)
        try:
            while True:
                question = console.input("[bold cyan]You:[/bold cyan] ").strip()
                if not question:
                    continue
                if question.lower() in EXIT_WORDS:
                    console.print("[yellow]Goodbye![/yellow]")
                    break
                with console.status("[cyan]Processing question...[/cyan]", spinner="dots"):
                    outcome = await orchestrator.handle(
                        question, session_id=session_id, permissions=set(permissions)
                    )
                _emit(outcome, as_json=False)
        except EOFError:
            pass
        finally:
            orchestrator.end_session(session_id)
            await orchestrator.close()

    asyncio.run(run_session())


@cli.group(name="catalog")
def catalog_group():
    """Inspect schema catalog snapshots."""


@catalog_group.command(name="show")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def catalog_show(path: Path):
    """Summarize the databases, tables and glossary of a snapshot."""
    try:
        catalog = load_catalog(path)
    except CatalogLoadError as e:
        raise click.ClickException(str(e)) from e

    if not catalog.databases:
        console.print("[yellow]Catalog contains no databases.[/yellow]")
        return

    if catalog.version:
        console.print(f"[dim]Snapshot version: {catalog.version}[/dim]")

    for name, schema in sorted(catalog.databases.items()):
        table = Table(title=f"[bold]{name}[/bold]", show_header=True, header_style="bold cyan")
        table.add_column("Table")
        table.add_column("Columns")
        table.add_column("Row security")
        for table_name, columns in sorted(schema.tables.items()):
            rules = schema.security_rules_for(table_name)
            table.add_row(
                table_name,
                ", ".join(columns),
                ", ".join(f"{rule.column} ({rule.scope})" for rule in rules) or "-",
            )
        console.print(table)

        if schema.glossary:
            console.print("[bold cyan]Glossary:[/bold cyan]")
            for term, definition in sorted(schema.glossary.items()):
                console.print(f"  {term}: {definition}")


@cli.command()
@click.option("--host", default=None, help="Bind host (defaults to API_HOST).")
@click.option("--port", default=None, type=int, help="Bind port (defaults to API_PORT).")
@click.option("--reload", is_flag=True, help="Reload on code changes (development).")
def serve(host: str | None, port: int | None, reload: bool):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "askdash.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
        log_level=settings.logging.level.lower(),
    )


if __name__ == "__main__":
    cli()
