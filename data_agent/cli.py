"""
Data Agent CLI

Command-line interface for asking data questions.

Usage:
    data-agent ask "top 5 customers by spend" --org acme
    data-agent chat --org acme                 # Interactive session with follow-ups
    data-agent schema --org acme               # Show the tenant's schema
"""

import asyncio
import json
import logging
import sys
import uuid

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from data_agent import __version__
from data_agent.config import get_settings
from data_agent.connectors.postgres import PostgresConnector
from data_agent.models.result import QueryResult
from data_agent.pipeline.orchestrator import DataAgentPipeline, create_pipeline
from data_agent.schema.introspector import SchemaIntrospector

console = Console()

MAX_DISPLAY_ROWS = 20
EXIT_WORDS = ("exit", "quit", "bye", ":q")


def configure_cli_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.CRITICAL
    logging.basicConfig(level=level, force=True)
    for logger_name in ("httpx", "openai", "anthropic", "chromadb", "asyncio"):
        logging.getLogger(logger_name).setLevel(max(level, logging.WARNING))


def format_answer(result: QueryResult, show_sql: bool = True) -> None:
    """Display a pipeline result."""
    answer = result.narrative_summary or result.formatted_message or "No answer generated"
    style = "green" if result.success else "red"
    console.print(Panel(Markdown(answer), title=f"[bold {style}]Answer[/bold {style}]"))

    if result.needs_clarification:
        return

    if show_sql and result.sql:
        console.print("\n[bold cyan]Generated SQL:[/bold cyan]")
        console.print(Panel(result.sql, title="SQL", border_style="cyan", highlight=True))

    if result.data:
        console.print("\n[bold cyan]Results:[/bold cyan]")
        console.print(build_results_table(result))

    if result.error and not result.success:
        console.print(f"[dim]Error: {result.error}[/dim]")


def build_results_table(result: QueryResult) -> Table:
    table = Table(show_header=True, header_style="bold cyan")
    columns = result.columns
    for column in columns:
        table.add_column(column)
    for row in result.data[:MAX_DISPLAY_ROWS]:
        table.add_row(*[_cell(row.get(column)) for column in columns])
    if result.row_count > MAX_DISPLAY_ROWS:
        table.caption = f"Showing {MAX_DISPLAY_ROWS} of {result.row_count} rows"
    return table


def build_timings_table(result: QueryResult) -> Table:
    metrics = Table(show_header=False, box=None)
    timings = result.stage_timings
    if timings is None:
        return metrics
    for stage, value in timings.model_dump().items():
        if value is not None:
            metrics.add_row(f"{stage.removesuffix('_ms')}:", f"{value:.0f}ms")
    return metrics


def _cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def _emit(result: QueryResult, show_sql: bool, show_timings: bool, as_json: bool) -> None:
    if as_json:
        click.echo(result.model_dump_json(indent=2))
        return
    console.print()
    format_answer(result, show_sql=show_sql)
    console.print()
    if show_timings:
        console.print(build_timings_table(result))
        console.print()


def _should_exit_chat(text: str) -> bool:
    return text.strip().lower() in EXIT_WORDS


# ============================================================================
# Commands
# ============================================================================


@click.group()
@click.version_option(version=__version__, prog_name="DataAgent")
@click.option("--verbose", "-v", is_flag=True, help="Show pipeline logs")
def cli(verbose: bool):
    """DataAgent - Ask questions about your business data in plain English."""
    configure_cli_logging(verbose)


@cli.command()
@click.argument("question")
@click.option("--org", "org_id", required=True, help="Tenant (org) id to scope the query to")
@click.option("--session", "session_id", default=None, help="Conversation id (default: random)")
@click.option("--database-url", default=None, help="Override DATABASE_URL")
@click.option("--sql/--no-sql", "show_sql", default=True, help="Show the generated SQL")
@click.option("--timings", "show_timings", is_flag=True, help="Show per-stage latency")
@click.option("--json", "as_json", is_flag=True, help="Print the raw result as JSON")
def ask(
    question: str,
    org_id: str,
    session_id: str | None,
    database_url: str | None,
    show_sql: bool,
    show_timings: bool,
    as_json: bool,
):
    """Ask a single question and exit."""

    conversation_id = session_id or str(uuid.uuid4())

    async def run_query() -> QueryResult:
        pipeline = await create_pipeline(database_url)
        try:
            if as_json:
                return await pipeline.analyze(question, conversation_id, org_id)
            with console.status("[cyan]Analyzing...[/cyan]", spinner="dots"):
                return await pipeline.analyze(question, conversation_id, org_id)
        finally:
            await pipeline.close()

    try:
        result = asyncio.run(run_query())
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    _emit(result, show_sql, show_timings, as_json)
    if not result.success:
        sys.exit(1)


@cli.command()
@click.option("--org", "org_id", required=True, help="Tenant (org) id to scope queries to")
@click.option("--database-url", default=None, help="Override DATABASE_URL")
@click.option("--sql/--no-sql", "show_sql", default=True, help="Show the generated SQL")
def chat(org_id: str, database_url: str | None, show_sql: bool):
    """Interactive session: follow-up questions keep their context."""

    async def run_chat() -> None:
        pipeline: DataAgentPipeline = await create_pipeline(database_url)
        session_id = str(uuid.uuid4())
        console.print(
            Panel(
                f"Session [bold]{session_id}[/bold] for org [bold]{org_id}[/bold]\n"
                "Type 'exit' to quit.",
                title="[bold cyan]DataAgent[/bold cyan]",
            )
        )
        try:
            while True:
                try:
                    question = console.input("[bold cyan]You:[/bold cyan] ").strip()
                except (EOFError, KeyboardInterrupt):
                    console.print("\n[yellow]Goodbye![/yellow]")
                    break
                if not question:
                    continue
                if _should_exit_chat(question):
                    console.print("[yellow]Goodbye![/yellow]")
                    break
                with console.status("[cyan]Analyzing...[/cyan]", spinner="dots"):
                    result = await pipeline.analyze(question, session_id, org_id)
                _emit(result, show_sql, show_timings=False, as_json=False)
        finally:
            await pipeline.close()

    try:
        asyncio.run(run_chat())
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.option("--org", "org_id", required=True, help="Tenant (org) id used for JSONB sampling")
@click.option("--database-url", default=None, help="Override DATABASE_URL")
def schema(org_id: str, database_url: str | None):
    """Show the tables, domains and JSONB keys the agent sees."""

    async def run_schema():
        url = database_url or get_settings().database.url
        if not url:
            raise click.UsageError("DATABASE_URL must be set or --database-url provided")
        connector = PostgresConnector.from_url(str(url))
        await connector.connect()
        try:
            return await SchemaIntrospector(connector).get_schema_map(org_id)
        finally:
            await connector.close()

    try:
        schema_map = asyncio.run(run_schema())
    except click.UsageError:
        raise
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    table = Table(title=f"Schema for {org_id}", show_header=True, header_style="bold cyan")
    table.add_column("Table")
    table.add_column("Domain")
    table.add_column("Columns")
    for name in sorted(schema_map.tables):
        table_schema = schema_map.tables[name]
        columns = ", ".join(
            f"{c.name} ({c.type}, keys: {', '.join(c.jsonb_keys)})" if c.jsonb_keys else c.name
            for c in table_schema.columns
        )
        table.add_row(name, table_schema.domain, columns)
    console.print(table)


# ============================================================================
# Entry Point
# ============================================================================


def main():
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
