"""Command-line interface for ClientLens.

Provides commands for configuration validation, importing communications,
running the insight pipeline, searching insights, and inspecting LLM requests.

Usage:
    python -m clientlens validate-config
    python -m clientlens import export.json --owner me@example.com
    python -m clientlens run --owner me@example.com --limit 50
    python -m clientlens insights --owner me@example.com --search budget --category Risk
    python -m clientlens llm-log --failed
    python -m clientlens feedback 42 positive --owner me@example.com
"""

from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click
from dotenv import find_dotenv, load_dotenv
from rich.console import Console
from rich.table import Table

from clientlens.analysis.validation import INSIGHT_CATEGORIES
from clientlens.config import load_config, validate_config_file
from clientlens.core.logging import configure_logging

if TYPE_CHECKING:
    from clientlens.config_schema import AppConfig
    from clientlens.db.store import Communication, DatabaseStore
    from clientlens.engine.pipeline import PipelineRunResult

console = Console()


@dataclass(frozen=True, slots=True)
class CLIDeps:
    """Shared dependencies initialized by _init_cli_deps()."""

    config: AppConfig
    store: DatabaseStore


async def _init_cli_deps() -> CLIDeps:
    """Load config and open the database.

    Prints actionable error messages and calls sys.exit(1) on failure.
    """
    from clientlens.config import get_config
    from clientlens.core.errors import ConfigLoadError, ConfigValidationError, DatabaseError
    from clientlens.db.store import Communication, DatabaseStore

    try:
        config = get_config()
    except (ConfigLoadError, ConfigValidationError) as e:
        console.print(
            f"[red]Config error:[/red] {e}\n\n"
            "Copy config/config.yaml.example to config/config.yaml, "
            "or point CLIENTLENS_CONFIG_PATH at your config file."
        )
        sys.exit(1)

    store = DatabaseStore(config.database.path)
    try:
        await store.initialize()
    except DatabaseError as e:
        console.print(f"[red]Database error:[/red] {e}")
        sys.exit(1)

    return CLIDeps(config=config, store=store)


def _run_async(coro) -> None:
    """Run a command coroutine with the shared interrupt/error handling."""
    try:
        asyncio.run(coro)
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)
    except SystemExit:
        raise
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}")
        sys.exit(1)


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
def cli(debug: bool) -> None:
    """ClientLens - client relationship insights from your email."""
    # .env from the working directory; variables already set are kept
    load_dotenv(find_dotenv(usecwd=True))
    log_level = "DEBUG" if debug else "WARNING"
    configure_logging(log_level=log_level, json_output=False)


@cli.command("validate-config")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: config/config.yaml)",
)
def validate_config(config_path: Path | None) -> None:
    """Validate the configuration file.

    Checks that config.yaml exists and passes schema validation, then
    checks the configured database for missing tables. Reports specific
    errors for invalid fields.
    """
    console.print(f"Validating config: [cyan]{config_path or 'config/config.yaml'}[/cyan]")

    is_valid, message = validate_config_file(config_path)

    if not is_valid:
        console.print(f"\n[red]✗[/red] {message}")
        sys.exit(1)

    console.print(f"\n[green]✓[/green] {message}")
    _report_database(Path(load_config(config_path).database.path))
    sys.exit(0)


def _report_database(db_path: Path) -> None:
    from clientlens.db.models import verify_schema

    if not db_path.exists():
        console.print("  - database file not created yet; the first import creates it")
    elif asyncio.run(verify_schema(db_path)):
        console.print("  - database schema: ok")
    else:
        console.print(
            "[yellow]  - database schema incomplete;[/yellow] "
            "any command that opens the database will create the missing tables"
        )


@cli.command("import")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--owner", required=True, help="Owner the communications belong to")
@click.option(
    "--since",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Only import communications sent on or after this date (YYYY-MM-DD)",
)
def import_command(file: Path, owner: str, since: datetime | None) -> None:
    """Import clients and communications from a JSON export.

    Bodies and subjects are sanitized before storage. Re-importing the
    same export updates records in place.
    """
    _run_async(_run_import(file, owner, since))


async def _run_import(file: Path, owner: str, since: datetime | None) -> None:
    from clientlens.analysis.sanitizer import ContentSanitizer
    from clientlens.core.errors import SourceError
    from clientlens.engine.ingest import CommunicationIngestor, IngestResult, JsonFileSource

    deps = await _init_cli_deps()
    source = JsonFileSource(file)
    ingestor = CommunicationIngestor(deps.store, ContentSanitizer.from_config(deps.config.sanitizer))

    try:
        clients_result = IngestResult()
        await ingestor.import_clients(source.load_clients(owner), clients_result)
        result = await ingestor.ingest(
            owner,
            source,
            since=since.replace(tzinfo=UTC) if since else None,
        )
    except SourceError as e:
        console.print(f"[red]Import error:[/red] {e}")
        sys.exit(1)

    await deps.store.set_state(f"last_import:{owner}", datetime.now(UTC).isoformat())

    console.print(f"\n[bold]Import Summary[/bold] ({file.name})")
    console.print(f"  Clients:     {clients_result.clients_saved}")
    console.print(f"  Fetched:     {result.fetched}")
    console.print(f"  Saved:       {result.saved}")
    console.print(f"  Skipped:     {result.skipped}")
    console.print(f"  Failed:      {result.failed}")


@cli.command("run")
@click.option("--owner", required=True, help="Owner whose communications to analyze")
@click.option(
    "--limit",
    default=None,
    type=click.IntRange(min=1),
    help="Maximum communications to analyze (default: pipeline.batch_size)",
)
def run(owner: str, limit: int | None) -> None:
    """Attribute recent communications to clients and extract insights."""
    _run_async(_run_pipeline(owner, limit))


async def _run_pipeline(owner: str, limit: int | None) -> None:
    from clientlens.core.errors import InsightGenerationError
    from clientlens.engine.pipeline import InsightPipeline
    from clientlens.llm.client import LLMClient, build_anthropic_client

    deps = await _init_cli_deps()
    llm = LLMClient(build_anthropic_client(deps.config), config=deps.config, store=deps.store)
    pipeline = InsightPipeline(store=deps.store, llm_client=llm, config=deps.config)

    try:
        result = await pipeline.run(owner, limit=limit)
    except InsightGenerationError as e:
        hint = (
            "The service may be temporarily unavailable. Try again later."
            if e.retryable
            else "Check your ANTHROPIC_API_KEY environment variable and model names."
        )
        console.print(f"\n[red]Insight generation failed:[/red] {e}\n\n{hint}")
        sys.exit(1)

    _print_run_summary(result)


def _print_run_summary(result: PipelineRunResult) -> None:
    table = Table(title=f"Insight Run {result.run_id[:8]}...", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Duration", f"{result.duration_ms}ms")
    table.add_row("Fetched", str(result.communications_fetched))
    table.add_row("Automated (skipped)", str(result.automated))
    table.add_row("Threads", str(result.threads))
    table.add_row("Processed", str(result.communications_processed))
    for method, count in sorted(result.attribution.items()):
        table.add_row(f"Attribution: {method}", str(count))
    table.add_row("Insights inserted", str(result.insights_inserted))
    table.add_row("Insights updated", str(result.insights_updated))
    table.add_row("Raw outputs", str(result.raw_outputs))
    table.add_row("Insights dropped", str(result.insights_dropped))
    table.add_row("Write failures", str(result.write_failures))

    console.print(table)


@cli.command("insights")
@click.option("--owner", required=True, help="Owner whose insights to list")
@click.option("--communication", "communication_id", default=None, help="Only this communication")
@click.option(
    "--search",
    "text",
    default=None,
    help="Text to look for in summary, evidence and suggested action",
)
@click.option(
    "--category",
    type=click.Choice(INSIGHT_CATEGORIES),
    default=None,
    help="Only this category",
)
@click.option(
    "--min-confidence",
    type=click.FloatRange(0.0, 1.0),
    default=None,
    help="Lowest confidence to show",
)
@click.option(
    "--from",
    "from_date",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Created on or after this date (YYYY-MM-DD)",
)
@click.option(
    "--to",
    "to_date",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Created on or before this date (YYYY-MM-DD)",
)
@click.option("--limit", default=50, type=click.IntRange(min=1), help="Maximum rows to show")
def insights(
    owner: str,
    communication_id: str | None,
    text: str | None,
    category: str | None,
    min_confidence: float | None,
    from_date: datetime | None,
    to_date: datetime | None,
    limit: int,
) -> None:
    """List stored insights, optionally filtered."""
    if from_date and to_date and from_date > to_date:
        raise click.BadParameter("--from must not be after --to", param_hint="--from")

    _run_async(
        _list_insights(
            owner,
            limit,
            communication_id=communication_id,
            text=text,
            category=category,
            min_confidence=min_confidence,
            created_from=from_date,
            # --to is inclusive of the whole day
            created_before=to_date + timedelta(days=1) if to_date else None,
        )
    )


async def _list_insights(owner: str, limit: int, **filters: Any) -> None:
    deps = await _init_cli_deps()
    rows = await deps.store.list_insights(owner, limit=limit, **filters)

    if not rows:
        console.print("[yellow]No insights found.[/yellow]")
        return

    sources = {}
    for communication_id in {insight.communication_id for insight in rows}:
        communication = await deps.store.get_communication(owner, communication_id)
        if communication is not None:
            sources[communication_id] = communication

    table = Table(title=f"Insights for {owner}")
    table.add_column("ID", justify="right")
    table.add_column("Email")
    table.add_column("Category", style="cyan")
    table.add_column("Summary")
    table.add_column("Suggested action")
    table.add_column("Conf.", justify="right")
    table.add_column("Feedback")

    for insight in rows:
        source = _describe_source(sources.get(insight.communication_id))
        if insight.category is None:
            table.add_row(
                str(insight.id),
                source,
                "[dim]raw[/dim]",
                (insight.raw_output or "")[:120],
                "",
                "",
                insight.feedback or "",
            )
            continue
        table.add_row(
            str(insight.id),
            source,
            insight.category,
            insight.summary or "",
            insight.suggested_action or "",
            f"{insight.confidence:.2f}" if insight.confidence is not None else "",
            insight.feedback or "",
        )

    console.print(table)


def _describe_source(communication: Communication | None) -> str:
    if communication is None:
        return ""
    sent = communication.sent_at.strftime("%Y-%m-%d") if communication.sent_at else ""
    subject = (communication.subject or "(no subject)")[:60]
    return f"{communication.sender_email or ''}\n{subject}\n[dim]{sent}[/dim]"


@cli.command("llm-log")
@click.option("--run", "run_id", default=None, help="Only requests from this insight run")
@click.option("--communication", "communication_id", default=None, help="Only this communication")
@click.option("--failed", is_flag=True, help="Only requests that failed")
@click.option("--limit", default=20, type=click.IntRange(min=1), help="Maximum rows to show")
def llm_log(run_id: str | None, communication_id: str | None, failed: bool, limit: int) -> None:
    """Show recent LLM requests (requires llm_logging.enabled)."""
    _run_async(_show_llm_log(run_id, communication_id, failed, limit))


async def _show_llm_log(
    run_id: str | None, communication_id: str | None, failed: bool, limit: int
) -> None:
    deps = await _init_cli_deps()
    entries = await deps.store.list_llm_requests(
        limit,
        communication_id=communication_id,
        insight_run_id=run_id,
        failed_only=failed,
    )

    if not entries:
        console.print("[yellow]No LLM requests logged.[/yellow]")
        return

    table = Table(title="LLM requests")
    table.add_column("Time")
    table.add_column("Task", style="cyan")
    table.add_column("Model")
    table.add_column("Run")
    table.add_column("Tokens in/out", justify="right")
    table.add_column("ms", justify="right")
    table.add_column("Result")

    for entry in entries:
        tokens = (
            f"{entry.input_tokens}/{entry.output_tokens}"
            if entry.input_tokens is not None
            else ""
        )
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S") if entry.timestamp else "",
            entry.task_type or "",
            entry.model or "",
            (entry.insight_run_id or "")[:8],
            tokens,
            str(entry.duration_ms) if entry.duration_ms is not None else "",
            f"[red]{entry.error[:80]}[/red]" if entry.error else "[green]ok[/green]",
        )

    console.print(table)


@cli.command("feedback")
@click.argument("insight_id", type=int)
@click.argument("value", type=click.Choice(["positive", "negative"]))
@click.option("--owner", required=True, help="Owner of the insight")
def feedback(insight_id: int, value: str, owner: str) -> None:
    """Mark an insight as useful (positive) or not (negative)."""
    _run_async(_submit_feedback(insight_id, value, owner))


async def _submit_feedback(insight_id: int, value: str, owner: str) -> None:
    from clientlens.core.errors import FeedbackRejectedError, FeedbackValidationError
    from clientlens.engine.feedback import submit_feedback

    deps = await _init_cli_deps()
    try:
        await submit_feedback(deps.store, owner, insight_id, value)
    except (FeedbackValidationError, FeedbackRejectedError) as e:
        console.print(f"[red]Feedback rejected:[/red] {e}")
        sys.exit(1)

    console.print(f"[green]✓[/green] Recorded {value} feedback for insight {insight_id}")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
