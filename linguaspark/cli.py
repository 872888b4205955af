"""
LinguaSpark command line.

Inspect extraction sessions, run the cleanup sweep and drive a lesson
generation from a text file against the configured generation service.

Examples:
    linguaspark sessions
    linguaspark history --limit 20
    linguaspark stats
    linguaspark cleanup --max-age-hours 12
    linguaspark generate article.txt --url https://example.com/a --level B1
    linguaspark generate article.txt --session-id <failed session>
"""

from __future__ import annotations

import asyncio
import json
from datetime import timedelta
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from linguaspark.config import get_settings
from linguaspark.exceptions import (
    GenerationFailed,
    InvalidTransition,
    RetryExhausted,
    SessionNotFound,
)
from linguaspark.extraction.models import ExtractionMode
from linguaspark.extraction.session_manager import ExtractionSessionManager
from linguaspark.extraction.session_store import (
    FallbackSessionStore,
    InMemorySessionStore,
    JsonFileSessionStore,
)
from linguaspark.generation.client import GenerationClient
from linguaspark.generation.events import GenerationRequest
from linguaspark.generation.orchestrator import GenerationOrchestrator, GenerationProgress
from linguaspark.logging_setup import configure_logging

app = typer.Typer(
    help="LinguaSpark extraction sessions and lesson generation",
    no_args_is_help=True,
)

console = Console()

STATUS_STYLES = {
    "started": "cyan",
    "extracting": "yellow",
    "validating": "magenta",
    "complete": "green",
    "failed": "red",
}


def _build_manager() -> ExtractionSessionManager:
    settings = get_settings()
    store = FallbackSessionStore(
        JsonFileSessionStore(settings.extraction_store_dir),
        InMemorySessionStore(),
    )
    return ExtractionSessionManager.from_settings(store, settings)


def _styled(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """LinguaSpark lesson pipeline."""
    settings = get_settings()
    configure_logging("DEBUG" if verbose else settings.log_level, settings.log_file)


@app.command("sessions")
def list_sessions():
    """Show active extraction sessions."""
    manager = _build_manager()
    sessions = asyncio.run(manager.get_active_sessions())

    if not sessions:
        console.print("[dim]No active extraction sessions.[/dim]")
        return

    table = Table(title="Active Extraction Sessions")
    table.add_column("Session", style="bold")
    table.add_column("Status")
    table.add_column("Retries", justify="right")
    table.add_column("Started")
    table.add_column("Source")

    for session in sessions:
        table.add_row(
            session.session_id,
            _styled(session.status.value),
            f"{session.retry_count}/{manager.retry_policy.max_retries}",
            session.start_time.strftime("%Y-%m-%d %H:%M"),
            session.source_url,
        )
    console.print(table)


@app.command("history")
def show_history(
    limit: int = typer.Option(20, "--limit", "-l", help="Max entries to show"),
):
    """Show recent extraction outcomes, most recent first."""
    manager = _build_manager()
    history = asyncio.run(manager.get_extraction_history(limit))

    if not history:
        console.print("[dim]No extraction history yet.[/dim]")
        return

    table = Table(title=f"Extraction History (last {len(history)})")
    table.add_column("When")
    table.add_column("Status")
    table.add_column("Retries", justify="right")
    table.add_column("URL")
    table.add_column("Error", style="dim")

    for entry in history:
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            _styled(entry.status.value),
            "-" if entry.retry_count is None else str(entry.retry_count),
            entry.url,
            entry.error or "",
        )
    console.print(table)


@app.command("stats")
def show_stats(
    as_json: bool = typer.Option(False, "--json", help="Print the summary as JSON"),
):
    """Show the analytics summary over extraction history."""
    manager = _build_manager()
    summary = asyncio.run(manager.get_analytics_summary())

    if as_json:
        console.print_json(json.dumps(summary.to_dict()))
        return

    table = Table(title="Extraction Analytics", show_header=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Total extractions", str(summary.total_extractions))
    table.add_row("Successful", f"[green]{summary.successful_extractions}[/green]")
    table.add_row("Failed", f"[red]{summary.failed_extractions}[/red]")
    table.add_row("Success rate", f"{summary.success_rate:.0%}")
    table.add_row("Average retries", f"{summary.average_retries:.2f}")
    console.print(table)

    if summary.most_common_errors:
        errors = Table(title="Most Common Errors")
        errors.add_column("Count", justify="right")
        errors.add_column("Error")
        for item in summary.most_common_errors:
            errors.add_row(str(item.count), item.error)
        console.print(errors)

    if summary.extractions_by_domain:
        domains = Table(title="Extractions by Domain")
        domains.add_column("Count", justify="right")
        domains.add_column("Domain")
        for item in summary.extractions_by_domain:
            domains.add_row(str(item.count), item.domain)
        console.print(domains)


@app.command("cleanup")
def cleanup(
    max_age_hours: float = typer.Option(
        None, "--max-age-hours", help="Age threshold (defaults to the configured timeout)"
    ),
):
    """Remove expired extraction sessions. History is kept."""
    manager = _build_manager()
    max_age = timedelta(hours=max_age_hours) if max_age_hours is not None else None
    removed = asyncio.run(manager.cleanup_expired_sessions(max_age))
    console.print(f"[green]Removed {removed} expired session(s).[/green]")


@app.command("generate")
def generate(
    source: Path = typer.Argument(..., help="Text file with the extracted content"),
    url: str = typer.Option(None, "--url", "-u", help="Source page URL"),
    session_id: str = typer.Option(
        None, "--session-id", "-s", help="Retry this failed session instead of creating one"
    ),
    lesson_type: str = typer.Option("discussion", "--lesson-type", "-t", help="Lesson type"),
    level: str = typer.Option("B1", "--level", help="Student level (A1-C1)"),
    language: str = typer.Option("english", "--language", help="Target language"),
    selection: bool = typer.Option(False, "--selection", help="Content is a page selection"),
    output: Path = typer.Option(None, "--output", "-o", help="Write the lesson JSON here"),
):
    """
    Generate a lesson from a text file.

    Creates a new session, or with --session-id retries a failed one.
    """
    if not source.exists():
        console.print(f"[red]Error: Source not found: {source}[/red]")
        raise typer.Exit(1)
    if url is None and session_id is None:
        console.print("[red]Error: --url is required for a new session[/red]")
        raise typer.Exit(1)

    text = source.read_text(encoding="utf-8", errors="replace")
    mode = ExtractionMode.SELECTION if selection else ExtractionMode.FULL_PAGE

    def show_progress(update: GenerationProgress) -> None:
        console.print(
            f"  [dim]{update.progress:>5.1f}%[/dim] {_styled(update.status.value)} {update.step}"
        )

    def build_request(source_url: str) -> GenerationRequest:
        return GenerationRequest(
            source_text=text,
            lesson_type=lesson_type,
            student_level=level,
            target_language=language,
            source_url=source_url,
            word_count=len(text.split()),
        )

    async def run() -> dict:
        manager = _build_manager()
        async with GenerationClient.from_settings() as client:
            orchestrator = GenerationOrchestrator.from_settings(manager, client)
            if session_id is not None:
                session = await manager.get_session(session_id)
                console.print(
                    f"\n[bold cyan]Session {session_id}[/bold cyan] "
                    f"retry {session.retry_count + 1}/{manager.retry_policy.max_retries}"
                )
                request = build_request(url or session.source_url)
                return await orchestrator.retry_generation(request, session_id, show_progress)

            session = await manager.create_session(url, mode, page_title=source.stem)
            console.print(f"\n[bold cyan]Session {session.session_id}[/bold cyan]")
            return await orchestrator.run_generation(
                build_request(url), session.session_id, show_progress
            )

    try:
        lesson = asyncio.run(run())
    except (SessionNotFound, InvalidTransition, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    except RetryExhausted as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(2)
    except GenerationFailed as e:
        error = e.structured
        console.print(f"\n[red bold]{error.type}[/red bold]: {error.message}")
        for step in error.actionable_steps:
            console.print(f"  - {step}")
        console.print(f"[dim]Error ID: {error.error_id}[/dim]")
        if error.retries_exhausted:
            console.print("[yellow]No retries left for this session.[/yellow]")
        else:
            console.print(
                f"[dim]Retry with: linguaspark generate {source} "
                f"--session-id {error.session_id}[/dim]"
            )
        raise typer.Exit(1)

    logger.debug("Lesson keys: {}", sorted(lesson))
    title = lesson.get("lessonTitle") or lesson.get("title") or "Untitled lesson"
    console.print(f"\n[green bold]Lesson ready:[/green bold] {title}")
    if output:
        output.write_text(json.dumps(lesson, indent=2, ensure_ascii=False), encoding="utf-8")
        console.print(f"  Saved to {output}")


def run() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()
