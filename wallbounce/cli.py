"""Main CLI entry point for wallbounce."""

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable
from typing import Any, TextIO, TypeVar

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import Settings, settings
from .db import Database
from .errors import AllModelsFailedError, WallBounceError
from .schemas import CollaborationResult
from .service import create_analyzer, create_service, create_store
from .session import SessionManager

console = Console()
err_console = Console(stderr=True)

T = TypeVar("T")


def _run(coro: Awaitable[T]) -> T:
    """Run a coroutine, turning engine errors into click errors."""
    try:
        return asyncio.run(coro)
    except WallBounceError as exc:
        raise click.ClickException(str(exc)) from exc


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _render_result(result: CollaborationResult) -> None:
    meta = result.metadata
    console.print(
        Panel(
            result.final_response or "[dim](no response)[/dim]",
            title=f"Final response ({result.wall_bounce_count} pass(es), quality: {meta.quality})",
        )
    )

    table = Table(title="Rounds")
    table.add_column("#", style="cyan")
    table.add_column("Phase")
    table.add_column("Model")
    table.add_column("Status")
    table.add_column("Latency", justify="right")
    table.add_column("Tokens", justify="right")
    for r in result.rounds:
        table.add_row(
            str(r.iteration),
            r.phase.value,
            r.model,
            "[green]ok[/green]" if r.success else f"[red]{r.error or 'failed'}[/red]",
            f"{r.latency * 1000:.0f} ms",
            str(r.usage.total_tokens),
        )
    console.print(table)

    if result.critique_score is not None:
        score = result.critique_score
        console.print(
            f"Critique score: [bold]{score.final_score}[/bold] ({score.severity.value}), "
            f"revised: {'yes' if result.revised else 'no'}"
        )
    console.print(
        f"Cost: ${meta.total_cost:.6f}  Tokens: {meta.total_tokens}  "
        f"Consensus: {meta.consensus:.2f}  Time: {meta.processing_time:.2f}s"
    )


@click.group()
@click.version_option(version=__version__)
@click.option("--log-level", default=None, help="Override WALLBOUNCE_LOG_LEVEL")
def main(log_level: str | None) -> None:
    """Adaptive multi-model wall-bounce collaboration engine.

    Bounces a question off several LLM backends (propose, critique, revise)
    and only pays for a revision when the critique says it is worth it.
    """
    _configure_logging(log_level or settings.log_level)


@main.command()
@click.argument("query")
@click.option("--model", "-m", "models", multiple=True, help="Candidate model (repeatable)")
@click.option("--task-type", "-t", default="general", help="Task type for model preference")
@click.option("--session-id", "-s", default="cli", help="Session to continue")
@click.option("--user-id", default=None, help="Session owner")
@click.option("--enhanced", is_flag=True, help="Fan out Propose to all candidates")
@click.option("--max-passes", type=int, default=None, help="Maximum wall-bounce passes")
@click.option("--critique-model", default=None, help="Model to try first for critique")
@click.option("--offline", is_flag=True, help="Use the scripted offline invoker")
@click.option("--json", "as_json", is_flag=True, help="Print the response contract as JSON")
def ask(
    query: str,
    models: tuple[str, ...],
    task_type: str,
    session_id: str,
    user_id: str | None,
    enhanced: bool,
    max_passes: int | None,
    critique_model: str | None,
    offline: bool,
    as_json: bool,
) -> None:
    """Run one collaboration turn.

    QUERY: The question to bounce between models
    """
    cfg: Settings = settings.model_copy(update={"invoker": "offline"}) if offline else settings
    payload: dict[str, Any] = {
        "query": query,
        "taskType": task_type,
        "models": list(models) or list(cfg.default_models),
        "sessionId": session_id,
        "userId": user_id,
        "options": {
            "enhanced": enhanced,
            "maxWallBounces": max_passes,
            "critiqueModel": critique_model,
        },
    }

    async def do_ask() -> CollaborationResult:
        async with create_service(cfg) as service:
            try:
                return await service.collaborate(payload)
            except AllModelsFailedError as exc:
                if as_json:
                    click.echo(json.dumps(exc.result.to_dict(), indent=2))
                else:
                    _render_result(exc.result)
                raise

    result = _run(do_ask())
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        _render_result(result)


@main.command()
@click.argument("source", type=click.File("r"), default="-")
@click.option("--threshold", type=int, default=None, help="Revision threshold override")
@click.option("--json", "as_json", is_flag=True, help="Print the score as JSON")
def score(source: TextIO, threshold: int | None, as_json: bool) -> None:
    """Score critique text from SOURCE (a file, or stdin by default)."""
    result = create_analyzer(settings).analyze(source.read(), threshold)
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    table = Table(title="Critique severity")
    table.add_column("Bucket", style="cyan")
    table.add_column("Matches", justify="right")
    for bucket, count in result.counts.items():
        table.add_row(bucket, str(count))
    table.add_row("positive", str(result.positive_count))
    console.print(table)
    console.print(
        Panel(
            f"Weighted: {result.weighted_score}\n"
            f"Adjustments: {', '.join(result.adjustments) or '(none)'}\n"
            f"Final: [bold]{result.final_score}[/bold] ({result.severity.value})\n"
            f"Requires revision: {'yes' if result.requires_revision else 'no'} "
            f"(threshold {result.threshold})",
            title="Score",
        )
    )


@main.group(name="session")
def session_group() -> None:
    """Inspect and manage stored sessions."""


def _session_manager() -> SessionManager:
    return SessionManager(create_store(settings), ttl_seconds=settings.session_ttl_seconds)


@session_group.command(name="show")
@click.argument("session_id")
@click.option("--json", "as_json", is_flag=True, help="Print the record as JSON")
def session_show(session_id: str, as_json: bool) -> None:
    """Show a session's state and recent history."""

    async def do_show() -> None:
        manager = _session_manager()
        try:
            record = await manager.get_session(session_id, use_cache=False)
        finally:
            await manager.store.aclose()
        if record is None:
            console.print(f"[red]Session not found: {session_id}[/red]")
            sys.exit(1)
        if as_json:
            click.echo(json.dumps(record.to_dict(), indent=2, default=str))
            return

        console.print(
            Panel(
                f"Owner: {record.user_id or '-'}\n"
                f"Version: {record.version}\n"
                f"Region: {record.region}\n"
                f"History entries: {len(record.history)}\n"
                f"Context keys: {', '.join(sorted(record.context)) or '(none)'}",
                title=f"Session: {record.session_id}",
            )
        )
        exchanges = record.exchanges[-10:]
        if exchanges:
            table = Table(title="Recent exchanges")
            table.add_column("Query")
            table.add_column("Quality")
            table.add_column("Passes", justify="right")
            for e in exchanges:
                table.add_row(
                    str(e.get("query", ""))[:80],
                    str(e.get("quality", "-")),
                    str(e.get("wallBounceCount", "-")),
                )
            console.print(table)

    _run(do_show())


@session_group.command(name="delete")
@click.argument("session_id")
def session_delete(session_id: str) -> None:
    """Delete a session."""

    async def do_delete() -> None:
        manager = _session_manager()
        try:
            deleted = await manager.delete_session(session_id)
        finally:
            await manager.store.aclose()
        if deleted:
            console.print(f"[green]✓[/green] Deleted session {session_id}")
        else:
            console.print(f"[yellow]![/yellow] Session not found: {session_id}")

    _run(do_delete())


@main.group(name="db")
def db_group() -> None:
    """SQL state store maintenance."""


@db_group.command(name="init")
def db_init() -> None:
    """Create the state store tables (development only; use alembic in production)."""

    async def do_init() -> None:
        database = Database(settings.database_url)
        try:
            await database.init()
        finally:
            await database.dispose()

    _run(do_init())
    console.print("[green]✓[/green] State store tables created")


@main.command(name="config")
def show_config() -> None:
    """Show the effective configuration."""
    console.print(
        Panel(
            f"Region: {settings.region}\n"
            f"Invoker: {settings.invoker} ({settings.gateway_url})\n"
            f"Default models: {', '.join(settings.default_models)}\n"
            f"Passes: {settings.min_passes}..{settings.max_passes}"
            f" (revision threshold {settings.revision_threshold})\n"
            f"Timeouts: {settings.invocation_timeout:g}s per call,"
            f" {settings.phase_timeout:g}s per phase\n"
            f"State backend: {settings.state_backend}\n"
            f"Redis: {settings.redis_url}\n"
            f"Database: {settings.db_host}:{settings.db_port}/{settings.db_name}\n"
            f"Rate limiting: {'on' if settings.rate_limit_enabled else 'off'}",
            title="Configuration",
        )
    )


if __name__ == "__main__":
    main()
