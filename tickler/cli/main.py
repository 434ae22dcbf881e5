"""
Tickler CLI entry point.

Commands:
    tickler schedule         — Schedule an intent from a natural-language time
    tickler list             — Show active (or all) intents
    tickler cancel           — Cancel an intent
    tickler status           — Heartbeat age and upcoming fires
    tickler history          — Fire attempts recorded for an intent
    tickler run              — Run the scheduler in the foreground
    tickler heartbeat-check  — Exit 1 if the scheduler looks stalled
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from tickler.core.config import TicklerConfig
from tickler.core.errors import ConfigError, ParseError, PastTimeError, TicklerError
from tickler.scheduler.service import Executor, SchedulerService
from tickler.scheduler.store import IntentStore

app = typer.Typer(
    name="tickler",
    help="Tickler — remind your assistant to do things later, even across restarts.",
    add_completion=False,
)

console = Console()


@app.callback()
def main(
    ctx: typer.Context,
    db: Path = typer.Option(None, "--db", help="Intent database (overrides config)"),
) -> None:
    """Durable natural-language scheduler."""
    ctx.obj = {"db": db}


def _load_config(ctx: typer.Context) -> TicklerConfig:
    overrides: dict = {}
    db = (ctx.obj or {}).get("db")
    if db is not None:
        overrides["scheduler"] = {"db_path": str(db)}
    try:
        return TicklerConfig.load(overrides=overrides)
    except ConfigError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)


def _fmt(ts: float | None) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


def _build_executor(config: TicklerConfig) -> Executor:
    from tickler.scheduler.executors import LogExecutor, WebhookExecutor

    if config.executor.kind == "webhook":
        return WebhookExecutor(config.executor.webhook_url, timeout=config.executor.timeout)
    return LogExecutor()


async def _open_service(config: TicklerConfig) -> tuple[SchedulerService, IntentStore]:
    """Store-only service for commands that never fire anything."""
    store = IntentStore(config.get_db_path())
    service = SchedulerService(store, config=config)
    await service.open()
    return service, store


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Intent commands
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@app.command()
def schedule(
    ctx: typer.Context,
    when: str = typer.Argument(
        ...,
        help='When to fire ("tomorrow at 8am", "every monday"), or a whole sentence '
        'when PAYLOAD is omitted ("remind me to call mom tomorrow at 5pm")',
    ),
    payload: str = typer.Argument(None, help="What the assistant should do"),
    description: str = typer.Option(None, "--description", "-d", help="Short label"),
    task_type: str = typer.Option(None, "--task-type", "-t", help="Executor task type"),
) -> None:
    """Schedule an intent."""
    config = _load_config(ctx)

    async def _run() -> None:
        service, store = await _open_service(config)
        try:
            if payload is None:
                conf = await service.schedule_text(when, description, task_type=task_type)
            else:
                conf = await service.schedule(
                    payload, description or payload[:60], when, task_type=task_type
                )
        finally:
            await store.close()
        console.print(f"[green]Scheduled[/green] {conf.description!r} {conf.resolved_text}")
        console.print(f"[dim]id: {conf.id}[/dim]")

    try:
        asyncio.run(_run())
    except PastTimeError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)
    except ParseError as e:
        console.print(f"[red]Could not understand the time:[/red] {e.expression!r}")
        raise typer.Exit(1)
    except TicklerError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)


@app.command("list")
def list_intents(
    ctx: typer.Context,
    show_all: bool = typer.Option(False, "--all", "-a", help="Include cancelled and finished intents"),
) -> None:
    """List scheduled intents, soonest first."""
    config = _load_config(ctx)

    async def _run():
        service, store = await _open_service(config)
        try:
            if show_all:
                return await store.get_all(active_only=False)
            return await service.list_active()
        finally:
            await store.close()

    intents = asyncio.run(_run())
    if not intents:
        console.print("[dim]No scheduled intents.[/dim]")
        raise typer.Exit(0)

    table = Table(title="Scheduled intents", border_style="cyan")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Description")
    table.add_column("Schedule")
    table.add_column("Next run")
    table.add_column("Fires", justify="right")
    table.add_column("Last")
    for intent in intents:
        when = intent.recurrence_spec if intent.is_recurring else "once"
        last = intent.last_status.value if intent.last_status else "-"
        next_run = _fmt(intent.next_run_time) if intent.is_active else "[dim]inactive[/dim]"
        table.add_row(intent.id, intent.description, when, next_run, str(intent.fire_count), last)
    console.print(table)


@app.command()
def cancel(
    ctx: typer.Context,
    intent_id: str = typer.Argument(..., help="Intent id (see 'tickler list')"),
) -> None:
    """Cancel an intent. Cancelling an unknown or finished id is not an error."""
    config = _load_config(ctx)

    async def _run() -> bool:
        service, store = await _open_service(config)
        try:
            return await service.cancel(intent_id)
        finally:
            await store.close()

    if asyncio.run(_run()):
        console.print(f"[green]Cancelled[/green] {intent_id}")
    else:
        console.print(f"[dim]{intent_id} is not active; nothing to cancel.[/dim]")


@app.command()
def history(
    ctx: typer.Context,
    intent_id: str = typer.Argument(..., help="Intent id"),
    lines: int = typer.Option(20, "--lines", "-n", help="Number of attempts to show"),
) -> None:
    """Show recorded fire attempts for an intent."""
    config = _load_config(ctx)

    async def _run():
        service, store = await _open_service(config)
        try:
            return await service.history(intent_id, limit=lines)
        finally:
            await store.close()

    records = asyncio.run(_run())
    if not records:
        console.print(f"[dim]No fire attempts recorded for {intent_id}.[/dim]")
        raise typer.Exit(0)

    table = Table(title=f"History for {intent_id}", border_style="cyan")
    table.add_column("Scheduled for")
    table.add_column("Executed at")
    table.add_column("Status")
    table.add_column("Notes")
    for rec in records:
        style = "green" if rec.status.ok else "red"
        table.add_row(
            _fmt(rec.scheduled_for),
            _fmt(rec.executed_at),
            f"[{style}]{rec.status.value}[/{style}]",
            rec.notes,
        )
    console.print(table)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Scheduler process
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@app.command()
def status(ctx: typer.Context) -> None:
    """Show heartbeat age and the next few fires."""
    config = _load_config(ctx)

    async def _run():
        service, store = await _open_service(config)
        try:
            return await service.status()
        finally:
            await store.close()

    st = asyncio.run(_run())
    if st.last_heartbeat is None:
        beat = "[yellow]never[/yellow]"
    else:
        colour = "red" if st.stalled else "green"
        beat = f"[{colour}]{st.heartbeat_age:.0f}s ago[/{colour}] ({_fmt(st.last_heartbeat)})"
    lines = [
        f"[bold]Heartbeat:[/bold] {beat}",
        f"[bold]Active intents:[/bold] {st.active_count}",
    ]
    if st.stalled:
        lines.append("[red]Scheduler appears stalled. Is 'tickler run' running?[/red]")
    console.print(Panel("\n".join(lines), title="Tickler status", border_style="cyan"))

    for upcoming in st.upcoming:
        console.print(f"  {_fmt(upcoming.next_run_time)}  {upcoming.description}  [dim]{upcoming.id}[/dim]")


@app.command("heartbeat-check")
def heartbeat_check(ctx: typer.Context) -> None:
    """Exit 0 if the scheduler is alive, 1 if stalled (for cron/monitoring)."""
    from tickler.scheduler.heartbeat import is_stalled

    config = _load_config(ctx)

    async def _run() -> float | None:
        store = IntentStore(config.get_db_path())
        try:
            await store.initialize()
            return await store.get_heartbeat()
        finally:
            await store.close()

    last = asyncio.run(_run())
    hb = config.heartbeat
    if is_stalled(last, interval=hb.interval_seconds, missed_intervals=hb.missed_intervals):
        console.print("[red]stalled[/red]")
        raise typer.Exit(1)
    console.print("[green]alive[/green]")


@app.command()
def run(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
) -> None:
    """Run the scheduler in the foreground until interrupted."""
    config = _load_config(ctx)
    if not config.executor.configured:
        console.print("[red]executor.kind is 'webhook' but no webhook_url is set.[/red]")
        raise typer.Exit(1)
    try:
        asyncio.run(_run_scheduler(config, verbose))
    except KeyboardInterrupt:
        pass
    except TicklerError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)


async def _run_scheduler(config: TicklerConfig, verbose: bool) -> None:
    from tickler.core.bus import EventBus
    from tickler.middleware.logging import EventLogger, setup_logging

    setup_logging(
        log_dir=config.get_log_dir(),
        console_level=logging.DEBUG if verbose else logging.WARNING,
    )
    logger = logging.getLogger("tickler")

    bus = EventBus()
    event_logger = EventLogger(log_dir=config.get_log_dir(), log_events=config.logging.events_log)
    bus.use(event_logger.middleware)

    store = IntentStore(config.get_db_path())
    service = SchedulerService(store, executor=_build_executor(config), bus=bus, config=config)

    report = await service.start()
    console.print(
        f"[green]Tickler running[/green]: {report.armed} intents armed "
        f"({report.caught_up} caught up). [dim]Ctrl-C to stop.[/dim]"
    )
    logger.info(f"Scheduler running with db {store.db_path}")
    try:
        await asyncio.Event().wait()
    finally:
        await service.stop()
        await store.close()
        console.print("[dim]Tickler stopped.[/dim]")


@app.command()
def version() -> None:
    """Show Tickler version."""
    from tickler import __version__
    console.print(f"Tickler v{__version__}")


if __name__ == "__main__":
    app()
