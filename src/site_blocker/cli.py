"""Command-line interface for Site Blocker using Click."""

import asyncio
import logging
import signal
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import click
from rich.console import Console
from rich.markup import escape

from . import __version__
from .app import App, create_app
from .commands import CommandResult
from .common import ensure_log_dir, get_log_dir, parse_timestamp, utcnow
from .config import load_config
from .cron import get_crontab, has_tick_cron, register_cron
from .exceptions import ConfigurationError, StorageError
from .notifications import send_discord_notification

T = TypeVar("T")

# =============================================================================
# LOGGING SETUP
# =============================================================================


def get_app_log_file(data_dir: Optional[Path] = None) -> Path:
    """Get the app log file path."""
    return get_log_dir(data_dir) / "app.log"


def setup_logging(verbose: bool = False, data_dir: Optional[Path] = None) -> None:
    """Setup logging configuration.

    This function configures logging with both file and console handlers.
    It avoids adding duplicate handlers if called multiple times.

    Args:
        verbose: If True, sets log level to DEBUG; otherwise INFO.
        data_dir: Data directory holding the logs directory.
    """
    ensure_log_dir(data_dir)

    level = logging.DEBUG if verbose else logging.INFO
    root_logger = logging.getLogger()

    # Avoid adding duplicate handlers
    if root_logger.handlers:
        root_logger.setLevel(level)
        return

    root_logger.setLevel(level)
    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")

    # File handler
    file_handler = logging.FileHandler(get_app_log_file(data_dir))
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)


logger = logging.getLogger(__name__)
console = Console(highlight=False)


# =============================================================================
# HELPERS
# =============================================================================


def format_remaining(until: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Human-readable time left until a deadline ('12 min', '< 1 min')."""
    if until is None:
        return ""
    remaining = until - (now or utcnow())
    mins = int(remaining.total_seconds() // 60)
    return f"{mins} min" if mins > 0 else "< 1 min"


def run_app(ctx: click.Context, operation: Callable[[App], Awaitable[T]]) -> T:
    """
    Load config, start the app (reconciling timers) and run one operation.

    Configuration and storage errors end the process with exit code 1.
    """
    options = ctx.find_root().obj or {}
    try:
        config = load_config(options.get("config_dir"))
        app = create_app(config)
        setup_logging(options.get("verbose", False), app.data_dir)

        async def runner() -> T:
            await app.start()
            return await operation(app)

        return asyncio.run(runner())
    except ConfigurationError as e:
        console.print(f"\n  [red]Config error: {e}[/red]\n", highlight=False)
        sys.exit(1)
    except StorageError as e:
        console.print(f"\n  [red]Storage error: {e}[/red]\n", highlight=False)
        sys.exit(1)


def exit_on_failure(result: CommandResult) -> None:
    """Print a failed command's error and exit 1."""
    if not result.success:
        console.print(f"\n  [red]Error: {result.error}[/red]\n", highlight=False)
        sys.exit(1)


# =============================================================================
# CLICK CLI
# =============================================================================


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="site-blocker")
@click.option("--no-color", is_flag=True, help="Disable colored output")
@click.option("-v", "--verbose", is_flag=True, help="Verbose output")
@click.option(
    "--config-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Config directory (default: auto-detect)",
)
@click.pass_context
def main(ctx: click.Context, no_color: bool, verbose: bool, config_dir: Optional[Path]) -> None:
    """Site Blocker - Block domains, unblock them for a limited time."""
    ctx.obj = {"config_dir": config_dir, "verbose": verbose}
    if no_color:
        console.no_color = True

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@main.command()
@click.argument("url")
@click.option(
    "--minutes", type=click.IntRange(min=1), default=None, help="Unblock duration (default: 10)"
)
@click.pass_context
def add(ctx: click.Context, url: str, minutes: Optional[int]) -> None:
    """Block the domain of URL."""
    result = run_app(ctx, lambda app: app.commands.add_site(url, minutes))
    exit_on_failure(result)
    site = result.payload
    console.print(
        f"\n  [red]Blocked: {site['domain']}[/red] "
        f"({site['grant_duration_minutes']} min per unblock)\n"
    )


@main.command()
@click.argument("domain")
@click.pass_context
def remove(ctx: click.Context, domain: str) -> None:
    """Stop managing DOMAIN."""
    exit_on_failure(run_app(ctx, lambda app: app.commands.remove_site(domain)))
    console.print(f"\n  [green]Removed: {domain}[/green]\n")


@main.command()
@click.argument("domain")
@click.pass_context
def block(ctx: click.Context, domain: str) -> None:
    """Block DOMAIN now, ending any running unblock."""
    exit_on_failure(run_app(ctx, lambda app: app.commands.toggle_site(domain, True)))
    console.print(f"\n  [red]Blocked: {domain}[/red]\n")


@main.command()
@click.argument("domain")
@click.pass_context
def allow(ctx: click.Context, domain: str) -> None:
    """Unblock DOMAIN with no time limit."""
    exit_on_failure(run_app(ctx, lambda app: app.commands.toggle_site(domain, False)))
    console.print(f"\n  [green]Unblocked (no time limit): {domain}[/green]\n")


@main.command()
@click.argument("domain")
@click.option("--reason", prompt="Why do you need this site?", help="Reason (5+ characters)")
@click.pass_context
def unblock(ctx: click.Context, domain: str, reason: str) -> None:
    """Unblock DOMAIN for its configured duration."""
    result = run_app(ctx, lambda app: app.commands.unblock_with_reason(domain, reason))
    exit_on_failure(result)
    timer = result.payload["timer_info"]
    until = parse_timestamp(timer["unblock_until"]).astimezone()
    console.print(
        f"\n  [green]Unblocked: {timer['domain']} for {timer['duration_minutes']} min[/green]"
    )
    console.print(f"  Blocks again at: [bold]{until.strftime('%H:%M')}[/bold]\n")


@main.command()
@click.argument("domain")
@click.pass_context
def extend(ctx: click.Context, domain: str) -> None:
    """Reset the running unblock of DOMAIN to its full duration."""
    result = run_app(ctx, lambda app: app.commands.extend_grant(domain))
    exit_on_failure(result)
    timer = result.payload["timer_info"]
    console.print(
        f"\n  [green]Extended: {timer['domain']} for {timer['duration_minutes']} more min[/green]\n"
    )


@main.command()
@click.argument("domain")
@click.argument("minutes", type=click.IntRange(min=1))
@click.pass_context
def duration(ctx: click.Context, domain: str, minutes: int) -> None:
    """Set how many MINUTES an unblock of DOMAIN lasts."""
    exit_on_failure(run_app(ctx, lambda app: app.commands.update_duration(domain, minutes)))
    console.print(f"\n  [green]{domain}: {minutes} min per unblock[/green]\n")


@main.command("list")
@click.option("--blocked", "blocked_only", is_flag=True, help="Only show blocked domains")
@click.pass_context
def list_sites(ctx: click.Context, blocked_only: bool) -> None:
    """List managed domains."""

    async def query(app: App) -> CommandResult:
        if blocked_only:
            return await app.commands.get_blocked_sites()
        return await app.commands.get_all_sites()

    result = run_app(ctx, query)
    exit_on_failure(result)
    sites: list[dict[str, Any]] = result.payload

    console.print(f"\n  [bold]Domains ({len(sites)}):[/bold]")
    for site in sites:
        if site["is_blocked"]:
            status_text = "[red]blocked[/red]"
        elif site["unblock_until"]:
            remaining = format_remaining(parse_timestamp(site["unblock_until"]))
            status_text = f"[yellow]unblocked ({remaining} left)[/yellow]"
        else:
            status_text = "[green]allowed[/green]"
        console.print(
            f"    {site['domain']:<30} {status_text} "
            f"[dim]{site['grant_duration_minutes']} min[/dim]"
        )
    console.print()


@main.command()
@click.option("--limit", type=click.IntRange(min=1), default=20, help="Entries to show")
@click.pass_context
def history(ctx: click.Context, limit: int) -> None:
    """Show recent unblocks, newest first."""
    result = run_app(ctx, lambda app: app.commands.get_history())
    exit_on_failure(result)
    entries: list[dict[str, Any]] = result.payload

    console.print("\n  [bold]History[/bold]")
    console.print("  [bold]-------[/bold]")
    if not entries:
        console.print("  No unblocks recorded\n")
        return

    for entry in entries[:limit]:
        started = parse_timestamp(entry["timestamp"]).astimezone()
        if entry["reblocked_at"] is None:
            ended = "[yellow]open[/yellow]"
        elif entry["was_auto_reblocked"]:
            ended = "[green]timer[/green]"
        else:
            ended = "[blue]manual[/blue]"
        console.print(
            f"    {started.strftime('%Y-%m-%d %H:%M')}  {entry['domain']:<25} "
            f"{entry['grant_duration_minutes']:>3} min  {ended}  {escape(entry['reason'])}",
            soft_wrap=True,
        )
    console.print()


@main.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show unblock statistics."""
    result = run_app(ctx, lambda app: app.commands.get_stats())
    exit_on_failure(result)
    data = result.payload

    console.print("\n  [bold]Statistics[/bold]")
    console.print("  [bold]----------[/bold]")
    console.print(f"    Last 7 days:   [bold]{data['total_this_week']}[/bold]")
    console.print(f"    Last 24 hours: [bold]{data['total_today']}[/bold]")
    console.print(f"    Daily average: [bold]{data['avg_per_day']}[/bold]")
    streak = data["streak"]
    console.print(f"    Focus streak:  [bold]{streak} day{'s' if streak != 1 else ''}[/bold]")

    most = data["most_unblocked"]
    if most["domain"] and most["count"] > 1:
        console.print(
            f"    [yellow]Most unblocked: {most['domain']} ({most['count']}x)[/yellow]"
        )
    console.print()


@main.command()
@click.argument("url")
@click.pass_context
def check(ctx: click.Context, url: str) -> None:
    """Check whether URL is blocked (exit code 1 if it is)."""
    result = run_app(ctx, lambda app: app.commands.is_blocked(url))
    exit_on_failure(result)
    if result.payload:
        console.print(f"  [red]blocked[/red] {url}")
        sys.exit(1)
    console.print(f"  [green]allowed[/green] {url}")


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show running unblocks, pending alarms and cron state."""

    async def gather(app: App) -> tuple[list, list]:
        grants = await app.store.list_active_grants()
        pending = await app.alarms.pending()
        return grants, pending

    grants, pending = run_app(ctx, gather)

    console.print("\n  [bold]Site Blocker Status[/bold]")
    console.print("  [bold]-------------------[/bold]")

    console.print(f"\n  [bold]Running unblocks ({len(grants)}):[/bold]")
    for site in grants:
        console.print(f"    {site.domain:<30} {format_remaining(site.unblock_until)} left")

    console.print(f"\n  [bold]Pending alarms ({len(pending)}):[/bold]")
    for when, event in pending:
        console.print(f"    {event.alarm_id:<40} {when.astimezone().strftime('%H:%M:%S')}")

    console.print("\n  [bold]Scheduler:[/bold]")
    if has_tick_cron(get_crontab()):
        console.print("    cron tick: [green]ok[/green]")
    else:
        console.print("    cron tick: [red]NOT FOUND[/red]")
        console.print("    Run: [yellow]site-blocker cron install[/yellow] or [yellow]site-blocker run[/yellow]")
    console.print()


@main.command()
@click.pass_context
def tick(ctx: click.Context) -> None:
    """Reconcile timers and fire due alarms once (for cron)."""
    fired = run_app(ctx, lambda app: app.alarms.fire_due(app.engine.handle_alarm))
    if fired:
        logger.info(f"Tick: {fired} alarm(s) fired")


@main.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Run in the foreground, firing alarms as they come due."""
    options = ctx.find_root().obj or {}

    async def serve(app: App) -> None:
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)
        interval = load_config(options.get("config_dir"))["poll_interval"]
        console.print(f"  Watching alarms every {interval}s (Ctrl+C to stop)")
        await app.alarms.run(app.engine.handle_alarm, interval, stop)

    run_app(ctx, serve)
    console.print("  Stopped")


@main.command()
@click.pass_context
def test_notifications(ctx: click.Context) -> None:
    """Send a test notification to verify Discord integration."""
    options = ctx.find_root().obj or {}
    try:
        config = load_config(options.get("config_dir"))
    except ConfigurationError as e:
        console.print(f"\n  [red]Config error: {e}[/red]\n", highlight=False)
        sys.exit(1)

    webhook_url = config.get("discord_webhook_url")
    if not webhook_url:
        console.print(
            "\n  [red]Error: DISCORD_WEBHOOK_URL is not set in configuration.[/red]",
            highlight=False,
        )
        console.print("      Please add it to your .env file.\n", highlight=False)
        sys.exit(1)

    console.print("\n  Sending test notification...")
    if send_discord_notification("Test Connection", "test", webhook_url=webhook_url):
        console.print("  [green]Notification sent! Check your Discord channel.[/green]\n")
    else:
        console.print("  [red]Notification failed, see log for details[/red]\n")
        sys.exit(1)


register_cron(main)


if __name__ == "__main__":
    main()
