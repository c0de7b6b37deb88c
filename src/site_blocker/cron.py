"""Cron integration - runs `site-blocker tick` every minute."""

import logging
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Any, Optional

import click

from .common import audit_log as _base_audit_log
from .common import get_log_dir
from .config import get_data_dir, load_config
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# =============================================================================
# CONFIGURATION & CONSTANTS
# =============================================================================

SUBPROCESS_TIMEOUT = 60
CRON_MARKER = "site-blocker tick"


def get_executable_path() -> str:
    """Get the full path to the site-blocker executable."""
    exe_path = shutil.which("site-blocker")
    if exe_path:
        return exe_path
    # Fallback to sys.executable module invocation
    return f"{sys.executable} -m site_blocker"


def get_cron_tick(data_dir: Optional[Path] = None, config_dir: Optional[Path] = None) -> str:
    """
    Get the tick cron job definition.

    Args:
        data_dir: Data directory whose logs/cron.log receives the output
        config_dir: Config directory passed to tick, so it loads the same .env
    """
    exe = get_executable_path()
    log_file = str(get_log_dir(data_dir) / "cron.log")
    config_arg = f' --config-dir "{config_dir}"' if config_dir else ""
    # Trailing marker comment keeps the line recognizable for any executable path
    return f'* * * * * {exe}{config_arg} tick >> "{log_file}" 2>&1 # {CRON_MARKER}'


def audit_log(action: str, detail: str = "", data_dir: Optional[Path] = None) -> None:
    """Wrapper for audit_log with CRON prefix."""
    _base_audit_log(action, detail, prefix="CRON", data_dir=data_dir)


def load_cron_config(ctx: click.Context) -> dict[str, Any]:
    """Load the configuration named by the main group's --config-dir."""
    options = ctx.find_root().obj or {}
    try:
        return load_config(options.get("config_dir"))
    except ConfigurationError as e:
        click.echo(f"  error: {e}", err=True)
        sys.exit(1)


# =============================================================================
# CRON MANAGEMENT
# =============================================================================


def get_crontab() -> str:
    """Get the current user's crontab contents."""
    try:
        result = subprocess.run(
            ["crontab", "-l"], capture_output=True, text=True, timeout=SUBPROCESS_TIMEOUT
        )
        return result.stdout if result.returncode == 0 else ""
    except (OSError, subprocess.SubprocessError, subprocess.TimeoutExpired):
        return ""


def set_crontab(content: str) -> bool:
    """Set the user's crontab contents."""
    try:
        result = subprocess.run(
            ["crontab", "-"],
            input=content,
            text=True,
            capture_output=True,
            timeout=SUBPROCESS_TIMEOUT,
        )
        return result.returncode == 0
    except (OSError, subprocess.SubprocessError, subprocess.TimeoutExpired) as e:
        logger.warning(f"Failed to set crontab: {e}")
        return False


def has_tick_cron(crontab: str) -> bool:
    """Check if the tick cron job is present."""
    return CRON_MARKER in crontab


def filter_our_cron_jobs(crontab: str) -> list[str]:
    """Remove our cron jobs from crontab, keeping other entries."""
    return [line for line in crontab.split("\n") if CRON_MARKER not in line and line.strip()]


# =============================================================================
# CLICK CLI
# =============================================================================


@click.group()
def cron_cli() -> None:
    """Install or remove the cron job that fires due alarms."""
    pass


@cron_cli.command("install")
@click.pass_context
def cmd_install(ctx: click.Context) -> None:
    """Install the tick cron job."""
    config = load_cron_config(ctx)
    # cron runs from the home directory, so both paths must be absolute
    data_dir = get_data_dir(config).resolve()
    lines = filter_our_cron_jobs(get_crontab())
    lines.append(get_cron_tick(data_dir, Path(config["config_dir"]).resolve()))

    if set_crontab("\n".join(lines) + "\n"):
        audit_log("CRON_INSTALLED", "Manual install", data_dir)
        click.echo("\n  cron installed")
        click.echo("    tick   every 1 min\n")
    else:
        click.echo("  error: cron install failed", err=True)
        sys.exit(1)


@cron_cli.command("uninstall")
@click.pass_context
def cmd_uninstall(ctx: click.Context) -> None:
    """Remove the tick cron job."""
    data_dir = get_data_dir(load_cron_config(ctx))
    lines = filter_our_cron_jobs(get_crontab())
    new_content = "\n".join(lines) + "\n" if lines else ""

    if set_crontab(new_content):
        audit_log("CRON_UNINSTALLED", "Manual uninstall", data_dir)
        click.echo("\n  Cron job removed\n")
    else:
        click.echo("  error: failed to remove cron job", err=True)
        sys.exit(1)


@cron_cli.command("status")
def cmd_status() -> None:
    """Display current cron job status."""
    installed = has_tick_cron(get_crontab())

    click.echo("\n  cron")
    click.echo("  ----")
    click.echo(f"    tick   {'ok' if installed else 'missing'}")
    click.echo()


def register_cron(main_group: click.Group) -> None:
    """Register cron commands as subcommand of main CLI."""
    main_group.add_command(cron_cli, name="cron")
