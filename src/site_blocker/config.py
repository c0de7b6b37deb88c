"""Configuration loading and validation for Site Blocker."""

import logging
import os
from pathlib import Path
from typing import Any, Optional

# Timezone support: use zoneinfo (Python 3.9+)
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from platformdirs import user_config_dir

from .common import (
    APP_NAME,
    get_default_data_dir,
    parse_env_value,
    safe_int,
    validate_url,
)
from .exceptions import ConfigurationError

# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_TIMEZONE = "UTC"
DEFAULT_GRANT_MINUTES = 10
DEFAULT_POLL_INTERVAL = 15  # seconds between alarm checks in `run`

# Timer behaviour
WARNING_LEAD_SECONDS = 60  # warning fires this long before a grant expires
DISMISS_AFTER_SECONDS = 5  # warning notifications auto-dismiss after this
MIN_REASON_LENGTH = 5
STREAK_CAP_DAYS = 30

STATE_FILE = "state.json"
ALARMS_FILE = "alarms.json"

# Hostnames that are the same service under different names. Each key lists
# the names that should be treated as equivalent when matching.
DOMAIN_ALIASES: dict[str, tuple[str, ...]] = {
    "twitter.com": ("x.com",),
    "x.com": ("twitter.com",),
    "facebook.com": ("fb.com",),
    "fb.com": ("facebook.com",),
    "youtube.com": ("youtu.be",),
    "youtu.be": ("youtube.com",),
    "reddit.com": ("redd.it",),
    "redd.it": ("reddit.com",),
}

logger = logging.getLogger(__name__)


# =============================================================================
# XDG DIRECTORY FUNCTIONS
# =============================================================================


def get_config_dir(override: Optional[Path] = None) -> Path:
    """
    Get the configuration directory path.

    Resolution order:
    1. Override path if provided
    2. Current working directory if a .env exists
    3. XDG config directory (~/.config/site-blocker on Linux,
       ~/Library/Application Support/site-blocker on macOS)

    Args:
        override: Optional path to use instead of auto-detection

    Returns:
        Path to the configuration directory
    """
    if override:
        return Path(override)

    cwd = Path.cwd()
    if (cwd / ".env").exists():
        return cwd

    return Path(user_config_dir(APP_NAME))


def get_data_dir(config: Optional[dict[str, Any]] = None) -> Path:
    """
    Get the data directory for state, alarms and logs.

    Args:
        config: Loaded configuration (uses its data_dir if set)

    Returns:
        Path to the data directory
    """
    if config and config.get("data_dir"):
        return Path(config["data_dir"])
    return get_default_data_dir()


def get_state_file(data_dir: Path) -> Path:
    """Path of the persisted record store."""
    return data_dir / STATE_FILE


def get_alarms_file(data_dir: Path) -> Path:
    """Path of the persisted alarm table."""
    return data_dir / ALARMS_FILE


# =============================================================================
# CONFIGURATION LOADING
# =============================================================================


def _load_env_file(env_file: Path) -> None:
    """Export KEY=VALUE lines from a .env file into os.environ."""
    with open(env_file, encoding="utf-8-sig") as f:  # utf-8-sig handles BOM
        for line_num, line in enumerate(f, 1):
            line = line.strip()

            # Skip empty lines and comments
            if not line or line.startswith("#"):
                continue

            if "=" not in line:
                logger.warning(f".env line {line_num}: missing '=' separator, skipping")
                continue

            key, value = line.split("=", 1)
            key = key.strip()

            if not key:
                logger.warning(f".env line {line_num}: empty key, skipping")
                continue

            os.environ[key] = parse_env_value(value)


def load_config(config_dir: Optional[Path] = None) -> dict[str, Any]:
    """
    Load configuration from .env file and environment variables.

    Nothing is required: every setting has a default. Values that are
    present are validated.

    Args:
        config_dir: Optional directory containing .env file.
                   If None, auto-detected with get_config_dir().

    Returns:
        Configuration dictionary with all settings

    Raises:
        ConfigurationError: If a configured value is invalid
    """
    config_dir = get_config_dir(config_dir)
    env_file = config_dir / ".env"

    if env_file.exists():
        _load_env_file(env_file)

    data_dir_env = os.getenv("SITE_BLOCKER_DATA_DIR")

    config: dict[str, Any] = {
        "config_dir": str(config_dir),
        "data_dir": str(Path(data_dir_env).expanduser()) if data_dir_env else None,
        "timezone": os.getenv("TIMEZONE", DEFAULT_TIMEZONE),
        "default_grant_minutes": safe_int(
            os.getenv("DEFAULT_GRANT_MINUTES"), DEFAULT_GRANT_MINUTES, "DEFAULT_GRANT_MINUTES"
        ),
        "poll_interval": safe_int(
            os.getenv("POLL_INTERVAL"), DEFAULT_POLL_INTERVAL, "POLL_INTERVAL"
        ),
        "discord_webhook_url": os.getenv("DISCORD_WEBHOOK_URL") or None,
    }

    # Validate timezone early to fail fast
    try:
        ZoneInfo(config["timezone"])
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigurationError(
            f"Invalid TIMEZONE '{config['timezone']}'. "
            f"See: https://en.wikipedia.org/wiki/List_of_tz_database_time_zones"
        )

    if config["discord_webhook_url"] and not validate_url(config["discord_webhook_url"]):
        raise ConfigurationError(
            f"Invalid DISCORD_WEBHOOK_URL '{config['discord_webhook_url']}'. "
            f"Must be a valid http:// or https:// URL"
        )

    if config["data_dir"] is None:
        config["data_dir"] = str(get_default_data_dir())

    return config
