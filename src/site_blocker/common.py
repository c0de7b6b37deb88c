"""Common utilities shared between Site Blocker modules."""

import fcntl
import os
import re
import stat
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from platformdirs import user_data_dir

# =============================================================================
# SHARED CONSTANTS
# =============================================================================

APP_NAME = "site-blocker"

# Secure file permissions (owner read/write only)
SECURE_FILE_MODE = stat.S_IRUSR | stat.S_IWUSR  # 0o600

# Domain validation constants (RFC 1035)
MAX_DOMAIN_LENGTH = 253
MAX_LABEL_LENGTH = 63

# Domain validation pattern (RFC 1035 compliant, no trailing dot)
DOMAIN_PATTERN = re.compile(
    r'^(?:[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)*'
    r'[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$'
)

# Leading scheme and www. prefix, as typed into an "add site" box
URL_PREFIX_PATTERN = re.compile(r'^(?:https?://)?(?:www\.)?', re.IGNORECASE)

# URL pattern for webhook validation
URL_PATTERN = re.compile(
    r'^https?://'  # http:// or https://
    r'(?:[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)+'  # domain labels
    r'[a-zA-Z]{2,}'  # TLD (at least 2 chars)
    r'(?::\d{1,5})?'  # optional port
    r'(?:/[^\s]*)?$',  # optional path
    re.IGNORECASE
)


# =============================================================================
# DIRECTORY MANAGEMENT
# =============================================================================

def get_default_data_dir() -> Path:
    """Get the platform data directory (~/.local/share/site-blocker on Linux)."""
    return Path(user_data_dir(APP_NAME))


def get_log_dir(data_dir: Optional[Path] = None) -> Path:
    """Get the log directory path (data_dir/logs)."""
    return (data_dir or get_default_data_dir()) / "logs"


def get_audit_log_file(data_dir: Optional[Path] = None) -> Path:
    """Get the audit log file path."""
    return get_log_dir(data_dir) / "audit.log"


def ensure_log_dir(data_dir: Optional[Path] = None) -> None:
    """Ensure log directory exists. Called lazily when needed."""
    get_log_dir(data_dir).mkdir(parents=True, exist_ok=True)


# =============================================================================
# TIME HELPERS
# =============================================================================

def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp, assuming UTC for naive values.

    Args:
        value: ISO string or None

    Returns:
        Aware datetime, or None if value is None
    """
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Serialize an aware datetime to ISO-8601 (None passes through)."""
    return value.isoformat() if value is not None else None


# =============================================================================
# VALIDATION FUNCTIONS
# =============================================================================

def validate_domain(domain: str) -> bool:
    """
    Validate a domain name according to RFC 1035.

    Args:
        domain: Domain name to validate

    Returns:
        True if valid, False otherwise
    """
    if not domain or len(domain) > MAX_DOMAIN_LENGTH:
        return False
    # Reject trailing dots (FQDN notation not supported)
    if domain.endswith('.'):
        return False
    return DOMAIN_PATTERN.match(domain) is not None


def validate_url(url: str) -> bool:
    """
    Validate a URL string (must be http or https).

    Args:
        url: URL string to validate

    Returns:
        True if valid URL format, False otherwise
    """
    if not url or not isinstance(url, str):
        return False
    return URL_PATTERN.match(url) is not None


def normalize_domain(value: str) -> str:
    """
    Reduce user input to the stored domain key.

    Trims whitespace, lowercases, drops an http(s):// scheme and a leading
    www., and cuts everything after the first '/'.

    Args:
        value: Domain or URL as entered

    Returns:
        Normalized domain string (may be empty)
    """
    cleaned = URL_PREFIX_PATTERN.sub('', value.strip().lower())
    return cleaned.split('/')[0].strip()


# =============================================================================
# PARSING FUNCTIONS
# =============================================================================

def parse_env_value(value: str) -> str:
    """
    Parse .env value, handling quotes and whitespace.

    Args:
        value: Raw value from .env file

    Returns:
        Cleaned value with quotes removed
    """
    value = value.strip()
    if len(value) >= 2:
        if (value.startswith('"') and value.endswith('"')) or \
           (value.startswith("'") and value.endswith("'")):
            value = value[1:-1]
    return value


def safe_int(value: Optional[str], default: int, name: str = "value") -> int:
    """
    Safely convert a string to a positive int with validation.

    Args:
        value: String value to convert (can be None)
        default: Default value if value is None
        name: Name of the value for error messages

    Returns:
        Converted integer or default value

    Raises:
        ConfigurationError: If value is not a valid positive integer
    """
    from .exceptions import ConfigurationError

    if value is None:
        return default

    try:
        result = int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a valid integer, got: {value}")
    if result <= 0:
        raise ConfigurationError(f"{name} must be a positive integer, got: {value}")
    return result


# =============================================================================
# FILE I/O FUNCTIONS
# =============================================================================

def audit_log(
    action: str, detail: str = "", prefix: str = "", data_dir: Optional[Path] = None
) -> None:
    """
    Log an action to the audit log file with secure permissions and file locking.

    Args:
        action: The action being logged (e.g., 'GRANT', 'REBLOCK', 'EXTEND')
        detail: Additional details about the action
        prefix: Optional prefix for the log entry (e.g., 'CRON' for cron management)
        data_dir: Data directory override (default: platform data dir)
    """
    audit_file = get_audit_log_file(data_dir)
    try:
        ensure_log_dir(data_dir)

        # Create file with secure permissions if it doesn't exist
        if not audit_file.exists():
            audit_file.touch(mode=SECURE_FILE_MODE)

        # Build log entry
        parts = [datetime.now().isoformat()]
        if prefix:
            parts.append(prefix)
        parts.extend([action, detail])
        log_entry = " | ".join(parts) + "\n"

        # Write with exclusive lock to prevent corruption from concurrent writes
        with open(audit_file, 'a') as f:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            try:
                f.write(log_entry)
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)

    except OSError:
        pass  # Fail silently for audit logging


def write_secure_file(path: Path, content: str) -> None:
    """
    Atomically replace a file's content with secure permissions (0o600).

    Content goes to a sibling temporary file under an exclusive lock, is
    fsynced, then renamed over the target, so readers see either the old
    or the new content, never a truncated file.

    Args:
        path: Path to the file
        content: Content to write

    Raises:
        OSError: If the file cannot be written
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")

    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, SECURE_FILE_MODE)
    fd_owned = False
    try:
        f = os.fdopen(fd, 'w')
        fd_owned = True  # os.fdopen now owns the fd, don't close manually
        with f:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            try:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        os.replace(tmp_path, path)
    except Exception:
        if not fd_owned:
            os.close(fd)
        tmp_path.unlink(missing_ok=True)
        raise


def read_secure_file(path: Path) -> Optional[str]:
    """
    Read content from a file with shared lock.

    Args:
        path: Path to the file

    Returns:
        File content or None if file doesn't exist or read fails
    """
    if not path.exists():
        return None

    try:
        with open(path, 'r') as f:
            fcntl.flock(f.fileno(), fcntl.LOCK_SH)
            try:
                return f.read().strip()
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
    except OSError:
        return None
