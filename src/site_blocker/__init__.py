"""Site Blocker - Block domains and unblock them for a limited time, with a reason."""

__version__ = "1.0.0"

from .alarms import AlarmService, DismissNotification, ExpiryDue, WarningDue
from .app import App, create_app
from .commands import CommandResult, CommandSurface
from .config import load_config
from .engine import ReblockEngine, ReblockTrigger
from .exceptions import (
    SiteBlockerError,
    ConfigurationError,
    DomainValidationError,
    StorageError,
    ValidationError,
)
from .matcher import DomainMatcher
from .scheduler import Scheduler
from .store import RecordStore

__all__ = [
    "__version__",
    "AlarmService",
    "WarningDue",
    "ExpiryDue",
    "DismissNotification",
    "App",
    "create_app",
    "CommandResult",
    "CommandSurface",
    "load_config",
    "ReblockEngine",
    "ReblockTrigger",
    "DomainMatcher",
    "Scheduler",
    "RecordStore",
    "SiteBlockerError",
    "ConfigurationError",
    "DomainValidationError",
    "StorageError",
    "ValidationError",
]
