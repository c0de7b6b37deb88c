"""Commands offered to the presentation layer.

Every command returns a CommandResult instead of raising: validation
problems, missing domains and storage failures all come back as
success=False with an error message.
"""

import functools
import logging
from dataclasses import dataclass
from datetime import datetime, tzinfo
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from .common import audit_log, normalize_domain, utcnow
from .config import MIN_REASON_LENGTH
from .engine import ReblockEngine, ReblockTrigger
from .exceptions import DomainValidationError, StorageError, ValidationError
from .matcher import DomainMatcher
from .scheduler import Scheduler
from .stats import compute_stats
from .store import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of a command: a success flag plus payload or error message."""

    success: bool
    payload: Any = None
    error: Optional[str] = None


def command(
    func: Callable[..., Awaitable[CommandResult]]
) -> Callable[..., Awaitable[CommandResult]]:
    """Turn the core's exceptions into failed CommandResults."""

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> CommandResult:
        try:
            return await func(*args, **kwargs)
        except (ValidationError, DomainValidationError) as e:
            return CommandResult(False, error=str(e))
        except StorageError as e:
            logger.error(f"{func.__name__} failed: {e}")
            return CommandResult(False, error=f"Storage failure: {e}")

    return wrapper


def validate_reason(reason: Optional[str]) -> str:
    """
    Check an unblock reason.

    Returns:
        The reason with surrounding whitespace removed

    Raises:
        ValidationError: If the reason is shorter than MIN_REASON_LENGTH
    """
    cleaned = (reason or "").strip()
    if len(cleaned) < MIN_REASON_LENGTH:
        raise ValidationError(
            f"Reason must be at least {MIN_REASON_LENGTH} characters"
        )
    return cleaned


def _not_found(domain: str) -> CommandResult:
    return CommandResult(False, error=f"Domain '{domain}' not found")


class CommandSurface:
    """Add, remove, toggle, grant, extend and query sites."""

    def __init__(
        self,
        store: RecordStore,
        engine: ReblockEngine,
        matcher: DomainMatcher,
        tz: tzinfo,
        clock: Callable[[], datetime] = utcnow,
        data_dir: Optional[Path] = None,
    ) -> None:
        self.store = store
        self.engine = engine
        self.matcher = matcher
        self.tz = tz
        self.data_dir = data_dir
        self._clock = clock

    @property
    def scheduler(self) -> Scheduler:
        return self.engine.scheduler

    def _audit(self, action: str, detail: str) -> None:
        audit_log(action, detail, data_dir=self.data_dir)

    # -------------------------------------------------------------------------
    # MUTATING COMMANDS
    # -------------------------------------------------------------------------

    @command
    async def add_site(self, url: str, duration_minutes: Optional[int] = None) -> CommandResult:
        domain = normalize_domain(url)
        if await self.store.get_site(domain) is not None:
            return CommandResult(False, error=f"Domain '{domain}' already exists")
        if not await self.store.upsert_site(domain, duration_minutes):
            return CommandResult(False, error=f"Domain '{domain}' already exists")
        self._audit("ADD", domain)
        return CommandResult(True, payload=(await self.store.get_site(domain)).to_dict())

    @command
    async def remove_site(self, domain: str) -> CommandResult:
        domain = normalize_domain(domain)
        await self.scheduler.clear(domain)
        if not await self.store.remove_site(domain):
            return _not_found(domain)
        self.engine.notifier.dismiss(self.engine.notifier.warning_id(domain))
        self._audit("REMOVE", domain)
        return CommandResult(True)

    @command
    async def toggle_site(self, domain: str, is_blocked: bool) -> CommandResult:
        """
        Block or permanently unblock a domain by hand.

        Either way a running grant ends: its alarms are cleared and its open
        history entry is closed as a manual reblock.
        """
        domain = normalize_domain(domain)
        if await self.store.get_site(domain) is None:
            return _not_found(domain)

        if is_blocked:
            await self.engine.reblock(domain, ReblockTrigger.MANUAL)
        else:
            await self.scheduler.clear(domain)
            await self.store.allow_and_close(domain)
            self._audit("UNBLOCK", domain)
        return CommandResult(True, payload=(await self.store.get_site(domain)).to_dict())

    @command
    async def unblock_with_reason(self, domain: str, reason: str) -> CommandResult:
        """Start a timed grant for the site's default duration."""
        reason = validate_reason(reason)
        domain = normalize_domain(domain)

        grant = await self.store.start_grant(domain, reason)
        if grant is None:
            return _not_found(domain)

        outcome = await self.engine.arm_grant(grant)
        self._audit("GRANT", f"{domain} for {grant.duration_minutes} min: {reason}")
        return CommandResult(
            True, payload={"timer_info": grant.to_dict(), "outcome": outcome.value}
        )

    @command
    async def extend_grant(self, domain: str) -> CommandResult:
        """Reset a running grant to its full duration."""
        domain = normalize_domain(domain)
        grant = await self.store.extend_grant(domain)
        if grant is None:
            return CommandResult(
                False, payload={"timer_info": None}, error=f"No active grant for '{domain}'"
            )

        await self.scheduler.clear(domain)
        outcome = await self.engine.arm_grant(grant)
        self.engine.notifier.notify_extended(domain, grant.duration_minutes)
        return CommandResult(
            True, payload={"timer_info": grant.to_dict(), "outcome": outcome.value}
        )

    @command
    async def update_duration(self, domain: str, duration_minutes: int) -> CommandResult:
        domain = normalize_domain(domain)
        if not await self.store.update_duration(domain, duration_minutes):
            return _not_found(domain)
        self._audit("DURATION", f"{domain} {duration_minutes} min")
        return CommandResult(True)

    # -------------------------------------------------------------------------
    # QUERIES
    # -------------------------------------------------------------------------

    @command
    async def get_all_sites(self) -> CommandResult:
        return CommandResult(True, payload=[s.to_dict() for s in await self.store.list_sites()])

    @command
    async def get_blocked_sites(self) -> CommandResult:
        sites = await self.store.list_blocked_sites()
        return CommandResult(True, payload=[s.to_dict() for s in sites])

    @command
    async def get_site_info(self, domain: str) -> CommandResult:
        site = await self.store.get_site(domain)
        if site is None:
            return _not_found(normalize_domain(domain))
        return CommandResult(True, payload=site.to_dict())

    @command
    async def get_history(self) -> CommandResult:
        history = await self.store.list_history()
        return CommandResult(True, payload=[e.to_dict() for e in history])

    @command
    async def get_stats(self) -> CommandResult:
        history = await self.store.list_history()
        stats = compute_stats(history, self._clock(), self.tz)
        return CommandResult(True, payload=stats.to_dict())

    @command
    async def is_blocked(self, url: str) -> CommandResult:
        return CommandResult(True, payload=await self.matcher.is_domain_blocked(url))
