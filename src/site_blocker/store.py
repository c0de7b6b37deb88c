"""Persistent record store for sites and unblock history."""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional

from .common import (
    normalize_domain,
    read_secure_file,
    utcnow,
    validate_domain,
    write_secure_file,
)
from .config import DEFAULT_GRANT_MINUTES
from .exceptions import DomainValidationError, StorageError, ValidationError
from .models import GrantInfo, HistoryEntry, ReblockOutcome, Site

STATE_VERSION = 1

logger = logging.getLogger(__name__)


class _Unit:
    """Marks whether a locked operation changed anything that must be flushed."""

    def __init__(self) -> None:
        self.dirty = False


def _with_domain_state(
    sites: dict[str, Site],
    history: list[HistoryEntry],
    domain: str,
    site_before: Optional[Site],
    history_before: dict[int, HistoryEntry],
) -> tuple[dict[str, Site], list[HistoryEntry]]:
    """Copies of sites and history with one domain's records swapped for a saved image."""
    sites = dict(sites)
    if site_before is None:
        sites.pop(domain, None)
    else:
        sites[domain] = site_before
    history = [
        history_before[e.id] if e.domain == domain else e
        for e in history
        if e.domain != domain or e.id in history_before
    ]
    return sites, history


class RecordStore:
    """
    Owns Site and HistoryEntry records and persists them to a JSON file.

    Every operation that reads and then writes a domain's records runs as one
    unit under that domain's asyncio.Lock. The only point where units on
    different domains wait for each other is the flush of the state file.
    A failed flush rolls the domain back to its state before the unit and
    raises StorageError. A flush writes other domains whose units are still
    running as they were before those units, so a change reaches the file
    only through its own unit's flush.
    """

    def __init__(
        self,
        path: Path,
        clock: Callable[[], datetime] = utcnow,
        default_grant_minutes: int = DEFAULT_GRANT_MINUTES,
    ) -> None:
        """
        Initialize the store. Nothing is read until the first operation.

        Args:
            path: Location of the state file
            clock: Returns the current aware datetime
            default_grant_minutes: Grant length for sites added without one
        """
        self.path = Path(path)
        self.default_grant_minutes = default_grant_minutes
        self._clock = clock
        self._sites: dict[str, Site] = {}
        self._history: list[HistoryEntry] = []
        self._next_history_id = 1
        self._loaded = False
        self._load_lock = asyncio.Lock()
        self._flush_lock = asyncio.Lock()
        self._domain_locks: dict[str, asyncio.Lock] = {}
        self._in_flight: dict[str, tuple[Optional[Site], dict[int, HistoryEntry]]] = {}

    # -------------------------------------------------------------------------
    # LOADING AND FLUSHING
    # -------------------------------------------------------------------------

    async def open(self) -> None:
        """Load the state file (once). Missing file means an empty store."""
        if self._loaded:
            return
        async with self._load_lock:
            if self._loaded:
                return
            data = await asyncio.to_thread(self._read)
            try:
                self._sites = {
                    domain: Site.from_dict(site) for domain, site in data["sites"].items()
                }
                self._history = [HistoryEntry.from_dict(e) for e in data["history"]]
                self._next_history_id = int(data["next_history_id"])
            except (KeyError, TypeError, ValueError) as e:
                raise StorageError(f"Corrupt state file {self.path}: {e}") from e
            self._loaded = True
            logger.debug(
                f"Loaded {len(self._sites)} sites and {len(self._history)} history entries"
            )

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {"sites": {}, "history": [], "next_history_id": 1}
        content = read_secure_file(self.path)
        if content is None:
            raise StorageError(f"Failed to read state file {self.path}")
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise StorageError(f"Invalid JSON in state file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"State file {self.path} must contain a JSON object")
        return data

    def _snapshot(self, domain: str) -> str:
        # Other domains still inside a unit are written as they were before it
        sites, history = self._sites, self._history
        for other, (site_before, history_before) in self._in_flight.items():
            if other != domain:
                sites, history = _with_domain_state(
                    sites, history, other, site_before, history_before
                )
        return json.dumps(
            {
                "version": STATE_VERSION,
                "next_history_id": self._next_history_id,
                "sites": {key: site.to_dict() for key, site in sites.items()},
                "history": [entry.to_dict() for entry in history],
            },
            indent=2,
        )

    async def _flush(self, domain: str) -> None:
        async with self._flush_lock:
            content = self._snapshot(domain)
            try:
                await asyncio.to_thread(write_secure_file, self.path, content)
            except OSError as e:
                raise StorageError(f"Failed to write state file {self.path}: {e}") from e

    def _lock_for(self, domain: str) -> asyncio.Lock:
        if domain not in self._domain_locks:
            self._domain_locks[domain] = asyncio.Lock()
        return self._domain_locks[domain]

    @asynccontextmanager
    async def _unit(self, domain: str) -> AsyncIterator[_Unit]:
        await self.open()
        async with self._lock_for(domain):
            site_before = self._sites.get(domain)
            site_before = replace(site_before) if site_before else None
            history_before = {
                e.id: replace(e) for e in self._history if e.domain == domain
            }
            self._in_flight[domain] = (site_before, history_before)
            unit = _Unit()
            try:
                yield unit
                if unit.dirty:
                    await self._flush(domain)
            except BaseException:
                self._sites, self._history = _with_domain_state(
                    self._sites, self._history, domain, site_before, history_before
                )
                raise
            finally:
                del self._in_flight[domain]

    # -------------------------------------------------------------------------
    # INTERNAL HELPERS (caller holds the domain lock)
    # -------------------------------------------------------------------------

    def _open_entry(self, domain: str) -> Optional[HistoryEntry]:
        open_entries = [e for e in self._history if e.domain == domain and e.is_open]
        if not open_entries:
            return None
        return max(open_entries, key=lambda e: (e.timestamp, e.id))

    def _close_open_entry(self, domain: str, auto_reblocked: bool) -> bool:
        entry = self._open_entry(domain)
        if entry is None:
            return False
        entry.was_auto_reblocked = auto_reblocked
        entry.reblocked_at = self._clock()
        return True

    def _append_entry(self, domain: str, reason: str, duration: int) -> int:
        entry = HistoryEntry(
            id=self._next_history_id,
            domain=domain,
            reason=reason,
            timestamp=self._clock(),
            grant_duration_minutes=duration,
        )
        self._next_history_id += 1
        self._history.append(entry)
        return entry.id

    def _start_timer(self, site: Site) -> GrantInfo:
        site.is_blocked = False
        site.unblock_until = self._clock() + timedelta(minutes=site.grant_duration_minutes)
        return GrantInfo(site.domain, site.grant_duration_minutes, site.unblock_until)

    @staticmethod
    def _key(domain: str) -> str:
        return normalize_domain(domain)

    # -------------------------------------------------------------------------
    # SITE OPERATIONS
    # -------------------------------------------------------------------------

    async def upsert_site(self, domain: str, duration_minutes: Optional[int] = None) -> bool:
        """
        Add a domain as BLOCKED, or update the duration of an existing one.

        Args:
            domain: Domain or URL to block
            duration_minutes: Grant length (default: store default)

        Returns:
            True if the site was created, False if it already existed

        Raises:
            DomainValidationError: If the domain is not valid
            ValidationError: If the duration is not a positive integer
        """
        key = self._key(domain)
        if not validate_domain(key):
            raise DomainValidationError(f"Invalid domain format '{domain}'")
        if duration_minutes is not None and (
            not isinstance(duration_minutes, int) or duration_minutes <= 0
        ):
            raise ValidationError(
                f"Duration must be a positive number of minutes, got: {duration_minutes}"
            )

        async with self._unit(key) as unit:
            site = self._sites.get(key)
            if site is not None:
                if duration_minutes is not None and site.grant_duration_minutes != duration_minutes:
                    site.grant_duration_minutes = duration_minutes
                    unit.dirty = True
                return False
            self._sites[key] = Site(
                domain=key,
                is_blocked=True,
                grant_duration_minutes=duration_minutes or self.default_grant_minutes,
                date_added=self._clock(),
            )
            unit.dirty = True
            return True

    async def update_duration(self, domain: str, duration_minutes: int) -> bool:
        """Set a site's default grant length. Returns False if absent."""
        if not isinstance(duration_minutes, int) or duration_minutes <= 0:
            raise ValidationError(
                f"Duration must be a positive number of minutes, got: {duration_minutes}"
            )
        key = self._key(domain)
        async with self._unit(key) as unit:
            site = self._sites.get(key)
            if site is None:
                return False
            site.grant_duration_minutes = duration_minutes
            unit.dirty = True
            return True

    async def set_blocked(self, domain: str, blocked: bool) -> bool:
        """
        Set the block state by hand. Any running grant timer is dropped.

        Returns:
            False if the domain is not in the store
        """
        key = self._key(domain)
        async with self._unit(key) as unit:
            site = self._sites.get(key)
            if site is None:
                return False
            site.is_blocked = blocked
            site.unblock_until = None
            unit.dirty = True
            return True

    async def grant_unblock(self, domain: str) -> Optional[GrantInfo]:
        """Unblock for the site's grant duration. None if the domain is absent."""
        key = self._key(domain)
        async with self._unit(key) as unit:
            site = self._sites.get(key)
            if site is None:
                return None
            unit.dirty = True
            return self._start_timer(site)

    async def extend_grant(self, domain: str) -> Optional[GrantInfo]:
        """
        Restart the grant timer at the full duration.

        Returns:
            New grant info, or None if the domain is absent or BLOCKED
        """
        key = self._key(domain)
        async with self._unit(key) as unit:
            site = self._sites.get(key)
            if site is None or site.is_blocked:
                return None
            unit.dirty = True
            return self._start_timer(site)

    async def start_grant(self, domain: str, reason: str) -> Optional[GrantInfo]:
        """
        Record a history entry and unblock, as one unit.

        A stale open entry for the domain is closed as manual first so the
        domain never has two open entries.

        Returns:
            Grant info, or None if the domain is absent
        """
        key = self._key(domain)
        async with self._unit(key) as unit:
            site = self._sites.get(key)
            if site is None:
                return None
            if self._close_open_entry(key, auto_reblocked=False):
                logger.debug(f"Closed stale open history entry for {key}")
            self._append_entry(key, reason, site.grant_duration_minutes)
            unit.dirty = True
            return self._start_timer(site)

    async def block_and_close(self, domain: str, auto_reblocked: bool) -> ReblockOutcome:
        """
        Set BLOCKED, clear the timer and close the open history entry, as one unit.

        Returns:
            Whether the site changed state and whether an entry was closed
        """
        key = self._key(domain)
        async with self._unit(key) as unit:
            site = self._sites.get(key)
            changed = False
            if site is not None and (not site.is_blocked or site.unblock_until is not None):
                site.is_blocked = True
                site.unblock_until = None
                changed = True
            closed = self._close_open_entry(key, auto_reblocked)
            unit.dirty = changed or closed
            return ReblockOutcome(changed=changed, history_closed=closed)

    async def allow_and_close(self, domain: str) -> bool:
        """
        Unblock with no deadline and close the open history entry as manual, as one unit.

        Returns:
            False if the domain is not in the store
        """
        key = self._key(domain)
        async with self._unit(key) as unit:
            site = self._sites.get(key)
            if site is None:
                return False
            site.is_blocked = False
            site.unblock_until = None
            self._close_open_entry(key, auto_reblocked=False)
            unit.dirty = True
            return True

    async def remove_site(self, domain: str) -> bool:
        """
        Delete a site. Its open history entry, if any, is closed as manual.

        Returns:
            True if the site existed
        """
        key = self._key(domain)
        async with self._unit(key) as unit:
            site = self._sites.pop(key, None)
            closed = self._close_open_entry(key, auto_reblocked=False)
            unit.dirty = site is not None or closed
            return site is not None

    async def get_site(self, domain: str) -> Optional[Site]:
        await self.open()
        site = self._sites.get(self._key(domain))
        return replace(site) if site else None

    async def list_sites(self) -> list[Site]:
        await self.open()
        return [replace(site) for site in self._sites.values()]

    async def list_blocked_sites(self) -> list[Site]:
        return [site for site in await self.list_sites() if site.is_blocked]

    async def list_active_grants(self) -> list[Site]:
        return [site for site in await self.list_sites() if site.has_active_grant]

    # -------------------------------------------------------------------------
    # HISTORY OPERATIONS
    # -------------------------------------------------------------------------

    async def append_history(self, domain: str, reason: str, duration_minutes: int) -> int:
        """
        Append an open history entry and return its id.

        An entry still open for the domain is closed as manual first.
        """
        key = self._key(domain)
        async with self._unit(key) as unit:
            unit.dirty = True
            self._close_open_entry(key, auto_reblocked=False)
            return self._append_entry(key, reason, duration_minutes)

    async def close_open_history_entry(self, domain: str, auto_reblocked: bool) -> bool:
        """
        Close the most recent open entry for a domain.

        Returns:
            False if there was no open entry (not an error)
        """
        key = self._key(domain)
        async with self._unit(key) as unit:
            closed = self._close_open_entry(key, auto_reblocked)
            unit.dirty = closed
            return closed

    async def list_history(self) -> list[HistoryEntry]:
        """All history entries, newest first."""
        await self.open()
        entries = [replace(e) for e in self._history]
        entries.sort(key=lambda e: (e.timestamp, e.id), reverse=True)
        return entries
