"""Durable alarms: tagged alarm events persisted to a JSON file."""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Union

from .common import (
    format_timestamp,
    normalize_domain,
    parse_timestamp,
    read_secure_file,
    utcnow,
    write_secure_file,
)
from .exceptions import StorageError

logger = logging.getLogger(__name__)


# =============================================================================
# ALARM EVENTS
# =============================================================================


@dataclass(frozen=True)
class WarningDue:
    """The grant on domain ends in one minute."""

    domain: str

    @property
    def alarm_id(self) -> str:
        return f"warning:{self.domain}"


@dataclass(frozen=True)
class ExpiryDue:
    """The grant on domain has ended."""

    domain: str

    @property
    def alarm_id(self) -> str:
        return f"expiry:{self.domain}"


@dataclass(frozen=True)
class DismissNotification:
    """A transient notification should be taken down."""

    notification_id: str

    @property
    def alarm_id(self) -> str:
        return f"dismiss:{self.notification_id}"


AlarmEvent = Union[WarningDue, ExpiryDue, DismissNotification]


def event_to_dict(event: AlarmEvent) -> dict[str, str]:
    match event:
        case WarningDue(domain=domain):
            return {"kind": "warning", "domain": domain}
        case ExpiryDue(domain=domain):
            return {"kind": "expiry", "domain": domain}
        case DismissNotification(notification_id=notification_id):
            return {"kind": "dismiss", "notification_id": notification_id}
    raise TypeError(f"Not an alarm event: {event!r}")


def event_from_dict(data: dict[str, Any]) -> AlarmEvent:
    """
    Rebuild an alarm event from its persisted form.

    Raises:
        ValueError: If the data does not describe a known event
    """
    match data:
        case {"kind": "warning", "domain": str(domain)}:
            return WarningDue(domain)
        case {"kind": "expiry", "domain": str(domain)}:
            return ExpiryDue(domain)
        case {"kind": "dismiss", "notification_id": str(notification_id)}:
            return DismissNotification(notification_id)
    raise ValueError(f"Unknown alarm event: {data!r}")


def domain_alarms(domain: str) -> tuple[WarningDue, ExpiryDue]:
    """The warning and expiry events that belong to one domain's grant."""
    key = normalize_domain(domain)
    return WarningDue(key), ExpiryDue(key)


# =============================================================================
# ALARM SERVICE
# =============================================================================


class AlarmService:
    """
    Persistent one-shot alarms keyed by event.

    Arming an event that is already armed moves it to the new time, so each
    event has at most one pending deadline. The alarm file is rewritten after
    every change; a restarted process sees exactly the alarms that were
    pending when the previous one stopped.
    """

    def __init__(self, path: Path, clock: Callable[[], datetime] = utcnow) -> None:
        self.path = Path(path)
        self._clock = clock
        self._alarms: dict[str, tuple[datetime, AlarmEvent]] = {}
        self._loaded = False
        self._lock = asyncio.Lock()

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        raw = await asyncio.to_thread(self._read)
        alarms: dict[str, tuple[datetime, AlarmEvent]] = {}
        for alarm_id, item in raw.items():
            try:
                event = event_from_dict(item["event"])
                when = parse_timestamp(item["when"])
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Dropping unreadable alarm '{alarm_id}': {e}")
                continue
            alarms[event.alarm_id] = (when, event)
        self._alarms = alarms
        self._loaded = True

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        content = read_secure_file(self.path)
        if content is None:
            raise StorageError(f"Failed to read alarm file {self.path}")
        try:
            data = json.loads(content) if content else {}
        except json.JSONDecodeError as e:
            raise StorageError(f"Invalid JSON in alarm file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"Alarm file {self.path} must contain a JSON object")
        return data

    async def _flush(self) -> None:
        content = json.dumps(
            {
                alarm_id: {"event": event_to_dict(event), "when": format_timestamp(when)}
                for alarm_id, (when, event) in self._alarms.items()
            },
            indent=2,
        )
        try:
            await asyncio.to_thread(write_secure_file, self.path, content)
        except OSError as e:
            raise StorageError(f"Failed to write alarm file {self.path}: {e}") from e

    async def arm(self, event: AlarmEvent, when: datetime) -> None:
        """
        Schedule event to fire at or after when, replacing any pending one.

        Raises:
            StorageError: If the alarm could not be persisted
        """
        async with self._lock:
            await self._ensure_loaded()
            previous = self._alarms.get(event.alarm_id)
            self._alarms[event.alarm_id] = (when, event)
            try:
                await self._flush()
            except StorageError:
                if previous is None:
                    self._alarms.pop(event.alarm_id, None)
                else:
                    self._alarms[event.alarm_id] = previous
                raise
        logger.debug(f"Armed {event.alarm_id} at {when.isoformat()}")

    async def disarm(self, *events: AlarmEvent) -> bool:
        """
        Cancel pending alarms. Safe when none of them is armed.

        Returns:
            False if the change could not be persisted
        """
        async with self._lock:
            await self._ensure_loaded()
            removed = {
                e.alarm_id: self._alarms.pop(e.alarm_id)
                for e in events
                if e.alarm_id in self._alarms
            }
            if not removed:
                return True
            try:
                await self._flush()
            except StorageError as e:
                self._alarms.update(removed)
                logger.warning(f"Failed to disarm {', '.join(removed)}: {e}")
                return False
        logger.debug(f"Disarmed {', '.join(removed)}")
        return True

    async def disarm_domain(self, domain: str) -> bool:
        """Cancel the warning and expiry alarms of a domain."""
        return await self.disarm(*domain_alarms(domain))

    async def get(self, event: AlarmEvent) -> Optional[datetime]:
        """When event is due, or None if it is not armed."""
        async with self._lock:
            await self._ensure_loaded()
            pending = self._alarms.get(event.alarm_id)
        return pending[0] if pending else None

    async def pending(self) -> list[tuple[datetime, AlarmEvent]]:
        """All armed alarms, soonest first."""
        async with self._lock:
            await self._ensure_loaded()
            items = list(self._alarms.values())
        return sorted(items, key=lambda item: item[0])

    async def due(self, now: Optional[datetime] = None) -> list[tuple[datetime, AlarmEvent]]:
        """Armed alarms whose time has come, soonest first."""
        now = now or self._clock()
        return [item for item in await self.pending() if item[0] <= now]

    async def _acknowledge(self, event: AlarmEvent, when: datetime) -> None:
        # Leave the alarm alone if the handler re-armed it for another time
        async with self._lock:
            current = self._alarms.get(event.alarm_id)
            if current is None or current[0] != when:
                return
            del self._alarms[event.alarm_id]
            try:
                await self._flush()
            except StorageError as e:
                self._alarms[event.alarm_id] = current
                logger.warning(f"Failed to clear fired alarm {event.alarm_id}: {e}")

    async def fire_due(
        self, handler: Callable[[AlarmEvent], Awaitable[Any]], now: Optional[datetime] = None
    ) -> int:
        """
        Deliver every due alarm to handler, then remove it.

        An alarm stays armed until its handler has returned, so a process
        killed mid-delivery sees it again on the next start. A handler that
        raises is logged and its alarm stays armed for the next delivery;
        the remaining alarms are still delivered.

        Returns:
            Number of alarms delivered
        """
        fired = 0
        for when, event in await self.due(now):
            try:
                await handler(event)
            except Exception:
                logger.exception(f"Alarm handler failed for {event.alarm_id}, will retry")
                continue
            await self._acknowledge(event, when)
            fired += 1
        return fired

    async def run(
        self,
        handler: Callable[[AlarmEvent], Awaitable[Any]],
        poll_interval: float,
        stop: Optional[asyncio.Event] = None,
    ) -> None:
        """
        Deliver alarms as they come due until stop is set.

        Sleeps until the next alarm or poll_interval seconds, whichever is
        sooner. The poll bounds how late an alarm fires after the host was
        suspended, since the event loop's sleep does not count suspend time.
        Alarms whose handler failed are retried once per poll_interval.
        """
        stop = stop or asyncio.Event()
        while not stop.is_set():
            now = self._clock()
            await self.fire_due(handler, now)
            delay = poll_interval
            upcoming = [when for when, _ in await self.pending() if when > now]
            if upcoming:
                until_next = (upcoming[0] - self._clock()).total_seconds()
                delay = max(0.0, min(delay, until_next))
            try:
                await asyncio.wait_for(stop.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
