"""Reblocking expired grants and restoring timers after a restart."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable

from .alarms import AlarmEvent, DismissNotification, ExpiryDue, WarningDue
from .common import normalize_domain, utcnow
from .exceptions import SiteBlockerError
from .models import GrantInfo, Site
from .notifications import Notifier
from .scheduler import ArmOutcome, Scheduler
from .store import RecordStore

logger = logging.getLogger(__name__)


class ReblockTrigger(Enum):
    """Why a grant ended."""

    EXPIRY = "expiry"
    MANUAL = "manual"


@dataclass
class ReconcileReport:
    """Per-domain results of reconcile_all()."""

    reblocked: list[str] = field(default_factory=list)
    rearmed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class ReblockEngine:
    """
    Ends grants and keeps the alarm table in line with the record store.

    Runs when an alarm fires and when the process starts. Both paths are
    idempotent: reblocking a blocked domain changes nothing and notifies
    nobody.
    """

    def __init__(
        self,
        store: RecordStore,
        scheduler: Scheduler,
        notifier: Notifier,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.scheduler = scheduler
        self.notifier = notifier
        self._clock = clock

    async def reblock(self, domain: str, trigger: ReblockTrigger = ReblockTrigger.EXPIRY) -> bool:
        """
        Put a domain back to BLOCKED and close its open history entry.

        Args:
            domain: Domain to reblock
            trigger: EXPIRY marks the history entry auto-reblocked

        Returns:
            True if the site changed state (False on a repeat call)
        """
        domain = normalize_domain(domain)
        outcome = await self.store.block_and_close(
            domain, auto_reblocked=trigger is ReblockTrigger.EXPIRY
        )
        await self.scheduler.clear(domain)

        if outcome.changed:
            self.notifier.notify_reblocked(domain)
            logger.info(f"Site {domain} has been reblocked ({trigger.value})")
        else:
            logger.debug(f"Site {domain} already blocked, nothing to do")
        return outcome.changed

    async def arm_grant(self, grant: GrantInfo, warn_if_late: bool = True) -> ArmOutcome:
        """Arm a grant's alarms, reblocking at once if it has already run out."""
        outcome = await self.scheduler.arm(grant.domain, grant.unblock_until, warn_if_late)
        if outcome is ArmOutcome.EXPIRED:
            await self.reblock(grant.domain, ReblockTrigger.EXPIRY)
        return outcome

    async def rearm(self, site: Site) -> ArmOutcome:
        """
        Arm alarms again for a grant that was already running.

        The warning is emitted late only while its alarm is still pending,
        i.e. it has not been delivered for this grant yet.
        """
        warning_pending = await self.scheduler.alarms.get(WarningDue(site.domain)) is not None
        grant = GrantInfo(site.domain, site.grant_duration_minutes, site.unblock_until)
        return await self.arm_grant(grant, warn_if_late=warning_pending)

    async def reconcile_all(self) -> ReconcileReport:
        """
        Re-derive every pending deadline from the record store.

        Grants whose deadline passed while the process was not running are
        reblocked as if their alarm had fired on time; the others get fresh
        alarms for the remaining time. A failure on one domain is logged and
        the remaining domains are still processed.
        """
        report = ReconcileReport()
        now = self._clock()

        for site in await self.store.list_active_grants():
            try:
                if site.unblock_until <= now:
                    await self.reblock(site.domain, ReblockTrigger.EXPIRY)
                    report.reblocked.append(site.domain)
                else:
                    if await self.rearm(site) is ArmOutcome.EXPIRED:
                        report.reblocked.append(site.domain)
                    else:
                        report.rearmed.append(site.domain)
            except SiteBlockerError as e:
                logger.error(f"Failed to reconcile {site.domain}: {e}")
                report.failed.append(site.domain)

        if report.reblocked or report.rearmed or report.failed:
            logger.info(
                f"Reconciled: {len(report.reblocked)} reblocked, "
                f"{len(report.rearmed)} re-armed, {len(report.failed)} failed"
            )
        return report

    async def handle_alarm(self, event: AlarmEvent) -> None:
        """Dispatch a fired alarm."""
        match event:
            case WarningDue(domain=domain):
                site = await self.store.get_site(domain)
                if site is None or not site.has_active_grant:
                    logger.debug(f"Ignoring warning for {domain}: no running grant")
                    return
                await self.scheduler.warn(domain)
            case ExpiryDue(domain=domain):
                site = await self.store.get_site(domain)
                if site is not None and site.has_active_grant and site.unblock_until > self._clock():
                    # Grant was extended after this alarm was armed
                    await self.rearm(site)
                    return
                await self.reblock(domain, ReblockTrigger.EXPIRY)
            case DismissNotification(notification_id=notification_id):
                self.notifier.dismiss(notification_id)
            case _:
                logger.warning(f"Unknown alarm event: {event!r}")
