"""Deadline scheduling for timed unblock grants."""

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable

from .alarms import AlarmService, DismissNotification, domain_alarms
from .common import normalize_domain, utcnow
from .config import DISMISS_AFTER_SECONDS, WARNING_LEAD_SECONDS
from .notifications import Notifier

logger = logging.getLogger(__name__)


class ArmOutcome(Enum):
    """What arm() did for a grant."""

    ARMED = "armed"  # warning and expiry alarms pending
    WARNED_NOW = "warned_now"  # under a minute left: warned now, expiry pending
    EXPIRED = "expired"  # deadline already passed, nothing armed


class Scheduler:
    """
    Keeps one warning and one expiry alarm per domain with a running grant.

    The alarm service is the only record of pending deadlines; this class
    holds no timer state of its own.
    """

    def __init__(
        self,
        alarms: AlarmService,
        notifier: Notifier,
        clock: Callable[[], datetime] = utcnow,
        warning_lead_seconds: int = WARNING_LEAD_SECONDS,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            alarms: Durable alarm service
            notifier: Receives the warning signal
            clock: Returns the current aware datetime
            warning_lead_seconds: How long before expiry the warning fires
        """
        self.alarms = alarms
        self.notifier = notifier
        self._clock = clock
        self.warning_lead = timedelta(seconds=warning_lead_seconds)

    async def arm(
        self, domain: str, unblock_until: datetime, warn_if_late: bool = True
    ) -> ArmOutcome:
        """
        Arm the warning and expiry alarms for a grant ending at unblock_until.

        Any alarms already pending for the domain are cleared first. When the
        warning time has already passed the warning is emitted right away and
        only the expiry alarm is armed. A deadline that has already passed
        arms nothing; the caller must reblock.

        Args:
            domain: Domain with the running grant
            unblock_until: Absolute end of the grant
            warn_if_late: Emit the warning when its time has passed. False
                when the warning for this grant was already delivered.

        Returns:
            The outcome, see ArmOutcome
        """
        domain = normalize_domain(domain)
        now = self._clock()
        remaining = unblock_until - now

        if remaining <= timedelta(0):
            logger.info(f"Grant for {domain} already expired, not arming")
            return ArmOutcome.EXPIRED

        warning, expiry = domain_alarms(domain)
        await self.alarms.disarm(warning, expiry)

        warning_at = unblock_until - self.warning_lead
        if warning_at > now:
            await self.alarms.arm(warning, warning_at)
            outcome = ArmOutcome.ARMED
        else:
            if warn_if_late:
                await self.warn(domain)
            outcome = ArmOutcome.WARNED_NOW

        await self.alarms.arm(expiry, unblock_until)

        logger.info(
            f"Timers set for {domain}: warning in "
            f"{max(0, round((warning_at - now).total_seconds()))}s, "
            f"reblock in {round(remaining.total_seconds())}s"
        )
        return outcome

    async def warn(self, domain: str) -> None:
        """Emit the one-minute warning and schedule its dismissal."""
        notification_id = self.notifier.notify_warning(domain)
        await self.alarms.arm(
            DismissNotification(notification_id),
            self._clock() + timedelta(seconds=DISMISS_AFTER_SECONDS),
        )

    async def clear(self, domain: str) -> bool:
        """Cancel a domain's pending alarms. Safe when none are armed."""
        return await self.alarms.disarm_domain(domain)
