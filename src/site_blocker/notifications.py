"""User-facing notifications: log, audit trail and optional Discord webhook."""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import requests

from .common import audit_log

DISCORD_TIMEOUT = 10

# Embed colors per event type
EVENT_COLORS = {
    "warning": 0xF1C40F,  # yellow
    "reblock": 0xE74C3C,  # red
    "extend": 0x2ECC71,  # green
    "test": 0x3498DB,  # blue
}

EVENT_TITLES = {
    "warning": "Time running out",
    "reblock": "Back to focus mode",
    "extend": "Timer extended",
    "test": "Test notification",
}

logger = logging.getLogger(__name__)


def send_discord_notification(
    domain: str,
    event_type: str,
    webhook_url: Optional[str] = None,
    message: str = "",
) -> bool:
    """
    Post an embed describing an event to a Discord webhook.

    Args:
        domain: Domain the event is about
        event_type: One of EVENT_TITLES' keys
        webhook_url: Webhook to post to; nothing is sent when unset
        message: Embed body

    Returns:
        True if the webhook accepted the message
    """
    if not webhook_url:
        return False

    payload = {
        "embeds": [
            {
                "title": EVENT_TITLES.get(event_type, event_type),
                "description": message or domain,
                "color": EVENT_COLORS.get(event_type, 0x95A5A6),
                "footer": {"text": "site-blocker"},
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        ]
    }

    try:
        response = requests.post(webhook_url, json=payload, timeout=DISCORD_TIMEOUT)
        response.raise_for_status()
        return True
    except requests.exceptions.RequestException as e:
        logger.warning(f"Failed to send Discord notification for {domain}: {e}")
        return False


class Notifier:
    """
    Fire-and-forget notifications for grant events.

    Warnings stay in `active` until dismissed; the other events are one-shot.
    Nothing here raises into the caller.
    """

    def __init__(
        self, webhook_url: Optional[str] = None, data_dir: Optional[Path] = None
    ) -> None:
        self.webhook_url = webhook_url
        self.data_dir = data_dir
        self.active: dict[str, str] = {}

    @staticmethod
    def warning_id(domain: str) -> str:
        return f"warning:{domain}"

    def _emit(self, domain: str, event_type: str, action: str, message: str) -> None:
        logger.info(message)
        audit_log(action, domain, data_dir=self.data_dir)
        send_discord_notification(domain, event_type, self.webhook_url, message)

    def notify_warning(self, domain: str) -> str:
        message = f"{domain} will be blocked again in 1 minute"
        notification_id = self.warning_id(domain)
        self.active[notification_id] = message
        self._emit(domain, "warning", "WARNING", message)
        return notification_id

    def notify_reblocked(self, domain: str) -> None:
        self.active.pop(self.warning_id(domain), None)
        self._emit(domain, "reblock", "REBLOCK", f"{domain} is now blocked")

    def notify_extended(self, domain: str, duration_minutes: int) -> None:
        self.active.pop(self.warning_id(domain), None)
        self._emit(
            domain,
            "extend",
            "EXTEND",
            f"{domain} extended for {duration_minutes} more minutes",
        )

    def dismiss(self, notification_id: str) -> bool:
        """Take down an active notification. Returns False if it was not shown."""
        return self.active.pop(notification_id, None) is not None
