"""Records kept by the store: sites, unblock history and grant results."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from .common import format_timestamp, parse_timestamp


@dataclass
class Site:
    """One blocked (or temporarily unblocked) domain."""

    domain: str
    is_blocked: bool
    grant_duration_minutes: int
    date_added: datetime
    unblock_until: Optional[datetime] = None

    @property
    def has_active_grant(self) -> bool:
        return not self.is_blocked and self.unblock_until is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "is_blocked": self.is_blocked,
            "grant_duration_minutes": self.grant_duration_minutes,
            "unblock_until": format_timestamp(self.unblock_until),
            "date_added": format_timestamp(self.date_added),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Site":
        return cls(
            domain=data["domain"],
            is_blocked=bool(data["is_blocked"]),
            grant_duration_minutes=int(data["grant_duration_minutes"]),
            date_added=parse_timestamp(data["date_added"]),
            unblock_until=parse_timestamp(data.get("unblock_until")),
        )


@dataclass
class HistoryEntry:
    """
    One granted unblock.

    was_auto_reblocked is None while the grant is open, True when the grant
    ran out and False when it was ended by hand. reblocked_at is set at the
    same moment and never changes afterwards.
    """

    id: int
    domain: str
    reason: str
    timestamp: datetime
    grant_duration_minutes: int
    was_auto_reblocked: Optional[bool] = None
    reblocked_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.reblocked_at is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "domain": self.domain,
            "reason": self.reason,
            "timestamp": format_timestamp(self.timestamp),
            "grant_duration_minutes": self.grant_duration_minutes,
            "was_auto_reblocked": self.was_auto_reblocked,
            "reblocked_at": format_timestamp(self.reblocked_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryEntry":
        return cls(
            id=int(data["id"]),
            domain=data["domain"],
            reason=data["reason"],
            timestamp=parse_timestamp(data["timestamp"]),
            grant_duration_minutes=int(data["grant_duration_minutes"]),
            was_auto_reblocked=data.get("was_auto_reblocked"),
            reblocked_at=parse_timestamp(data.get("reblocked_at")),
        )


@dataclass(frozen=True)
class GrantInfo:
    """Result of starting or extending a grant."""

    domain: str
    duration_minutes: int
    unblock_until: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "duration_minutes": self.duration_minutes,
            "unblock_until": format_timestamp(self.unblock_until),
        }


@dataclass(frozen=True)
class ReblockOutcome:
    """What block_and_close changed: the site state and/or the open entry."""

    changed: bool
    history_closed: bool
