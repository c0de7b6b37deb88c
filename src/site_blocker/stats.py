"""Usage statistics derived from unblock history."""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, tzinfo
from typing import Any, Optional, Sequence

from .config import STREAK_CAP_DAYS
from .models import HistoryEntry


@dataclass
class HistoryStats:
    """Summary of recent unblocks."""

    total_this_week: int
    total_today: int
    most_unblocked: Optional[str]
    most_unblocked_count: int
    avg_per_day: float
    streak: int
    day_breakdown: dict[str, int] = field(default_factory=dict)
    today_history: list[HistoryEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_this_week": self.total_this_week,
            "total_today": self.total_today,
            "most_unblocked": {"domain": self.most_unblocked, "count": self.most_unblocked_count},
            "avg_per_day": self.avg_per_day,
            "streak": self.streak,
            "day_breakdown": dict(self.day_breakdown),
            "today_history": [entry.to_dict() for entry in self.today_history],
        }


def focus_streak(
    history: Sequence[HistoryEntry], now: datetime, tz: tzinfo, cap: int = STREAK_CAP_DAYS
) -> int:
    """
    Count whole days without unblocks, walking back from yesterday.

    Days are calendar days in tz. Today never counts, with or without
    entries. The count stops at cap.

    Args:
        history: Unblock history in any order
        now: Current aware datetime
        tz: Timezone that defines day boundaries
        cap: Largest streak reported

    Returns:
        Number of consecutive empty days before today
    """
    busy_days: set[date] = {entry.timestamp.astimezone(tz).date() for entry in history}
    day = now.astimezone(tz).date() - timedelta(days=1)
    streak = 0
    while streak < cap and day not in busy_days:
        streak += 1
        day -= timedelta(days=1)
    return streak


def compute_stats(history: Sequence[HistoryEntry], now: datetime, tz: tzinfo) -> HistoryStats:
    """
    Summarize unblock history.

    Windows are trailing: the week is the last 7 x 24 hours and "today" is
    the last 24 hours. The most unblocked domain is counted over the week;
    on a tie the domain seen first while walking history (newest first)
    wins. Pure function; nothing is modified.

    Args:
        history: Entries as returned by RecordStore.list_history (newest first)
        now: Current aware datetime
        tz: Timezone for day boundaries in the streak and day breakdown

    Returns:
        HistoryStats
    """
    week_start = now - timedelta(days=7)
    day_start = now - timedelta(hours=24)

    week_history = [e for e in history if e.timestamp >= week_start]
    today_history = [e for e in history if e.timestamp >= day_start]

    domain_counts: dict[str, int] = {}
    day_breakdown: dict[str, int] = {}
    for entry in week_history:
        domain_counts[entry.domain] = domain_counts.get(entry.domain, 0) + 1
        day_key = entry.timestamp.astimezone(tz).date().isoformat()
        day_breakdown[day_key] = day_breakdown.get(day_key, 0) + 1

    most_unblocked: Optional[str] = None
    most_count = 0
    for domain, count in domain_counts.items():
        if count > most_count:
            most_unblocked, most_count = domain, count

    return HistoryStats(
        total_this_week=len(week_history),
        total_today=len(today_history),
        most_unblocked=most_unblocked,
        most_unblocked_count=most_count,
        avg_per_day=round(len(week_history) / 7, 1),
        streak=focus_streak(history, now, tz),
        day_breakdown=day_breakdown,
        today_history=today_history,
    )
