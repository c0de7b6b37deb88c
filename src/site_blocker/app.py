"""Construction of the store, scheduler, engine and command surface."""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from zoneinfo import ZoneInfo

from .alarms import AlarmService
from .commands import CommandSurface
from .common import utcnow
from .config import get_alarms_file, get_data_dir, get_state_file
from .engine import ReblockEngine
from .matcher import DomainMatcher
from .notifications import Notifier
from .scheduler import Scheduler
from .store import RecordStore


@dataclass
class App:
    """One process's set of collaborators, sharing a single store and alarm table."""

    data_dir: Path
    store: RecordStore
    alarms: AlarmService
    notifier: Notifier
    scheduler: Scheduler
    engine: ReblockEngine
    matcher: DomainMatcher
    commands: CommandSurface

    async def start(self) -> None:
        """Load persisted state and bring alarms in line with it."""
        await self.store.open()
        await self.engine.reconcile_all()


def create_app(config: dict[str, Any], clock: Callable[[], datetime] = utcnow) -> App:
    """
    Build the collaborators for a loaded configuration.

    Args:
        config: Result of load_config()
        clock: Returns the current aware datetime

    Returns:
        App with every component wired to the same store
    """
    data_dir = get_data_dir(config)
    store = RecordStore(
        get_state_file(data_dir),
        clock=clock,
        default_grant_minutes=config["default_grant_minutes"],
    )
    alarms = AlarmService(get_alarms_file(data_dir), clock=clock)
    notifier = Notifier(config.get("discord_webhook_url"), data_dir=data_dir)
    scheduler = Scheduler(alarms, notifier, clock=clock)
    engine = ReblockEngine(store, scheduler, notifier, clock=clock)
    matcher = DomainMatcher(store)
    commands = CommandSurface(
        store, engine, matcher, ZoneInfo(config["timezone"]), clock=clock, data_dir=data_dir
    )
    return App(data_dir, store, alarms, notifier, scheduler, engine, matcher, commands)
