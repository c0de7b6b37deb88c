"""Shared fixtures: a controllable clock and components wired to tmp_path."""

import asyncio
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from site_blocker.alarms import AlarmService
from site_blocker.commands import CommandSurface
from site_blocker.engine import ReblockEngine
from site_blocker.matcher import DomainMatcher
from site_blocker.notifications import Notifier
from site_blocker.scheduler import Scheduler
from site_blocker.store import RecordStore

START = datetime(2024, 3, 14, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def run(coro):
    """Run a coroutine to completion on a fresh event loop."""
    return asyncio.run(coro)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def store(data_dir, clock):
    return RecordStore(data_dir / "state.json", clock=clock)


@pytest.fixture
def alarms(data_dir, clock):
    return AlarmService(data_dir / "alarms.json", clock=clock)


@pytest.fixture
def notifier(data_dir):
    return Notifier(data_dir=data_dir)


@pytest.fixture
def scheduler(alarms, notifier, clock):
    return Scheduler(alarms, notifier, clock=clock)


@pytest.fixture
def engine(store, scheduler, notifier, clock):
    return ReblockEngine(store, scheduler, notifier, clock=clock)


@pytest.fixture
def commands(store, engine, clock, data_dir):
    return CommandSurface(
        store, engine, DomainMatcher(store), ZoneInfo("UTC"), clock=clock, data_dir=data_dir
    )
