"""
Test configuration - repo root on sys.path plus shared calendar fixtures.

The "Alpha" calendar below is the one used throughout the suite:
C1 ends 2026-01-15, C2 ends 2026-01-29, every cycle is two weeks long.
"""

import asyncio
import functools
import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from cycle_kpi.snapshots.domain import CalendarConfig, GroupCalendar  # noqa: E402

CYCLE_START = datetime(2026, 1, 1, tzinfo=timezone.utc)


def async_test(coro):
    """Decorator to run async tests with asyncio.run."""

    @functools.wraps(coro)
    def wrapper(*args, **kwargs):
        return asyncio.run(coro(*args, **kwargs))

    return wrapper


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def calendar_dict(start: datetime = CYCLE_START, days: int = 14) -> dict:
    """Six back-to-back cycles of `days` days starting at `start`."""
    cycles = {}
    for i in range(6):
        begin = start + timedelta(days=days * i)
        end = begin + timedelta(days=days)
        cycles[f"C{i + 1}"] = {"start": begin.isoformat(), "end": end.isoformat()}
    return cycles


@pytest.fixture
def alpha_calendar() -> GroupCalendar:
    return GroupCalendar.model_validate(calendar_dict())


@pytest.fixture
def calendar_config() -> CalendarConfig:
    return CalendarConfig.model_validate({"groups": {"Alpha": calendar_dict()}})


@pytest.fixture
def config_files(tmp_path):
    """Calendar and group files for Alpha and Beta on disk."""
    calendar_path = tmp_path / "cycle_calendar.json"
    groups_path = tmp_path / "groups.json"
    calendar_path.write_text(json.dumps({
        "groups": {"Alpha": calendar_dict(), "Beta": calendar_dict()}
    }))
    groups_path.write_text(json.dumps({
        "groups": {"Alpha": {"teamId": "team-alpha"}, "Beta": {"teamId": "team-beta"}}
    }))
    return calendar_path, groups_path


@pytest.fixture
def sqlite_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'state' / 'kpi_state.db'}"
