"""
Snapshot Value Objects
======================

Immutable value objects for the snapshot domain.

- CycleWindow / GroupCalendar / CalendarConfig: the per-group cycle calendar,
  validated once when loaded and read-only afterwards.
- FreezePolicy: pure functions deciding whether a cycle's committed set may
  still be refreshed and when it must be frozen.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from cycle_kpi.config import CYCLE_KEYS, cycle_index


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CycleWindow(BaseModel):
    """Start and end instants of one cycle."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """Naive timestamps are taken to be UTC."""
        return _as_utc(v)

    @model_validator(mode="after")
    def check_order(self) -> "CycleWindow":
        if self.end < self.start:
            raise ValueError("cycle end cannot be before its start")
        return self

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant <= self.end


class GroupCalendar(BaseModel):
    """
    Calendar of one group: the six cycle windows C1..C6.

    Accepts either {"cycles": {...}} or the bare {"C1": {...}, ...} mapping
    used by calendar files.
    """

    model_config = ConfigDict(frozen=True)

    cycles: Dict[str, CycleWindow]

    @model_validator(mode="before")
    @classmethod
    def wrap_bare_mapping(cls, data):
        if isinstance(data, dict) and "cycles" not in data:
            return {"cycles": data}
        return data

    @field_validator("cycles")
    @classmethod
    def require_all_cycles(cls, v: Dict[str, CycleWindow]) -> Dict[str, CycleWindow]:
        normalized = {str(key).strip().upper(): window for key, window in v.items()}
        missing = [key for key in CYCLE_KEYS if key not in normalized]
        if missing:
            raise ValueError(f"calendar is missing cycles: {missing}")
        unknown = sorted(set(normalized) - set(CYCLE_KEYS))
        if unknown:
            raise ValueError(f"calendar has unknown cycles: {unknown}")
        return normalized

    def window(self, cycle_key: str) -> CycleWindow:
        return self.cycles[cycle_key.upper()]

    def end_of(self, cycle_key: str) -> datetime:
        return self.window(cycle_key).end

    def current_cycle(self, now: datetime) -> str:
        """
        Cycle whose window contains `now`; otherwise the most recently ended
        cycle; otherwise C1.
        """
        now = _as_utc(now)
        for key in CYCLE_KEYS:
            if self.cycles[key].contains(now):
                return key

        ended = [key for key in CYCLE_KEYS if self.cycles[key].end <= now]
        if not ended:
            return CYCLE_KEYS[0]
        return max(ended, key=lambda key: self.cycles[key].end)


class CalendarConfig(BaseModel):
    """All group calendars of one calendar file."""

    groups: Dict[str, GroupCalendar] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("groups", "pods"),
    )

    def calendar_for(self, group: str) -> Optional[GroupCalendar]:
        """Exact, case-sensitive lookup."""
        return self.groups.get(group)

    @property
    def group_names(self) -> List[str]:
        return list(self.groups)


class FreezePolicy:
    """
    Pure functions for the snapshot freeze policy.

    Cycles up to and including the threshold cycle T share one grace window
    that ends when T ends, so late labels can still count toward any early
    cycle. Later cycles each govern their own window. A snapshot may be
    refreshed while `now <= governing end` and is frozen once
    `now > governing end`.
    """

    @staticmethod
    def is_cycle_active(calendar: GroupCalendar, cycle_key: str, now: datetime) -> bool:
        """A cycle is active until (and including) its end instant."""
        return _as_utc(now) <= calendar.end_of(cycle_key)

    @staticmethod
    def governing_end(
        calendar: GroupCalendar,
        cycle_key: str,
        threshold_cycle: str = "C2"
    ) -> datetime:
        """
        End of the window that controls refresh and freeze for `cycle_key`.

        Raises:
            ValueError: If either key is not one of C1..C6
        """
        k = cycle_index(cycle_key)
        t = cycle_index(threshold_cycle)
        if k is None or t is None:
            raise ValueError(f"invalid cycle key: {cycle_key!r} / {threshold_cycle!r}")

        if k <= t:
            return calendar.end_of(threshold_cycle)
        return calendar.end_of(cycle_key)

    @staticmethod
    def should_allow_refresh(
        calendar: GroupCalendar,
        cycle_key: str,
        now: datetime,
        threshold_cycle: str = "C2"
    ) -> bool:
        deadline = FreezePolicy.governing_end(calendar, cycle_key, threshold_cycle)
        return _as_utc(now) <= deadline

    @staticmethod
    def should_freeze_now(
        calendar: GroupCalendar,
        cycle_key: str,
        now: datetime,
        threshold_cycle: str = "C2"
    ) -> bool:
        deadline = FreezePolicy.governing_end(calendar, cycle_key, threshold_cycle)
        return _as_utc(now) > deadline
