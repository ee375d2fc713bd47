"""
Snapshot Domain Layer
=====================

Domain layer for the snapshot/freeze module.

Contains:
- Entities: SnapshotMeta, SnapshotChange
- Value Objects: CycleWindow, GroupCalendar, CalendarConfig
- Domain Services: FreezePolicy (stateless refresh/freeze decisions)

This layer has no dependencies on infrastructure.
"""

from cycle_kpi.snapshots.domain.entities import SnapshotMeta, SnapshotChange
from cycle_kpi.snapshots.domain.value_objects import (
    CycleWindow,
    GroupCalendar,
    CalendarConfig,
    FreezePolicy,
)

__all__ = [
    # Entities
    "SnapshotMeta",
    "SnapshotChange",
    # Value Objects & Services
    "CycleWindow",
    "GroupCalendar",
    "CalendarConfig",
    "FreezePolicy",
]
