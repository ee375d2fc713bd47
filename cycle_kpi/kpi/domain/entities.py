"""
KPI Domain Entities
===================

Pure Python domain entities for delivery KPIs.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, FrozenSet, Dict, Any

from cycle_kpi.config import KpiStatus, GroupStatus, CYCLE_KEYS


@dataclass(frozen=True)
class WorkItem:
    """
    Read-only view of one upstream work item.

    Only the fields the KPI needs are kept: identity, labels and completion.
    """

    id: str
    label_ids: FrozenSet[str] = frozenset()
    is_done: bool = False
    completed_at: Optional[datetime] = None
    identifier: Optional[str] = None

    def has_label(self, label_id: Optional[str]) -> bool:
        return label_id is not None and label_id in self.label_ids

    def completed_by(self, cutoff: datetime) -> bool:
        """Done, with a completion timestamp at or before `cutoff`."""
        if not self.is_done or self.completed_at is None:
            return False
        completed_at = self.completed_at
        if completed_at.tzinfo is None:
            completed_at = completed_at.replace(tzinfo=timezone.utc)
        return completed_at <= cutoff


@dataclass
class CycleKpi:
    """
    Delivery metrics of one (group, cycle) for one run.

    `completed` is the display value: completed so far while the cycle is
    active, completed by the cycle end once it has closed.
    """

    group: str
    cycle: str
    committed: int = 0
    completed: int = 0
    completed_by_end: int = 0
    completed_so_far: int = 0
    delivery_pct: int = 0
    spillover: int = 0
    active: bool = False
    frozen: bool = False
    cycle_end: Optional[datetime] = None
    status: str = KpiStatus.OK
    error: Optional[str] = None
    completed_item_ids: List[str] = field(default_factory=list)
    open_item_ids: List[str] = field(default_factory=list)

    @property
    def delivery_pct_display(self) -> str:
        return f"{self.delivery_pct}%"

    @property
    def is_ok(self) -> bool:
        return self.status == KpiStatus.OK

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "group": self.group,
            "cycle": self.cycle,
            "committed": self.committed,
            "completed": self.completed,
            "completed_by_end": self.completed_by_end,
            "completed_so_far": self.completed_so_far,
            "delivery_pct": self.delivery_pct,
            "delivery_pct_display": self.delivery_pct_display,
            "spillover": self.spillover,
            "active": self.active,
            "frozen": self.frozen,
            "cycle_end": self.cycle_end.isoformat() if self.cycle_end else None,
            "status": self.status,
            "error": self.error,
            "completed_item_ids": list(self.completed_item_ids),
            "open_item_ids": list(self.open_item_ids),
        }


@dataclass
class GroupKpiResult:
    """All cycle rows of one group plus what went wrong while computing them."""

    group: str
    status: str = GroupStatus.OK
    rows: List[CycleKpi] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def row(self, cycle: str) -> Optional[CycleKpi]:
        for row in self.rows:
            if row.cycle == cycle:
                return row
        return None


@dataclass(frozen=True)
class CycleTotals:
    """Cross-group sums for one cycle, over rows that computed successfully."""

    cycle: str
    committed: int = 0
    completed: int = 0
    spillover: int = 0
    delivery_pct: int = 0

    @property
    def delivery_pct_display(self) -> str:
        return f"{self.delivery_pct}%"


@dataclass
class KpiRunReport:
    """
    Outcome of one KPI run across all groups.

    A run always completes; per-group problems are carried in the group
    results instead of failing the batch.
    """

    run_id: str
    run_at: datetime
    groups: List[GroupKpiResult] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    current_cycle: Optional[str] = None
    headline_cycle: Optional[str] = None
    fallback_cycle: Optional[str] = None

    @property
    def rows(self) -> List[CycleKpi]:
        return [row for group in self.groups for row in group.rows]

    def rows_for_cycle(self, cycle: str) -> List[CycleKpi]:
        return [row for row in self.rows if row.cycle == cycle]

    def committed_for_cycle(self, cycle: str) -> int:
        return sum(row.committed for row in self.rows_for_cycle(cycle))

    def committed_by_cycle(self) -> Dict[str, int]:
        return {cycle: self.committed_for_cycle(cycle) for cycle in CYCLE_KEYS}

    def totals_for_cycle(self, cycle: str) -> CycleTotals:
        from cycle_kpi.kpi.domain.value_objects import DeliveryCalculator

        return DeliveryCalculator.totals(cycle, self.rows_for_cycle(cycle))

    @property
    def has_errors(self) -> bool:
        return any(group.errors for group in self.groups)
