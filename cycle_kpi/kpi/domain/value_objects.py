"""
KPI Value Objects
=================

Immutable value objects and pure calculations for the KPI domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from cycle_kpi.config import CYCLE_KEYS
from cycle_kpi.core import LabelResolutionException
from cycle_kpi.kpi.domain.entities import CycleKpi, CycleTotals, WorkItem


def normalize_label_name(name: Optional[str]) -> str:
    return str(name or "").strip().lower()


# ========== Group configuration ==========

class GroupConfig(BaseModel):
    """One tracked group and the upstream team it maps to."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    team_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("team_id", "teamId"),
    )


class GroupsConfig(BaseModel):
    """
    All tracked groups, in file order.

    Accepts either {"groups": {...}} or the bare {"Alpha": {...}} mapping.
    """

    groups: Dict[str, GroupConfig] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def wrap_bare_mapping(cls, data):
        if isinstance(data, dict) and "groups" not in data:
            return {"groups": data}
        return data

    @property
    def group_names(self) -> List[str]:
        return list(self.groups)

    def team_id_for(self, group: str) -> Optional[str]:
        config = self.groups.get(group)
        return config.team_id if config else None


# ========== Labels ==========

class LabelCatalog:
    """
    Upstream label names to ids.

    Names are compared trimmed and case-insensitively. When two labels share
    a normalized name the first one wins.
    """

    def __init__(self, labels: Iterable[Tuple[str, str]] = ()):
        self._by_name: Dict[str, str] = {}
        for label_id, name in labels:
            self._by_name.setdefault(normalize_label_name(name), label_id)

    def __len__(self) -> int:
        return len(self._by_name)

    def resolve(self, name: Optional[str]) -> Optional[str]:
        if not name:
            return None
        return self._by_name.get(normalize_label_name(name))

    def resolve_many(self, names: Iterable[str]) -> Dict[str, Optional[str]]:
        return {name: self.resolve(name) for name in names}


@dataclass(frozen=True)
class RunLabels:
    """Label ids resolved once at the start of a run."""

    scope_label: Optional[str]
    scope_label_id: Optional[str]
    cancelled_label: Optional[str]
    cancelled_label_id: Optional[str]
    cycle_labels: Dict[str, str] = field(default_factory=dict)
    cycle_label_ids: Dict[str, Optional[str]] = field(default_factory=dict)

    @property
    def unresolved(self) -> List[str]:
        names = []
        if self.scope_label and not self.scope_label_id:
            names.append(self.scope_label)
        if self.cancelled_label and not self.cancelled_label_id:
            names.append(self.cancelled_label)
        for cycle in CYCLE_KEYS:
            if not self.cycle_label_ids.get(cycle):
                names.append(self.cycle_labels.get(cycle, cycle))
        return names

    def require_scope(self) -> None:
        """
        Raises:
            LabelResolutionException: If a scope label is configured but unresolved
        """
        if self.scope_label and not self.scope_label_id:
            raise LabelResolutionException([self.scope_label])

    def require_cycle(self, cycle: str) -> str:
        """
        Raises:
            LabelResolutionException: If the cycle's label is unresolved
        """
        label_id = self.cycle_label_ids.get(cycle)
        if not label_id:
            raise LabelResolutionException([self.cycle_labels.get(cycle, cycle)])
        return label_id

    def is_live(self, item: WorkItem, cycle_label_id: str) -> bool:
        """Carries the cycle label and the scope label, and is not cancelled."""
        if not item.has_label(cycle_label_id):
            return False
        if self.scope_label_id and not item.has_label(self.scope_label_id):
            return False
        return not item.has_label(self.cancelled_label_id)


# ========== Run options ==========

@dataclass(frozen=True)
class KpiRunOptions:
    """Knobs of a KPI run, derived from Settings once at startup."""

    scope_label: Optional[str] = "DEL"
    cancelled_label: Optional[str] = "DEL-CANCELLED"
    cycle_label_prefix: str = "2026Q1-"
    kpi_cycle: Optional[str] = None
    freeze_policy_cycle: str = "C2"
    reference_group: Optional[str] = None

    @classmethod
    def from_settings(cls, settings) -> "KpiRunOptions":
        return cls(
            scope_label=settings.scope_label,
            cancelled_label=settings.cancelled_label,
            cycle_label_prefix=settings.cycle_label_prefix,
            kpi_cycle=settings.kpi_cycle,
            freeze_policy_cycle=settings.freeze_policy_cycle,
            reference_group=settings.reference_group,
        )

    def cycle_label(self, cycle: str) -> str:
        return f"{self.cycle_label_prefix}{cycle}"

    @property
    def cycle_labels(self) -> Dict[str, str]:
        return {cycle: self.cycle_label(cycle) for cycle in CYCLE_KEYS}

    @property
    def label_names(self) -> List[str]:
        names = [name for name in (self.scope_label, self.cancelled_label) if name]
        names.extend(self.cycle_labels.values())
        return names


# ========== Calculations ==========

class DeliveryCalculator:
    """
    Pure functions for delivery metrics.

    Stateless utility class - all KPI arithmetic in one place.
    """

    @staticmethod
    def completed_ids(
        committed_ids: Iterable[str],
        items_by_id: Mapping[str, WorkItem],
        cutoff: datetime
    ) -> List[str]:
        """
        Committed ids whose item is done by `cutoff`.

        Committed ids not present in `items_by_id` count as not completed.
        """
        done = []
        for item_id in committed_ids:
            item = items_by_id.get(item_id)
            if item is not None and item.completed_by(cutoff):
                done.append(item_id)
        return sorted(done)

    @staticmethod
    def spillover(committed: int, completed_by_end: int, active: bool) -> int:
        """Zero while the cycle is active, the undelivered remainder once closed."""
        if active:
            return 0
        return max(0, committed - completed_by_end)

    @staticmethod
    def delivery_pct(completed: int, committed: int) -> int:
        """Integer percent rounded half up; 0 when nothing was committed."""
        if committed <= 0:
            return 0
        return (200 * completed + committed) // (2 * committed)

    @staticmethod
    def totals(cycle: str, rows: Iterable[CycleKpi]) -> CycleTotals:
        """
        Sum one cycle across groups.

        Degraded rows are left out; the percent is recomputed from the sums
        rather than averaged.
        """
        ok_rows = [row for row in rows if row.is_ok]
        committed = sum(row.committed for row in ok_rows)
        completed = sum(row.completed for row in ok_rows)
        return CycleTotals(
            cycle=cycle,
            committed=committed,
            completed=completed,
            spillover=sum(row.spillover for row in ok_rows),
            delivery_pct=DeliveryCalculator.delivery_pct(completed, committed),
        )

    @staticmethod
    def open_ids(committed_ids: Iterable[str], completed: Iterable[str]) -> List[str]:
        done: Set[str] = set(completed)
        return sorted(item_id for item_id in committed_ids if item_id not in done)

    @staticmethod
    def select_headline(override: Optional[str], current_cycle: Optional[str]) -> str:
        if override:
            return override
        return current_cycle or CYCLE_KEYS[0]

    @staticmethod
    def select_fallback(committed_by_cycle: Mapping[str, int], headline: str) -> Optional[str]:
        """
        Most committed cycle when the headline cycle has nothing committed.

        Ties go to the earliest cycle. None when no fallback applies.
        """
        if committed_by_cycle.get(headline, 0) > 0:
            return None

        best_cycle, best_total = None, 0
        for cycle in CYCLE_KEYS:
            total = committed_by_cycle.get(cycle, 0)
            if total > best_total:
                best_cycle, best_total = cycle, total

        if best_cycle is None or best_cycle == headline:
            return None
        return best_cycle
