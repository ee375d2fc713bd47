"""
KPI Application DTOs
====================

Data Transfer Objects for the KPI API layer.

These Pydantic models handle serialization of run reports and cache
statistics. Following YAGNI - only what's needed.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from cycle_kpi.kpi.domain import CycleKpi, GroupKpiResult, KpiRunReport


# ========== Type Aliases for Literals ==========
CycleKeyStr = Literal["C1", "C2", "C3", "C4", "C5", "C6"]
KpiStatusStr = Literal["OK", "NO_TEAM_ID", "LABEL_UNRESOLVED", "FETCH_FAILED", "PERSISTENCE_FAILED"]
GroupStatusStr = Literal["OK", "DEGRADED", "SKIPPED_NO_CALENDAR"]


# ========== Response DTOs ==========

class CycleKpiResponse(BaseModel):
    """Metrics of one (group, cycle)."""
    group: str
    cycle: CycleKeyStr
    committed: int = Field(..., description="Size of the snapshot committed set")
    completed: int = Field(..., description="Completed so far (active) or by cycle end (closed)")
    completed_by_end: int
    completed_so_far: int
    delivery_pct: int = Field(..., description="Integer percent, rounded half up")
    delivery_pct_display: str
    spillover: int = Field(..., description="0 while active, committed - completed_by_end once closed")
    active: bool
    frozen: bool
    cycle_end: Optional[datetime] = None
    status: KpiStatusStr
    error: Optional[str] = None
    completed_item_ids: List[str] = Field(default_factory=list)
    open_item_ids: List[str] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, row: CycleKpi) -> "CycleKpiResponse":
        return cls(**row.to_dict())


class GroupKpiResponse(BaseModel):
    """All rows of one group."""
    group: str
    status: GroupStatusStr
    rows: List[CycleKpiResponse] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, result: GroupKpiResult) -> "GroupKpiResponse":
        return cls(
            group=result.group,
            status=result.status,
            rows=[CycleKpiResponse.from_domain(row) for row in result.rows],
            warnings=list(result.warnings),
            errors=list(result.errors),
        )


class KpiRunResponse(BaseModel):
    """Response model for a KPI run."""
    run_id: str
    run_at: datetime
    current_cycle: Optional[CycleKeyStr] = None
    headline_cycle: Optional[CycleKeyStr] = None
    fallback_cycle: Optional[CycleKeyStr] = Field(
        None,
        description="Most committed cycle when the headline cycle has nothing committed"
    )
    warnings: List[str] = Field(default_factory=list)
    groups: List[GroupKpiResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, report: KpiRunReport) -> "KpiRunResponse":
        return cls(
            run_id=report.run_id,
            run_at=report.run_at,
            current_cycle=report.current_cycle,
            headline_cycle=report.headline_cycle,
            fallback_cycle=report.fallback_cycle,
            warnings=list(report.warnings),
            groups=[GroupKpiResponse.from_domain(group) for group in report.groups],
        )


class CycleRowsResponse(BaseModel):
    """Rows of the latest report for one cycle, with cross-group totals."""
    run_id: str
    run_at: datetime
    cycle: CycleKeyStr
    committed_total: int = Field(..., description="Committed items across groups with an OK row")
    completed_total: int
    spillover_total: int
    delivery_pct: int = Field(..., description="completed_total over committed_total, rounded half up")
    delivery_pct_display: str
    rows: List[CycleKpiResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, report: KpiRunReport, cycle: str) -> "CycleRowsResponse":
        totals = report.totals_for_cycle(cycle)
        return cls(
            run_id=report.run_id,
            run_at=report.run_at,
            cycle=cycle,
            committed_total=totals.committed,
            completed_total=totals.completed,
            spillover_total=totals.spillover,
            delivery_pct=totals.delivery_pct,
            delivery_pct_display=totals.delivery_pct_display,
            rows=[CycleKpiResponse.from_domain(row) for row in report.rows_for_cycle(cycle)],
        )


class CacheStatsResponse(BaseModel):
    """Response model for cache statistics."""
    entries: int
    hits: int
    misses: int
    coalesced: int
    in_flight: int
    hit_rate: float


class CacheClearResponse(BaseModel):
    """Response model for a cache clear."""
    cleared: int = Field(..., description="Number of entries evicted")
