"""
KPI Domain Layer
================

Domain layer for delivery KPIs.

Contains:
- Entities: WorkItem, CycleKpi, GroupKpiResult, CycleTotals, KpiRunReport
- Value Objects: GroupConfig, GroupsConfig, LabelCatalog, RunLabels, KpiRunOptions
- Domain Services: DeliveryCalculator (stateless metric arithmetic)

This layer has no dependencies on infrastructure.
"""

from cycle_kpi.kpi.domain.entities import (
    WorkItem,
    CycleKpi,
    GroupKpiResult,
    CycleTotals,
    KpiRunReport,
)
from cycle_kpi.kpi.domain.value_objects import (
    GroupConfig,
    GroupsConfig,
    LabelCatalog,
    RunLabels,
    KpiRunOptions,
    DeliveryCalculator,
    normalize_label_name,
)

__all__ = [
    # Entities
    "WorkItem",
    "CycleKpi",
    "GroupKpiResult",
    "CycleTotals",
    "KpiRunReport",
    # Value Objects & Services
    "GroupConfig",
    "GroupsConfig",
    "LabelCatalog",
    "RunLabels",
    "KpiRunOptions",
    "DeliveryCalculator",
    "normalize_label_name",
]
