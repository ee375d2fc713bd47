"""
KPI Application Layer
=====================

Application layer for the KPI module.

Contains:
- Services: KpiCalculatorService orchestrates one KPI run
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and collaborator interfaces,
but not on concrete infrastructure implementations.
"""

from cycle_kpi.kpi.application.dto import (
    CycleKpiResponse,
    GroupKpiResponse,
    KpiRunResponse,
    CycleRowsResponse,
    CacheStatsResponse,
    CacheClearResponse,
)
from cycle_kpi.kpi.application.services import (
    KpiCalculatorService,
    IWorkTrackerGateway,
    IKpiConfigProvider,
)

__all__ = [
    # DTOs
    "CycleKpiResponse",
    "GroupKpiResponse",
    "KpiRunResponse",
    "CycleRowsResponse",
    "CacheStatsResponse",
    "CacheClearResponse",
    # Services
    "KpiCalculatorService",
    # Collaborator Interfaces
    "IWorkTrackerGateway",
    "IKpiConfigProvider",
]
