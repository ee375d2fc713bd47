"""
KPI Controllers (API Routes)
============================

FastAPI routes for KPI runs and the upstream cache.

Controllers are thin - they delegate to application services.
"""

from fastapi import APIRouter, Depends, Request

from cycle_kpi.core import ResourceNotFoundException
from cycle_kpi.kpi.application import (
    KpiCalculatorService,
    KpiRunResponse,
    CycleRowsResponse,
    CacheStatsResponse,
    CacheClearResponse,
)
from cycle_kpi.shared.infrastructure.cache import TTLCache
from cycle_kpi.snapshots.interfaces.controllers import normalize_cycle

router = APIRouter(prefix="/kpi", tags=["KPI"])


# ========== Example payloads for Swagger ==========

CYCLE_ROW_EXAMPLE = {
    "group": "Alpha",
    "cycle": "C1",
    "committed": 4,
    "completed": 3,
    "completed_by_end": 3,
    "completed_so_far": 4,
    "delivery_pct": 75,
    "delivery_pct_display": "75%",
    "spillover": 1,
    "active": False,
    "frozen": True,
    "cycle_end": "2026-01-15T00:00:00Z",
    "status": "OK",
    "error": None,
    "completed_item_ids": ["A", "B", "C"],
    "open_item_ids": ["D"]
}


# ========== Dependencies ==========

def get_calculator(request: Request) -> KpiCalculatorService:
    """Get the KPI calculator wired at startup."""
    return request.app.state.kpi_calculator


def get_cache(request: Request) -> TTLCache:
    return request.app.state.cache


# ========== Route Handlers ==========

@router.post(
    "/runs",
    response_model=KpiRunResponse,
    summary="Run KPIs now",
    description="""
    Compute delivery KPIs for every configured group and cycle.

    Snapshots are created, refreshed or frozen as the freeze policy dictates.
    The run always completes; per-unit problems are reported in each row's
    `status` (`OK`, `NO_TEAM_ID`, `LABEL_UNRESOLVED`, `FETCH_FAILED`,
    `PERSISTENCE_FAILED`) and in the group's warnings and errors.
    """
)
async def run_kpis(calculator: KpiCalculatorService = Depends(get_calculator)):
    report = await calculator.run()
    return KpiRunResponse.from_domain(report)


@router.get(
    "/runs/latest",
    response_model=KpiRunResponse,
    summary="Get the latest KPI report",
    responses={404: {"description": "No run completed yet"}}
)
async def latest_run(calculator: KpiCalculatorService = Depends(get_calculator)):
    report = calculator.last_report
    if report is None:
        raise ResourceNotFoundException("KPI run", "latest")
    return KpiRunResponse.from_domain(report)


@router.get(
    "/cycles/{cycle}",
    response_model=CycleRowsResponse,
    summary="Get one cycle of the latest report",
    responses={
        200: {"content": {"application/json": {"example": {
            "run_id": "3f2a...",
            "run_at": "2026-02-01T00:00:00Z",
            "cycle": "C1",
            "committed_total": 4,
            "completed_total": 3,
            "spillover_total": 1,
            "delivery_pct": 75,
            "delivery_pct_display": "75%",
            "rows": [CYCLE_ROW_EXAMPLE]
        }}}},
        404: {"description": "No run completed yet"}
    }
)
async def cycle_rows(
    cycle: str,
    calculator: KpiCalculatorService = Depends(get_calculator)
):
    key = normalize_cycle(cycle)
    report = calculator.last_report
    if report is None:
        raise ResourceNotFoundException("KPI run", "latest")

    return CycleRowsResponse.from_domain(report, key)


@router.get(
    "/cache/stats",
    response_model=CacheStatsResponse,
    summary="Upstream cache statistics"
)
async def cache_stats(cache: TTLCache = Depends(get_cache)):
    return CacheStatsResponse(**cache.stats().to_dict())


@router.delete(
    "/cache",
    response_model=CacheClearResponse,
    summary="Clear the upstream cache"
)
async def clear_cache(cache: TTLCache = Depends(get_cache)):
    return CacheClearResponse(cleared=cache.clear())
