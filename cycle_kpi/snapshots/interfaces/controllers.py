"""
Snapshot Controllers (API Routes)
=================================

FastAPI routes for reading committed-set snapshots.

Controllers are thin - they delegate to the snapshot store.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from cycle_kpi.config import cycle_index
from cycle_kpi.core import ResourceNotFoundException, ValidationException
from cycle_kpi.snapshots.application import (
    ISnapshotStore,
    SnapshotMetaResponse,
    SnapshotListResponse,
    SnapshotDetailResponse,
)

router = APIRouter(prefix="/snapshots", tags=["Snapshots"])


# ========== Dependencies ==========

def get_snapshot_store(request: Request) -> ISnapshotStore:
    """Get the snapshot store wired at startup."""
    return request.app.state.snapshot_store


def normalize_cycle(cycle: str) -> str:
    key = cycle.strip().upper()
    if cycle_index(key) is None:
        raise ValidationException(f"Unknown cycle '{cycle}'", {"cycle": cycle})
    return key


# ========== Route Handlers ==========

@router.get(
    "",
    response_model=SnapshotListResponse,
    summary="List snapshots",
    description="Metadata of every (group, cycle) snapshot, optionally for one group."
)
async def list_snapshots(
    group: Optional[str] = Query(None, description="Exact group name"),
    store: ISnapshotStore = Depends(get_snapshot_store)
):
    metas = await store.list_meta(group)
    return SnapshotListResponse(
        snapshots=[SnapshotMetaResponse.from_domain(meta) for meta in metas],
        total_count=len(metas)
    )


@router.get(
    "/{group}/{cycle}",
    response_model=SnapshotDetailResponse,
    summary="Get one snapshot",
    description="Snapshot metadata together with its committed item ids.",
    responses={404: {"description": "Snapshot never observed"}}
)
async def get_snapshot(
    group: str,
    cycle: str,
    store: ISnapshotStore = Depends(get_snapshot_store)
):
    key = normalize_cycle(cycle)
    meta = await store.get_meta(group, key)
    if meta is None:
        raise ResourceNotFoundException("Snapshot", f"{group}/{key}")

    members = await store.get_members(group, key)
    return SnapshotDetailResponse(
        **SnapshotMetaResponse.from_domain(meta).model_dump(),
        item_ids=sorted(members)
    )
