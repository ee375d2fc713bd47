"""
Snapshot Application DTOs
=========================

Response models for the snapshot API.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from cycle_kpi.snapshots.domain import SnapshotMeta


class SnapshotMetaResponse(BaseModel):
    """Metadata of one (group, cycle) snapshot."""
    group: str
    cycle: str
    frozen: bool
    frozen_at: Optional[datetime] = None
    last_refresh_at: datetime = Field(..., description="Last accepted observation, changed or not")
    committed_count: int

    @classmethod
    def from_domain(cls, meta: SnapshotMeta) -> "SnapshotMetaResponse":
        return cls(
            group=meta.group,
            cycle=meta.cycle,
            frozen=meta.frozen,
            frozen_at=meta.frozen_at,
            last_refresh_at=meta.last_refresh_at,
            committed_count=meta.committed_count,
        )


class SnapshotListResponse(BaseModel):
    """Response model for the snapshot listing."""
    snapshots: List[SnapshotMetaResponse] = Field(default_factory=list)
    total_count: int


class SnapshotDetailResponse(SnapshotMetaResponse):
    """Snapshot metadata plus its committed item ids."""
    item_ids: List[str] = Field(default_factory=list)
