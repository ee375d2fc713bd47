"""
Snapshot Application Layer
==========================

Contains:
- ISnapshotStore: persistence contract for committed-set snapshots
- SnapshotService: applies the freeze policy to the store once per run
- DTOs: response models for the snapshot API
"""

from cycle_kpi.snapshots.application.dto import (
    SnapshotMetaResponse,
    SnapshotListResponse,
    SnapshotDetailResponse,
)
from cycle_kpi.snapshots.application.services import (
    ISnapshotStore,
    SnapshotService,
    SnapshotResult,
)

__all__ = [
    # DTOs
    "SnapshotMetaResponse",
    "SnapshotListResponse",
    "SnapshotDetailResponse",
    # Services
    "ISnapshotStore",
    "SnapshotService",
    "SnapshotResult",
]
