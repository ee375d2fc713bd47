"""
Snapshot Infrastructure Layer
=============================

Infrastructure implementations for snapshot persistence:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer
"""

from cycle_kpi.snapshots.infrastructure.models import SnapshotMemberModel, SnapshotMetaModel
from cycle_kpi.snapshots.infrastructure.repositories import SQLAlchemySnapshotStore

__all__ = [
    "SnapshotMemberModel",
    "SnapshotMetaModel",
    "SQLAlchemySnapshotStore",
]
