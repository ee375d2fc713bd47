"""
Snapshot Infrastructure Models
==============================

SQLAlchemy ORM models for the snapshot module.

- snapshots: one row per committed item of a (group, cycle)
- snapshot_meta: one row per (group, cycle)
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, Boolean, Integer
from sqlalchemy.orm import Mapped, mapped_column

from cycle_kpi.infrastructure.database import Base


class SnapshotMemberModel(Base):
    """
    Committed-set membership.

    Maps to the 'snapshots' table, primary key (group, cycle, item_id).
    """
    __tablename__ = "snapshots"

    group_name: Mapped[str] = mapped_column("group", String(255), primary_key=True)
    cycle: Mapped[str] = mapped_column(String(8), primary_key=True)
    item_id: Mapped[str] = mapped_column(String(255), primary_key=True)


class SnapshotMetaModel(Base):
    """
    Snapshot metadata.

    Maps to the 'snapshot_meta' table, primary key (group, cycle).
    """
    __tablename__ = "snapshot_meta"

    group_name: Mapped[str] = mapped_column("group", String(255), primary_key=True)
    cycle: Mapped[str] = mapped_column(String(8), primary_key=True)

    # Monotonic: False -> True only
    frozen: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    frozen_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    last_refresh_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    committed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
