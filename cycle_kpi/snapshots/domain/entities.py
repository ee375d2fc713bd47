"""
Snapshot Domain Entities
========================

Pure Python domain entities for committed-set snapshots.

A snapshot is identified by (group, cycle). Its committed-item set may be
refreshed while the freeze policy allows it and never changes again once
frozen.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List

from cycle_kpi.config import SnapshotAction


@dataclass
class SnapshotMeta:
    """
    Metadata row of one (group, cycle) snapshot.

    `last_refresh_at` is a "last observed" timestamp: it moves on every
    accepted refresh, including refreshes that change nothing.
    """

    group: str
    cycle: str
    frozen: bool
    frozen_at: Optional[datetime]
    last_refresh_at: datetime
    committed_count: int

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "group": self.group,
            "cycle": self.cycle,
            "frozen": self.frozen,
            "frozen_at": self.frozen_at.isoformat() if self.frozen_at else None,
            "last_refresh_at": self.last_refresh_at.isoformat(),
            "committed_count": self.committed_count,
        }


@dataclass
class SnapshotChange:
    """Result of one upsert call."""

    group: str
    cycle: str
    action: SnapshotAction
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    committed_count: Optional[int] = None

    @property
    def mutated(self) -> bool:
        """True when the call wrote to the store."""
        return self.action in (SnapshotAction.CREATED, SnapshotAction.REFRESHED)

    @property
    def membership_changed(self) -> bool:
        return bool(self.added or self.removed)
