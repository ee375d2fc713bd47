"""
Snapshot Application Services
=============================

Application services orchestrate snapshot maintenance: they ask the freeze
policy what is allowed and apply the answer to the snapshot store.

Following SOLID principles:
- Single Responsibility: the store persists, the policy decides, the service coordinates
- Dependency Inversion: depend on the ISnapshotStore abstraction
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Set

from cycle_kpi.snapshots.domain import (
    SnapshotMeta, SnapshotChange,
    GroupCalendar, FreezePolicy
)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ISnapshotStore(ABC):
    """Interface for persistent (group, cycle) committed-set snapshots."""

    @abstractmethod
    async def get_members(self, group: str, cycle: str) -> Set[str]:
        """Committed item ids; empty when the snapshot was never observed."""

    @abstractmethod
    async def get_meta(self, group: str, cycle: str) -> Optional[SnapshotMeta]:
        """Snapshot metadata or None when absent."""

    @abstractmethod
    async def list_meta(self, group: Optional[str] = None) -> List[SnapshotMeta]:
        """All snapshot metadata, optionally for one group."""

    @abstractmethod
    async def upsert(
        self,
        group: str,
        cycle: str,
        live_item_ids: Iterable[str],
        allow_refresh: bool,
        now: Optional[datetime] = None
    ) -> SnapshotChange:
        """Create, refresh (minimal diff) or leave the snapshot untouched."""

    @abstractmethod
    async def freeze(self, group: str, cycle: str, now: Optional[datetime] = None) -> bool:
        """Freeze an existing unfrozen snapshot. Returns True on transition."""


# ========== Application Services ==========

@dataclass
class SnapshotResult:
    """Durable view of a snapshot after one maintenance pass."""

    change: SnapshotChange
    frozen_now: bool
    members: Set[str]
    meta: Optional[SnapshotMeta]

    @property
    def frozen(self) -> bool:
        return bool(self.meta and self.meta.frozen)


class SnapshotService:
    """
    Applies the freeze policy to one (group, cycle) snapshot per run.

    The refresh decision and the freeze decision are evaluated independently
    on every run, so a snapshot is frozen on the first run observed after its
    policy window closes without any scheduled trigger. Past that point the
    refresh is always rejected, so the committed set is already final when
    the freeze lands.
    """

    def __init__(self, store: ISnapshotStore, threshold_cycle: str = "C2"):
        self._store = store
        self._threshold_cycle = threshold_cycle

    async def maintain(
        self,
        group: str,
        cycle: str,
        calendar: GroupCalendar,
        live_item_ids: Iterable[str],
        now: Optional[datetime] = None
    ) -> SnapshotResult:
        """
        Refresh and/or freeze the snapshot, then read back the committed set.

        Args:
            group: Group name
            cycle: Cycle key (C1..C6)
            calendar: The group's calendar
            live_item_ids: Item ids currently committed upstream
            now: Evaluation instant (defaults to current UTC time)

        Raises:
            RepositoryException: If a store transaction fails
        """
        now = now or datetime.now(timezone.utc)

        allow_refresh = FreezePolicy.should_allow_refresh(
            calendar, cycle, now, self._threshold_cycle
        )
        change = await self._store.upsert(
            group, cycle, live_item_ids, allow_refresh, now=now
        )

        frozen_now = False
        if FreezePolicy.should_freeze_now(calendar, cycle, now, self._threshold_cycle):
            frozen_now = await self._store.freeze(group, cycle, now=now)

        members = await self._store.get_members(group, cycle)
        meta = await self._store.get_meta(group, cycle)
        return SnapshotResult(change=change, frozen_now=frozen_now, members=members, meta=meta)
