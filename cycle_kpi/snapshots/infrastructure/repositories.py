"""
Snapshot Infrastructure Repositories
====================================

SQLAlchemy implementation of the snapshot store.

Every mutation of a (group, cycle) runs in its own transaction while holding
that key's lock, so the membership diff and the metadata update land together
or not at all, and at most one mutation per key is in progress. Reads never
take a lock. Writes to other keys proceed concurrently, except on SQLite,
which admits a single writer and so gets one store-wide write lock.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import select, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cycle_kpi.config import SnapshotAction
from cycle_kpi.core import RepositoryException
from cycle_kpi.infrastructure.database import Database
from cycle_kpi.shared.infrastructure.logging import get_logger
from cycle_kpi.snapshots.application import ISnapshotStore
from cycle_kpi.snapshots.domain import SnapshotMeta, SnapshotChange
from cycle_kpi.snapshots.infrastructure.models import SnapshotMemberModel, SnapshotMetaModel

logger = get_logger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SQLAlchemySnapshotStore(ISnapshotStore):
    """
    SQLAlchemy implementation of the snapshot store.

    Handles persistence of committed-set snapshots using async SQLAlchemy.
    """

    def __init__(self, database: Database):
        self._database = database
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)
        # SQLite rejects a second concurrent writer instead of waiting for it
        self._write_lock: Optional[asyncio.Lock] = asyncio.Lock() if database.is_sqlite else None

    @asynccontextmanager
    async def _mutation(self, group: str, cycle: str) -> AsyncGenerator[None, None]:
        """Serialize mutations of one key, and of the whole store on SQLite."""
        async with self._locks[(group, cycle)]:
            if self._write_lock is None:
                yield
                return
            async with self._write_lock:
                yield

    # ========== Reads ==========

    async def get_members(self, group: str, cycle: str) -> Set[str]:
        """Get the committed item ids of a snapshot."""
        try:
            async with self._database.session() as session:
                return set(await self._member_ids(session, group, cycle))
        except SQLAlchemyError as e:
            raise RepositoryException(
                f"Failed to read snapshot members for {group}/{cycle}",
                {"group": group, "cycle": cycle, "error": str(e)}
            ) from e

    async def get_meta(self, group: str, cycle: str) -> Optional[SnapshotMeta]:
        """Get snapshot metadata."""
        try:
            async with self._database.session() as session:
                model = await self._meta_model(session, group, cycle)
                return self._to_meta(model) if model else None
        except SQLAlchemyError as e:
            raise RepositoryException(
                f"Failed to read snapshot meta for {group}/{cycle}",
                {"group": group, "cycle": cycle, "error": str(e)}
            ) from e

    async def list_meta(self, group: Optional[str] = None) -> List[SnapshotMeta]:
        """List snapshot metadata ordered by group and cycle."""
        stmt = select(SnapshotMetaModel)
        if group is not None:
            stmt = stmt.where(SnapshotMetaModel.group_name == group)
        stmt = stmt.order_by(SnapshotMetaModel.group_name, SnapshotMetaModel.cycle)

        try:
            async with self._database.session() as session:
                result = await session.execute(stmt)
                return [self._to_meta(model) for model in result.scalars().all()]
        except SQLAlchemyError as e:
            raise RepositoryException("Failed to list snapshot meta", {"error": str(e)}) from e

    # ========== Writes ==========

    async def upsert(
        self,
        group: str,
        cycle: str,
        live_item_ids: Iterable[str],
        allow_refresh: bool,
        now: Optional[datetime] = None
    ) -> SnapshotChange:
        """
        Create or refresh a snapshot.

        - Absent: created with the full live set (regardless of allow_refresh).
        - Frozen, or refresh not allowed: no-op.
        - Otherwise: minimal diff; last_refresh_at and committed_count are
          updated even when the diff is empty.
        """
        incoming = set(live_item_ids)
        observed_at = now or datetime.now(timezone.utc)

        async with self._mutation(group, cycle):
            try:
                async with self._database.session() as session:
                    meta = await self._meta_model(session, group, cycle)

                    if meta is None:
                        return await self._create(session, group, cycle, incoming, observed_at)

                    if meta.frozen:
                        return SnapshotChange(
                            group, cycle, SnapshotAction.SKIPPED_FROZEN,
                            committed_count=meta.committed_count
                        )
                    if not allow_refresh:
                        return SnapshotChange(
                            group, cycle, SnapshotAction.SKIPPED_POLICY,
                            committed_count=meta.committed_count
                        )

                    return await self._refresh(session, meta, incoming, observed_at)
            except SQLAlchemyError as e:
                logger.error(
                    "Snapshot upsert failed",
                    extra={"group": group, "cycle": cycle, "error": str(e)}
                )
                raise RepositoryException(
                    f"Snapshot upsert failed for {group}/{cycle}",
                    {"group": group, "cycle": cycle, "error": str(e)}
                ) from e

    async def freeze(self, group: str, cycle: str, now: Optional[datetime] = None) -> bool:
        """Freeze a snapshot. No-op when absent or already frozen."""
        frozen_at = now or datetime.now(timezone.utc)

        async with self._mutation(group, cycle):
            try:
                async with self._database.session() as session:
                    meta = await self._meta_model(session, group, cycle)
                    if meta is None or meta.frozen:
                        return False

                    meta.frozen = True
                    meta.frozen_at = frozen_at
                    await session.flush()
                    committed = meta.committed_count
            except SQLAlchemyError as e:
                logger.error(
                    "Snapshot freeze failed",
                    extra={"group": group, "cycle": cycle, "error": str(e)}
                )
                raise RepositoryException(
                    f"Snapshot freeze failed for {group}/{cycle}",
                    {"group": group, "cycle": cycle, "error": str(e)}
                ) from e

        logger.info(
            "Snapshot frozen",
            extra={"group": group, "cycle": cycle, "committed": committed}
        )
        return True

    # ========== Helpers ==========

    async def _create(
        self,
        session: AsyncSession,
        group: str,
        cycle: str,
        incoming: Set[str],
        observed_at: datetime
    ) -> SnapshotChange:
        session.add(SnapshotMetaModel(
            group_name=group,
            cycle=cycle,
            frozen=False,
            frozen_at=None,
            last_refresh_at=observed_at,
            committed_count=len(incoming)
        ))
        session.add_all(
            SnapshotMemberModel(group_name=group, cycle=cycle, item_id=item_id)
            for item_id in sorted(incoming)
        )
        await session.flush()

        logger.info(
            "Snapshot created",
            extra={"group": group, "cycle": cycle, "committed": len(incoming)}
        )
        return SnapshotChange(
            group, cycle, SnapshotAction.CREATED,
            added=sorted(incoming), committed_count=len(incoming)
        )

    async def _refresh(
        self,
        session: AsyncSession,
        meta: SnapshotMetaModel,
        incoming: Set[str],
        observed_at: datetime
    ) -> SnapshotChange:
        group, cycle = meta.group_name, meta.cycle
        existing = set(await self._member_ids(session, group, cycle))

        to_add = sorted(incoming - existing)
        to_remove = sorted(existing - incoming)

        if to_add:
            session.add_all(
                SnapshotMemberModel(group_name=group, cycle=cycle, item_id=item_id)
                for item_id in to_add
            )
        if to_remove:
            await session.execute(
                delete(SnapshotMemberModel).where(
                    SnapshotMemberModel.group_name == group,
                    SnapshotMemberModel.cycle == cycle,
                    SnapshotMemberModel.item_id.in_(to_remove)
                )
            )

        meta.last_refresh_at = observed_at
        meta.committed_count = len(incoming)
        await session.flush()

        if to_add or to_remove:
            logger.info(
                "Snapshot refreshed",
                extra={
                    "group": group,
                    "cycle": cycle,
                    "added": len(to_add),
                    "removed": len(to_remove),
                    "committed": len(incoming)
                }
            )
        return SnapshotChange(
            group, cycle, SnapshotAction.REFRESHED,
            added=to_add, removed=to_remove, committed_count=len(incoming)
        )

    async def _meta_model(
        self,
        session: AsyncSession,
        group: str,
        cycle: str
    ) -> Optional[SnapshotMetaModel]:
        stmt = select(SnapshotMetaModel).where(
            SnapshotMetaModel.group_name == group,
            SnapshotMetaModel.cycle == cycle
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def _member_ids(self, session: AsyncSession, group: str, cycle: str) -> List[str]:
        stmt = select(SnapshotMemberModel.item_id).where(
            SnapshotMemberModel.group_name == group,
            SnapshotMemberModel.cycle == cycle
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    def _to_meta(model: SnapshotMetaModel) -> SnapshotMeta:
        return SnapshotMeta(
            group=model.group_name,
            cycle=model.cycle,
            frozen=bool(model.frozen),
            frozen_at=_as_utc(model.frozen_at),
            last_refresh_at=_as_utc(model.last_refresh_at),
            committed_count=model.committed_count
        )
