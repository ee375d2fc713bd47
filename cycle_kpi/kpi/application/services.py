"""
KPI Application Services
========================

Application services orchestrate a KPI run: fetch live items, maintain the
committed-set snapshots, and derive delivery metrics from the snapshot
versus the live completion state.

Following SOLID principles:
- Single Responsibility: the gateway fetches, the snapshot service persists,
  DeliveryCalculator does the arithmetic, this service coordinates
- Dependency Inversion: depend on abstractions (gateway, config provider)
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from cycle_kpi.config import CYCLE_KEYS, KpiStatus, GroupStatus
from cycle_kpi.core import LabelResolutionException, RepositoryException
from cycle_kpi.kpi.domain import (
    WorkItem, CycleKpi, GroupKpiResult, KpiRunReport,
    GroupsConfig, RunLabels, KpiRunOptions, DeliveryCalculator
)
from cycle_kpi.shared.infrastructure.logging import (
    get_logger, log_latency, set_correlation_id, reset_correlation_id
)
from cycle_kpi.snapshots.application import SnapshotService
from cycle_kpi.snapshots.domain import CalendarConfig, GroupCalendar, FreezePolicy

logger = get_logger(__name__)


# ========== Collaborator Interfaces (Dependency Inversion) ==========

class IWorkTrackerGateway(ABC):
    """Upstream work items, as seen by the KPI run."""

    @abstractmethod
    async def resolve_labels(self, names: List[str]) -> Dict[str, Optional[str]]:
        """Map label names to upstream ids; unknown names map to None."""

    @abstractmethod
    async def fetch_items(self, team_id: str, label_id: str) -> List[WorkItem]:
        """All items of a team carrying a label, fully materialized."""


class IKpiConfigProvider(ABC):
    """Interface for calendar and group configuration access."""

    @abstractmethod
    def get_calendar(self) -> CalendarConfig:
        """Get current calendar configuration."""

    @abstractmethod
    def get_groups(self) -> GroupsConfig:
        """Get current group configuration."""


# ========== Application Services ==========

class KpiCalculatorService:
    """
    Computes per (group, cycle) delivery KPIs.

    Groups are processed concurrently, and so are the cycles of a group.
    A failure in one unit is recorded on that unit's row; the run always
    completes and reports partial results.
    """

    def __init__(
        self,
        gateway: IWorkTrackerGateway,
        snapshot_service: SnapshotService,
        config_provider: IKpiConfigProvider,
        options: Optional[KpiRunOptions] = None
    ):
        self._gateway = gateway
        self._snapshots = snapshot_service
        self._config_provider = config_provider
        self._options = options or KpiRunOptions()
        self._last_report: Optional[KpiRunReport] = None

    @property
    def last_report(self) -> Optional[KpiRunReport]:
        return self._last_report

    async def run(self, now: Optional[datetime] = None) -> KpiRunReport:
        """
        Execute one KPI run.

        Args:
            now: Evaluation instant (defaults to current UTC time)

        Returns:
            KpiRunReport with one GroupKpiResult per configured group
        """
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        run_id = uuid.uuid4().hex
        token = set_correlation_id(run_id)

        try:
            calendar = self._config_provider.get_calendar()
            groups = self._config_provider.get_groups()

            with log_latency(logger, "kpi_run", groups=len(groups.groups)):
                report = KpiRunReport(run_id=run_id, run_at=now)

                labels, label_error = await self._resolve_labels()
                if labels is not None and labels.unresolved:
                    report.warnings.append(
                        f"Label(s) not found upstream: {', '.join(labels.unresolved)}"
                    )
                if label_error:
                    report.warnings.append(f"Label lookup failed: {label_error}")

                report.groups = list(await asyncio.gather(*[
                    self._process_group(
                        group, groups.team_id_for(group),
                        calendar.calendar_for(group), labels, label_error, now
                    )
                    for group in groups.group_names
                ]))

                self._select_cycles(report, calendar, now)

            logger.info(
                "KPI run complete",
                extra={
                    "run_id": run_id,
                    "groups": len(report.groups),
                    "rows": len(report.rows),
                    "headline_cycle": report.headline_cycle,
                    "fallback_cycle": report.fallback_cycle
                }
            )
            self._last_report = report
            return report
        finally:
            reset_correlation_id(token)

    # ========== Run steps ==========

    async def _resolve_labels(self) -> Tuple[Optional[RunLabels], Optional[str]]:
        """Resolve all labels of the run in one upstream lookup."""
        options = self._options
        try:
            resolved = await self._gateway.resolve_labels(options.label_names)
        except Exception as e:
            logger.error("Label lookup failed", extra={"error": str(e)})
            return None, str(e)

        labels = RunLabels(
            scope_label=options.scope_label,
            scope_label_id=resolved.get(options.scope_label) if options.scope_label else None,
            cancelled_label=options.cancelled_label,
            cancelled_label_id=(
                resolved.get(options.cancelled_label) if options.cancelled_label else None
            ),
            cycle_labels=options.cycle_labels,
            cycle_label_ids={
                cycle: resolved.get(name) for cycle, name in options.cycle_labels.items()
            },
        )
        for name in labels.unresolved:
            logger.warning("Label not found upstream", extra={"label": name})
        return labels, None

    async def _process_group(
        self,
        group: str,
        team_id: Optional[str],
        calendar: Optional[GroupCalendar],
        labels: Optional[RunLabels],
        label_error: Optional[str],
        now: datetime
    ) -> GroupKpiResult:
        result = GroupKpiResult(group=group)

        if calendar is None:
            result.status = GroupStatus.SKIPPED_NO_CALENDAR
            result.warnings.append(f"No calendar configured for group {group}")
            logger.warning("Group skipped: no calendar", extra={"group": group})
            return result

        if not team_id:
            message = f"No team id configured for group {group}"
            result.warnings.append(message)
            result.rows = self._degraded_rows(group, calendar, now, KpiStatus.NO_TEAM_ID, message)
            logger.warning("Group has no team id", extra={"group": group})
            return self._finish(result)

        if labels is None:
            result.errors.append(label_error or "label lookup failed")
            result.rows = self._degraded_rows(
                group, calendar, now, KpiStatus.FETCH_FAILED, label_error
            )
            return self._finish(result)

        try:
            labels.require_scope()
        except LabelResolutionException as e:
            result.warnings.append(e.message)
            result.rows = self._degraded_rows(
                group, calendar, now, KpiStatus.LABEL_UNRESOLVED, e.message
            )
            return self._finish(result)

        # Phase 1: fetch every cycle's items
        fetched = await asyncio.gather(*[
            self._fetch_cycle(group, team_id, cycle, labels) for cycle in CYCLE_KEYS
        ])

        items_by_id: Dict[str, WorkItem] = {}
        for items, _, _ in fetched:
            for item in items or ():
                items_by_id[item.id] = item

        # Phase 2: maintain snapshots and compute metrics
        async def compute(cycle: str, outcome) -> CycleKpi:
            items, status, error = outcome
            if status != KpiStatus.OK:
                return self._degraded_row(group, cycle, calendar, now, status, error)
            return await self._compute_cycle(
                group, cycle, calendar, items, items_by_id, labels, now
            )

        result.rows = list(await asyncio.gather(*[
            compute(cycle, outcome) for cycle, outcome in zip(CYCLE_KEYS, fetched)
        ]))

        for row in result.rows:
            if row.status == KpiStatus.LABEL_UNRESOLVED:
                result.warnings.append(f"{row.cycle}: {row.error}")
            elif row.status != KpiStatus.OK:
                result.errors.append(f"{row.cycle}: {row.error}")

        return self._finish(result)

    async def _fetch_cycle(
        self,
        group: str,
        team_id: str,
        cycle: str,
        labels: RunLabels
    ) -> Tuple[Optional[List[WorkItem]], str, Optional[str]]:
        try:
            label_id = labels.require_cycle(cycle)
        except LabelResolutionException as e:
            return None, KpiStatus.LABEL_UNRESOLVED, e.message

        try:
            items = await self._gateway.fetch_items(team_id, label_id)
        except Exception as e:
            logger.error(
                "Item fetch failed",
                extra={"group": group, "cycle": cycle, "error": str(e)}
            )
            return None, KpiStatus.FETCH_FAILED, str(e)

        return items, KpiStatus.OK, None

    async def _compute_cycle(
        self,
        group: str,
        cycle: str,
        calendar: GroupCalendar,
        items: List[WorkItem],
        items_by_id: Dict[str, WorkItem],
        labels: RunLabels,
        now: datetime
    ) -> CycleKpi:
        label_id = labels.require_cycle(cycle)
        live_ids = {item.id for item in items if labels.is_live(item, label_id)}

        try:
            snapshot = await self._snapshots.maintain(group, cycle, calendar, live_ids, now=now)
        except RepositoryException as e:
            logger.error(
                "Snapshot maintenance failed",
                extra={"group": group, "cycle": cycle, "error": e.message}
            )
            return self._degraded_row(
                group, cycle, calendar, now, KpiStatus.PERSISTENCE_FAILED, e.message
            )

        committed_ids = snapshot.members
        committed = len(committed_ids)
        cycle_end = calendar.end_of(cycle)
        active = FreezePolicy.is_cycle_active(calendar, cycle, now)

        by_end = DeliveryCalculator.completed_ids(committed_ids, items_by_id, cycle_end)
        so_far = DeliveryCalculator.completed_ids(committed_ids, items_by_id, now)
        shown = so_far if active else by_end

        return CycleKpi(
            group=group,
            cycle=cycle,
            committed=committed,
            completed=len(shown),
            completed_by_end=len(by_end),
            completed_so_far=len(so_far),
            delivery_pct=DeliveryCalculator.delivery_pct(len(shown), committed),
            spillover=DeliveryCalculator.spillover(committed, len(by_end), active),
            active=active,
            frozen=snapshot.frozen,
            cycle_end=cycle_end,
            status=KpiStatus.OK,
            completed_item_ids=shown,
            open_item_ids=DeliveryCalculator.open_ids(committed_ids, shown),
        )

    def _select_cycles(self, report: KpiRunReport, calendar: CalendarConfig, now: datetime) -> None:
        reference = self._options.reference_group
        if reference is None and calendar.group_names:
            reference = calendar.group_names[0]
        reference_calendar = calendar.calendar_for(reference) if reference else None

        if reference_calendar is not None:
            report.current_cycle = reference_calendar.current_cycle(now)
        elif reference:
            report.warnings.append(f"Reference group {reference} has no calendar")

        report.headline_cycle = DeliveryCalculator.select_headline(
            self._options.kpi_cycle, report.current_cycle
        )
        report.fallback_cycle = DeliveryCalculator.select_fallback(
            report.committed_by_cycle(), report.headline_cycle
        )

    # ========== Helpers ==========

    @staticmethod
    def _degraded_row(
        group: str,
        cycle: str,
        calendar: GroupCalendar,
        now: datetime,
        status: str,
        error: Optional[str]
    ) -> CycleKpi:
        return CycleKpi(
            group=group,
            cycle=cycle,
            active=FreezePolicy.is_cycle_active(calendar, cycle, now),
            cycle_end=calendar.end_of(cycle),
            status=status,
            error=error,
        )

    def _degraded_rows(
        self,
        group: str,
        calendar: GroupCalendar,
        now: datetime,
        status: str,
        error: Optional[str]
    ) -> List[CycleKpi]:
        return [
            self._degraded_row(group, cycle, calendar, now, status, error)
            for cycle in CYCLE_KEYS
        ]

    @staticmethod
    def _finish(result: GroupKpiResult) -> GroupKpiResult:
        if any(not row.is_ok for row in result.rows):
            result.status = GroupStatus.DEGRADED
        return result
