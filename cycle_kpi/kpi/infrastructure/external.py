"""
KPI External Service Integrations
=================================

External services for KPI runs:
- Calendar / group config files with watchdog hot reload
- Cached gateway to the upstream work tracker
- APScheduler for periodic KPI runs
"""

import threading
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Set, Type, TypeVar

import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import BaseModel, ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from cycle_kpi.core import ConfigurationException
from cycle_kpi.infrastructure.tracker import ITrackerClient, TrackerIssue
from cycle_kpi.kpi.application import IKpiConfigProvider, IWorkTrackerGateway
from cycle_kpi.kpi.domain import GroupsConfig, LabelCatalog, WorkItem
from cycle_kpi.shared.infrastructure.cache import TTLCache
from cycle_kpi.shared.infrastructure.logging import get_logger
from cycle_kpi.snapshots.domain import CalendarConfig

logger = get_logger(__name__)

ConfigModel = TypeVar("ConfigModel", bound=BaseModel)


# ========== Config files ==========

def load_config_file(path: Path, model: Type[ConfigModel]) -> ConfigModel:
    """
    Parse a JSON or YAML file into a validated model.

    Raises:
        ConfigurationException: If the file is missing, unparsable or invalid
    """
    if not path.exists():
        raise ConfigurationException(f"Config file not found: {path}", {"path": str(path)})

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationException(
            f"Config file could not be read: {path}",
            {"path": str(path), "error": str(e)}
        ) from e

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ConfigurationException(
            f"Invalid config file: {path}",
            {"path": str(path), "errors": e.errors(include_url=False, include_context=False)}
        ) from e


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for calendar / group file changes."""

    def __init__(self, config_manager: "KpiConfigManager", paths: Set[Path]):
        self.config_manager = config_manager
        self.paths = {path.resolve() for path in paths}
        super().__init__()

    def _handle(self, src_path: str) -> None:
        if Path(src_path).resolve() in self.paths:
            logger.info(f"Config file changed: {src_path}")
            self.config_manager.reload()

    def on_modified(self, event):
        if not event.is_directory:
            self._handle(event.src_path)

    def on_created(self, event):
        # editors often replace the file instead of writing in place
        if not event.is_directory:
            self._handle(event.src_path)

    def on_moved(self, event):
        if not event.is_directory:
            self._handle(event.dest_path)


class KpiConfigManager(IKpiConfigProvider):
    """
    Thread-safe calendar and group configuration with hot-reload support.

    Uses watchdog to monitor file changes and reload configuration
    without restarting the service. A run reads both configs once at its
    start, so a reload never changes the inputs of a run in progress.
    """

    def __init__(self, calendar_path: Path, groups_path: Path):
        self._calendar_path = Path(calendar_path)
        self._groups_path = Path(groups_path)
        self._calendar: Optional[CalendarConfig] = None
        self._groups: Optional[GroupsConfig] = None
        self._lock = threading.Lock()
        self._observer = None

    def load(self) -> None:
        """
        Initial configuration load.

        Raises:
            ConfigurationException: If either file is missing or invalid
        """
        calendar = load_config_file(self._calendar_path, CalendarConfig)
        groups = load_config_file(self._groups_path, GroupsConfig)
        with self._lock:
            self._calendar = calendar
            self._groups = groups

        missing = [name for name in groups.group_names if calendar.calendar_for(name) is None]
        logger.info(
            "KPI configuration loaded",
            extra={
                "calendar_groups": len(calendar.groups),
                "groups": len(groups.groups),
                "groups_without_calendar": missing
            }
        )

    def reload(self) -> bool:
        """Reload both files; keep the previous configuration on failure."""
        try:
            self.load()
            return True
        except ConfigurationException as e:
            logger.error(
                "Failed to reload KPI config, keeping previous",
                extra={"error": e.message, "details": e.details}
            )
            return False

    def get_calendar(self) -> CalendarConfig:
        with self._lock:
            if self._calendar is None:
                raise ConfigurationException("Calendar configuration not loaded")
            return self._calendar

    def get_groups(self) -> GroupsConfig:
        with self._lock:
            if self._groups is None:
                raise ConfigurationException("Group configuration not loaded")
            return self._groups

    def start_watching(self) -> None:
        """Start watching both config files for changes."""
        if self._calendar is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        paths = {self._calendar_path, self._groups_path}
        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, paths)
            for directory in {path.resolve().parent for path in paths}:
                self._observer.schedule(handler, str(directory), recursive=False)
            self._observer.start()
            logger.info(
                "Started watching config files",
                extra={"paths": sorted(str(path) for path in paths)}
            )
        except OSError as e:
            # File watching not supported (e.g., in Docker containers)
            logger.warning(f"File watching not available, using static config: {e}")
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching configuration files (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None


# ========== Upstream gateway ==========

def to_work_item(issue: TrackerIssue) -> WorkItem:
    return WorkItem(
        id=issue.id,
        identifier=issue.identifier,
        label_ids=issue.label_ids,
        is_done=issue.is_done,
        completed_at=issue.completed_at,
    )


class CachedTrackerGateway(IWorkTrackerGateway):
    """
    Work tracker reads memoized through the TTL cache.

    The label catalog is cached as a whole; item lists per (team, label).
    Concurrent runs asking for the same key share one upstream request.
    """

    LABELS_KEY = "labels"

    def __init__(
        self,
        client: ITrackerClient,
        cache: TTLCache,
        items_ttl: float = 180.0,
        labels_ttl: float = 300.0
    ):
        self._client = client
        self._cache = cache
        self._items_ttl = items_ttl
        self._labels_ttl = labels_ttl

    @staticmethod
    def items_key(team_id: str, label_id: str) -> str:
        return f"items:{team_id}:{label_id}"

    async def _load_catalog(self) -> LabelCatalog:
        labels = await self._client.list_labels()
        catalog = LabelCatalog((label.id, label.name) for label in labels)
        logger.info("Label catalog loaded", extra={"labels": len(labels), "names": len(catalog)})
        return catalog

    async def resolve_labels(self, names: List[str]) -> Dict[str, Optional[str]]:
        catalog = await self._cache.get_or_fetch(
            self.LABELS_KEY, self._load_catalog, self._labels_ttl
        )
        return catalog.resolve_many(names)

    async def fetch_items(self, team_id: str, label_id: str) -> List[WorkItem]:
        async def load() -> List[WorkItem]:
            issues = await self._client.fetch_items(team_id, label_id)
            return [to_work_item(issue) for issue in issues]

        fetch = self._cache.with_cache(self.items_key(team_id, label_id), load, self._items_ttl)
        return list(await fetch())


# ========== Scheduling ==========

class KpiScheduler:
    """
    Wrapper for APScheduler for periodic KPI runs.

    Manages the lifecycle of the scheduler and jobs.
    """

    def __init__(self, interval_seconds: int = 3600):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[None]]) -> None:
        """Start the scheduler with the given job function."""
        if self._running:
            logger.warning("KPI scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id="kpi_run",
            name="KPI Run Job",
            misfire_grace_time=60,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

        self._scheduler.start()
        self._running = True

        logger.info(
            "KPI scheduler started",
            extra={"interval_seconds": self.interval_seconds}
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("KPI scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running
