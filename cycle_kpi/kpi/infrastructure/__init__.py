"""
KPI Infrastructure Layer
========================

Infrastructure implementations for KPI runs:
- External: config file watcher, cached tracker gateway, scheduler
"""

from cycle_kpi.kpi.infrastructure.external import (
    KpiConfigManager,
    CachedTrackerGateway,
    KpiScheduler,
    load_config_file,
)

__all__ = [
    "KpiConfigManager",
    "CachedTrackerGateway",
    "KpiScheduler",
    "load_config_file",
]
