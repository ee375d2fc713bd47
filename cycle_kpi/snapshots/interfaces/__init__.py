"""
Snapshot Interfaces Layer
=========================

Interface adapters (controllers) for the snapshot module.
"""

from cycle_kpi.snapshots.interfaces.controllers import router as snapshots_router

__all__ = ["snapshots_router"]
