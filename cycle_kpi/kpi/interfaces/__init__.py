"""
KPI Interfaces Layer
====================

Interface adapters (controllers) for the KPI module.

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from cycle_kpi.kpi.interfaces.controllers import router as kpi_router

__all__ = ["kpi_router"]
