"""
Shared Kernel Module
====================

This module contains shared infrastructure used across all bounded contexts
(Snapshots and KPI).

Architecture Pattern: Modular Monolith
- Each module (snapshots, kpi) is a bounded context
- Shared kernel contains only generic infrastructure

DO NOT add snapshot or KPI business logic to the shared kernel.
"""

__version__ = "1.0.0"
