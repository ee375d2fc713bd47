"""
KPI Module
==========

Bounded Context for per (group, cycle) delivery KPIs.

Responsibilities:
- Resolve cycle labels and fetch committed items from the work tracker
- Maintain committed-set snapshots through the snapshot module
- Compute committed, completed, delivery % and spillover per cycle
- Pick the headline cycle and expose run reports over the API
- Run periodically in the background
"""

__version__ = "1.0.0"
