"""
Cycle KPI
=========

Delivery KPI service: committed-set snapshots per (group, cycle), a freeze
policy with a grace window for early cycles, and spillover metrics derived
from frozen snapshots versus live upstream completion.
"""

__version__ = "1.0.0"
