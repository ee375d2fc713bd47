"""
Snapshot Module
===============

Bounded Context for committed-set snapshots of (group, cycle) pairs.

Responsibilities:
- Record the committed item set the first time a (group, cycle) is observed
- Refresh it while the freeze policy allows
- Freeze it permanently once the policy window closes
- Expose snapshot metadata over the API
"""

__version__ = "1.0.0"
