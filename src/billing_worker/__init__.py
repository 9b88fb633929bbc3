"""billing-worker: background reconciliation worker for an ISP billing platform.

Cron-scheduled, lock-guarded, retry-bearing jobs that keep billing,
RADIUS session, payment and notification state consistent with the
external systems of record.
"""

__version__ = "0.3.0"
