"""Job bodies run by the dispatcher.

Only the contract is exported here; the concrete jobs import the scheduling
layer and live in their own modules (``jobs.delivery``, ``jobs.catalog``, ...).
"""

from .base import FunctionJob, Job, JobContext, JobResult

__all__ = ["FunctionJob", "Job", "JobContext", "JobResult"]
