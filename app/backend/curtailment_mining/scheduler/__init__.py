"""
Background schedulers.
"""

from .reconciliation_scheduler import ReconciliationScheduler, SchedulerStatus

__all__ = ["ReconciliationScheduler", "SchedulerStatus"]
