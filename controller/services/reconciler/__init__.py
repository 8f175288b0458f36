"""
CronJob Controller - Reconciler Package

Reconciler, work queue and the watch-driven controller that connects them.
"""

from services.reconciler.controller import CronJobController
from services.reconciler.reconciler import CronJobReconciler, Request, Result
from services.reconciler.workqueue import ExponentialBackoffRateLimiter, WorkQueue

__all__ = [
    # Reconciler
    "CronJobReconciler",
    "Request",
    "Result",
    # Dispatch
    "CronJobController",
    "ExponentialBackoffRateLimiter",
    "WorkQueue",
]
