"""Scheduler service - APScheduler integration."""

from .locks import LockManager
from .service import (
    ALERTS_JOB,
    EXPIRY_JOB,
    JOBS,
    SchedulerService,
    execute_scheduled_job,
    make_holder_id,
    run_locked,
)

__all__ = [
    "LockManager",
    "ALERTS_JOB",
    "EXPIRY_JOB",
    "JOBS",
    "SchedulerService",
    "execute_scheduled_job",
    "make_holder_id",
    "run_locked",
]
