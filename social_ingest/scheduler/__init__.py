"""
Scheduler module: job scheduling, processing and the APScheduler runtime.
"""
from .jobs import setup_scheduler, shutdown_scheduler, scheduler, close_components
from .processor import JobProcessor, JobError, NonRetryableJobError, TransientFetchError

__all__ = [
    "setup_scheduler",
    "shutdown_scheduler",
    "scheduler",
    "close_components",
    "JobProcessor",
    "JobError",
    "NonRetryableJobError",
    "TransientFetchError",
]
