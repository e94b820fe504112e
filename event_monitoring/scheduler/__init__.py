"""Scheduler module for supervising scraper agents."""

from .job_scheduler import JobScheduler
from .watchdog import Watchdog

__all__ = ["JobScheduler", "Watchdog"]
