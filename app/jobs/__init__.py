"""
Background Jobs Module

Handles scheduled tasks for:
- Daily low / out of stock alerts
- Promotion expiry
"""

from app.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
]
