"""
Scheduled Job Runner

Runs registered background jobs with run-state persisted in the
``job_runs`` table, so every app instance sees the same state:

- A lock (``locked_until``) keeps two instances, or two overlapping
  triggers, from running the same job at once. A crashed run frees the
  lock once JOB_LOCK_TTL_SECONDS pass.
- Jobs registered with ``period="daily"`` run at most once per calendar
  day in SCHEDULER_TIMEZONE.

Usage:
    @scheduled_job("stock_alert", period="daily")
    async def send_stock_alert(session, **kwargs):
        ...
"""

import logging
import os
import socket
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Any, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import settings
from app.models.job_run import JobRun

logger = logging.getLogger(__name__)

DAILY = "daily"


@dataclass
class RegisteredJob:
    name: str
    func: Callable
    period: Optional[str] = None


# Registry of scheduled jobs
_jobs: Dict[str, RegisteredJob] = {}


def scheduled_job(name: str, period: Optional[str] = None):
    """
    Decorator to register a background job.

    The decorated coroutine receives an AsyncSession plus any keyword
    arguments given to ``run_job`` and returns a JSON-friendly summary.
    """
    def decorator(func: Callable):
        _jobs[name] = RegisteredJob(name=name, func=func, period=period)
        logger.debug(f"Registered scheduled job: {name}")
        return func
    return decorator


def get_registered_jobs() -> Dict[str, RegisteredJob]:
    return dict(_jobs)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class JobRunner:
    """Executes registered jobs under the persisted lock/period guard."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        lock_ttl_seconds: Optional[int] = None,
        tz_name: Optional[str] = None,
        instance_id: Optional[str] = None,
    ):
        if session_factory is None:
            from app.database import async_session_factory
            session_factory = async_session_factory
        self.session_factory = session_factory
        self.lock_ttl = timedelta(seconds=lock_ttl_seconds or settings.JOB_LOCK_TTL_SECONDS)
        self.tz = ZoneInfo(tz_name or settings.SCHEDULER_TIMEZONE)
        self.instance_id = instance_id or f"{socket.gethostname()}:{os.getpid()}"

    def period_key(self, period: Optional[str], now: datetime) -> Optional[str]:
        """Calendar period a run belongs to, e.g. "2026-10-17" for daily jobs."""
        if period == DAILY:
            return now.astimezone(self.tz).date().isoformat()
        return None

    async def acquire(self, job_name: str, period_key: Optional[str], now: datetime) -> Optional[str]:
        """
        Take the job lock. Returns None on success, otherwise the reason
        the run must be skipped.
        """
        async with self.session_factory() as session:
            row = await session.get(JobRun, job_name, with_for_update=True)
            if row is None:
                row = JobRun(job_name=job_name)
                session.add(row)
            else:
                if period_key and row.last_period == period_key and row.last_status == "success":
                    return "already_ran"
                locked_until = _as_utc(row.locked_until)
                if locked_until and locked_until > now:
                    return "locked"

            row.locked_until = now + self.lock_ttl
            row.locked_by = self.instance_id
            row.last_status = "running"
            try:
                await session.commit()
            except IntegrityError:
                # Another instance inserted the row first
                await session.rollback()
                return "locked"
        return None

    async def release(
        self,
        job_name: str,
        period_key: Optional[str],
        status: str,
        now: datetime,
        error: Optional[str] = None,
    ) -> None:
        async with self.session_factory() as session:
            row = await session.get(JobRun, job_name, with_for_update=True)
            if row is None:
                return
            row.locked_until = None
            row.locked_by = None
            row.last_status = status
            row.last_error = error
            row.last_run_at = now
            if status == "success":
                row.last_period = period_key
            await session.commit()

    async def run_job(self, job_name: str, now: Optional[datetime] = None, **kwargs: Any) -> Dict[str, Any]:
        """
        Run one registered job.

        Returns:
            Summary with ``status`` success / failed / skipped.
        """
        if job_name not in _jobs:
            raise ValueError(f"Unknown job: {job_name}. Registered: {list(_jobs.keys())}")
        job = _jobs[job_name]
        now = now or datetime.now(timezone.utc)
        period_key = self.period_key(job.period, now)

        skip_reason = await self.acquire(job_name, period_key, now)
        if skip_reason:
            logger.info(f"Job '{job_name}' skipped: {skip_reason}")
            return {"job": job_name, "status": "skipped", "reason": skip_reason}

        start_time = datetime.now(timezone.utc)
        summary: Dict[str, Any] = {"job": job_name, "period": period_key}
        try:
            async with self.session_factory() as session:
                try:
                    result = await job.func(session, **kwargs)
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
            summary.update(status="success", result=result)
        except Exception as e:
            logger.error(f"Job '{job_name}' failed: {e}")
            summary.update(status="failed", error=str(e))

        await self.release(job_name, period_key, summary["status"], now, summary.get("error"))
        summary["duration_ms"] = int((datetime.now(timezone.utc) - start_time).total_seconds() * 1000)
        logger.info(f"Job '{job_name}' {summary['status']} in {summary['duration_ms']}ms")
        return summary


# Global runner instance
_runner: Optional[JobRunner] = None


def get_job_runner() -> JobRunner:
    """Get or create the global job runner."""
    global _runner
    if _runner is None:
        _runner = JobRunner()
    return _runner


async def run_scheduled_job(job_name: str) -> Dict[str, Any]:
    """Convenience function used as the APScheduler target."""
    return await get_job_runner().run_job(job_name)
