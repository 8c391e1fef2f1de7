from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.jobs import promotion_jobs, stock_alert_jobs  # noqa: F401
from app.jobs.job_runner import JobRunner, get_registered_jobs, scheduled_job
from app.jobs.scheduler import get_job_status
from app.models.job_run import JobRun
from app.services.promotion_service import PromotionService

MORNING = datetime(2026, 10, 17, 16, 0, tzinfo=timezone.utc)
RECIPIENTS = ["ops@example.com"]


@pytest.fixture
def runner(session_factory):
    return JobRunner(session_factory=session_factory, lock_ttl_seconds=900, tz_name="America/Los_Angeles")


@pytest.fixture
async def low_stock(make_variant, make_location, make_inventory):
    return await make_inventory(await make_variant(), await make_location(), quantity=3)


async def _job_run(session_factory, name: str) -> JobRun:
    async with session_factory() as session:
        return await session.get(JobRun, name)


def test_jobs_are_registered():
    jobs = get_registered_jobs()
    assert jobs["stock_alert"].period == "daily"
    assert jobs["promotion_expiry"].period is None


def test_scheduler_not_started_in_tests():
    assert get_job_status() == []


def test_daily_period_uses_store_timezone(runner):
    # 02:00 UTC on the 18th is still the 17th in Los Angeles
    late = datetime(2026, 10, 18, 2, 0, tzinfo=timezone.utc)
    assert runner.period_key("daily", late) == "2026-10-17"
    assert runner.period_key(None, late) is None


async def test_stock_alert_runs_once_per_day(runner, session_factory, notifier, low_stock):
    first = await runner.run_job("stock_alert", now=MORNING, notifier=notifier, recipients=RECIPIENTS)
    assert first["status"] == "success"
    assert first["result"] == {"low_stock": 1, "out_of_stock": 0, "sent": True}
    assert notifier.events() == ["STOCK_ALERT"]
    assert notifier.sent[0][1]["to"] == RECIPIENTS

    again = await runner.run_job(
        "stock_alert", now=MORNING + timedelta(hours=2), notifier=notifier, recipients=RECIPIENTS
    )
    assert again == {"job": "stock_alert", "status": "skipped", "reason": "already_ran"}
    assert len(notifier.sent) == 1

    next_day = await runner.run_job(
        "stock_alert", now=MORNING + timedelta(days=1), notifier=notifier, recipients=RECIPIENTS
    )
    assert next_day["status"] == "success"
    assert len(notifier.sent) == 2

    state = await _job_run(session_factory, "stock_alert")
    assert state.last_period == "2026-10-18"
    assert state.locked_until is None


async def test_stock_alert_without_recipients(runner, notifier, low_stock):
    result = await runner.run_job("stock_alert", now=MORNING, notifier=notifier, recipients=[])
    assert result["result"]["sent"] is False
    assert notifier.sent == []


async def test_held_lock_skips_run(runner, session_factory, notifier, low_stock):
    async with session_factory() as session:
        session.add(JobRun(
            job_name="stock_alert",
            locked_until=MORNING + timedelta(minutes=5),
            locked_by="other-host:1",
            last_status="running",
        ))
        await session.commit()

    result = await runner.run_job("stock_alert", now=MORNING, notifier=notifier, recipients=RECIPIENTS)
    assert result["reason"] == "locked"
    assert notifier.sent == []

    # A crashed holder's lock expires
    result = await runner.run_job(
        "stock_alert", now=MORNING + timedelta(minutes=6), notifier=notifier, recipients=RECIPIENTS
    )
    assert result["status"] == "success"


@scheduled_job("always_fails")
async def always_fails(session, **kwargs):
    raise RuntimeError("upstream unavailable")


async def test_failed_run_is_recorded_and_retried(runner, session_factory):
    result = await runner.run_job("always_fails", now=MORNING)
    assert result["status"] == "failed"
    assert result["error"] == "upstream unavailable"

    state = await _job_run(session_factory, "always_fails")
    assert state.last_status == "failed"
    assert state.last_error == "upstream unavailable"
    assert state.locked_until is None

    retry = await runner.run_job("always_fails", now=MORNING + timedelta(minutes=1))
    assert retry["status"] == "failed"


async def test_unknown_job(runner):
    with pytest.raises(ValueError):
        await runner.run_job("does_not_exist")


async def test_promotion_expiry_job(runner, db, notifier):
    await PromotionService(db).create_promotion({
        "code": "SUMMER",
        "name": "Summer sale",
        "promotion_type": "PERCENTAGE",
        "value": Decimal("15"),
        "expires_at": datetime.now(timezone.utc) - timedelta(minutes=1),
    })
    await db.commit()

    result = await runner.run_job("promotion_expiry", notifier=notifier, recipients=RECIPIENTS)

    assert result["result"] == {"deactivated": 1, "codes": ["SUMMER"]}
    assert notifier.events() == ["PROMOTION_EXPIRED"]
    promotion = await PromotionService(db).get_by_code("SUMMER")
    assert promotion.is_active is False
