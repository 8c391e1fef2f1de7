"""
Daily stock alert.

Emails the store team a digest of inventory rows that are running low or
are out of stock.
"""

import logging
from typing import Dict, Any, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.jobs.job_runner import scheduled_job, DAILY
from app.models.inventory import Inventory
from app.models.location import Location
from app.models.product import ProductVariant
from app.services.inventory_service import InventoryService
from app.services.notification_service import NotificationService, NotificationEvent

logger = logging.getLogger(__name__)


async def _describe_rows(session: AsyncSession, rows: List[Inventory]) -> List[str]:
    if not rows:
        return []
    variant_ids = {row.variant_id for row in rows}
    location_ids = {row.location_id for row in rows}
    variants = await session.execute(
        select(ProductVariant.id, ProductVariant.sku).where(ProductVariant.id.in_(variant_ids))
    )
    skus = dict(variants.all())
    locations = await session.execute(
        select(Location.id, Location.name).where(Location.id.in_(location_ids))
    )
    names = dict(locations.all())
    return [
        f"{skus.get(row.variant_id, row.variant_id)} @ {names.get(row.location_id, row.location_id)}: "
        f"{row.available} available"
        for row in rows
    ]


@scheduled_job("stock_alert", period=DAILY)
async def send_stock_alert(
    session: AsyncSession,
    notifier: Optional[NotificationService] = None,
    recipients: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Collect low / out of stock rows and email the digest."""
    alerts = await InventoryService(session).get_stock_alerts(settings.DEFAULT_LOW_STOCK_ALERT)
    low_stock = alerts["low_stock"]
    out_of_stock = alerts["out_of_stock"]
    summary = {"low_stock": len(low_stock), "out_of_stock": len(out_of_stock), "sent": False}

    if not low_stock and not out_of_stock:
        logger.info("Stock alert: nothing to report")
        return summary

    recipients = recipients if recipients is not None else settings.STORE_ALERT_EMAILS
    if not recipients:
        logger.warning("Stock alert: STORE_ALERT_EMAILS is empty, digest not sent")
        return summary

    lines = ["Low stock:"] + await _describe_rows(session, low_stock)
    lines += ["Out of stock:"] + await _describe_rows(session, out_of_stock)

    notifier = notifier or NotificationService()
    summary["sent"] = await notifier.send(
        NotificationEvent.STOCK_ALERT,
        {
            "to": recipients,
            "low_stock_count": len(low_stock),
            "out_of_stock_count": len(out_of_stock),
            "summary": "<br>".join(lines),
        },
    )
    return summary
