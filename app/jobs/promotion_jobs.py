"""
Promotion expiry job.

Deactivates promotions whose end date has passed so they stop showing up
as active in the admin and storefront listings.
"""

import logging
from typing import Dict, Any, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.jobs.job_runner import scheduled_job
from app.services.notification_service import NotificationService, NotificationEvent
from app.services.promotion_service import PromotionService

logger = logging.getLogger(__name__)


@scheduled_job("promotion_expiry")
async def expire_promotions(
    session: AsyncSession,
    notifier: Optional[NotificationService] = None,
    recipients: Optional[List[str]] = None,
) -> Dict[str, Any]:
    expired = await PromotionService(session).deactivate_expired()
    codes = [promotion.code for promotion in expired]
    names = {promotion.code: promotion.name for promotion in expired}
    # Commit before notifying
    await session.commit()

    recipients = recipients if recipients is not None else settings.STORE_ALERT_EMAILS
    if codes and recipients:
        notifier = notifier or NotificationService()
        for code in codes:
            await notifier.send(
                NotificationEvent.PROMOTION_EXPIRED,
                {"to": recipients, "code": code, "name": names[code]},
            )

    return {"deactivated": len(codes), "codes": codes}
