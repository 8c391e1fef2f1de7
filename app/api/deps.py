from typing import Annotated, Optional
import logging

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.services.notification_service import NotificationService


logger = logging.getLogger(__name__)


async def get_actor_id(
    x_user_id: Annotated[Optional[str], Header()] = None,
) -> Optional[str]:
    """
    Identity of the staff member or customer making the request.

    Authentication happens upstream; the gateway forwards the resolved id
    in ``X-User-Id``. Only used for audit entries and notes.
    """
    if x_user_id:
        return x_user_id.strip() or None
    return None


def get_notification_service() -> NotificationService:
    return NotificationService()


# Type aliases for cleaner dependency injection
DB = Annotated[AsyncSession, Depends(get_db)]
ActorId = Annotated[Optional[str], Depends(get_actor_id)]
Notifier = Annotated[NotificationService, Depends(get_notification_service)]
