"""ERP sync outbox: records products whose stock changed."""
import uuid
import logging
from typing import Optional, Dict, Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.erp_sync import ProductSyncQueue, SyncStatus

logger = logging.getLogger(__name__)


class ErpSyncService:
    def __init__(self, db: AsyncSession, enabled: Optional[bool] = None):
        self.db = db
        self.enabled = settings.ERP_SYNC_ENABLED if enabled is None else enabled

    async def queue_product_sync(
        self,
        product_id: uuid.UUID,
        reason: str,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[ProductSyncQueue]:
        """
        Enqueue a product for sync. A product already waiting in the queue
        is not added twice; the pending row is returned instead.
        """
        if not self.enabled:
            return None

        result = await self.db.execute(
            select(ProductSyncQueue).where(
                ProductSyncQueue.product_id == product_id,
                ProductSyncQueue.status == SyncStatus.PENDING.value,
            )
        )
        pending = result.scalars().first()
        if pending:
            logger.debug(f"Product {product_id} already queued for ERP sync")
            return pending

        entry = ProductSyncQueue(
            product_id=product_id,
            reason=reason,
            description=description,
            sync_metadata=metadata,
            status=SyncStatus.PENDING.value,
        )
        self.db.add(entry)
        await self.db.flush()
        logger.info(f"Queued product {product_id} for ERP sync ({reason})")
        return entry
