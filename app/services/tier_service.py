"""Customer tier upgrade hook, evaluated when an order is delivered."""
import uuid
import logging
from decimal import Decimal
from typing import Dict, Any

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.customer import Customer
from app.models.order import Order, OrderStatus
from app.services.pricing_service import round_money

logger = logging.getLogger(__name__)

# Lifetime delivered spend at which a retail customer qualifies for B2B
B2B_UPGRADE_THRESHOLD = Decimal("5000.00")


class TierUpgradeService:
    """
    Aggregates a customer's delivered spend. Automatic upgrades are turned
    off; the result is only reported and logged.
    """

    AUTO_UPGRADE_ENABLED = False

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_delivered_spend(self, customer_id: uuid.UUID) -> Decimal:
        result = await self.db.execute(
            select(func.coalesce(func.sum(Order.total_amount), 0)).where(
                Order.customer_id == customer_id,
                Order.status == OrderStatus.DELIVERED.value,
            )
        )
        return round_money(result.scalar_one())

    async def check_eligibility(self, customer_id: uuid.UUID) -> Dict[str, Any]:
        customer = await self.db.get(Customer, customer_id)
        spend = await self.get_delivered_spend(customer_id)
        eligible = (
            customer is not None
            and customer.customer_type == "B2C"
            and spend >= B2B_UPGRADE_THRESHOLD
        )
        if eligible:
            logger.info(
                f"Customer {customer_id} qualifies for B2B pricing "
                f"(delivered spend {spend}); auto-upgrade disabled"
            )
        return {
            "customer_id": customer_id,
            "delivered_spend": spend,
            "eligible": eligible,
            "upgraded": False,
        }
