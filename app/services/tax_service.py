"""Tax and shipping rate lookup for checkout."""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
import uuid
import logging

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.tax import TaxRate, ShippingZone, ShippingTier
from app.services.pricing_service import as_decimal, round_money

logger = logging.getLogger(__name__)


@dataclass
class AppliedShippingRate:
    final_rate: Decimal
    reason: str
    rate_id: Optional[uuid.UUID] = None
    tier_id: Optional[uuid.UUID] = None
    free_shipping_threshold: Optional[Decimal] = None


def _code(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip().upper()
    return value or None


class TaxService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_applicable_tax_rate(
        self, country: Optional[str], state: Optional[str] = None
    ) -> Optional[TaxRate]:
        """State-specific active rate first, then the country-wide one."""
        country = _code(country)
        state = _code(state)
        if not country:
            return None

        if state:
            result = await self.db.execute(
                select(TaxRate)
                .where(
                    TaxRate.country == country,
                    TaxRate.state == state,
                    TaxRate.is_active == True,
                )
                .order_by(TaxRate.updated_at.desc())
                .limit(1)
            )
            tax_rate = result.scalar_one_or_none()
            if tax_rate:
                return tax_rate

        result = await self.db.execute(
            select(TaxRate)
            .where(
                TaxRate.country == country,
                TaxRate.state.is_(None),
                TaxRate.is_active == True,
            )
            .order_by(TaxRate.updated_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def calculate_tax(
        self,
        taxable_amount: Decimal,
        country: Optional[str],
        state: Optional[str] = None,
    ) -> Decimal:
        """round(taxable * rate / 100, 2); 0 when no rate is configured."""
        tax_rate = await self.get_applicable_tax_rate(country, state)
        if not tax_rate:
            return Decimal("0.00")
        return round_money(as_decimal(taxable_amount) * as_decimal(tax_rate.rate) / 100)


class ShippingRateService:
    """
    Zone rates, cheapest first, filtered by weight and subtotal bounds.

    Once a zone rate applies, a dynamic subtotal tier (highest min_subtotal
    with min <= subtotal < max) overrides it; otherwise the rate's free
    shipping threshold or the flat rate is used.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_zone(self, country: str) -> Optional[ShippingZone]:
        result = await self.db.execute(
            select(ShippingZone)
            .where(ShippingZone.is_active == True)
            .order_by(ShippingZone.name)
            .execution_options(populate_existing=True)
        )
        for zone in result.scalars().all():
            if country in {_code(c) for c in zone.countries or []}:
                return zone
        return None

    async def get_matching_tier(self, subtotal: Decimal) -> Optional[ShippingTier]:
        result = await self.db.execute(
            select(ShippingTier)
            .where(
                ShippingTier.is_active == True,
                ShippingTier.min_subtotal <= subtotal,
                or_(
                    ShippingTier.max_subtotal.is_(None),
                    ShippingTier.max_subtotal > subtotal,
                ),
            )
            .order_by(ShippingTier.min_subtotal.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_applicable_shipping_rate(
        self,
        country: Optional[str],
        subtotal: Decimal,
        weight: Decimal = Decimal("0"),
    ) -> Optional[AppliedShippingRate]:
        country = _code(country)
        if not country:
            return None
        subtotal = as_decimal(subtotal)
        weight = as_decimal(weight)

        zone = await self.find_zone(country)
        if not zone:
            return None

        rates = sorted(
            (r for r in zone.rates if r.is_active),
            key=lambda r: as_decimal(r.rate),
        )
        for rate in rates:
            if rate.min_weight and weight < as_decimal(rate.min_weight):
                continue
            if rate.max_weight and weight > as_decimal(rate.max_weight):
                continue
            if rate.min_price and subtotal < as_decimal(rate.min_price):
                continue
            if rate.max_price and subtotal > as_decimal(rate.max_price):
                continue

            tier = await self.get_matching_tier(subtotal)
            if tier:
                return AppliedShippingRate(
                    final_rate=round_money(tier.shipping_rate),
                    reason=f"Dynamic Tier: {tier.name}",
                    rate_id=rate.id,
                    tier_id=tier.id,
                )

            threshold = as_decimal(rate.free_shipping_threshold) if rate.free_shipping_threshold else None
            if threshold and subtotal >= threshold:
                return AppliedShippingRate(
                    final_rate=Decimal("0.00"),
                    reason=f"Free shipping (order over ${round_money(threshold)})",
                    rate_id=rate.id,
                    free_shipping_threshold=threshold,
                )

            return AppliedShippingRate(
                final_rate=round_money(rate.rate),
                reason=rate.name,
                rate_id=rate.id,
                free_shipping_threshold=threshold,
            )

        logger.info(f"No shipping rate applies for {country} (subtotal {subtotal}, weight {weight})")
        return None
