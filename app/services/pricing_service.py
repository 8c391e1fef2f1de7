"""Pricing Service: the authoritative unit price for a variant.

Priority (highest first):
1. Bulk tier: first tier, scanning ``min_qty`` ascending, whose range holds
   the quantity. Overlapping tiers resolve to the lowest qualifying min_qty.
2. Segment price for the customer's pricing tier (sale price when > 0).
3. Base price. Wholesale and enterprise customers (B2B, ENTERPRISE_1,
   ENTERPRISE_2) get ``regular_price`` only; retail and unknown customer
   types get ``sale_price`` when > 0.

Pricing tiers collapse raw customer types: B2B prices as B2C and
ENTERPRISE_2 prices as ENTERPRISE_1.
"""
from dataclasses import dataclass
from typing import Optional, List, Sequence, Tuple, Any
from decimal import Decimal, ROUND_HALF_UP
import uuid
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ValidationError, VariantNotFound
from app.models.product import ProductVariant, SegmentPrice, BulkPrice

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

PRICING_TIER_MAP = {
    "B2B": "B2C",
    "ENTERPRISE_2": "ENTERPRISE_1",
}

RETAIL_TIER = "B2C"

WHOLESALE_TYPES = frozenset({"B2B", "ENTERPRISE_1", "ENTERPRISE_2"})


def as_decimal(value: Any) -> Decimal:
    """Coerce DB/JSON numerics to Decimal without float artefacts."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value: Any) -> Decimal:
    """Round half-up to cents."""
    return as_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def get_pricing_customer_type(customer_type: Optional[str]) -> str:
    """Map a raw customer type to the tier its segment prices are stored under."""
    if not customer_type:
        return RETAIL_TIER
    return PRICING_TIER_MAP.get(customer_type, customer_type)


def compute_unit_price(
    variant: ProductVariant,
    customer_type: Optional[str],
    segment_price: Optional[SegmentPrice] = None,
) -> Decimal:
    """
    Segment price if present, otherwise the base price.

    ``segment_price`` must already be the row for the collapsed pricing tier;
    the base fallback looks at the raw customer type.
    """
    if segment_price is not None:
        sale = as_decimal(segment_price.sale_price)
        if sale > 0:
            return sale
        return as_decimal(segment_price.regular_price)

    if customer_type in WHOLESALE_TYPES:
        return as_decimal(variant.regular_price)

    sale = as_decimal(variant.sale_price)
    if sale > 0:
        return sale
    return as_decimal(variant.regular_price)


def tier_contains(min_qty: int, max_qty: Optional[int], quantity: int) -> bool:
    return quantity >= min_qty and (max_qty is None or quantity <= max_qty)


def find_bulk_tier(tiers: Sequence[BulkPrice], quantity: int) -> Optional[BulkPrice]:
    """First matching tier in ascending ``min_qty`` order."""
    for tier in sorted(tiers, key=lambda t: t.min_qty):
        if tier_contains(tier.min_qty, tier.max_qty, quantity):
            return tier
    return None


def ranges_overlap(
    a_min: int, a_max: Optional[int], b_min: int, b_max: Optional[int]
) -> bool:
    a_upper = a_max if a_max is not None else float("inf")
    b_upper = b_max if b_max is not None else float("inf")
    return a_min <= b_upper and b_min <= a_upper


def find_overlapping_tiers(tiers: Sequence[BulkPrice]) -> List[Tuple[BulkPrice, BulkPrice]]:
    """Pairs of tiers whose quantity ranges intersect."""
    ordered = sorted(tiers, key=lambda t: t.min_qty)
    overlaps = []
    for i, first in enumerate(ordered):
        for second in ordered[i + 1:]:
            if ranges_overlap(first.min_qty, first.max_qty, second.min_qty, second.max_qty):
                overlaps.append((first, second))
    return overlaps


def describe_tier_range(min_qty: int, max_qty: Optional[int]) -> str:
    return f"{min_qty}+" if max_qty is None else f"{min_qty}-{max_qty}"


@dataclass
class ResolvedPrice:
    """Price breakdown for one line."""
    unit_price: Decimal
    quantity: int
    bulk_unit_price: Optional[Decimal] = None
    bulk_tier_id: Optional[uuid.UUID] = None

    @property
    def effective_unit_price(self) -> Decimal:
        if self.bulk_unit_price is not None:
            return self.bulk_unit_price
        return self.unit_price

    @property
    def total_price(self) -> Decimal:
        return round_money(self.unit_price * self.quantity)

    @property
    def bulk_total_price(self) -> Optional[Decimal]:
        if self.bulk_unit_price is None:
            return None
        return round_money(self.bulk_unit_price * self.quantity)

    @property
    def line_total(self) -> Decimal:
        if self.bulk_unit_price is not None:
            return self.bulk_total_price
        return self.total_price


class PricingService:
    """
    Reads current prices from the database. Never writes during order flow.

    Example:
    - Variant regular $20, sale $18, no segment rows
    - B2B customer, qty 5 → $20 (wholesale fallback ignores the sale)
    - B2C customer, qty 5 → $18
    - Bulk tier 10+ at $8, qty 15 → $8 for any customer type
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_variant(self, variant_id: uuid.UUID) -> ProductVariant:
        result = await self.db.execute(
            select(ProductVariant).where(ProductVariant.id == variant_id)
        )
        variant = result.scalar_one_or_none()
        if not variant:
            raise VariantNotFound(f"Variant {variant_id} not found")
        return variant

    async def get_segment_price(
        self, variant_id: uuid.UUID, pricing_type: str
    ) -> Optional[SegmentPrice]:
        result = await self.db.execute(
            select(SegmentPrice).where(
                SegmentPrice.variant_id == variant_id,
                SegmentPrice.customer_type == pricing_type,
            )
        )
        return result.scalar_one_or_none()

    async def get_bulk_tiers(self, variant_id: uuid.UUID) -> List[BulkPrice]:
        result = await self.db.execute(
            select(BulkPrice)
            .where(BulkPrice.variant_id == variant_id)
            .order_by(BulkPrice.min_qty.asc())
        )
        return list(result.scalars().all())

    async def resolve(
        self,
        variant: ProductVariant,
        customer_type: Optional[str],
        quantity: int,
    ) -> ResolvedPrice:
        """Full breakdown: segment/base unit price plus any bulk override."""
        pricing_type = get_pricing_customer_type(customer_type)
        segment_price = await self.get_segment_price(variant.id, pricing_type)
        resolved = ResolvedPrice(
            unit_price=round_money(compute_unit_price(variant, customer_type, segment_price)),
            quantity=quantity,
        )

        tier = find_bulk_tier(await self.get_bulk_tiers(variant.id), quantity)
        if tier is not None:
            resolved.bulk_unit_price = round_money(tier.price)
            resolved.bulk_tier_id = tier.id
        return resolved

    async def resolve_unit_price(
        self,
        variant: ProductVariant,
        customer_type: Optional[str],
        quantity: int,
    ) -> Decimal:
        """The unit price to charge: bulk tier > segment price > base price."""
        resolved = await self.resolve(variant, customer_type, quantity)
        return resolved.effective_unit_price

    # ==================== BULK TIER AUTHORING ====================

    async def create_bulk_price(
        self,
        variant_id: uuid.UUID,
        min_qty: int,
        max_qty: Optional[int],
        price: Decimal,
    ) -> Tuple[BulkPrice, List[str]]:
        """
        Add a bulk tier. Overlaps with existing tiers are reported as
        warnings; runtime resolution still takes the first match.
        """
        await self.get_variant(variant_id)

        if min_qty < 1:
            raise ValidationError("Minimum quantity must be at least 1")
        if max_qty is not None and max_qty <= min_qty:
            raise ValidationError("Maximum quantity must be greater than minimum quantity")
        if as_decimal(price) <= 0:
            raise ValidationError("Price must be greater than 0")

        existing = await self.get_bulk_tiers(variant_id)
        tier = BulkPrice(
            variant_id=variant_id,
            min_qty=min_qty,
            max_qty=max_qty,
            price=round_money(price),
        )
        self.db.add(tier)
        await self.db.flush()

        warnings = [
            f"Tier {describe_tier_range(min_qty, max_qty)} overlaps existing tier "
            f"{describe_tier_range(other.min_qty, other.max_qty)}"
            for other in existing
            if ranges_overlap(min_qty, max_qty, other.min_qty, other.max_qty)
        ]
        if warnings:
            logger.warning(f"Overlapping bulk tiers for variant {variant_id}: {warnings}")
        return tier, warnings

    async def get_bulk_tier_warnings(self, variant_id: uuid.UUID) -> List[str]:
        """Overlap warnings for every configured tier pair of a variant."""
        tiers = await self.get_bulk_tiers(variant_id)
        return [
            f"Tier {describe_tier_range(a.min_qty, a.max_qty)} overlaps tier "
            f"{describe_tier_range(b.min_qty, b.max_qty)}"
            for a, b in find_overlapping_tiers(tiers)
        ]
