"""
Promotion Service - coupon eligibility and discount calculation.

Supports:
- PERCENTAGE: subtotal * value / 100
- FIXED_AMOUNT: min(value, subtotal)
- FREE_SHIPPING: the order's shipping amount
- BOGO: buy X get Y at get_discount% off, cheapest eligible units first
- VOLUME_DISCOUNT: highest qualifying quantity tier, applied per line

Every discount is capped by ``max_discount`` and then by the subtotal.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List, Dict, Any, Sequence, Tuple
import uuid
import logging

from sqlalchemy import select, update, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enum_utils import get_enum_value
from app.core.exceptions import (
    CouponLimitExceeded,
    CustomerNotFound,
    ConflictError,
    IneligibleError,
    InvalidCoupon,
    ValidationError,
)
from app.models.customer import Customer
from app.models.promotion import (
    Promotion,
    PromotionCustomer,
    PromotionProductRule,
    PromotionType,
    PromotionVolumeTier,
    ProductRuleType,
    TierDiscountType,
)
from app.services.pricing_service import PricingService, as_decimal, round_money

logger = logging.getLogger(__name__)

SIMPLE_BOGO_DEFAULTS = (2, 1)
RULE_BOGO_DEFAULTS = (1, 1)


@dataclass
class PromotionLineItem:
    """A priced order line as seen by the evaluator."""
    variant_id: uuid.UUID
    product_id: Optional[uuid.UUID]
    quantity: int
    unit_price: Decimal

    @property
    def subtotal(self) -> Decimal:
        return as_decimal(self.unit_price) * self.quantity


@dataclass
class AppliedItem:
    variant_id: uuid.UUID
    quantity: int
    discount: Decimal


@dataclass
class DiscountResult:
    discount: Decimal
    promotion_id: uuid.UUID
    promotion_code: str
    applied_items: List[AppliedItem] = field(default_factory=list)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_private_coupon(promotion: Promotion) -> bool:
    """Private once the flag is set or any specific customer is attached."""
    return bool(promotion.is_for_individual_customer or promotion.specific_customers)


def _matches_rule(item: PromotionLineItem, rule: PromotionProductRule) -> bool:
    if rule.variant_id is not None and rule.variant_id == item.variant_id:
        return True
    return rule.product_id is not None and rule.product_id == item.product_id


class PromotionEvaluator:
    """Pure discount maths over an already-loaded promotion."""

    def check_availability(self, promotion: Promotion, now: Optional[datetime] = None) -> None:
        """Active, inside its window and under its usage limit."""
        now = now or datetime.now(timezone.utc)
        starts_at = _as_utc(promotion.starts_at)
        expires_at = _as_utc(promotion.expires_at)

        if not promotion.is_active:
            raise InvalidCoupon("Invalid or expired coupon code")
        if starts_at and now < starts_at:
            raise InvalidCoupon("Invalid or expired coupon code")
        if expires_at and now > expires_at:
            raise InvalidCoupon("Invalid or expired coupon code")
        if promotion.usage_limit is not None and (promotion.usage_count or 0) >= promotion.usage_limit:
            raise CouponLimitExceeded(
                "Coupon usage limit exceeded",
                {"code": promotion.code, "usage_limit": promotion.usage_limit},
            )

    def is_customer_eligible(
        self,
        promotion: Promotion,
        customer: Optional[Customer],
        private: bool,
    ) -> bool:
        if private:
            if customer is None:
                return False
            allowed = {sc.customer_id for sc in promotion.specific_customers}
            if customer.id not in allowed:
                return False

        customer_types = promotion.customer_types or []
        if not customer_types:
            return True
        if customer is not None and customer.customer_type:
            return customer.customer_type in customer_types
        return False

    def evaluate(
        self,
        promotion: Promotion,
        items: Sequence[PromotionLineItem],
        customer: Optional[Customer],
        subtotal: Decimal,
        shipping_amount: Decimal = Decimal("0"),
        now: Optional[datetime] = None,
    ) -> DiscountResult:
        """
        Discount for an order, or an error explaining why the coupon does
        not apply. Nothing is written; redemption is the caller's job.
        """
        subtotal = as_decimal(subtotal)
        self.check_availability(promotion, now)

        private = is_private_coupon(promotion)
        if not self.is_customer_eligible(promotion, customer, private):
            raise IneligibleError(
                "Customer not eligible for this promotion",
                {"code": promotion.code, "private": private},
            )

        if promotion.min_order_amount is not None and subtotal < as_decimal(promotion.min_order_amount):
            raise IneligibleError(
                f"Minimum order amount of ${round_money(promotion.min_order_amount)} required",
                {"min_order_amount": str(round_money(promotion.min_order_amount))},
            )

        value = as_decimal(promotion.value)
        applied: List[AppliedItem] = []

        if promotion.promotion_type == PromotionType.PERCENTAGE.value:
            discount = subtotal * value / 100
        elif promotion.promotion_type == PromotionType.FIXED_AMOUNT.value:
            discount = min(value, subtotal)
        elif promotion.promotion_type == PromotionType.FREE_SHIPPING.value:
            discount = as_decimal(shipping_amount)
        elif promotion.promotion_type == PromotionType.BOGO.value:
            discount, applied = self._bogo_discount(promotion, items)
        elif promotion.promotion_type == PromotionType.VOLUME_DISCOUNT.value:
            discount, applied = self._volume_discount(promotion, items)
        else:
            raise ValidationError(f"Unknown promotion type: {promotion.promotion_type}")

        if promotion.max_discount is not None:
            discount = min(discount, as_decimal(promotion.max_discount))
        discount = max(Decimal("0"), min(discount, subtotal))

        return DiscountResult(
            discount=round_money(discount),
            promotion_id=promotion.id,
            promotion_code=promotion.code,
            applied_items=applied,
        )

    # ==================== BOGO ====================

    def _bogo_discount(self, promotion: Promotion, items: Sequence[PromotionLineItem]):
        buy_rules = [r for r in promotion.product_rules if r.rule_type == ProductRuleType.BUY.value]
        get_rules = [r for r in promotion.product_rules if r.rule_type == ProductRuleType.GET.value]

        if not buy_rules and not get_rules:
            buy_qty, get_qty = SIMPLE_BOGO_DEFAULTS
            buy_items = list(items)
            get_items = list(items)
        else:
            buy_qty, get_qty = RULE_BOGO_DEFAULTS
            buy_items = [i for i in items if any(_matches_rule(i, r) for r in buy_rules)]
            if get_rules:
                get_items = [i for i in items if any(_matches_rule(i, r) for r in get_rules)]
            else:
                get_items = buy_items

        buy_qty = promotion.buy_quantity or buy_qty
        get_qty = promotion.get_quantity or get_qty
        get_discount = (
            as_decimal(promotion.get_discount) / 100
            if promotion.get_discount
            else Decimal("1")
        )

        total_buy_qty = sum(i.quantity for i in buy_items)
        remaining = (total_buy_qty // buy_qty) * get_qty

        discount = Decimal("0")
        applied: List[AppliedItem] = []
        for item in sorted(get_items, key=lambda i: as_decimal(i.unit_price)):
            if remaining <= 0:
                break
            free_qty = min(remaining, item.quantity)
            item_discount = free_qty * as_decimal(item.unit_price) * get_discount
            discount += item_discount
            applied.append(AppliedItem(item.variant_id, free_qty, round_money(item_discount)))
            remaining -= free_qty
        return discount, applied

    # ==================== VOLUME ====================

    def _volume_discount(self, promotion: Promotion, items: Sequence[PromotionLineItem]):
        tiers = sorted(promotion.volume_tiers, key=lambda t: t.min_quantity)

        if not tiers:
            rate = as_decimal(promotion.value) / 100
            applied = [
                AppliedItem(i.variant_id, i.quantity, round_money(i.subtotal * rate))
                for i in items
            ]
            return sum((i.subtotal for i in items), Decimal("0")) * rate, applied

        total_qty = sum(i.quantity for i in items)
        applicable: Optional[PromotionVolumeTier] = None
        for tier in tiers:
            if total_qty >= tier.min_quantity and (
                not tier.max_quantity or total_qty <= tier.max_quantity
            ):
                applicable = tier

        if applicable is None:
            return Decimal("0"), []

        tier_value = as_decimal(applicable.discount_value)
        discount = Decimal("0")
        applied: List[AppliedItem] = []
        for item in items:
            item_subtotal = item.subtotal
            if applicable.discount_type == TierDiscountType.PERCENTAGE.value:
                item_discount = item_subtotal * tier_value / 100
            elif applicable.discount_type == TierDiscountType.FIXED_AMOUNT.value:
                item_discount = min(tier_value, item_subtotal)
            elif applicable.discount_type == TierDiscountType.FIXED_PRICE.value:
                item_discount = max(Decimal("0"), item_subtotal - item.quantity * tier_value)
            else:
                item_discount = Decimal("0")
            discount += item_discount
            applied.append(AppliedItem(item.variant_id, item.quantity, round_money(item_discount)))
        return discount, applied


class PromotionService:
    """Loads, redeems and administers promotions."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.evaluator = PromotionEvaluator()

    async def get_by_code(self, code: str) -> Optional[Promotion]:
        """Case-insensitive lookup, with rules, tiers and customers loaded."""
        result = await self.db.execute(
            select(Promotion)
            .where(func.upper(Promotion.code) == code.strip().upper())
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_id(self, promotion_id: uuid.UUID) -> Optional[Promotion]:
        result = await self.db.execute(
            select(Promotion)
            .where(Promotion.id == promotion_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def evaluate_code(
        self,
        code: str,
        items: Sequence[PromotionLineItem],
        customer: Optional[Customer],
        subtotal: Decimal,
        shipping_amount: Decimal = Decimal("0"),
    ) -> DiscountResult:
        promotion = await self.get_by_code(code)
        if not promotion:
            raise InvalidCoupon("Invalid or expired coupon code", {"code": code})
        return self.evaluator.evaluate(promotion, items, customer, subtotal, shipping_amount)

    async def calculate_discount(
        self,
        code: str,
        items: Sequence[Tuple[uuid.UUID, int]],
        customer_id: Optional[uuid.UUID] = None,
        shipping_amount: Decimal = Decimal("0"),
    ) -> Tuple[Decimal, DiscountResult]:
        """
        Preview a coupon against (variant_id, quantity) lines priced from the
        database. Returns (subtotal, result).
        """
        customer = None
        if customer_id:
            customer = await self.db.get(Customer, customer_id)
            if not customer:
                raise CustomerNotFound(f"Customer {customer_id} not found")

        pricing = PricingService(self.db)
        customer_type = customer.customer_type if customer else None
        lines = []
        for variant_id, quantity in items:
            variant = await pricing.get_variant(variant_id)
            unit_price = await pricing.resolve_unit_price(variant, customer_type, quantity)
            lines.append(PromotionLineItem(variant.id, variant.product_id, quantity, unit_price))

        subtotal = round_money(sum((line.subtotal for line in lines), Decimal("0")))
        result = await self.evaluate_code(code, lines, customer, subtotal, shipping_amount)
        return subtotal, result

    async def redeem(self, promotion: Promotion) -> None:
        """
        Increment ``usage_count`` once, only while under the limit.

        The guard is part of the UPDATE so two orders racing for the last
        use cannot both succeed.
        """
        result = await self.db.execute(
            update(Promotion)
            .where(
                Promotion.id == promotion.id,
                or_(
                    Promotion.usage_limit.is_(None),
                    Promotion.usage_count < Promotion.usage_limit,
                ),
            )
            .values(usage_count=Promotion.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise CouponLimitExceeded("Coupon usage limit exceeded", {"code": promotion.code})
        await self.db.refresh(promotion, attribute_names=["usage_count"])

    # ==================== ADMIN ====================

    async def create_promotion(self, data: Dict[str, Any]) -> Promotion:
        code = data["code"].strip().upper()
        if await self.get_by_code(code):
            raise ConflictError(f"Promotion code '{code}' already exists")

        promotion = Promotion(
            code=code,
            name=data["name"],
            description=data.get("description"),
            promotion_type=get_enum_value(data["promotion_type"]),
            value=round_money(data.get("value") or 0),
            min_order_amount=data.get("min_order_amount"),
            max_discount=data.get("max_discount"),
            usage_limit=data.get("usage_limit"),
            usage_count=0,
            is_active=data.get("is_active", True),
            starts_at=data.get("starts_at"),
            expires_at=data.get("expires_at"),
            customer_types=data.get("customer_types") or [],
            is_for_individual_customer=data.get("is_for_individual_customer", False),
            buy_quantity=data.get("buy_quantity"),
            get_quantity=data.get("get_quantity"),
            get_discount=data.get("get_discount"),
            product_rules=[
                PromotionProductRule(
                    rule_type=get_enum_value(rule["rule_type"]),
                    product_id=rule.get("product_id"),
                    variant_id=rule.get("variant_id"),
                )
                for rule in data.get("product_rules") or []
            ],
            volume_tiers=[
                PromotionVolumeTier(
                    min_quantity=tier["min_quantity"],
                    max_quantity=tier.get("max_quantity"),
                    discount_type=get_enum_value(tier.get("discount_type", TierDiscountType.PERCENTAGE)),
                    discount_value=tier["discount_value"],
                )
                for tier in data.get("volume_tiers") or []
            ],
            specific_customers=[
                PromotionCustomer(customer_id=customer_id)
                for customer_id in data.get("specific_customer_ids") or []
            ],
        )
        self.db.add(promotion)
        await self.db.flush()
        logger.info(f"Created promotion {code} ({promotion.promotion_type})")
        return promotion

    async def deactivate_expired(self, now: Optional[datetime] = None) -> List[Promotion]:
        """Switch off active promotions whose window has closed."""
        now = now or datetime.now(timezone.utc)
        result = await self.db.execute(
            select(Promotion).where(
                Promotion.is_active == True,
                Promotion.expires_at.is_not(None),
                Promotion.expires_at < now,
            )
        )
        expired = list(result.scalars().all())
        for promotion in expired:
            promotion.is_active = False
        if expired:
            await self.db.flush()
            logger.info(f"Deactivated {len(expired)} expired promotions")
        return expired
