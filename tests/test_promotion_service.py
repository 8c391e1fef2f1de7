import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.core.exceptions import CouponLimitExceeded, IneligibleError, InvalidCoupon
from app.models.customer import Customer
from app.models.promotion import (
    Promotion,
    PromotionCustomer,
    PromotionProductRule,
    PromotionVolumeTier,
)
from app.services.promotion_service import (
    PromotionEvaluator,
    PromotionLineItem,
    PromotionService,
    is_private_coupon,
)


def _promotion(**kwargs) -> Promotion:
    defaults = dict(
        id=uuid.uuid4(),
        code="TEST",
        name="Test",
        promotion_type="PERCENTAGE",
        value=Decimal("10"),
        usage_count=0,
        is_active=True,
        customer_types=[],
        is_for_individual_customer=False,
        product_rules=[],
        volume_tiers=[],
        specific_customers=[],
    )
    defaults.update(kwargs)
    return Promotion(**defaults)


def _line(price: str, quantity: int, variant_id=None, product_id=None) -> PromotionLineItem:
    return PromotionLineItem(
        variant_id=variant_id or uuid.uuid4(),
        product_id=product_id or uuid.uuid4(),
        quantity=quantity,
        unit_price=Decimal(price),
    )


def _customer(customer_type: str = "B2C") -> Customer:
    return Customer(id=uuid.uuid4(), email="c@example.com", first_name="C", customer_type=customer_type)


evaluator = PromotionEvaluator()


def test_percentage_capped_by_max_discount():
    promotion = _promotion(value=Decimal("50"), max_discount=Decimal("20"))
    result = evaluator.evaluate(promotion, [_line("100", 1)], None, Decimal("100"))
    assert result.discount == Decimal("20.00")


def test_fixed_amount_never_exceeds_subtotal():
    promotion = _promotion(promotion_type="FIXED_AMOUNT", value=Decimal("50"))
    result = evaluator.evaluate(promotion, [_line("30", 1)], None, Decimal("30"))
    assert result.discount == Decimal("30.00")


def test_free_shipping_uses_shipping_amount():
    promotion = _promotion(promotion_type="FREE_SHIPPING", value=Decimal("0"))
    result = evaluator.evaluate(promotion, [_line("40", 1)], None, Decimal("40"), Decimal("9.95"))
    assert result.discount == Decimal("9.95")


def test_free_shipping_is_clamped_to_subtotal():
    promotion = _promotion(promotion_type="FREE_SHIPPING", value=Decimal("0"))
    result = evaluator.evaluate(promotion, [_line("20", 1)], None, Decimal("20"), Decimal("50"))
    assert result.discount == Decimal("20.00")


def test_simple_bogo_discounts_cheapest_units():
    promotion = _promotion(promotion_type="BOGO", value=Decimal("0"))
    cheap = _line("10", 2)
    pricey = _line("50", 2)
    # 4 units, buy 2 get 1 -> 2 free units, both from the cheapest line
    result = evaluator.evaluate(promotion, [pricey, cheap], None, Decimal("120"))
    assert result.discount == Decimal("20.00")
    assert [(a.variant_id, a.quantity) for a in result.applied_items] == [(cheap.variant_id, 2)]


def test_rule_bogo_with_partial_get_discount():
    buy_product = uuid.uuid4()
    get_product = uuid.uuid4()
    promotion = _promotion(
        promotion_type="BOGO",
        value=Decimal("0"),
        get_discount=Decimal("50"),
        product_rules=[
            PromotionProductRule(rule_type="BUY", product_id=buy_product),
            PromotionProductRule(rule_type="GET", product_id=get_product),
        ],
    )
    items = [_line("40", 3, product_id=buy_product), _line("20", 5, product_id=get_product)]
    # buy 1 get 1 at 50%: 3 buy units -> 3 get units at $10 off each
    result = evaluator.evaluate(promotion, items, None, Decimal("220"))
    assert result.discount == Decimal("30.00")


def test_volume_discount_uses_highest_qualifying_tier():
    promotion = _promotion(
        promotion_type="VOLUME_DISCOUNT",
        value=Decimal("0"),
        volume_tiers=[
            PromotionVolumeTier(min_quantity=5, max_quantity=None, discount_type="PERCENTAGE", discount_value=Decimal("5")),
            PromotionVolumeTier(min_quantity=10, max_quantity=None, discount_type="PERCENTAGE", discount_value=Decimal("10")),
        ],
    )
    result = evaluator.evaluate(promotion, [_line("10", 6), _line("20", 6)], None, Decimal("180"))
    assert result.discount == Decimal("18.00")


def test_volume_fixed_price_tier():
    promotion = _promotion(
        promotion_type="VOLUME_DISCOUNT",
        value=Decimal("0"),
        volume_tiers=[
            PromotionVolumeTier(min_quantity=10, max_quantity=None, discount_type="FIXED_PRICE", discount_value=Decimal("7")),
        ],
    )
    result = evaluator.evaluate(promotion, [_line("10", 10)], None, Decimal("100"))
    assert result.discount == Decimal("30.00")


def test_minimum_order_amount():
    promotion = _promotion(min_order_amount=Decimal("50"))
    with pytest.raises(IneligibleError):
        evaluator.evaluate(promotion, [_line("49.99", 1)], None, Decimal("49.99"))


def test_expired_and_future_promotions_are_invalid():
    now = datetime.now(timezone.utc)
    with pytest.raises(InvalidCoupon):
        evaluator.evaluate(_promotion(expires_at=now - timedelta(days=1)), [_line("10", 1)], None, Decimal("10"))
    with pytest.raises(InvalidCoupon):
        evaluator.evaluate(_promotion(starts_at=now + timedelta(days=1)), [_line("10", 1)], None, Decimal("10"))


def test_usage_limit_reached():
    promotion = _promotion(usage_limit=1, usage_count=1)
    with pytest.raises(CouponLimitExceeded):
        evaluator.evaluate(promotion, [_line("10", 1)], None, Decimal("10"))


def test_private_when_specific_customers_exist_without_flag():
    allowed = _customer()
    promotion = _promotion(specific_customers=[PromotionCustomer(customer_id=allowed.id)])
    assert is_private_coupon(promotion)

    evaluator.evaluate(promotion, [_line("10", 1)], allowed, Decimal("10"))
    with pytest.raises(IneligibleError):
        evaluator.evaluate(promotion, [_line("10", 1)], _customer(), Decimal("10"))
    with pytest.raises(IneligibleError):
        evaluator.evaluate(promotion, [_line("10", 1)], None, Decimal("10"))


def test_customer_types_filter_applies_to_private_coupons_too():
    wholesale = _customer("B2B")
    promotion = _promotion(
        is_for_individual_customer=True,
        customer_types=["B2C"],
        specific_customers=[PromotionCustomer(customer_id=wholesale.id)],
    )
    with pytest.raises(IneligibleError):
        evaluator.evaluate(promotion, [_line("10", 1)], wholesale, Decimal("10"))


async def test_code_lookup_is_case_insensitive(db):
    service = PromotionService(db)
    await service.create_promotion({
        "code": "save10",
        "name": "Save ten",
        "promotion_type": "FIXED_AMOUNT",
        "value": Decimal("10"),
    })
    await db.commit()

    promotion = await service.get_by_code("Save10")
    assert promotion is not None
    assert promotion.code == "SAVE10"


async def test_redeem_stops_at_usage_limit(db):
    service = PromotionService(db)
    promotion = await service.create_promotion({
        "code": "ONCE",
        "name": "Single use",
        "promotion_type": "PERCENTAGE",
        "value": Decimal("5"),
        "usage_limit": 1,
    })
    await db.commit()

    await service.redeem(promotion)
    assert promotion.usage_count == 1
    with pytest.raises(CouponLimitExceeded):
        await service.redeem(promotion)


async def test_calculate_discount_prices_from_database(db, make_customer, make_variant):
    customer = await make_customer("B2B")
    variant = await make_variant(regular_price="20.00", sale_price="18.00")
    service = PromotionService(db)
    await service.create_promotion({
        "code": "TENOFF",
        "name": "Ten percent",
        "promotion_type": "PERCENTAGE",
        "value": Decimal("10"),
    })
    await db.commit()

    subtotal, result = await service.calculate_discount("tenoff", [(variant.id, 5)], customer.id)
    assert subtotal == Decimal("100.00")
    assert result.discount == Decimal("10.00")


async def test_deactivate_expired(db):
    service = PromotionService(db)
    await service.create_promotion({
        "code": "OLD",
        "name": "Old",
        "promotion_type": "PERCENTAGE",
        "value": Decimal("5"),
        "expires_at": datetime.now(timezone.utc) - timedelta(hours=1),
    })
    await service.create_promotion({
        "code": "CURRENT",
        "name": "Current",
        "promotion_type": "PERCENTAGE",
        "value": Decimal("5"),
        "expires_at": datetime.now(timezone.utc) + timedelta(days=1),
    })
    await db.commit()

    expired = await service.deactivate_expired()
    assert [p.code for p in expired] == ["OLD"]
