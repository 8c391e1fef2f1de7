from decimal import Decimal

import pytest

from app.core.exceptions import ValidationError
from app.services.pricing_service import (
    PricingService,
    find_bulk_tier,
    get_pricing_customer_type,
    ranges_overlap,
    round_money,
)
from app.models.product import BulkPrice


def test_pricing_tier_collapse():
    assert get_pricing_customer_type("B2B") == "B2C"
    assert get_pricing_customer_type("ENTERPRISE_2") == "ENTERPRISE_1"
    assert get_pricing_customer_type("ENTERPRISE_1") == "ENTERPRISE_1"
    assert get_pricing_customer_type(None) == "B2C"


def test_round_money_is_half_up():
    assert round_money("2.345") == Decimal("2.35")
    assert round_money(7.6) == Decimal("7.60")


def test_first_matching_bulk_tier_wins_on_overlap():
    tiers = [
        BulkPrice(min_qty=20, max_qty=None, price=Decimal("6.00")),
        BulkPrice(min_qty=10, max_qty=30, price=Decimal("8.00")),
    ]
    assert find_bulk_tier(tiers, 25).price == Decimal("8.00")
    assert find_bulk_tier(tiers, 35).price == Decimal("6.00")
    assert find_bulk_tier(tiers, 5) is None


def test_ranges_overlap_with_open_ended_tiers():
    assert ranges_overlap(10, None, 50, 100)
    assert not ranges_overlap(1, 9, 10, None)


async def test_wholesale_fallback_ignores_sale_price(db, make_variant):
    variant = await make_variant(regular_price="20.00", sale_price="18.00")
    pricing = PricingService(db)

    assert await pricing.resolve_unit_price(variant, "B2B", 5) == Decimal("20.00")
    assert await pricing.resolve_unit_price(variant, "ENTERPRISE_2", 5) == Decimal("20.00")
    assert await pricing.resolve_unit_price(variant, "B2C", 5) == Decimal("18.00")
    assert await pricing.resolve_unit_price(variant, None, 5) == Decimal("18.00")


async def test_zero_sale_price_means_no_sale(db, make_variant):
    variant = await make_variant(regular_price="20.00", sale_price="0.00")
    assert await PricingService(db).resolve_unit_price(variant, "B2C", 1) == Decimal("20.00")


async def test_b2b_shares_the_b2c_segment_row(db, make_variant, make_segment_price):
    variant = await make_variant(regular_price="20.00")
    await make_segment_price(variant, "B2C", "16.00", "15.00")
    await make_segment_price(variant, "ENTERPRISE_1", "12.00")
    pricing = PricingService(db)

    assert await pricing.resolve_unit_price(variant, "B2B", 1) == Decimal("15.00")
    assert await pricing.resolve_unit_price(variant, "B2C", 1) == Decimal("15.00")
    assert await pricing.resolve_unit_price(variant, "ENTERPRISE_2", 1) == Decimal("12.00")


async def test_bulk_tier_beats_segment_price(db, make_variant, make_segment_price, make_bulk_price):
    variant = await make_variant(regular_price="12.00")
    await make_segment_price(variant, "ENTERPRISE_1", "10.00")
    await make_bulk_price(variant, min_qty=10, max_qty=None, price="8.00")
    pricing = PricingService(db)

    for customer_type in ("B2C", "B2B", "ENTERPRISE_1", "ENTERPRISE_2"):
        resolved = await pricing.resolve(variant, customer_type, 15)
        assert resolved.effective_unit_price == Decimal("8.00")
        assert resolved.line_total == Decimal("120.00")

    below = await pricing.resolve(variant, "ENTERPRISE_1", 9)
    assert below.bulk_unit_price is None
    assert below.line_total == Decimal("90.00")


async def test_create_bulk_price_reports_overlaps(db, make_variant):
    variant = await make_variant()
    pricing = PricingService(db)

    _, warnings = await pricing.create_bulk_price(variant.id, 10, 50, Decimal("9.00"))
    assert warnings == []

    tier, warnings = await pricing.create_bulk_price(variant.id, 40, None, Decimal("7.50"))
    assert tier.id is not None
    assert warnings == ["Tier 40+ overlaps existing tier 10-50"]
    assert await pricing.get_bulk_tier_warnings(variant.id) == ["Tier 10-50 overlaps tier 40+"]


async def test_create_bulk_price_rejects_inverted_range(db, make_variant):
    variant = await make_variant()
    with pytest.raises(ValidationError):
        await PricingService(db).create_bulk_price(variant.id, 10, 10, Decimal("5.00"))
