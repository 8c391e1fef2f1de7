from decimal import Decimal

from app.models.tax import ShippingRate, ShippingTier, ShippingZone
from app.services.tax_service import ShippingRateService, TaxService


async def test_state_rate_preferred_over_country(db, make_tax_rate):
    await make_tax_rate("5.000")
    await make_tax_rate("8.250", state="TX")
    taxes = TaxService(db)

    assert (await taxes.get_applicable_tax_rate("us", "tx")).rate == Decimal("8.250")
    assert (await taxes.get_applicable_tax_rate("US", "OR")).rate == Decimal("5.000")
    assert await taxes.get_applicable_tax_rate("CA") is None
    assert await taxes.calculate_tax(Decimal("95.00"), "US", "TX") == Decimal("7.84")


async def _zone(db, **rate_kwargs):
    zone = ShippingZone(name="Domestic", countries=["US"], rates=[
        ShippingRate(name="Ground", rate=Decimal("9.95"), **rate_kwargs),
        ShippingRate(name="Express", rate=Decimal("24.95")),
    ])
    db.add(zone)
    await db.commit()
    return zone


async def test_cheapest_rate_and_free_threshold(db):
    await _zone(db, free_shipping_threshold=Decimal("150"))
    service = ShippingRateService(db)

    applied = await service.get_applicable_shipping_rate("US", Decimal("40"))
    assert (applied.final_rate, applied.reason) == (Decimal("9.95"), "Ground")

    applied = await service.get_applicable_shipping_rate("US", Decimal("150"))
    assert applied.final_rate == Decimal("0.00")


async def test_weight_bounds_skip_rates(db):
    await _zone(db, max_weight=Decimal("2"))
    applied = await ShippingRateService(db).get_applicable_shipping_rate("US", Decimal("40"), Decimal("5"))
    assert applied.reason == "Express"


async def test_dynamic_tier_overrides_zone_rate(db):
    await _zone(db)
    db.add(ShippingTier(name="Mid", min_subtotal=Decimal("50"), max_subtotal=Decimal("100"), shipping_rate=Decimal("4.00")))
    await db.commit()
    service = ShippingRateService(db)

    applied = await service.get_applicable_shipping_rate("US", Decimal("75"))
    assert (applied.final_rate, applied.reason) == (Decimal("4.00"), "Dynamic Tier: Mid")
    # Upper bound is exclusive
    applied = await service.get_applicable_shipping_rate("US", Decimal("100"))
    assert applied.final_rate == Decimal("9.95")


async def test_no_zone_for_country(db):
    await _zone(db)
    assert await ShippingRateService(db).get_applicable_shipping_rate("GB", Decimal("40")) is None
