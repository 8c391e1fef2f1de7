import pytest

from app.core.exceptions import InsufficientInventoryError, InventoryLedgerError
from app.services.inventory_service import InventoryService


async def test_reserve_and_release(db, make_variant, make_location, make_inventory):
    variant = await make_variant()
    location = await make_location()
    row = await make_inventory(variant, location, quantity=10)
    ledger = InventoryService(db)

    await ledger.reserve(variant.id, location.id, 4)
    assert (row.quantity, row.reserved_qty, row.available) == (10, 4, 6)

    await ledger.release(variant.id, location.id, 4)
    assert (row.quantity, row.reserved_qty) == (10, 0)


async def test_reserve_beyond_available_is_rejected(db, make_variant, make_location, make_inventory):
    variant = await make_variant()
    location = await make_location()
    row = await make_inventory(variant, location, quantity=5, reserved_qty=3)

    with pytest.raises(InsufficientInventoryError) as exc:
        await InventoryService(db).reserve(variant.id, location.id, 3)
    assert exc.value.items[0]["available_quantity"] == 2
    assert row.reserved_qty == 3


async def test_commit_decrements_both_counters(db, make_variant, make_location, make_inventory):
    variant = await make_variant()
    location = await make_location()
    row = await make_inventory(variant, location, quantity=100, reserved_qty=10)

    await InventoryService(db).commit(variant.id, location.id, 10, "SHIPPED")
    assert (row.quantity, row.reserved_qty) == (90, 0)


async def test_commit_on_delivery_zeroes_reserved(db, make_variant, make_location, make_inventory):
    variant = await make_variant()
    location = await make_location()
    row = await make_inventory(variant, location, quantity=100, reserved_qty=50)

    await InventoryService(db).commit(variant.id, location.id, 10, "DELIVERED")
    assert (row.quantity, row.reserved_qty) == (90, 0)


async def test_release_below_zero_raises_instead_of_clamping(db, make_variant, make_location, make_inventory):
    variant = await make_variant()
    location = await make_location()
    row = await make_inventory(variant, location, quantity=10, reserved_qty=2)

    with pytest.raises(InventoryLedgerError):
        await InventoryService(db).release(variant.id, location.id, 5)
    assert row.reserved_qty == 2


async def test_commit_more_than_on_hand_raises(db, make_variant, make_location, make_inventory):
    variant = await make_variant()
    location = await make_location()
    await make_inventory(variant, location, quantity=3, reserved_qty=3)

    with pytest.raises(InventoryLedgerError):
        await InventoryService(db).commit(variant.id, location.id, 5, "SHIPPED")


async def test_reserve_across_locations_two_passes(db, make_variant, make_location, make_inventory):
    variant = await make_variant()
    west = await make_location("LAX", "Los Angeles")
    east = await make_location("JFK", "New York")
    west_row = await make_inventory(variant, west, quantity=3)
    east_row = await make_inventory(variant, east, quantity=2, sell_when_out_of_stock=True)

    allocations = await InventoryService(db).reserve_across_locations(variant.id, 8, west.id)

    assert [(a.location_id, a.quantity, a.is_backorder) for a in allocations] == [
        (west.id, 3, False),
        (east.id, 2, False),
        (east.id, 3, True),
    ]
    assert west_row.reserved_qty == 3
    assert east_row.reserved_qty == 5
    assert east_row.available == -3


async def test_reserve_across_locations_without_backorder_fails(db, make_variant, make_location, make_inventory):
    variant = await make_variant()
    location = await make_location()
    await make_inventory(variant, location, quantity=2)

    with pytest.raises(InsufficientInventoryError) as exc:
        await InventoryService(db).reserve_across_locations(variant.id, 3)
    assert exc.value.items[0]["requested_quantity"] == 3


async def test_availability_sums_locations(db, make_variant, make_location, make_inventory):
    variant = await make_variant()
    await make_inventory(variant, await make_location("LAX", "Los Angeles"), quantity=5, reserved_qty=1)
    await make_inventory(variant, await make_location("JFK", "New York"), quantity=2, reserved_qty=4,
                         sell_when_out_of_stock=True)

    stock = (await InventoryService(db).get_availability([variant.id]))[variant.id]
    assert stock.total_available == 4
    assert stock.can_backorder
    assert stock.is_sufficient(50)


async def test_stock_alerts(db, make_variant, make_location, make_inventory):
    location = await make_location()
    low = await make_inventory(await make_variant(), location, quantity=5, low_stock_alert=10)
    out = await make_inventory(await make_variant(), location, quantity=2, reserved_qty=2)
    await make_inventory(await make_variant(), location, quantity=50)
    await make_inventory(await make_variant(), location, quantity=0, sell_when_out_of_stock=True)

    alerts = await InventoryService(db).get_stock_alerts()
    assert [row.id for row in alerts["low_stock"]] == [low.id]
    assert [row.id for row in alerts["out_of_stock"]] == [out.id]
