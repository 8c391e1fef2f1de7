import uuid

import pytest

from app.core.exceptions import AddressNotFound, NoWarehouseAvailable
from app.services.warehouse_service import (
    DEFAULT_COORDINATES,
    WarehouseService,
    haversine_distance,
    resolve_coordinates,
)


def test_haversine_la_to_ny():
    distance = haversine_distance(34.0522, -118.2437, 40.7128, -74.0060)
    assert 3900 < distance < 4000


def test_resolve_coordinates_prefers_stored_values():
    assert resolve_coordinates("Chicago", 1.0, 2.0) == (1.0, 2.0)
    assert resolve_coordinates("  CHICAGO ") == (41.8781, -87.6298)
    assert resolve_coordinates("North Las Vegas") == (36.1699, -115.1398)
    assert resolve_coordinates("Smallville") == DEFAULT_COORDINATES
    assert resolve_coordinates(None) == DEFAULT_COORDINATES


async def test_closest_location_with_full_stock(db, make_variant, make_location, make_inventory):
    variant = await make_variant()
    west = await make_location("LAX", "Los Angeles")
    east = await make_location("JFK", "New York")
    await make_inventory(variant, west, quantity=10)
    await make_inventory(variant, east, quantity=10)

    selection = await WarehouseService(db).select_for_destination("San Diego", [(variant.id, 5)])
    assert selection.location.id == west.id
    assert selection.stock_available


async def test_farther_location_wins_when_closest_is_short(db, make_variant, make_location, make_inventory):
    variant = await make_variant()
    west = await make_location("LAX", "Los Angeles")
    east = await make_location("JFK", "New York")
    await make_inventory(variant, west, quantity=2)
    await make_inventory(variant, east, quantity=10)

    selection = await WarehouseService(db).select_for_destination("San Diego", [(variant.id, 5)])
    assert selection.location.id == east.id
    assert selection.stock_details[variant.id].available == 10


async def test_no_full_stock_falls_back_to_closest(db, make_variant, make_location, make_inventory):
    variant = await make_variant()
    west = await make_location("LAX", "Los Angeles")
    east = await make_location("JFK", "New York")
    await make_inventory(variant, west, quantity=2)
    await make_inventory(variant, east, quantity=1)

    selection = await WarehouseService(db).select_for_destination("San Diego", [(variant.id, 5)])
    assert selection.location.id == west.id
    assert not selection.stock_available


async def test_backorder_row_counts_as_full_stock(db, make_variant, make_location, make_inventory):
    variant = await make_variant()
    west = await make_location("LAX", "Los Angeles")
    await make_inventory(variant, west, quantity=0, sell_when_out_of_stock=True)

    selection = await WarehouseService(db).select_for_destination("San Diego", [(variant.id, 5)])
    assert selection.stock_available


async def test_no_active_location(db, make_variant, make_location):
    variant = await make_variant()
    await make_location("OLD", "Denver", is_active=False)

    with pytest.raises(NoWarehouseAvailable):
        await WarehouseService(db).select_for_destination("Denver", [(variant.id, 1)])


async def test_select_by_shipping_address(db, make_customer, make_address, make_variant, make_location,
                                          make_inventory):
    customer = await make_customer()
    address = await make_address(customer, city="New York", state="NY")
    variant = await make_variant()
    west = await make_location("LAX", "Los Angeles")
    east = await make_location("JFK", "New York")
    await make_inventory(variant, west, quantity=10)
    await make_inventory(variant, east, quantity=10)

    selection = await WarehouseService(db).select_warehouse(address.id, [(variant.id, 2)])
    assert selection.location.id == east.id
    assert selection.stock_available
    assert selection.stock_details[variant.id].available == 10


async def test_unknown_shipping_address(db, make_variant, make_location):
    variant = await make_variant()
    await make_location()

    with pytest.raises(AddressNotFound):
        await WarehouseService(db).select_warehouse(uuid.uuid4(), [(variant.id, 1)])
