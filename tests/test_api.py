import pytest
from httpx import ASGITransport, AsyncClient

from app.api.deps import get_notification_service
from app.database import get_db
from app.main import app


@pytest.fixture
async def client(session_factory, notifier):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_service] = lambda: notifier
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
async def catalog(make_customer, make_address, make_variant, make_location, make_inventory):
    customer = await make_customer("B2B")
    address = await make_address(customer)
    variant = await make_variant(regular_price="20.00", sale_price="18.00")
    location = await make_location()
    await make_inventory(variant, location, quantity=10)
    return {"customer": customer, "address": address, "variant": variant}


def _order_body(catalog, quantity=2, **extra):
    return {
        "customer_id": str(catalog["customer"].id),
        "billing_address_id": str(catalog["address"].id),
        "shipping_address_id": str(catalog["address"].id),
        "items": [{"variant_id": str(catalog["variant"].id), "quantity": quantity}],
        **extra,
    }


async def test_create_then_ship_order(client, catalog):
    response = await client.post("/api/v1/orders", json=_order_body(catalog), headers={"X-User-Id": "staff-1"})
    assert response.status_code == 201
    order = response.json()
    assert order["status"] == "PENDING"
    assert order["subtotal"] == "40.00"
    assert order["items"][0]["sku"] == catalog["variant"].sku

    response = await client.patch(f"/api/v1/orders/{order['id']}/status", json={"status": "shipped"})
    assert response.status_code == 200
    body = response.json()
    assert body["previous_status"] == "PENDING"
    assert body["order"]["status"] == "SHIPPED"

    response = await client.get("/api/v1/inventory/variant/" + str(catalog["variant"].id))
    stock = response.json()
    assert (stock["total_quantity"], stock["total_reserved"]) == (8, 0)


async def test_shortfall_error_shape(client, catalog):
    response = await client.post("/api/v1/orders", json=_order_body(catalog, quantity=11))
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "INSUFFICIENT_INVENTORY"
    assert body["details"]["insufficient_items"][0]["requested_quantity"] == 11


async def test_invalid_transition_is_rejected(client, catalog):
    order = (await client.post("/api/v1/orders", json=_order_body(catalog))).json()
    await client.patch(f"/api/v1/orders/{order['id']}/status", json={"status": "CANCELLED"})

    response = await client.patch(f"/api/v1/orders/{order['id']}/status", json={"status": "PENDING"})
    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_STATE_TRANSITION"


async def test_unknown_order(client):
    response = await client.get("/api/v1/orders/00000000-0000-0000-0000-000000000000")
    assert response.status_code == 404
    assert response.json()["error"] == "ORDER_NOT_FOUND"


async def test_duplicate_items_fail_validation(client, catalog):
    body = _order_body(catalog)
    body["items"] = body["items"] * 2
    response = await client.post("/api/v1/orders", json=body)
    assert response.status_code == 422


async def test_list_orders_by_status(client, catalog):
    await client.post("/api/v1/orders", json=_order_body(catalog, quantity=1))
    await client.post("/api/v1/orders", json=_order_body(catalog, quantity=1))

    response = await client.get("/api/v1/orders", params={"status": "PENDING", "size": 1})
    body = response.json()
    assert body["total"] == 2
    assert body["pages"] == 2
    assert len(body["items"]) == 1


async def test_calculate_discount(client, catalog):
    response = await client.post("/api/v1/promotions", json={
        "code": "take5",
        "name": "Five off",
        "promotion_type": "FIXED_AMOUNT",
        "value": "5",
    })
    assert response.status_code == 201
    assert response.json()["code"] == "TAKE5"

    response = await client.post("/api/v1/promotions/calculate-discount", json={
        "code": "TAKE5",
        "customer_id": str(catalog["customer"].id),
        "items": [{"variant_id": str(catalog["variant"].id), "quantity": 3}],
    })
    body = response.json()
    assert body["subtotal"] == "60.00"
    assert body["discount"] == "5.00"


async def test_bulk_price_overlap_warning(client, catalog):
    variant_id = str(catalog["variant"].id)
    first = await client.post("/api/v1/bulk-prices", json={"variant_id": variant_id, "min_qty": 5, "max_qty": 20, "price": "15"})
    assert first.json()["warnings"] == []

    second = await client.post("/api/v1/bulk-prices", json={"variant_id": variant_id, "min_qty": 10, "price": "12"})
    assert second.status_code == 201
    assert second.json()["warnings"] == ["Tier 10+ overlaps existing tier 5-20"]

    applicable = await client.get(f"/api/v1/bulk-prices/variant/{variant_id}/applicable", params={"quantity": 12})
    assert applicable.json()["tier"]["price"] == "15.00"


async def test_cart_flow(client, catalog):
    params = {"customer_id": str(catalog["customer"].id)}
    response = await client.post(
        "/api/v1/cart/items", params=params, json={"variant_id": str(catalog["variant"].id), "quantity": 3}
    )
    assert response.status_code == 200
    cart = response.json()
    assert cart["subtotal"] == "60.00"
    assert cart["item_count"] == 3

    response = await client.delete("/api/v1/cart", params=params)
    assert response.json()["items"] == []
