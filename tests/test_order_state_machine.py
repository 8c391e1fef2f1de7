import pytest
from sqlalchemy import select

from app.core.exceptions import OrderNotFound, StateTransitionError
from app.models.audit_log import AuditLog
from app.models.inventory import OrderItemAllocation
from app.schemas.order import OrderCreate
from app.services.order_service import OrderService
from app.services.order_state_machine import (
    OrderStateMachine,
    can_transition,
    inventory_effect,
    validate_transition,
)


@pytest.fixture
async def placed(db, notifier, make_customer, make_address, make_variant, make_location, make_inventory):
    """A PENDING order for 10 units against a row holding 100."""
    customer = await make_customer()
    address = await make_address(customer)
    variant = await make_variant(regular_price="10.00")
    location = await make_location()
    row = await make_inventory(variant, location, quantity=100)
    order = await OrderService(db, notifier=notifier).create_order(OrderCreate(
        customer_id=customer.id,
        billing_address_id=address.id,
        shipping_address_id=address.id,
        items=[{"variant_id": variant.id, "quantity": 10}],
    ))
    notifier.sent.clear()
    return {"order": order, "row": row, "customer": customer}


def test_transition_table():
    assert can_transition("PENDING", "SHIPPED")
    assert can_transition("SHIPPED", "REFUNDED")
    assert not can_transition("SHIPPED", "CANCELLED")
    assert not can_transition("CANCELLED", "PENDING")


def test_validate_transition_messages():
    with pytest.raises(StateTransitionError, match="terminal"):
        validate_transition("REFUNDED", "PENDING")
    with pytest.raises(StateTransitionError, match="already"):
        validate_transition("PENDING", "PENDING")
    with pytest.raises(StateTransitionError, match="Unknown"):
        validate_transition("PENDING", "LOST")


def test_inventory_effects():
    assert inventory_effect("PENDING", "PROCESSING") == "commit"
    assert inventory_effect("ON_HOLD", "DELIVERED") == "deliver"
    assert inventory_effect("LABEL_CREATED", "CANCELLED") == "release"
    assert inventory_effect("PENDING", "ON_HOLD") is None
    assert inventory_effect("SHIPPED", "DELIVERED") is None
    assert inventory_effect("SHIPPED", "REFUNDED") is None


async def test_ship_commits_reserved_stock(db, notifier, placed):
    row = placed["row"]
    await db.refresh(row)
    assert (row.quantity, row.reserved_qty) == (100, 10)

    result = await OrderStateMachine(db, notifier=notifier).transition(placed["order"].id, "shipped")

    await db.refresh(row)
    assert (row.quantity, row.reserved_qty) == (90, 0)
    assert result.previous_status == "PENDING"
    assert result.order.status == "SHIPPED"
    assert result.order.shipped_at is not None
    assert result.inventory_warnings == []
    assert notifier.events() == ["ORDER_SHIPPED"]


async def test_cancel_releases_reserved_stock(db, notifier, placed):
    result = await OrderStateMachine(db, notifier=notifier).transition(placed["order"].id, "CANCELLED")

    row = placed["row"]
    await db.refresh(row)
    assert (row.quantity, row.reserved_qty) == (100, 0)
    assert result.order.cancelled_at is not None
    assert notifier.events() == ["ORDER_CANCELLED"]

    allocations = (await db.execute(select(OrderItemAllocation))).scalars().all()
    assert [a.status for a in allocations] == ["RELEASED"]


async def test_processing_then_shipped_commits_once(db, notifier, placed):
    machine = OrderStateMachine(db, notifier=notifier)
    await machine.transition(placed["order"].id, "PROCESSING")
    await machine.transition(placed["order"].id, "SHIPPED")

    row = placed["row"]
    await db.refresh(row)
    assert (row.quantity, row.reserved_qty) == (90, 0)


async def test_delivery_closes_out_reserved(db, notifier, placed):
    row = placed["row"]
    # Reservations from other orders are on the row too
    row.reserved_qty = 50
    await db.commit()

    await OrderStateMachine(db, notifier=notifier).transition(placed["order"].id, "DELIVERED")

    await db.refresh(row)
    assert (row.quantity, row.reserved_qty) == (90, 0)


async def test_ledger_problem_becomes_warning(db, notifier, placed):
    row = placed["row"]
    # Someone zeroed the row by hand after the order reserved it
    row.quantity = 0
    row.reserved_qty = 0
    await db.commit()

    result = await OrderStateMachine(db, notifier=notifier).transition(placed["order"].id, "SHIPPED")

    assert result.order.status == "SHIPPED"
    assert len(result.inventory_warnings) == 1
    await db.refresh(row)
    assert (row.quantity, row.reserved_qty) == (0, 0)


async def test_shipped_order_cannot_be_cancelled(db, notifier, placed):
    machine = OrderStateMachine(db, notifier=notifier)
    await machine.transition(placed["order"].id, "SHIPPED")

    with pytest.raises(StateTransitionError):
        await machine.transition(placed["order"].id, "CANCELLED")


async def test_reshipping_does_not_resend_email(db, notifier, placed):
    machine = OrderStateMachine(db, notifier=notifier)
    await machine.transition(placed["order"].id, "SHIPPED")
    first_shipped_at = (await machine.orders.get_order(placed["order"].id)).shipped_at
    await machine.transition(placed["order"].id, "DELIVERED")

    order = await machine.orders.get_order(placed["order"].id)
    assert order.shipped_at == first_shipped_at
    assert notifier.events() == ["ORDER_SHIPPED"]


async def test_transition_is_audited(db, notifier, placed):
    await OrderStateMachine(db, notifier=notifier).transition(
        placed["order"].id, "ON_HOLD", actor_id="staff-7", note="Awaiting payment"
    )

    entries = (await db.execute(
        select(AuditLog).where(AuditLog.action == "STATUS_UPDATED")
    )).scalars().all()
    assert len(entries) == 1
    assert entries[0].user_id == "staff-7"
    assert entries[0].details["previous_status"] == "PENDING"
    assert entries[0].details["new_status"] == "ON_HOLD"


async def test_customer_cancel_only_for_own_pending_order(db, notifier, placed, make_customer):
    machine = OrderStateMachine(db, notifier=notifier)
    stranger = await make_customer()

    with pytest.raises(OrderNotFound):
        await machine.cancel_by_customer(placed["order"].id, stranger.id)

    await machine.transition(placed["order"].id, "PROCESSING")
    with pytest.raises(StateTransitionError, match="Only pending orders"):
        await machine.cancel_by_customer(placed["order"].id, placed["customer"].id)


async def test_customer_cancel(db, notifier, placed):
    result = await OrderStateMachine(db, notifier=notifier).cancel_by_customer(
        placed["order"].id, placed["customer"].id, reason="Ordered by mistake"
    )
    assert result.order.status == "CANCELLED"
