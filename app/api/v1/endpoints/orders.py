from typing import Optional
import uuid

from fastapi import APIRouter, status, Query

from app.api.deps import DB, ActorId, Notifier
from app.models.order import OrderStatus
from app.schemas.order import (
    OrderCreate,
    OrderResponse,
    OrderListResponse,
    OrderStatusUpdate,
    OrderStatusUpdateResponse,
    OrderCancelRequest,
    OrderAdjustment,
    CheckoutShippingRequest,
    CheckoutShippingResponse,
)
from app.services.order_service import OrderService
from app.services.order_state_machine import OrderStateMachine


router = APIRouter()


@router.get(
    "",
    response_model=OrderListResponse,
)
async def list_orders(
    db: DB,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    customer_id: Optional[uuid.UUID] = Query(None),
    status: Optional[OrderStatus] = Query(None),
):
    """Get paginated list of orders, newest first."""
    service = OrderService(db)
    orders, total, pages = await service.list_orders(
        status=status,
        customer_id=customer_id,
        page=page,
        size=size,
    )
    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        size=size,
        pages=pages,
    )


@router.post(
    "/checkout/shipping-rates",
    response_model=CheckoutShippingResponse,
)
async def get_checkout_shipping_rates(
    data: CheckoutShippingRequest,
    db: DB,
):
    """Warehouse, distance and shipping preview for a checkout."""
    service = OrderService(db)
    return CheckoutShippingResponse(**await service.get_checkout_shipping_rates(data))


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
)
async def get_order(
    order_id: uuid.UUID,
    db: DB,
):
    """Get order details by ID."""
    service = OrderService(db)
    return await service.get_order(order_id)


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_order(
    data: OrderCreate,
    db: DB,
    actor_id: ActorId,
    notifier: Notifier,
):
    """
    Create a new order.

    Prices, discount and tax are computed server-side; stock is reserved in
    the same transaction.
    """
    service = OrderService(db, notifier=notifier)
    return await service.create_order(data, created_by=actor_id)


@router.patch(
    "/{order_id}/status",
    response_model=OrderStatusUpdateResponse,
)
async def update_order_status(
    order_id: uuid.UUID,
    data: OrderStatusUpdate,
    db: DB,
    actor_id: ActorId,
    notifier: Notifier,
):
    """
    Move an order to a new status.

    Inventory reconciliation problems do not block the change; they are
    returned in ``inventory_warnings``.
    """
    machine = OrderStateMachine(db, notifier=notifier)
    result = await machine.transition(order_id, data.status, actor_id=actor_id, note=data.note)
    return OrderStatusUpdateResponse(
        order=OrderResponse.model_validate(result.order),
        previous_status=result.previous_status,
        inventory_warnings=result.inventory_warnings,
    )


@router.post(
    "/{order_id}/cancel",
    response_model=OrderStatusUpdateResponse,
)
async def cancel_order(
    order_id: uuid.UUID,
    data: OrderCancelRequest,
    db: DB,
    notifier: Notifier,
):
    """Customer cancellation; only PENDING orders qualify."""
    machine = OrderStateMachine(db, notifier=notifier)
    result = await machine.cancel_by_customer(order_id, data.customer_id, reason=data.reason)
    return OrderStatusUpdateResponse(
        order=OrderResponse.model_validate(result.order),
        previous_status=result.previous_status,
        inventory_warnings=result.inventory_warnings,
    )


@router.patch(
    "/{order_id}/adjustments",
    response_model=OrderResponse,
)
async def adjust_order(
    order_id: uuid.UUID,
    data: OrderAdjustment,
    db: DB,
    actor_id: ActorId,
):
    """Edit discount, shipping or tax; the total is recomputed."""
    service = OrderService(db)
    return await service.update_adjustments(order_id, data, actor_id=actor_id)
