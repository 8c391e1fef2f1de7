import uuid

from fastapi import APIRouter, Query

from app.api.deps import DB
from app.schemas.cart import CartItemAdd, CartItemUpdate, CartItemResponse, CartResponse
from app.services.cart_service import CartService, CartView


router = APIRouter()


def _build_cart_response(cart: CartView) -> CartResponse:
    return CartResponse(
        id=cart.id,
        customer_id=cart.customer_id,
        items=[CartItemResponse.model_validate(line) for line in cart.items],
        removed_items=cart.removed_items,
        subtotal=cart.subtotal,
        item_count=cart.item_count,
    )


@router.get("", response_model=CartResponse)
async def get_cart(
    db: DB,
    customer_id: uuid.UUID = Query(...),
):
    """Active cart with current prices."""
    return _build_cart_response(await CartService(db).get_cart(customer_id))


@router.post("/items", response_model=CartResponse)
async def add_cart_item(
    data: CartItemAdd,
    db: DB,
    customer_id: uuid.UUID = Query(...),
):
    cart = await CartService(db).add_item(customer_id, data.variant_id, data.quantity)
    return _build_cart_response(cart)


@router.put("/items/{item_id}", response_model=CartResponse)
async def update_cart_item(
    item_id: uuid.UUID,
    data: CartItemUpdate,
    db: DB,
    customer_id: uuid.UUID = Query(...),
):
    cart = await CartService(db).update_item(customer_id, item_id, data.quantity)
    return _build_cart_response(cart)


@router.delete("/items/{item_id}", response_model=CartResponse)
async def remove_cart_item(
    item_id: uuid.UUID,
    db: DB,
    customer_id: uuid.UUID = Query(...),
):
    cart = await CartService(db).remove_item(customer_id, item_id)
    return _build_cart_response(cart)


@router.delete("", response_model=CartResponse)
async def clear_cart(
    db: DB,
    customer_id: uuid.UUID = Query(...),
):
    return _build_cart_response(await CartService(db).clear_cart(customer_id))
