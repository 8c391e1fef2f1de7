from pydantic import Field
from typing import List
from decimal import Decimal
import uuid

from app.schemas.base import BaseResponseSchema, BaseCreateSchema


class CartItemAdd(BaseCreateSchema):
    variant_id: uuid.UUID
    quantity: int = Field(1, ge=1)


class CartItemUpdate(BaseCreateSchema):
    """Quantity 0 removes the line."""
    quantity: int = Field(..., ge=0)


class CartItemResponse(BaseResponseSchema):
    id: uuid.UUID
    variant_id: uuid.UUID
    product_id: uuid.UUID
    product_name: str
    variant_name: str
    sku: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    bulk_applied: bool = False


class CartResponse(BaseResponseSchema):
    id: uuid.UUID
    customer_id: uuid.UUID
    items: List[CartItemResponse] = []
    removed_items: List[str] = []
    subtotal: Decimal
    item_count: int
