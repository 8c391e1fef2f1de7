from pydantic import Field, field_validator, model_validator
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
import uuid

from app.core.enum_utils import normalize_to_uppercase
from app.models.order import OrderStatus, PaymentType
from app.schemas.base import BaseResponseSchema, BaseCreateSchema


# ==================== ORDER ITEM SCHEMAS ====================

class OrderItemCreate(BaseCreateSchema):
    """Order line. Any client ``unit_price`` is ignored; prices come from the database."""
    variant_id: uuid.UUID
    quantity: int = Field(..., ge=1)
    unit_price: Optional[Decimal] = None


class OrderItemResponse(BaseResponseSchema):
    id: uuid.UUID
    variant_id: uuid.UUID
    product_id: uuid.UUID
    product_name: str
    variant_name: str
    sku: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    bulk_unit_price: Optional[Decimal] = None
    bulk_total_price: Optional[Decimal] = None


# ==================== ORDER SCHEMAS ====================

class OrderCreate(BaseCreateSchema):
    """
    Order creation request.

    ``shipping_amount`` given explicitly overrides the computed rate.
    ``discount_amount`` is ignored when ``coupon_code`` is present.
    Tax is always computed from the shipping address.
    """
    customer_id: uuid.UUID
    billing_address_id: uuid.UUID
    shipping_address_id: uuid.UUID
    items: List[OrderItemCreate] = Field(..., min_length=1)

    discount_amount: Optional[Decimal] = Field(None, ge=0)
    shipping_amount: Optional[Decimal] = Field(None, ge=0)
    tax_amount: Optional[Decimal] = Field(None, ge=0)
    coupon_code: Optional[str] = None

    selected_payment_type: Optional[PaymentType] = None
    sales_channel_id: Optional[str] = None
    partner_order_id: Optional[str] = None

    skip_warehouse: bool = False
    suppress_email: bool = False
    notes: Optional[str] = None

    @field_validator('coupon_code')
    @classmethod
    def clean_coupon_code(cls, v):
        if v is None:
            return None
        v = v.strip()
        return v or None

    @model_validator(mode='after')
    def check_items(self):
        variant_ids = [item.variant_id for item in self.items]
        if len(set(variant_ids)) != len(variant_ids):
            raise ValueError("Each variant may appear only once in an order")
        if bool(self.sales_channel_id) != bool(self.partner_order_id):
            raise ValueError("sales_channel_id and partner_order_id must be given together")
        return self


class OrderResponse(BaseResponseSchema):
    id: uuid.UUID
    order_number: str
    customer_id: uuid.UUID
    status: str
    subtotal: Decimal
    discount_amount: Decimal
    shipping_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    billing_address_id: uuid.UUID
    shipping_address_id: uuid.UUID
    selected_payment_type: Optional[str] = None
    sales_channel_id: Optional[str] = None
    partner_order_id: Optional[str] = None
    coupon_code: Optional[str] = None
    location_id: Optional[uuid.UUID] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    items: List[OrderItemResponse] = []


class OrderListResponse(BaseResponseSchema):
    items: List[OrderResponse]
    total: int
    page: int
    size: int
    pages: int


# ==================== STATUS / ADJUSTMENTS ====================

class OrderStatusUpdate(BaseCreateSchema):
    status: OrderStatus
    note: Optional[str] = None

    @field_validator('status', mode='before')
    @classmethod
    def normalize_status(cls, v):
        return normalize_to_uppercase(v)


class OrderStatusUpdateResponse(BaseResponseSchema):
    order: OrderResponse
    previous_status: str
    inventory_warnings: List[str] = []


class OrderCancelRequest(BaseCreateSchema):
    customer_id: uuid.UUID
    reason: Optional[str] = None


class OrderAdjustment(BaseCreateSchema):
    """Staff edit of the money fields; omitted fields keep their value."""
    discount_amount: Optional[Decimal] = Field(None, ge=0)
    shipping_amount: Optional[Decimal] = Field(None, ge=0)
    tax_amount: Optional[Decimal] = Field(None, ge=0)
    note: Optional[str] = None


# ==================== CHECKOUT ====================

class CheckoutShippingRequest(BaseCreateSchema):
    country: str = Field(..., min_length=2, max_length=2)
    state: Optional[str] = None
    city: Optional[str] = None
    customer_id: Optional[uuid.UUID] = None
    items: List[OrderItemCreate] = Field(..., min_length=1)


class CheckoutShippingResponse(BaseResponseSchema):
    subtotal: Decimal
    shipping_amount: Decimal
    shipping_reason: Optional[str] = None
    tax_rate: Optional[Decimal] = None
    warehouse_id: Optional[uuid.UUID] = None
    warehouse_name: Optional[str] = None
    distance_km: Optional[float] = None
    stock_available: bool
