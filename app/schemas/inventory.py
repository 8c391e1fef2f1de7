"""Inventory schemas for API responses."""
from typing import Optional, List
from datetime import datetime
import uuid

from app.schemas.base import BaseResponseSchema


class InventoryRowResponse(BaseResponseSchema):
    """One (variant, location) stock row."""
    id: uuid.UUID
    variant_id: uuid.UUID
    location_id: uuid.UUID
    quantity: int
    reserved_qty: int
    available: int
    sell_when_out_of_stock: bool
    low_stock_alert: Optional[int] = None
    is_low_stock: bool
    is_out_of_stock: bool
    updated_at: Optional[datetime] = None


class VariantStockResponse(BaseResponseSchema):
    variant_id: uuid.UUID
    total_quantity: int
    total_reserved: int
    total_available: int
    can_backorder: bool
    locations: List[InventoryRowResponse] = []


class StockAlertResponse(BaseResponseSchema):
    low_stock: List[InventoryRowResponse] = []
    out_of_stock: List[InventoryRowResponse] = []
