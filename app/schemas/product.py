"""Bulk price tier schemas."""
from pydantic import Field, model_validator
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
import uuid

from app.schemas.base import BaseResponseSchema, BaseCreateSchema


class BulkPriceCreate(BaseCreateSchema):
    variant_id: uuid.UUID
    min_qty: int = Field(..., ge=1)
    max_qty: Optional[int] = Field(None, description="Open-ended when omitted")
    price: Decimal = Field(..., gt=0)

    @model_validator(mode='after')
    def check_range(self):
        if self.max_qty is not None and self.max_qty <= self.min_qty:
            raise ValueError("max_qty must be greater than min_qty")
        return self


class BulkPriceResponse(BaseResponseSchema):
    id: uuid.UUID
    variant_id: uuid.UUID
    min_qty: int
    max_qty: Optional[int] = None
    price: Decimal
    created_at: Optional[datetime] = None


class BulkPriceCreateResponse(BaseResponseSchema):
    tier: BulkPriceResponse
    warnings: List[str] = []


class BulkPriceListResponse(BaseResponseSchema):
    variant_id: uuid.UUID
    tiers: List[BulkPriceResponse] = []
    warnings: List[str] = []


class ApplicableBulkPriceResponse(BaseResponseSchema):
    variant_id: uuid.UUID
    quantity: int
    tier: Optional[BulkPriceResponse] = None
