"""Pydantic schemas for promotions and coupon discounts."""
from datetime import datetime
from typing import Optional, List
from decimal import Decimal
from uuid import UUID
from pydantic import Field, field_validator, model_validator

from app.schemas.base import BaseResponseSchema, BaseCreateSchema

from app.models.promotion import PromotionType, ProductRuleType, TierDiscountType


# ==================== Rule / Tier Schemas ====================

class PromotionProductRuleCreate(BaseCreateSchema):
    """BUY or GET rule targeting a product or a single variant."""
    rule_type: ProductRuleType
    product_id: Optional[UUID] = None
    variant_id: Optional[UUID] = None

    @model_validator(mode='after')
    def check_target(self):
        if not self.product_id and not self.variant_id:
            raise ValueError("product_id or variant_id is required")
        return self


class PromotionVolumeTierCreate(BaseCreateSchema):
    min_quantity: int = Field(..., ge=1)
    max_quantity: Optional[int] = Field(None, ge=1)
    discount_type: TierDiscountType = TierDiscountType.PERCENTAGE
    discount_value: Decimal = Field(..., ge=0)


class PromotionProductRuleResponse(BaseResponseSchema):
    id: UUID
    rule_type: str
    product_id: Optional[UUID] = None
    variant_id: Optional[UUID] = None


class PromotionVolumeTierResponse(BaseResponseSchema):
    id: UUID
    min_quantity: int
    max_quantity: Optional[int] = None
    discount_type: str
    discount_value: Decimal


# ==================== Promotion Schemas ====================

class PromotionCreate(BaseCreateSchema):
    """Create a coupon. ``value`` is a percentage or a dollar amount depending on type."""
    code: str = Field(..., min_length=3, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    promotion_type: PromotionType
    value: Decimal = Field(Decimal("0"), ge=0)

    min_order_amount: Optional[Decimal] = Field(None, ge=0)
    max_discount: Optional[Decimal] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=1)

    is_active: bool = True
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    customer_types: List[str] = []
    is_for_individual_customer: bool = False
    specific_customer_ids: List[UUID] = []

    # BOGO
    buy_quantity: Optional[int] = Field(None, ge=1)
    get_quantity: Optional[int] = Field(None, ge=1)
    get_discount: Optional[Decimal] = Field(None, ge=0, le=100)

    product_rules: List[PromotionProductRuleCreate] = []
    volume_tiers: List[PromotionVolumeTierCreate] = []

    @field_validator('code')
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator('customer_types')
    @classmethod
    def normalize_customer_types(cls, v: List[str]) -> List[str]:
        return [t.strip().upper() for t in v if t and t.strip()]

    @model_validator(mode='after')
    def check_values(self):
        if self.promotion_type == PromotionType.PERCENTAGE and self.value > 100:
            raise ValueError("Percentage value cannot exceed 100")
        if self.starts_at and self.expires_at and self.expires_at <= self.starts_at:
            raise ValueError("expires_at must be after starts_at")
        return self


class PromotionResponse(BaseResponseSchema):
    id: UUID
    code: str
    name: str
    description: Optional[str] = None
    promotion_type: str
    value: Decimal
    min_order_amount: Optional[Decimal] = None
    max_discount: Optional[Decimal] = None
    usage_limit: Optional[int] = None
    usage_count: int
    is_active: bool
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    customer_types: Optional[List[str]] = None
    is_for_individual_customer: bool
    buy_quantity: Optional[int] = None
    get_quantity: Optional[int] = None
    get_discount: Optional[Decimal] = None
    product_rules: List[PromotionProductRuleResponse] = []
    volume_tiers: List[PromotionVolumeTierResponse] = []


# ==================== Discount Calculation ====================

class DiscountItem(BaseCreateSchema):
    variant_id: UUID
    quantity: int = Field(..., ge=1)


class CalculateDiscountRequest(BaseCreateSchema):
    """Preview a coupon. Prices are looked up server-side, as for orders."""
    code: str = Field(..., min_length=1)
    customer_id: Optional[UUID] = None
    items: List[DiscountItem] = Field(..., min_length=1)
    shipping_amount: Decimal = Field(Decimal("0"), ge=0)


class AppliedItemResponse(BaseResponseSchema):
    variant_id: UUID
    quantity: int
    discount: Decimal


class CalculateDiscountResponse(BaseResponseSchema):
    promotion_id: UUID
    code: str
    subtotal: Decimal
    discount: Decimal
    applied_items: List[AppliedItemResponse] = []
