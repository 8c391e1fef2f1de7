"""API endpoints for coupons and discount previews."""
from uuid import UUID

from fastapi import APIRouter, status

from app.api.deps import DB
from app.core.exceptions import NotFoundError
from app.schemas.promotion import (
    PromotionCreate,
    PromotionResponse,
    CalculateDiscountRequest,
    CalculateDiscountResponse,
    AppliedItemResponse,
)
from app.services.promotion_service import PromotionService


router = APIRouter()


@router.post("", response_model=PromotionResponse, status_code=status.HTTP_201_CREATED)
async def create_promotion(
    data: PromotionCreate,
    db: DB,
):
    """Create a coupon with its product rules, volume tiers and customer list."""
    service = PromotionService(db)
    promotion = await service.create_promotion(data.model_dump())
    return await service.get_by_id(promotion.id)


@router.get("/{promotion_id}", response_model=PromotionResponse)
async def get_promotion(
    promotion_id: UUID,
    db: DB,
):
    promotion = await PromotionService(db).get_by_id(promotion_id)
    if not promotion:
        raise NotFoundError("Promotion not found")
    return promotion


@router.post("/calculate-discount", response_model=CalculateDiscountResponse)
async def calculate_discount(
    data: CalculateDiscountRequest,
    db: DB,
):
    """
    Discount a coupon would give for the given lines.

    Nothing is redeemed; usage is only counted when an order is placed.
    """
    service = PromotionService(db)
    subtotal, result = await service.calculate_discount(
        data.code,
        [(item.variant_id, item.quantity) for item in data.items],
        customer_id=data.customer_id,
        shipping_amount=data.shipping_amount,
    )
    return CalculateDiscountResponse(
        promotion_id=result.promotion_id,
        code=result.promotion_code,
        subtotal=subtotal,
        discount=result.discount,
        applied_items=[AppliedItemResponse.model_validate(item) for item in result.applied_items],
    )
