import uuid

from fastapi import APIRouter, status, Query

from app.api.deps import DB
from app.schemas.product import (
    BulkPriceCreate,
    BulkPriceResponse,
    BulkPriceCreateResponse,
    BulkPriceListResponse,
    ApplicableBulkPriceResponse,
)
from app.services.pricing_service import PricingService, find_bulk_tier


router = APIRouter()


@router.post("", response_model=BulkPriceCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_bulk_price(
    data: BulkPriceCreate,
    db: DB,
):
    """
    Add a quantity tier. Overlaps with existing tiers are accepted and
    reported in ``warnings``.
    """
    service = PricingService(db)
    tier, warnings = await service.create_bulk_price(
        data.variant_id, data.min_qty, data.max_qty, data.price
    )
    return BulkPriceCreateResponse(
        tier=BulkPriceResponse.model_validate(tier),
        warnings=warnings,
    )


@router.get("/variant/{variant_id}", response_model=BulkPriceListResponse)
async def list_bulk_prices(
    variant_id: uuid.UUID,
    db: DB,
):
    service = PricingService(db)
    await service.get_variant(variant_id)
    tiers = await service.get_bulk_tiers(variant_id)
    return BulkPriceListResponse(
        variant_id=variant_id,
        tiers=[BulkPriceResponse.model_validate(t) for t in tiers],
        warnings=await service.get_bulk_tier_warnings(variant_id),
    )


@router.get("/variant/{variant_id}/applicable", response_model=ApplicableBulkPriceResponse)
async def get_applicable_bulk_price(
    variant_id: uuid.UUID,
    db: DB,
    quantity: int = Query(..., ge=1),
):
    """The tier the price resolver would pick for this quantity, if any."""
    service = PricingService(db)
    await service.get_variant(variant_id)
    tier = find_bulk_tier(await service.get_bulk_tiers(variant_id), quantity)
    return ApplicableBulkPriceResponse(
        variant_id=variant_id,
        quantity=quantity,
        tier=BulkPriceResponse.model_validate(tier) if tier else None,
    )
