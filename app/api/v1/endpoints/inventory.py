import uuid

from fastapi import APIRouter, Query

from app.api.deps import DB
from app.config import settings
from app.schemas.inventory import InventoryRowResponse, VariantStockResponse, StockAlertResponse
from app.services.inventory_service import InventoryService
from app.services.pricing_service import PricingService


router = APIRouter()


@router.get("/variant/{variant_id}", response_model=VariantStockResponse)
async def get_variant_stock(
    variant_id: uuid.UUID,
    db: DB,
):
    """Per-location quantity, reserved and available for a variant."""
    await PricingService(db).get_variant(variant_id)
    rows = await InventoryService(db).get_variant_stock(variant_id)
    return VariantStockResponse(
        variant_id=variant_id,
        total_quantity=sum(r.quantity for r in rows),
        total_reserved=sum(r.reserved_qty for r in rows),
        total_available=sum(max(0, r.available) for r in rows),
        can_backorder=any(r.sell_when_out_of_stock for r in rows),
        locations=[InventoryRowResponse.model_validate(r) for r in rows],
    )


@router.get("/low-stock", response_model=StockAlertResponse)
async def get_low_stock(
    db: DB,
    threshold: int = Query(None, ge=0, description="Fallback when a row has no alert level"),
):
    alerts = await InventoryService(db).get_stock_alerts(
        threshold if threshold is not None else settings.DEFAULT_LOW_STOCK_ALERT
    )
    return StockAlertResponse(
        low_stock=[InventoryRowResponse.model_validate(r) for r in alerts["low_stock"]],
        out_of_stock=[InventoryRowResponse.model_validate(r) for r in alerts["out_of_stock"]],
    )
