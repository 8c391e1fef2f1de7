from fastapi import APIRouter

from app.api.v1.endpoints import (
    orders,
    cart,
    promotions,
    bulk_prices,
    inventory,
)


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Orders ====================
api_router.include_router(
    orders.router,
    prefix="/orders",
    tags=["Orders"]
)

# ==================== Cart ====================
api_router.include_router(
    cart.router,
    prefix="/cart",
    tags=["Cart"]
)

# ==================== Promotions ====================
api_router.include_router(
    promotions.router,
    prefix="/promotions",
    tags=["Promotions"]
)

# ==================== Bulk Pricing ====================
api_router.include_router(
    bulk_prices.router,
    prefix="/bulk-prices",
    tags=["Bulk Pricing"]
)

# ==================== Inventory ====================
api_router.include_router(
    inventory.router,
    prefix="/inventory",
    tags=["Inventory"]
)
