# Services module
from app.services.audit_service import AuditService
from app.services.pricing_service import PricingService
from app.services.promotion_service import PromotionService
from app.services.inventory_service import InventoryService
from app.services.warehouse_service import WarehouseService
from app.services.order_service import OrderService
from app.services.order_state_machine import OrderStateMachine
from app.services.cart_service import CartService

# Notifications
from app.services.notification_service import NotificationService

__all__ = [
    "AuditService",
    "PricingService",
    "PromotionService",
    "InventoryService",
    "WarehouseService",
    "OrderService",
    "OrderStateMachine",
    "CartService",
    # Notifications
    "NotificationService",
]
