"""
Domain errors for the order pipeline.

Every error carries a machine-readable ``kind``, a human-readable ``message``
and optional structured ``details``. The API layer turns them into
``{"success": false, "error": kind, "message": ..., "details": ...}``.
"""
from typing import Any, Dict, List, Optional


class OrderFlowError(Exception):
    """Base class for caller-visible order pipeline errors."""

    kind = "ORDER_ERROR"
    status_code = 400

    def __init__(self, message: str, details: Optional[Any] = None):
        self.message = message
        self.details = details if details is not None else {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.kind,
            "message": self.message,
            "details": self.details,
        }


# ==================== Validation ====================

class ValidationError(OrderFlowError):
    kind = "VALIDATION_ERROR"


class AddressMismatch(ValidationError):
    kind = "ADDRESS_MISMATCH"


class VariantUnavailable(ValidationError):
    """One or more requested variants (or their products) are inactive."""

    kind = "VARIANT_UNAVAILABLE"

    def __init__(self, unavailable: List[Dict[str, Any]]):
        names = ", ".join(item["name"] for item in unavailable)
        super().__init__(
            f"The following items are no longer available: {names}",
            {"unavailable_items": unavailable},
        )


# ==================== Not found ====================

class NotFoundError(OrderFlowError):
    kind = "NOT_FOUND"
    status_code = 404


class CustomerNotFound(NotFoundError):
    kind = "CUSTOMER_NOT_FOUND"


class AddressNotFound(NotFoundError):
    kind = "ADDRESS_NOT_FOUND"


class VariantNotFound(NotFoundError):
    kind = "VARIANT_NOT_FOUND"


class OrderNotFound(NotFoundError):
    kind = "ORDER_NOT_FOUND"


# ==================== Conflicts ====================

class ConflictError(OrderFlowError):
    kind = "CONFLICT"
    status_code = 409


class DuplicatePartnerOrder(ConflictError):
    kind = "DUPLICATE_PARTNER_ORDER"


class CouponLimitExceeded(ConflictError):
    kind = "COUPON_LIMIT_EXCEEDED"


# ==================== Inventory ====================

class InsufficientInventoryError(OrderFlowError):
    """Raised with one entry per short item so clients can adjust quantities."""

    kind = "INSUFFICIENT_INVENTORY"

    def __init__(self, message: str, items: List[Dict[str, Any]]):
        super().__init__(message, {"insufficient_items": items})
        self.items = items


class InventoryLedgerError(OrderFlowError):
    """A ledger operation would drive a counter below zero."""

    kind = "INVENTORY_LEDGER_ERROR"
    status_code = 409


class NoWarehouseAvailable(OrderFlowError):
    kind = "NO_WAREHOUSE_AVAILABLE"


# ==================== Promotions ====================

class IneligibleError(OrderFlowError):
    kind = "INELIGIBLE"


class InvalidCoupon(IneligibleError):
    kind = "INVALID_COUPON"


# ==================== State machine ====================

class StateTransitionError(OrderFlowError):
    kind = "INVALID_STATE_TRANSITION"
