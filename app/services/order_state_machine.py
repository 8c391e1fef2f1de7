"""
Order Status State Machine

This module is the SINGLE SOURCE OF TRUTH for order status transitions and
the inventory effects they trigger. All status changes must go through
``OrderStateMachine.transition``.

Inventory effects (applied to the order's recorded allocations):
- PENDING/ON_HOLD/PROCESSING/LABEL_CREATED -> PROCESSING/LABEL_CREATED/SHIPPED: commit
- same pre-fulfillment set -> DELIVERED: commit, zeroing the row's reserved_qty
- same pre-fulfillment set -> CANCELLED/REFUNDED: release
- anything else: no inventory effect

The status is the source of truth. A ledger operation that would break a
stock invariant is skipped and reported as a warning; the status still
changes.
"""

from dataclasses import dataclass, field
from typing import Optional, List, Dict
from datetime import datetime, timezone
import uuid
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enum_utils import normalize_to_uppercase
from app.core.exceptions import InventoryLedgerError, OrderNotFound, StateTransitionError
from app.models.customer import Customer
from app.models.inventory import OrderItemAllocation, AllocationStatus
from app.models.order import Order, OrderNote, OrderStatus
from app.services.inventory_service import InventoryService
from app.services.notification_service import NotificationService, NotificationEvent
from app.services.order_service import OrderService
from app.services.tier_service import TierUpgradeService

logger = logging.getLogger(__name__)


# =============================================================================
# TRANSITION RULES
# =============================================================================

S = OrderStatus

ORDER_TRANSITIONS: Dict[str, List[str]] = {
    S.PENDING.value: [
        S.ON_HOLD.value, S.PROCESSING.value, S.LABEL_CREATED.value, S.SHIPPED.value,
        S.DELIVERED.value, S.CANCELLED.value, S.REFUNDED.value,
    ],
    S.ON_HOLD.value: [
        S.PENDING.value, S.PROCESSING.value, S.LABEL_CREATED.value, S.SHIPPED.value,
        S.DELIVERED.value, S.CANCELLED.value, S.REFUNDED.value,
    ],
    S.PROCESSING.value: [
        S.ON_HOLD.value, S.LABEL_CREATED.value, S.SHIPPED.value,
        S.DELIVERED.value, S.CANCELLED.value, S.REFUNDED.value,
    ],
    S.LABEL_CREATED.value: [
        S.ON_HOLD.value, S.PROCESSING.value, S.SHIPPED.value,
        S.DELIVERED.value, S.CANCELLED.value, S.REFUNDED.value,
    ],
    S.SHIPPED.value: [
        S.DELIVERED.value,
        S.REFUNDED.value,           # Refund after dispatch, stock not returned
    ],
    S.DELIVERED.value: [
        S.REFUNDED.value,
    ],
    S.CANCELLED.value: [],          # Terminal state - no transitions
    S.REFUNDED.value: [],           # Terminal state - no transitions
}

PRE_FULFILLMENT = frozenset({
    S.PENDING.value, S.ON_HOLD.value, S.PROCESSING.value, S.LABEL_CREATED.value,
})
COMMIT_TARGETS = frozenset({S.PROCESSING.value, S.LABEL_CREATED.value, S.SHIPPED.value})
RELEASE_TARGETS = frozenset({S.CANCELLED.value, S.REFUNDED.value})

ERP_SYNC_REASONS: Dict[str, str] = {
    S.SHIPPED.value: "ORDER_SHIPPED",
    S.DELIVERED.value: "ORDER_SHIPPED",
    S.CANCELLED.value: "ORDER_CANCELLED",
    S.REFUNDED.value: "ORDER_CANCELLED",
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def can_transition(current_status: str, new_status: str) -> bool:
    """Check if a transition is allowed."""
    return new_status in ORDER_TRANSITIONS.get(current_status, [])


def get_allowed_transitions(current_status: str) -> List[str]:
    return ORDER_TRANSITIONS.get(current_status, [])


def validate_transition(current_status: str, new_status: str) -> None:
    """Raise StateTransitionError unless ``current -> new`` is allowed."""
    if new_status not in ORDER_TRANSITIONS:
        raise StateTransitionError(f"Unknown order status '{new_status}'")

    if current_status == new_status:
        raise StateTransitionError(f"Order is already '{current_status}'")

    if not can_transition(current_status, new_status):
        allowed = get_allowed_transitions(current_status)
        if not allowed:
            raise StateTransitionError(
                f"Order in '{current_status}' status cannot be modified. This is a terminal state.",
                {"current_status": current_status, "requested_status": new_status},
            )
        raise StateTransitionError(
            f"Cannot change order from '{current_status}' to '{new_status}'. "
            f"Allowed transitions: {', '.join(allowed)}",
            {"current_status": current_status, "requested_status": new_status, "allowed": allowed},
        )


def inventory_effect(current_status: str, new_status: str) -> Optional[str]:
    """"commit", "deliver", "release" or None for a transition."""
    if current_status not in PRE_FULFILLMENT:
        return None
    if new_status in COMMIT_TARGETS:
        return "commit"
    if new_status == S.DELIVERED.value:
        return "deliver"
    if new_status in RELEASE_TARGETS:
        return "release"
    return None


# =============================================================================
# STATE MACHINE
# =============================================================================

@dataclass
class TransitionResult:
    order: Order
    previous_status: str
    inventory_warnings: List[str] = field(default_factory=list)


class OrderStateMachine:
    """Applies status transitions with their inventory and notification effects."""

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[NotificationService] = None,
        erp_sync_enabled: Optional[bool] = None,
    ):
        self.db = db
        self.orders = OrderService(db, notifier=notifier, erp_sync_enabled=erp_sync_enabled)
        self.inventory = InventoryService(db)

    async def transition(
        self,
        order_id: uuid.UUID,
        new_status: str,
        actor_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> TransitionResult:
        new_status = normalize_to_uppercase(new_status)
        order = await self.orders.get_order(order_id, for_update=True)
        previous_status = order.status
        validate_transition(previous_status, new_status)

        first_shipment = order.shipped_at is None
        now = datetime.now(timezone.utc)

        try:
            warnings = await self._apply_inventory_effect(order, previous_status, new_status)

            order.status = new_status
            if new_status == S.SHIPPED.value and first_shipment:
                order.shipped_at = now
            elif new_status == S.DELIVERED.value:
                order.delivered_at = now
            elif new_status == S.CANCELLED.value:
                order.cancelled_at = now

            if note:
                self.db.add(OrderNote(order_id=order.id, note=note, created_by=actor_id))

            await self.orders.audit.log(
                action="STATUS_UPDATED",
                entity_id=order.id,
                user_id=actor_id or "system",
                details={
                    "previous_status": previous_status,
                    "new_status": new_status,
                    "note": note,
                    "inventory_warnings": warnings,
                },
                description=f"Order {order.order_number}: {previous_status} -> {new_status}",
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Order {order.order_number} status {previous_status} -> {new_status}")
        await self._after_transition(order, new_status, first_shipment)
        return TransitionResult(
            order=await self.orders.get_order(order_id),
            previous_status=previous_status,
            inventory_warnings=warnings,
        )

    async def cancel_by_customer(
        self,
        order_id: uuid.UUID,
        customer_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> TransitionResult:
        """Customers may cancel only their own PENDING orders."""
        order = await self.orders.get_order(order_id)
        if order.customer_id != customer_id:
            raise OrderNotFound(f"Order {order_id} not found")
        if order.status != S.PENDING.value:
            raise StateTransitionError(
                "Only pending orders can be cancelled",
                {"current_status": order.status},
            )
        return await self.transition(
            order_id,
            S.CANCELLED.value,
            actor_id=str(customer_id),
            note=reason or "Cancelled by customer",
        )

    # ==================== INVENTORY ====================

    async def _apply_inventory_effect(
        self, order: Order, previous_status: str, new_status: str
    ) -> List[str]:
        effect = inventory_effect(previous_status, new_status)
        if effect is None:
            return []

        item_ids = [item.id for item in order.items]
        result = await self.db.execute(
            select(OrderItemAllocation)
            .where(OrderItemAllocation.order_item_id.in_(item_ids))
            .order_by(OrderItemAllocation.created_at)
        )
        allocations = list(result.scalars().all())
        allocated_items = {a.order_item_id for a in allocations}

        warnings: List[str] = []
        for item in order.items:
            if item.id not in allocated_items:
                message = f"{item.sku}: no stock reservation recorded, inventory not adjusted"
                logger.warning(f"Order {order.order_number} {message}")
                warnings.append(message)

        for allocation in allocations:
            try:
                if effect == "commit" and allocation.status == AllocationStatus.RESERVED.value:
                    await self.inventory.commit(
                        allocation.variant_id, allocation.location_id, allocation.quantity, new_status
                    )
                    allocation.status = AllocationStatus.COMMITTED.value
                elif effect == "deliver" and allocation.status == AllocationStatus.RESERVED.value:
                    await self.inventory.commit(
                        allocation.variant_id, allocation.location_id, allocation.quantity, new_status
                    )
                    allocation.status = AllocationStatus.DELIVERED.value
                elif effect == "deliver" and allocation.status == AllocationStatus.COMMITTED.value:
                    await self.inventory.close_out_reserved(allocation.variant_id, allocation.location_id)
                    allocation.status = AllocationStatus.DELIVERED.value
                elif effect == "release" and allocation.status == AllocationStatus.RESERVED.value:
                    await self.inventory.release(
                        allocation.variant_id, allocation.location_id, allocation.quantity
                    )
                    allocation.status = AllocationStatus.RELEASED.value
                elif effect == "release" and allocation.status == AllocationStatus.COMMITTED.value:
                    logger.info(
                        f"Order {order.order_number}: {allocation.quantity} units at "
                        f"{allocation.location_id} already left stock, nothing to release"
                    )
            except InventoryLedgerError as e:
                message = (
                    f"Inventory {effect} skipped for variant {allocation.variant_id} at "
                    f"location {allocation.location_id}: {e.message}"
                )
                logger.error(f"Order {order.order_number} reconciliation needed. {message}")
                warnings.append(message)

        await self.db.flush()
        return warnings

    # ==================== POST-COMMIT EFFECTS ====================

    async def _after_transition(self, order: Order, new_status: str, first_shipment: bool) -> None:
        """Emails, ERP queue and the tier hook. Failures are logged, never raised."""
        order_number = order.order_number
        customer_id = order.customer_id
        product_ids = {item.product_id for item in order.items}
        payload = {"order_number": order_number, "total_amount": f"{order.total_amount:.2f}"}

        event = None
        if new_status == S.SHIPPED.value and first_shipment:
            event = NotificationEvent.ORDER_SHIPPED
        elif new_status == S.CANCELLED.value:
            event = NotificationEvent.ORDER_CANCELLED

        if event is not None:
            try:
                customer = await self.db.get(Customer, customer_id)
            except Exception as e:
                logger.error(f"Customer lookup failed for order {order_number}: {e}")
                customer = None
            if customer is not None:
                await self.orders.notify(
                    event,
                    {**payload, "to": customer.email, "customer_name": customer.full_name},
                )

        if new_status == S.DELIVERED.value:
            try:
                await TierUpgradeService(self.db).check_eligibility(customer_id)
            except Exception as e:
                logger.error(f"Tier eligibility check failed for order {order_number}: {e}")

        reason = ERP_SYNC_REASONS.get(new_status)
        if reason:
            await self.orders.queue_erp_sync(product_ids, reason, order_number)
