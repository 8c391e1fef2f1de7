"""
Inventory Reservation Ledger.

The only code that mutates Inventory counters. Every operation locks the
(variant, location) row, applies its delta, and refuses to leave a row in
an invalid state:

- ``quantity`` never goes below zero.
- ``reserved_qty`` never goes below zero.
- On rows without backorder, ``quantity - reserved_qty`` never goes below zero.

A violation raises instead of clamping, so the enclosing transaction rolls
back (order creation) or the caller logs it (status transitions).
"""
import uuid
import logging
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Sequence

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InsufficientInventoryError, InventoryLedgerError
from app.models.inventory import Inventory
from app.models.order import OrderStatus

logger = logging.getLogger(__name__)


@dataclass
class ReservationAllocation:
    """Quantity reserved at one location."""
    location_id: uuid.UUID
    quantity: int
    is_backorder: bool = False


@dataclass
class VariantAvailability:
    """Sellable stock for a variant summed over all locations."""
    variant_id: uuid.UUID
    total_available: int = 0
    can_backorder: bool = False
    locations: List[Dict] = field(default_factory=list)

    def is_sufficient(self, quantity: int) -> bool:
        return self.total_available >= quantity or self.can_backorder


class InventoryService:
    """
    Ledger operations, all meant to run inside the caller's transaction.

    Usage:
        ledger = InventoryService(db)
        await ledger.reserve(variant_id, location_id, 2)
        await ledger.commit(variant_id, location_id, 2, "SHIPPED")
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== READS ====================

    async def lock_row(self, variant_id: uuid.UUID, location_id: uuid.UUID) -> Optional[Inventory]:
        """SELECT ... FOR UPDATE one row, refreshing any cached copy."""
        result = await self.db.execute(
            select(Inventory)
            .where(
                Inventory.variant_id == variant_id,
                Inventory.location_id == location_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def lock_variant_rows(
        self,
        variant_id: uuid.UUID,
        preferred_location_id: Optional[uuid.UUID] = None,
    ) -> List[Inventory]:
        """All rows for a variant, preferred location first, then oldest first."""
        result = await self.db.execute(
            select(Inventory)
            .where(Inventory.variant_id == variant_id)
            .order_by(Inventory.created_at, Inventory.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        rows = list(result.scalars().all())
        if preferred_location_id is not None:
            rows.sort(key=lambda row: row.location_id != preferred_location_id)
        return rows

    async def get_availability(self, variant_ids: Sequence[uuid.UUID]) -> Dict[uuid.UUID, VariantAvailability]:
        """Sum of max(0, quantity - reserved) per variant, plus backorder flag."""
        summary = {variant_id: VariantAvailability(variant_id) for variant_id in variant_ids}
        if not variant_ids:
            return summary

        result = await self.db.execute(
            select(Inventory).where(Inventory.variant_id.in_(list(variant_ids)))
        )
        for row in result.scalars().all():
            entry = summary[row.variant_id]
            entry.total_available += max(0, row.available)
            entry.can_backorder = entry.can_backorder or row.sell_when_out_of_stock
            entry.locations.append({
                "location_id": row.location_id,
                "quantity": row.quantity,
                "reserved_qty": row.reserved_qty,
                "available": row.available,
                "sell_when_out_of_stock": row.sell_when_out_of_stock,
            })
        return summary

    async def get_variant_stock(self, variant_id: uuid.UUID) -> List[Inventory]:
        result = await self.db.execute(
            select(Inventory)
            .where(Inventory.variant_id == variant_id)
            .order_by(Inventory.created_at)
        )
        return list(result.scalars().all())

    async def get_stock_alerts(self, default_threshold: int = 10) -> Dict[str, List[Inventory]]:
        """Rows that are low (0 < available <= threshold) or out of stock."""
        available = Inventory.quantity - Inventory.reserved_qty
        threshold = func.coalesce(Inventory.low_stock_alert, default_threshold)

        low = await self.db.execute(
            select(Inventory)
            .where(available > 0, available <= threshold)
            .order_by(available)
        )
        out = await self.db.execute(
            select(Inventory)
            .where(available <= 0, Inventory.sell_when_out_of_stock == False)
        )
        return {
            "low_stock": list(low.scalars().all()),
            "out_of_stock": list(out.scalars().all()),
        }

    # ==================== LEDGER OPERATIONS ====================

    def _apply(self, row: Inventory, quantity_delta: int, reserved_delta: int, operation: str,
               zero_reserved: bool = False) -> None:
        new_quantity = row.quantity + quantity_delta
        new_reserved = 0 if zero_reserved else row.reserved_qty + reserved_delta

        problem = None
        if new_quantity < 0:
            problem = "quantity would go negative"
        elif new_reserved < 0:
            problem = "reserved quantity would go negative"
        elif not row.sell_when_out_of_stock and new_quantity - new_reserved < 0:
            problem = "available stock would go negative"

        if problem:
            raise InventoryLedgerError(
                f"Cannot {operation} inventory: {problem}",
                {
                    "variant_id": str(row.variant_id),
                    "location_id": str(row.location_id),
                    "quantity": row.quantity,
                    "reserved_qty": row.reserved_qty,
                    "quantity_delta": quantity_delta,
                    "reserved_delta": reserved_delta,
                },
            )

        row.quantity = new_quantity
        row.reserved_qty = new_reserved

    async def reserve(self, variant_id: uuid.UUID, location_id: uuid.UUID, quantity: int) -> Inventory:
        """Increment reserved_qty at one location."""
        row = await self.lock_row(variant_id, location_id)
        if row is None:
            raise InsufficientInventoryError(
                "Insufficient inventory for one or more items",
                [{
                    "variant_id": str(variant_id),
                    "location_id": str(location_id),
                    "requested_quantity": quantity,
                    "available_quantity": 0,
                    "can_backorder": False,
                }],
            )
        if not row.sell_when_out_of_stock and row.available < quantity:
            raise InsufficientInventoryError(
                "Insufficient inventory for one or more items",
                [{
                    "variant_id": str(variant_id),
                    "location_id": str(location_id),
                    "requested_quantity": quantity,
                    "available_quantity": max(0, row.available),
                    "can_backorder": False,
                }],
            )

        self._apply(row, 0, quantity, "reserve")
        await self.db.flush()
        return row

    async def reserve_across_locations(
        self,
        variant_id: uuid.UUID,
        quantity: int,
        preferred_location_id: Optional[uuid.UUID] = None,
    ) -> List[ReservationAllocation]:
        """
        Two-pass reservation for one variant.

        Pass 1 takes sellable stock location by location. Pass 2 puts any
        remainder on the first backorder location. Raises if neither covers
        the request; the caller's rollback undoes pass 1.
        """
        rows = await self.lock_variant_rows(variant_id, preferred_location_id)
        remaining = quantity
        allocations: List[ReservationAllocation] = []

        for row in rows:
            if remaining <= 0:
                break
            take = min(max(0, row.available), remaining)
            if take > 0:
                self._apply(row, 0, take, "reserve")
                allocations.append(ReservationAllocation(row.location_id, take))
                remaining -= take

        if remaining > 0:
            for row in rows:
                if row.sell_when_out_of_stock:
                    self._apply(row, 0, remaining, "reserve")
                    allocations.append(ReservationAllocation(row.location_id, remaining, is_backorder=True))
                    logger.info(f"Backordered {remaining} of variant {variant_id} at location {row.location_id}")
                    remaining = 0
                    break

        if remaining > 0:
            raise InsufficientInventoryError(
                "Insufficient inventory for one or more items",
                [{
                    "variant_id": str(variant_id),
                    "requested_quantity": quantity,
                    "available_quantity": quantity - remaining,
                    "can_backorder": False,
                }],
            )

        await self.db.flush()
        return allocations

    async def commit(
        self,
        variant_id: uuid.UUID,
        location_id: uuid.UUID,
        quantity: int,
        target_status: str,
    ) -> Inventory:
        """
        Stock physically leaves. DELIVERED decrements quantity and closes
        out the whole row's reserved_qty to zero; any other target
        decrements both counters by ``quantity``.
        """
        row = await self.lock_row(variant_id, location_id)
        if row is None:
            raise InventoryLedgerError(
                "Cannot commit inventory: no stock row",
                {"variant_id": str(variant_id), "location_id": str(location_id)},
            )

        if target_status == OrderStatus.DELIVERED.value:
            self._apply(row, -quantity, 0, "commit", zero_reserved=True)
        else:
            self._apply(row, -quantity, -quantity, "commit")
        await self.db.flush()
        return row

    async def release(self, variant_id: uuid.UUID, location_id: uuid.UUID, quantity: int) -> Inventory:
        """Return reserved stock to the sellable pool; quantity is untouched."""
        row = await self.lock_row(variant_id, location_id)
        if row is None:
            raise InventoryLedgerError(
                "Cannot release inventory: no stock row",
                {"variant_id": str(variant_id), "location_id": str(location_id)},
            )

        self._apply(row, 0, -quantity, "release")
        await self.db.flush()
        return row

    async def close_out_reserved(self, variant_id: uuid.UUID, location_id: uuid.UUID) -> Inventory:
        """Zero reserved_qty on delivery of stock that was already committed."""
        row = await self.lock_row(variant_id, location_id)
        if row is None:
            raise InventoryLedgerError(
                "Cannot close out inventory: no stock row",
                {"variant_id": str(variant_id), "location_id": str(location_id)},
            )
        self._apply(row, 0, 0, "close out", zero_reserved=True)
        await self.db.flush()
        return row
