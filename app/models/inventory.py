"""Inventory models: per-location stock counters and order allocations."""
from enum import Enum
from datetime import datetime, timezone
from sqlalchemy import Column, String, Boolean, ForeignKey, Integer, DateTime
from sqlalchemy import UniqueConstraint, Index
import uuid

from app.database import Base
from app.db_types import UUIDType


class Inventory(Base):
    """
    Stock for one variant at one location.

    ``quantity - reserved_qty`` is sellable stock. Rows are mutated only by
    the inventory ledger (app.services.inventory_service).
    """

    __tablename__ = "inventory"
    __table_args__ = (
        UniqueConstraint("variant_id", "location_id", name="uq_inventory_variant_location"),
    )

    id = Column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)

    variant_id = Column(UUIDType(as_uuid=True), ForeignKey("product_variants.id"), nullable=False, index=True)
    location_id = Column(UUIDType(as_uuid=True), ForeignKey("locations.id"), nullable=False, index=True)

    # Stock levels
    quantity = Column(Integer, default=0, nullable=False)
    reserved_qty = Column(Integer, default=0, nullable=False)

    # Backorder: allow reservations beyond sellable stock
    sell_when_out_of_stock = Column(Boolean, default=False, nullable=False)

    # Threshold for the daily stock digest
    low_stock_alert = Column(Integer, default=10, nullable=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    @property
    def available(self) -> int:
        """Sellable stock; negative only on backorder rows."""
        return (self.quantity or 0) - (self.reserved_qty or 0)

    @property
    def is_low_stock(self) -> bool:
        return 0 < self.available <= (self.low_stock_alert or 0)

    @property
    def is_out_of_stock(self) -> bool:
        return self.available <= 0


class AllocationStatus(str, Enum):
    """Lifecycle of an order's hold on one inventory row."""
    RESERVED = "RESERVED"  # Counted in reserved_qty
    COMMITTED = "COMMITTED"  # Stock left the building
    DELIVERED = "DELIVERED"  # Row closed out on delivery
    RELEASED = "RELEASED"  # Returned to the sellable pool


class OrderItemAllocation(Base):
    """How much of an order item is reserved at which location."""

    __tablename__ = "order_item_allocations"
    __table_args__ = (
        Index("ix_allocation_order_item", "order_item_id"),
    )

    id = Column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)

    order_item_id = Column(UUIDType(as_uuid=True), ForeignKey("order_items.id", ondelete="CASCADE"), nullable=False)
    variant_id = Column(UUIDType(as_uuid=True), ForeignKey("product_variants.id"), nullable=False)
    location_id = Column(UUIDType(as_uuid=True), ForeignKey("locations.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    is_backorder = Column(Boolean, default=False, nullable=False)

    status = Column(
        String(50), default="RESERVED", nullable=False,
        comment="RESERVED, COMMITTED, DELIVERED, RELEASED"
    )

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
