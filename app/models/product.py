"""
Catalog models: products, purchasable variants and their price overrides.

A variant carries the base ``regular_price``/``sale_price``. Customer-tier
overrides live in ``segment_prices`` (one row per variant and tier) and
quantity-range overrides in ``bulk_prices``.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    String, Boolean, DateTime, ForeignKey, Integer, Numeric, Text, UniqueConstraint, Index,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType


class CustomerType(str, Enum):
    """Raw customer types. Pricing collapses B2B and ENTERPRISE_2 onto a shared tier."""
    B2C = "B2C"
    B2B = "B2B"
    ENTERPRISE_1 = "ENTERPRISE_1"
    ENTERPRISE_2 = "ENTERPRISE_2"


class Product(Base):
    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )


class ProductVariant(Base):
    """A purchasable SKU. Orders only read its pricing."""
    __tablename__ = "product_variants"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)

    regular_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    sale_price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        comment="A sale price of 0 means no sale"
    )
    weight: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 3),
        nullable=True,
        comment="Shipping weight in pounds"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    product: Mapped["Product"] = relationship("Product", lazy="joined")


class SegmentPrice(Base):
    """Per-tier price override, at most one row per (variant, customer type)."""
    __tablename__ = "segment_prices"
    __table_args__ = (
        UniqueConstraint("variant_id", "customer_type", name="uq_segment_price_variant_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    variant_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("product_variants.id", ondelete="CASCADE"),
        nullable=False
    )
    customer_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="B2C, ENTERPRISE_1 (collapsed pricing tiers)"
    )
    regular_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    sale_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)


class BulkPrice(Base):
    """Quantity-range price tier. ``max_qty`` of None means open-ended."""
    __tablename__ = "bulk_prices"
    __table_args__ = (
        Index("ix_bulk_price_variant_min_qty", "variant_id", "min_qty"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    variant_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("product_variants.id", ondelete="CASCADE"),
        nullable=False
    )
    min_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    max_qty: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
