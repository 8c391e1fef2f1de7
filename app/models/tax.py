"""Tax rates and shipping zones used when pricing an order."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Numeric
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType, JSONType


class TaxRate(Base):
    """Percent rate for a country, optionally narrowed to one state."""
    __tablename__ = "tax_rates"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    country: Mapped[str] = mapped_column(String(2), nullable=False, index=True)
    state: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="NULL means country-wide"
    )
    rate: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False)
    tax_type: Mapped[str] = mapped_column(String(50), default="SALES_TAX", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )


class ShippingZone(Base):
    __tablename__ = "shipping_zones"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    countries: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    rates: Mapped[List["ShippingRate"]] = relationship(
        "ShippingRate",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class ShippingRate(Base):
    """Flat rate within a zone, bounded by order weight and subtotal."""
    __tablename__ = "shipping_rates"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    zone_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("shipping_zones.id", ondelete="CASCADE"),
        nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    min_weight: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 3), nullable=True)
    max_weight: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 3), nullable=True)
    min_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    max_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    free_shipping_threshold: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class ShippingTier(Base):
    """Subtotal band that overrides zone rates: [min_subtotal, max_subtotal)."""
    __tablename__ = "shipping_tiers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    min_subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    max_subtotal: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    shipping_rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
