"""Coupon-style promotions with BOGO product rules and volume tiers."""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List
from decimal import Decimal

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text, Numeric
from sqlalchemy import UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType, JSONType


# ==================== ENUMS ====================

class PromotionType(str, Enum):
    """Type of promotion."""
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"
    FREE_SHIPPING = "FREE_SHIPPING"
    BOGO = "BOGO"
    VOLUME_DISCOUNT = "VOLUME_DISCOUNT"


class ProductRuleType(str, Enum):
    """Role of a product in a BOGO rule."""
    BUY = "BUY"
    GET = "GET"


class TierDiscountType(str, Enum):
    """How a volume tier discounts each line."""
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"
    FIXED_PRICE = "FIXED_PRICE"


# ==================== MODELS ====================

class Promotion(Base):
    """
    Promotion redeemed by coupon code.

    ``usage_count`` is incremented exactly once per order that applies the
    coupon, in the same transaction as the order.
    """
    __tablename__ = "promotions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    # Stored uppercase; looked up case-insensitively
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    promotion_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="PERCENTAGE, FIXED_AMOUNT, FREE_SHIPPING, BOGO, VOLUME_DISCOUNT"
    )
    value: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)

    # Limits
    min_order_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    max_discount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    usage_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Validity window
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    starts_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Eligibility
    customer_types: Mapped[Optional[list]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Raw customer types allowed; empty means all"
    )
    is_for_individual_customer: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # BOGO parameters (None falls back to the evaluator defaults)
    buy_quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    get_quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    get_discount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2),
        nullable=True,
        comment="Percent off the free units, default 100"
    )

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

    product_rules: Mapped[List["PromotionProductRule"]] = relationship(
        "PromotionProductRule",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    volume_tiers: Mapped[List["PromotionVolumeTier"]] = relationship(
        "PromotionVolumeTier",
        cascade="all, delete-orphan",
        order_by="PromotionVolumeTier.min_quantity",
        lazy="selectin",
    )
    specific_customers: Mapped[List["PromotionCustomer"]] = relationship(
        "PromotionCustomer",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Promotion(code='{self.code}', type='{self.promotion_type}')>"


class PromotionProductRule(Base):
    """BOGO rule row: a product or single variant on the BUY or GET side."""
    __tablename__ = "promotion_product_rules"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    promotion_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("promotions.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    rule_type: Mapped[str] = mapped_column(String(10), nullable=False, comment="BUY, GET")
    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=True
    )
    variant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("product_variants.id", ondelete="CASCADE"),
        nullable=True
    )


class PromotionVolumeTier(Base):
    __tablename__ = "promotion_volume_tiers"
    __table_args__ = (
        Index("ix_volume_tier_promotion_min", "promotion_id", "min_quantity"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    promotion_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("promotions.id", ondelete="CASCADE"),
        nullable=False
    )
    min_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    max_quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    discount_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="PERCENTAGE",
        comment="PERCENTAGE, FIXED_AMOUNT, FIXED_PRICE"
    )
    discount_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)


class PromotionCustomer(Base):
    """Customer allowed to redeem a private promotion."""
    __tablename__ = "promotion_customers"
    __table_args__ = (
        UniqueConstraint("promotion_id", "customer_id", name="uq_promotion_customer"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    promotion_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("promotions.id", ondelete="CASCADE"),
        nullable=False
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False
    )
