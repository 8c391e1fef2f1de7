import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType, JSONType


class SyncStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ProductSyncQueue(Base):
    """
    Outbox of products whose stock must be pushed to the ERP.
    Rows are written here; a separate worker drains them.
    """
    __tablename__ = "product_sync_queue"
    __table_args__ = (
        Index("ix_product_sync_status_created", "status", "created_at"),
    )

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
    reason: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="ORDER_CREATED, ORDER_SHIPPED, ORDER_CANCELLED"
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sync_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)
    status: Mapped[str] = mapped_column(String(50), default="PENDING", nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
