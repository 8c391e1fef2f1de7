"""
Shared fixtures.

The app reads settings at import time, so the environment is prepared
before anything from ``app`` is imported.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["ERP_SYNC_ENABLED"] = "true"
os.environ["SHIPPING_MANAGER_EMAIL"] = ""

import uuid
from decimal import Decimal
from typing import Any, Dict, List, Tuple

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.database import Base, import_models
from app.models.customer import Customer, CustomerAddress
from app.models.inventory import Inventory
from app.models.location import Location
from app.models.product import Product, ProductVariant, SegmentPrice, BulkPrice
from app.models.tax import TaxRate


class RecordingNotifier:
    """Stands in for NotificationService and keeps every event it is given."""

    def __init__(self, fail: bool = False):
        self.sent: List[Tuple[str, Dict[str, Any]]] = []
        self.fail = fail

    async def send(self, event, payload: Dict[str, Any]) -> bool:
        if self.fail:
            raise RuntimeError("SMTP unavailable")
        self.sent.append((getattr(event, "value", event), payload))
        return True

    def events(self) -> List[str]:
        return [event for event, _ in self.sent]


@pytest.fixture
async def engine():
    import_models()
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifier():
    return RecordingNotifier()


# ==================== FACTORIES ====================

@pytest.fixture
def make_customer(db):
    async def _make(customer_type: str = "B2C", **kwargs) -> Customer:
        customer = Customer(
            email=kwargs.pop("email", f"{uuid.uuid4().hex[:10]}@example.com"),
            first_name=kwargs.pop("first_name", "Dana"),
            last_name=kwargs.pop("last_name", "Reyes"),
            customer_type=customer_type,
            **kwargs,
        )
        db.add(customer)
        await db.commit()
        return customer
    return _make


@pytest.fixture
def make_address(db):
    async def _make(customer: Customer, city: str = "San Diego", state: str = "CA", **kwargs) -> CustomerAddress:
        address = CustomerAddress(
            customer_id=customer.id,
            address_line1=kwargs.pop("address_line1", "100 Harbor Dr"),
            city=city,
            state=state,
            postal_code=kwargs.pop("postal_code", "92101"),
            country=kwargs.pop("country", "US"),
            **kwargs,
        )
        db.add(address)
        await db.commit()
        return address
    return _make


@pytest.fixture
def make_variant(db):
    async def _make(
        regular_price: str = "20.00",
        sale_price: str = None,
        product: Product = None,
        **kwargs,
    ) -> ProductVariant:
        if product is None:
            product = Product(name=kwargs.pop("product_name", "BPC-157"))
            db.add(product)
            await db.flush()
        variant = ProductVariant(
            product_id=product.id,
            name=kwargs.pop("name", "5mg"),
            sku=kwargs.pop("sku", f"SKU-{uuid.uuid4().hex[:8].upper()}"),
            regular_price=Decimal(regular_price),
            sale_price=Decimal(sale_price) if sale_price is not None else None,
            **kwargs,
        )
        db.add(variant)
        await db.commit()
        return variant
    return _make


@pytest.fixture
def make_location(db):
    async def _make(code: str = "LAX", city: str = "Los Angeles", **kwargs) -> Location:
        location = Location(
            name=kwargs.pop("name", f"{city} Warehouse"),
            code=code,
            city=city,
            state=kwargs.pop("state", None),
            country=kwargs.pop("country", "US"),
            **kwargs,
        )
        db.add(location)
        await db.commit()
        return location
    return _make


@pytest.fixture
def make_inventory(db):
    async def _make(
        variant: ProductVariant,
        location: Location,
        quantity: int = 100,
        reserved_qty: int = 0,
        **kwargs,
    ) -> Inventory:
        row = Inventory(
            variant_id=variant.id,
            location_id=location.id,
            quantity=quantity,
            reserved_qty=reserved_qty,
            **kwargs,
        )
        db.add(row)
        await db.commit()
        return row
    return _make


@pytest.fixture
def make_segment_price(db):
    async def _make(variant: ProductVariant, customer_type: str, regular_price: str, sale_price: str = None):
        row = SegmentPrice(
            variant_id=variant.id,
            customer_type=customer_type,
            regular_price=Decimal(regular_price),
            sale_price=Decimal(sale_price) if sale_price is not None else None,
        )
        db.add(row)
        await db.commit()
        return row
    return _make


@pytest.fixture
def make_bulk_price(db):
    async def _make(variant: ProductVariant, min_qty: int, max_qty: int = None, price: str = "8.00"):
        row = BulkPrice(variant_id=variant.id, min_qty=min_qty, max_qty=max_qty, price=Decimal(price))
        db.add(row)
        await db.commit()
        return row
    return _make


@pytest.fixture
def make_tax_rate(db):
    async def _make(rate: str, country: str = "US", state: str = None) -> TaxRate:
        row = TaxRate(country=country, state=state, rate=Decimal(rate))
        db.add(row)
        await db.commit()
        return row
    return _make


@pytest.fixture
def failing_notifier():
    return RecordingNotifier(fail=True)
