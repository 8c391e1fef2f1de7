"""
Cart Service: one active cart per customer.

Stored ``unit_price`` values are only a cache. Every read reprices each line
through PricingService so a cart always shows what an order would charge.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List
import uuid
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import CustomerNotFound, NotFoundError, ValidationError
from app.models.cart import Cart, CartItem
from app.models.customer import Customer
from app.models.product import ProductVariant
from app.services.inventory_service import InventoryService
from app.services.pricing_service import PricingService, round_money

logger = logging.getLogger(__name__)


@dataclass
class CartLine:
    id: uuid.UUID
    variant_id: uuid.UUID
    product_id: uuid.UUID
    product_name: str
    variant_name: str
    sku: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    bulk_applied: bool = False


@dataclass
class CartView:
    id: uuid.UUID
    customer_id: uuid.UUID
    items: List[CartLine] = field(default_factory=list)
    removed_items: List[str] = field(default_factory=list)

    @property
    def subtotal(self) -> Decimal:
        return round_money(sum((line.line_total for line in self.items), Decimal("0")))

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.items)


class CartService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.pricing = PricingService(db)
        self.inventory = InventoryService(db)

    async def _get_customer(self, customer_id: uuid.UUID) -> Customer:
        customer = await self.db.get(Customer, customer_id)
        if not customer or not customer.is_active:
            raise CustomerNotFound(f"Customer {customer_id} not found")
        return customer

    async def get_or_create_cart(self, customer_id: uuid.UUID) -> Cart:
        result = await self.db.execute(
            select(Cart)
            .where(Cart.customer_id == customer_id, Cart.is_active == True)
            .order_by(Cart.created_at.desc())
            .execution_options(populate_existing=True)
        )
        cart = result.scalars().first()
        if cart:
            return cart

        cart = Cart(customer_id=customer_id, is_active=True, items=[])
        self.db.add(cart)
        await self.db.flush()
        logger.info(f"Created cart for customer {customer_id}")
        return cart

    async def _get_active_variant(self, variant_id: uuid.UUID) -> ProductVariant:
        result = await self.db.execute(
            select(ProductVariant).where(ProductVariant.id == variant_id)
        )
        variant = result.scalar_one_or_none()
        if not variant or not variant.is_active or not variant.product.is_active:
            raise ValidationError("Invalid or inactive variant", {"variant_id": str(variant_id)})
        return variant

    async def _get_item(self, cart: Cart, item_id: uuid.UUID) -> CartItem:
        for item in cart.items:
            if item.id == item_id:
                return item
        raise NotFoundError("Item not found", {"item_id": str(item_id)})

    async def _load_variants(self, cart: Cart) -> Dict[uuid.UUID, ProductVariant]:
        variant_ids = [item.variant_id for item in cart.items]
        if not variant_ids:
            return {}
        result = await self.db.execute(
            select(ProductVariant).where(ProductVariant.id.in_(variant_ids))
        )
        return {variant.id: variant for variant in result.scalars().all()}

    # ==================== READS ====================

    async def get_cart(self, customer_id: uuid.UUID) -> CartView:
        """Active cart with inactive lines dropped and every price recomputed."""
        customer = await self._get_customer(customer_id)
        cart = await self.get_or_create_cart(customer_id)
        variants = await self._load_variants(cart)

        removed: List[str] = []
        for item in list(cart.items):
            variant = variants.get(item.variant_id)
            if variant is None or not variant.is_active or not variant.product.is_active:
                if variant is not None:
                    removed.append(f"{variant.product.name} - {variant.name}")
                cart.items.remove(item)
        if removed:
            logger.info(f"Removed {len(removed)} unavailable items from cart {cart.id}")

        view = CartView(id=cart.id, customer_id=customer_id, removed_items=removed)
        for item in cart.items:
            variant = variants[item.variant_id]
            price = await self.pricing.resolve(variant, customer.customer_type, item.quantity)
            item.unit_price = price.effective_unit_price
            view.items.append(CartLine(
                id=item.id,
                variant_id=item.variant_id,
                product_id=variant.product_id,
                product_name=variant.product.name,
                variant_name=variant.name,
                sku=variant.sku,
                quantity=item.quantity,
                unit_price=price.effective_unit_price,
                line_total=price.line_total,
                bulk_applied=price.bulk_unit_price is not None,
            ))
        await self.db.flush()
        return view

    # ==================== WRITES ====================

    async def add_item(self, customer_id: uuid.UUID, variant_id: uuid.UUID, quantity: int = 1) -> CartView:
        """Add or merge a line; the merged quantity must fit sellable stock."""
        if quantity < 1:
            raise ValidationError("quantity must be >= 1")
        customer = await self._get_customer(customer_id)
        variant = await self._get_active_variant(variant_id)
        cart = await self.get_or_create_cart(customer_id)

        existing = next((item for item in cart.items if item.variant_id == variant_id), None)
        current_quantity = existing.quantity if existing else 0
        new_quantity = current_quantity + quantity

        stock = (await self.inventory.get_availability([variant_id]))[variant_id]
        if not stock.is_sufficient(new_quantity):
            raise ValidationError(
                f"Only {stock.total_available} items available in stock. "
                f"You already have {current_quantity} in your cart.",
                {"available_quantity": stock.total_available, "cart_quantity": current_quantity},
            )

        unit_price = await self.pricing.resolve_unit_price(variant, customer.customer_type, new_quantity)
        if existing:
            existing.quantity = new_quantity
            existing.unit_price = unit_price
        else:
            cart.items.append(CartItem(
                variant_id=variant_id,
                quantity=quantity,
                unit_price=unit_price,
            ))
        await self.db.flush()
        return await self.get_cart(customer_id)

    async def update_item(self, customer_id: uuid.UUID, item_id: uuid.UUID, quantity: int) -> CartView:
        """Set a line's quantity; 0 removes it."""
        if quantity < 0:
            raise ValidationError("quantity must be >= 0")
        cart = await self.get_or_create_cart(customer_id)
        item = await self._get_item(cart, item_id)

        if quantity == 0:
            cart.items.remove(item)
        else:
            stock = (await self.inventory.get_availability([item.variant_id]))[item.variant_id]
            if not stock.is_sufficient(quantity):
                raise ValidationError(
                    f"Only {stock.total_available} items available in stock",
                    {"available_quantity": stock.total_available},
                )
            item.quantity = quantity
        await self.db.flush()
        return await self.get_cart(customer_id)

    async def remove_item(self, customer_id: uuid.UUID, item_id: uuid.UUID) -> CartView:
        cart = await self.get_or_create_cart(customer_id)
        item = await self._get_item(cart, item_id)
        cart.items.remove(item)
        await self.db.flush()
        return await self.get_cart(customer_id)

    async def clear_cart(self, customer_id: uuid.UUID) -> CartView:
        cart = await self.get_or_create_cart(customer_id)
        cart.items.clear()
        await self.db.flush()
        return await self.get_cart(customer_id)
