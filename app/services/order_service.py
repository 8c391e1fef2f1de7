"""
Order Transaction Orchestrator.

``create_order`` runs validation reads first, then prices, discounts,
taxes, persists and reserves inside one transaction. Anything that fails
before the commit rolls the whole order back, including partial stock
reservations and the coupon redemption. Audit, ERP sync and emails run
after the commit and never fail the order.
"""
from dataclasses import dataclass
from typing import List, Optional, Tuple, Dict, Any, Sequence
from decimal import Decimal
from math import ceil
import secrets
import string
import time
import uuid
import logging

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from app.config import settings
from app.core.enum_utils import get_enum_value
from app.core.exceptions import (
    AddressMismatch,
    AddressNotFound,
    CustomerNotFound,
    DuplicatePartnerOrder,
    InsufficientInventoryError,
    InvalidCoupon,
    OrderNotFound,
    VariantNotFound,
    VariantUnavailable,
)
from app.models.customer import Customer, CustomerAddress, SalesRepAssignment
from app.models.inventory import OrderItemAllocation, AllocationStatus
from app.models.order import Order, OrderItem, OrderNote, OrderStatus
from app.models.product import ProductVariant
from app.models.promotion import Promotion
from app.schemas.order import OrderCreate, OrderAdjustment, CheckoutShippingRequest, OrderItemCreate
from app.services.audit_service import AuditService
from app.services.erp_sync_service import ErpSyncService
from app.services.inventory_service import InventoryService
from app.services.notification_service import NotificationService, NotificationEvent
from app.services.pricing_service import PricingService, ResolvedPrice, as_decimal, round_money
from app.services.promotion_service import PromotionService, PromotionLineItem
from app.services.tax_service import TaxService, ShippingRateService
from app.services.warehouse_service import WarehouseService, WarehouseSelection

logger = logging.getLogger(__name__)

ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits
BASE36_DIGITS = string.digits + string.ascii_uppercase


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(BASE36_DIGITS[rem])
    return "".join(reversed(digits))


@dataclass
class PricedLine:
    variant: ProductVariant
    price: ResolvedPrice

    @property
    def quantity(self) -> int:
        return self.price.quantity


class OrderService:
    """Creates, reads and adjusts orders."""

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[NotificationService] = None,
        erp_sync_enabled: Optional[bool] = None,
    ):
        self.db = db
        self.pricing = PricingService(db)
        self.promotions = PromotionService(db)
        self.inventory = InventoryService(db)
        self.warehouses = WarehouseService(db)
        self.taxes = TaxService(db)
        self.shipping_rates = ShippingRateService(db)
        self.audit = AuditService(db)
        self.erp_sync = ErpSyncService(db, enabled=erp_sync_enabled)
        self.notifier = notifier or NotificationService()

    # ==================== ORDER NUMBER GENERATION ====================

    def generate_order_number(self) -> str:
        """Generate order number: ORD-<base36 epoch millis>-<6 random chars>"""
        stamp = _base36(int(time.time() * 1000))
        suffix = "".join(secrets.choice(ORDER_NUMBER_ALPHABET) for _ in range(6))
        return f"ORD-{stamp}-{suffix}"

    # ==================== READS ====================

    async def get_order(self, order_id: uuid.UUID, for_update: bool = False) -> Order:
        stmt = select(Order).where(Order.id == order_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt.execution_options(populate_existing=True))
        order = result.scalar_one_or_none()
        if not order:
            raise OrderNotFound(f"Order {order_id} not found")
        return order

    async def list_orders(
        self,
        status: Optional[str] = None,
        customer_id: Optional[uuid.UUID] = None,
        page: int = 1,
        size: int = 20,
    ) -> Tuple[List[Order], int, int]:
        """Paginated orders, newest first. Returns (orders, total, pages)."""
        filters = []
        if status:
            filters.append(Order.status == get_enum_value(status))
        if customer_id:
            filters.append(Order.customer_id == customer_id)

        count_stmt = select(func.count(Order.id))
        stmt = select(Order)
        if filters:
            count_stmt = count_stmt.where(and_(*filters))
            stmt = stmt.where(and_(*filters))

        total = (await self.db.execute(count_stmt)).scalar() or 0
        result = await self.db.execute(
            stmt.order_by(Order.created_at.desc())
            .offset((page - 1) * size)
            .limit(size)
        )
        orders = list(result.scalars().all())
        return orders, total, ceil(total / size) if total else 0

    # ==================== VALIDATION ====================

    async def _get_customer(self, customer_id: uuid.UUID) -> Customer:
        customer = await self.db.get(Customer, customer_id)
        if not customer or not customer.is_active:
            raise CustomerNotFound(f"Customer {customer_id} not found")
        return customer

    async def _get_customer_address(
        self, address_id: uuid.UUID, customer_id: uuid.UUID, label: str
    ) -> CustomerAddress:
        address = await self.db.get(CustomerAddress, address_id)
        if not address:
            raise AddressNotFound(f"{label.capitalize()} address not found")
        if address.customer_id != customer_id:
            raise AddressMismatch(
                f"{label.capitalize()} address does not belong to this customer",
                {"address_id": str(address_id)},
            )
        return address

    async def _load_variants(self, items: Sequence[OrderItemCreate]) -> Dict[uuid.UUID, ProductVariant]:
        """Every requested variant, rejecting missing ones and listing inactive ones."""
        variant_ids = [item.variant_id for item in items]
        result = await self.db.execute(
            select(ProductVariant).where(ProductVariant.id.in_(variant_ids))
        )
        variants = {variant.id: variant for variant in result.scalars().all()}

        missing = [str(v) for v in variant_ids if v not in variants]
        if missing:
            raise VariantNotFound(
                "One or more products not found", {"variant_ids": missing}
            )

        unavailable = [
            {
                "variant_id": str(variant.id),
                "name": f"{variant.product.name} - {variant.name}",
            }
            for variant in variants.values()
            if not variant.is_active or not variant.product.is_active
        ]
        if unavailable:
            raise VariantUnavailable(unavailable)
        return variants

    async def _check_partner_order(
        self, sales_channel_id: Optional[str], partner_order_id: Optional[str]
    ) -> None:
        if not sales_channel_id or not partner_order_id:
            return
        result = await self.db.execute(
            select(Order.id, Order.order_number).where(
                Order.sales_channel_id == sales_channel_id,
                Order.partner_order_id == partner_order_id,
            )
        )
        existing = result.first()
        if existing:
            raise DuplicatePartnerOrder(
                f"Order for partner order {partner_order_id} already exists",
                {"order_id": str(existing.id), "order_number": existing.order_number},
            )

    # ==================== PRICING ====================

    async def _price_lines(
        self,
        items: Sequence[OrderItemCreate],
        variants: Dict[uuid.UUID, ProductVariant],
        customer_type: Optional[str],
    ) -> List[PricedLine]:
        """Current database prices; client unit prices are ignored."""
        lines = []
        for item in items:
            variant = variants[item.variant_id]
            price = await self.pricing.resolve(variant, customer_type, item.quantity)
            if item.unit_price is not None and round_money(item.unit_price) != price.effective_unit_price:
                logger.info(
                    f"Ignoring client price {item.unit_price} for {variant.sku}; "
                    f"charging {price.effective_unit_price}"
                )
            lines.append(PricedLine(variant=variant, price=price))
        return lines

    async def _check_inventory(self, lines: Sequence[PricedLine]) -> None:
        """Reject with every short line listed, not just the first."""
        availability = await self.inventory.get_availability([line.variant.id for line in lines])
        shortfalls = []
        for line in lines:
            stock = availability[line.variant.id]
            if not stock.is_sufficient(line.quantity):
                shortfalls.append({
                    "variant_id": str(line.variant.id),
                    "product_name": line.variant.product.name,
                    "variant_name": line.variant.name,
                    "sku": line.variant.sku,
                    "requested_quantity": line.quantity,
                    "available_quantity": stock.total_available,
                    "can_backorder": stock.can_backorder,
                })
        if shortfalls:
            raise InsufficientInventoryError(
                "Insufficient inventory for one or more items", shortfalls
            )

    @staticmethod
    def _subtotal(lines: Sequence[PricedLine]) -> Decimal:
        return round_money(sum((line.price.line_total for line in lines), Decimal("0")))

    @staticmethod
    def _total_weight(lines: Sequence[PricedLine]) -> Decimal:
        return sum(
            (as_decimal(line.variant.weight) * line.quantity for line in lines),
            Decimal("0"),
        )

    async def _resolve_shipping(
        self,
        country: Optional[str],
        subtotal: Decimal,
        weight: Decimal,
        manual_amount: Optional[Decimal],
    ) -> Decimal:
        """A manual amount always wins over the computed rate."""
        if manual_amount is not None:
            return round_money(manual_amount)
        applied = await self.shipping_rates.get_applicable_shipping_rate(country, subtotal, weight)
        if applied is None:
            return Decimal("0.00")
        return applied.final_rate

    # ==================== ORDER CREATION ====================

    async def create_order(self, data: OrderCreate, created_by: Optional[str] = None) -> Order:
        """
        Create an order.

        Raises:
            CustomerNotFound, AddressNotFound, AddressMismatch, VariantNotFound,
            VariantUnavailable, DuplicatePartnerOrder, InsufficientInventoryError,
            InvalidCoupon / IneligibleError / CouponLimitExceeded, NoWarehouseAvailable
        """
        customer = await self._get_customer(data.customer_id)
        customer_id = customer.id

        try:
            await self._get_customer_address(data.billing_address_id, customer.id, "billing")
            shipping_address = await self._get_customer_address(
                data.shipping_address_id, customer.id, "shipping"
            )
            variants = await self._load_variants(data.items)
            await self._check_partner_order(data.sales_channel_id, data.partner_order_id)

            lines = await self._price_lines(data.items, variants, customer.customer_type)
            await self._check_inventory(lines)
            subtotal = self._subtotal(lines)

            selection: Optional[WarehouseSelection] = None
            if not data.skip_warehouse:
                selection = await self.warehouses.select_warehouse(
                    data.shipping_address_id,
                    [(line.variant.id, line.quantity) for line in lines],
                )

            shipping_amount = await self._resolve_shipping(
                shipping_address.country, subtotal, self._total_weight(lines), data.shipping_amount
            )

            # Coupon replaces any manual discount; the two never combine
            promotion: Optional[Promotion] = None
            if data.coupon_code:
                promotion = await self.promotions.get_by_code(data.coupon_code)
                if not promotion:
                    raise InvalidCoupon("Invalid or expired coupon code", {"code": data.coupon_code})
                discount_result = self.promotions.evaluator.evaluate(
                    promotion,
                    [
                        PromotionLineItem(
                            variant_id=line.variant.id,
                            product_id=line.variant.product_id,
                            quantity=line.quantity,
                            unit_price=line.price.effective_unit_price,
                        )
                        for line in lines
                    ],
                    customer,
                    subtotal,
                    shipping_amount,
                )
                discount_amount = discount_result.discount
            else:
                discount_amount = min(round_money(data.discount_amount or 0), subtotal)

            tax_rate = await self.taxes.get_applicable_tax_rate(
                shipping_address.country, shipping_address.state
            )
            rate = as_decimal(tax_rate.rate) if tax_rate else Decimal("0")
            tax_amount = round_money((subtotal - discount_amount + shipping_amount) * rate / 100)
            if data.tax_amount is not None and round_money(data.tax_amount) != tax_amount:
                logger.info(f"Ignoring client tax {data.tax_amount}; computed {tax_amount} at {rate}%")

            total_amount = round_money(subtotal - discount_amount + shipping_amount + tax_amount)

            order = Order(
                order_number=self.generate_order_number(),
                customer_id=customer.id,
                status=OrderStatus.PENDING.value,
                subtotal=subtotal,
                discount_amount=discount_amount,
                shipping_amount=shipping_amount,
                tax_amount=tax_amount,
                total_amount=total_amount,
                billing_address_id=data.billing_address_id,
                shipping_address_id=data.shipping_address_id,
                selected_payment_type=get_enum_value(data.selected_payment_type),
                sales_channel_id=data.sales_channel_id,
                partner_order_id=data.partner_order_id,
                promotion_id=promotion.id if promotion else None,
                coupon_code=promotion.code if promotion else None,
                location_id=selection.location.id if selection else None,
                notes=data.notes,
                created_by=created_by,
            )
            order.items = [
                OrderItem(
                    variant_id=line.variant.id,
                    product_id=line.variant.product_id,
                    product_name=line.variant.product.name,
                    variant_name=line.variant.name,
                    sku=line.variant.sku,
                    quantity=line.quantity,
                    unit_price=line.price.unit_price,
                    total_price=line.price.total_price,
                    bulk_unit_price=line.price.bulk_unit_price,
                    bulk_total_price=line.price.bulk_total_price,
                )
                for line in lines
            ]
            self.db.add(order)
            await self.db.flush()

            if promotion:
                await self.promotions.redeem(promotion)

            if selection:
                await self._reserve_inventory(order, selection.location.id)

            await self.db.commit()

        except IntegrityError as e:
            await self.db.rollback()
            if data.sales_channel_id and data.partner_order_id:
                logger.warning(f"Duplicate partner order {data.partner_order_id}: {e}")
                raise DuplicatePartnerOrder(
                    f"Order for partner order {data.partner_order_id} already exists"
                )
            logger.error(f"Database integrity error creating order: {e}")
            raise
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Order creation failed for customer {customer_id}: {e}")
            raise

        order_id = order.id
        logger.info(
            f"Created order {order.order_number} for customer {customer.id}: "
            f"subtotal={subtotal} discount={discount_amount} shipping={shipping_amount} "
            f"tax={tax_amount} total={total_amount}"
        )

        await self._after_order_created(
            order=order,
            customer=customer,
            product_ids={line.variant.product_id for line in lines},
            warehouse_name=selection.location.name if selection else None,
            suppress_email=data.suppress_email,
            created_by=created_by,
        )
        return await self.get_order(order_id)

    async def _reserve_inventory(self, order: Order, preferred_location_id: uuid.UUID) -> None:
        """Reserve every line and record where each unit came from."""
        for item in order.items:
            allocations = await self.inventory.reserve_across_locations(
                item.variant_id, item.quantity, preferred_location_id
            )
            for allocation in allocations:
                self.db.add(OrderItemAllocation(
                    order_item_id=item.id,
                    variant_id=item.variant_id,
                    location_id=allocation.location_id,
                    quantity=allocation.quantity,
                    is_backorder=allocation.is_backorder,
                    status=AllocationStatus.RESERVED.value,
                ))
        await self.db.flush()

    # ==================== POST-COMMIT EFFECTS ====================

    async def _after_order_created(
        self,
        order: Order,
        customer: Customer,
        product_ids: set,
        warehouse_name: Optional[str],
        suppress_email: bool,
        created_by: Optional[str],
    ) -> None:
        """Audit, ERP queue and emails. Failures are logged, never raised."""
        order_id = order.id
        payload = {
            "order_number": order.order_number,
            "customer_name": customer.full_name,
            "total_amount": f"{order.total_amount:.2f}",
            "item_count": sum(item.quantity for item in order.items),
            "warehouse_name": warehouse_name or "Unassigned",
        }
        customer_email = customer.email
        customer_id = customer.id

        try:
            await self.audit.log(
                action="ORDER_CREATED",
                entity_id=order_id,
                user_id=created_by or str(customer_id),
                details={
                    "order_number": payload["order_number"],
                    "total_amount": payload["total_amount"],
                    "coupon_code": order.coupon_code,
                },
                description=f"Order {payload['order_number']} created",
            )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Audit log failed for order {payload['order_number']}: {e}")

        await self.queue_erp_sync(product_ids, "ORDER_CREATED", payload["order_number"])

        if not suppress_email:
            await self.notify(NotificationEvent.ORDER_CONFIRMATION, {**payload, "to": customer_email})

        if settings.SHIPPING_MANAGER_EMAIL:
            await self.notify(
                NotificationEvent.NEW_ORDER_SHIPPING_MANAGER,
                {**payload, "to": settings.SHIPPING_MANAGER_EMAIL},
            )

        try:
            result = await self.db.execute(
                select(SalesRepAssignment).where(
                    SalesRepAssignment.customer_id == customer_id,
                    SalesRepAssignment.is_active == True,
                )
            )
            reps = list(result.scalars().all())
        except Exception as e:
            logger.error(f"Sales rep lookup failed for order {payload['order_number']}: {e}")
            reps = []
        for rep in reps:
            await self.notify(
                NotificationEvent.NEW_ORDER_SALES_REP,
                {**payload, "to": rep.rep_email, "rep_name": rep.rep_name},
            )

    async def queue_erp_sync(self, product_ids, reason: str, order_number: str) -> None:
        """Enqueue products for ERP sync in their own commit; failures are logged."""
        try:
            for product_id in product_ids:
                await self.erp_sync.queue_product_sync(
                    product_id,
                    reason,
                    description=f"Stock changed by order {order_number}",
                    metadata={"order_number": order_number},
                )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"ERP sync queue failed for order {order_number}: {e}")

    async def notify(self, event: NotificationEvent, payload: Dict[str, Any]) -> None:
        try:
            await self.notifier.send(event, payload)
        except Exception as e:
            logger.error(f"Failed to send {event.value} for order {payload.get('order_number')}: {e}")

    # ==================== ADJUSTMENTS ====================

    async def update_adjustments(
        self,
        order_id: uuid.UUID,
        data: OrderAdjustment,
        actor_id: Optional[str] = None,
    ) -> Order:
        """
        Staff edit of discount, shipping and tax.

        Any amount previously added on top of the computed total (a
        processor fee) is carried over:
            fee = max(0, total - (subtotal - discount + shipping + tax))
        """
        order = await self.get_order(order_id)

        old = {
            "discount_amount": as_decimal(order.discount_amount),
            "shipping_amount": as_decimal(order.shipping_amount),
            "tax_amount": as_decimal(order.tax_amount),
            "total_amount": as_decimal(order.total_amount),
        }
        subtotal = as_decimal(order.subtotal)
        computed = subtotal - old["discount_amount"] + old["shipping_amount"] + old["tax_amount"]
        fee_delta = max(Decimal("0"), old["total_amount"] - computed)

        discount = round_money(data.discount_amount) if data.discount_amount is not None else old["discount_amount"]
        shipping = round_money(data.shipping_amount) if data.shipping_amount is not None else old["shipping_amount"]
        tax = round_money(data.tax_amount) if data.tax_amount is not None else old["tax_amount"]

        try:
            order.discount_amount = discount
            order.shipping_amount = shipping
            order.tax_amount = tax
            order.total_amount = round_money(subtotal - discount + shipping + tax + fee_delta)

            if data.note:
                self.db.add(OrderNote(order_id=order.id, note=data.note, created_by=actor_id))

            await self.audit.log(
                action="ORDER_UPDATED",
                entity_id=order.id,
                user_id=actor_id,
                details={
                    "previous": {k: str(v) for k, v in old.items()},
                    "discount_amount": str(discount),
                    "shipping_amount": str(shipping),
                    "tax_amount": str(tax),
                    "total_amount": str(order.total_amount),
                    "fee_delta": str(round_money(fee_delta)),
                },
                description=f"Order {order.order_number} amounts adjusted",
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Adjusted order {order.order_number}: total {old['total_amount']} -> {order.total_amount}")
        return await self.get_order(order_id)

    # ==================== CHECKOUT ====================

    async def get_checkout_shipping_rates(self, data: CheckoutShippingRequest) -> Dict[str, Any]:
        """Warehouse, distance and shipping/tax preview for a prospective order."""
        customer_type = None
        if data.customer_id:
            customer = await self._get_customer(data.customer_id)
            customer_type = customer.customer_type

        variants = await self._load_variants(data.items)
        lines = await self._price_lines(data.items, variants, customer_type)
        subtotal = self._subtotal(lines)

        selection = await self.warehouses.select_for_destination(
            data.city, [(line.variant.id, line.quantity) for line in lines]
        )
        applied = await self.shipping_rates.get_applicable_shipping_rate(
            data.country, subtotal, self._total_weight(lines)
        )
        tax_rate = await self.taxes.get_applicable_tax_rate(data.country, data.state)

        return {
            "subtotal": subtotal,
            "shipping_amount": applied.final_rate if applied else Decimal("0.00"),
            "shipping_reason": applied.reason if applied else None,
            "tax_rate": as_decimal(tax_rate.rate) if tax_rate else None,
            "warehouse_id": selection.location.id,
            "warehouse_name": selection.location.name,
            "distance_km": round(selection.distance, 1),
            "stock_available": selection.stock_available,
        }
