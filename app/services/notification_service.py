"""
Order Notification Service

Fire-and-forget email notifications for order and inventory events.
Callers hand over an event name and a payload; delivery failures are
logged and reported as ``False``, never raised.
"""
import asyncio
import logging
from enum import Enum
from typing import Optional, Dict, Any, List

from app.services.email_service import EmailService, get_email_service

logger = logging.getLogger(__name__)


class NotificationEvent(str, Enum):
    """Events the order pipeline can announce."""
    ORDER_CONFIRMATION = "ORDER_CONFIRMATION"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    ORDER_SHIPPED = "ORDER_SHIPPED"
    NEW_ORDER_SHIPPING_MANAGER = "NEW_ORDER_SHIPPING_MANAGER"
    NEW_ORDER_SALES_REP = "NEW_ORDER_SALES_REP"
    STOCK_ALERT = "STOCK_ALERT"
    PROMOTION_EXPIRED = "PROMOTION_EXPIRED"


# (subject, body) templates, formatted with the payload
EMAIL_TEMPLATES = {
    NotificationEvent.ORDER_CONFIRMATION: (
        "Order Confirmation - {order_number}",
        "Hi {customer_name}, thank you for your order {order_number}. "
        "Total: ${total_amount}. We'll email you again when it ships.",
    ),
    NotificationEvent.ORDER_CANCELLED: (
        "Order Cancelled - {order_number}",
        "Hi {customer_name}, your order {order_number} has been cancelled.",
    ),
    NotificationEvent.ORDER_SHIPPED: (
        "Your Order Has Shipped - {order_number}",
        "Hi {customer_name}, your order {order_number} is on its way.",
    ),
    NotificationEvent.NEW_ORDER_SHIPPING_MANAGER: (
        "New Order to Fulfil - {order_number}",
        "Order {order_number} ({item_count} items) was placed by {customer_name}. "
        "Ship from: {warehouse_name}.",
    ),
    NotificationEvent.NEW_ORDER_SALES_REP: (
        "New Order from Your Customer - {order_number}",
        "Hi {rep_name}, {customer_name} placed order {order_number} for ${total_amount}.",
    ),
    NotificationEvent.STOCK_ALERT: (
        "Daily Stock Alert - {low_stock_count} low, {out_of_stock_count} out of stock",
        "{summary}",
    ),
    NotificationEvent.PROMOTION_EXPIRED: (
        "Promotion Expired - {code}",
        "Promotion {code} ({name}) expired and has been deactivated.",
    ),
}


def render(event: NotificationEvent, payload: Dict[str, Any]) -> Optional[tuple]:
    template = EMAIL_TEMPLATES.get(event)
    if not template:
        return None
    subject, body = template
    try:
        return subject.format(**payload), body.format(**payload)
    except KeyError as e:
        logger.warning(f"Missing template variable {e} for {event.value}")
        return subject, body


class NotificationService:
    """
    Dispatches events to email.

    The payload carries the recipient under ``to`` (a single address or a
    list). SMTP is blocking, so delivery runs in a worker thread.
    """

    def __init__(self, email_service: Optional[EmailService] = None):
        self.email_service = email_service or get_email_service()

    async def send(self, event: NotificationEvent, payload: Dict[str, Any]) -> bool:
        event = NotificationEvent(event)
        recipients = payload.get("to") or []
        if isinstance(recipients, str):
            recipients = [recipients]
        if not recipients:
            logger.info(f"[NOTIFICATION] {event.value} has no recipient, skipped")
            return False

        rendered = render(event, payload)
        if not rendered:
            logger.warning(f"[NOTIFICATION] No template for {event.value}")
            return False
        subject, body = rendered

        results: List[bool] = []
        for recipient in recipients:
            sent = await asyncio.to_thread(
                self.email_service.send_email, recipient, subject, f"<p>{body}</p>", body
            )
            results.append(sent)
        logger.info(f"[NOTIFICATION] {event.value} to {len(recipients)} recipient(s): {results}")
        return all(results)
