from app.services.notification_service import NotificationEvent, NotificationService, render


class FakeEmailService:
    def __init__(self):
        self.outbox = []

    def send_email(self, to_email, subject, html_content, text_content=None):
        self.outbox.append((to_email, subject, text_content))
        return True


def test_render_fills_template():
    subject, body = render(NotificationEvent.ORDER_SHIPPED, {
        "order_number": "ORD-1",
        "customer_name": "Dana",
        "total_amount": "10.00",
    })
    assert "ORD-1" in subject
    assert "Dana" in body


def test_render_with_missing_variable_falls_back_to_raw_template():
    subject, _ = render(NotificationEvent.PROMOTION_EXPIRED, {})
    assert subject == "Promotion Expired - {code}"


async def test_send_to_each_recipient():
    email = FakeEmailService()
    sent = await NotificationService(email_service=email).send(
        NotificationEvent.PROMOTION_EXPIRED,
        {"to": ["a@example.com", "b@example.com"], "code": "SUMMER", "name": "Summer"},
    )
    assert sent
    assert [to for to, _, _ in email.outbox] == ["a@example.com", "b@example.com"]


async def test_send_without_recipient_is_skipped():
    email = FakeEmailService()
    assert await NotificationService(email_service=email).send("STOCK_ALERT", {"to": ""}) is False
    assert email.outbox == []
