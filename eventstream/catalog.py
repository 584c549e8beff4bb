"""Sample events published by the producer role."""
from datetime import datetime, timezone
from .event_models import Event, LogTier


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def sample_events() -> list[Event]:
    """
    Build the sample event feed, in publication order.

    Timestamps are taken when the catalog is built, so each producer run
    publishes fresh events.

    Returns:
        List of events to publish
    """
    ts = _now()
    return [
        Event(
            type="user_signup",
            logType=LogTier.AUDIT,
            userId="user_123",
            email="user123@example.com",
            timestamp=ts,
            metadata={"source": "web", "ip": "192.168.1.100"},
        ),
        Event(
            type="order_created",
            orderId="order_456",
            userId="user_123",
            amount=99.99,
            currency="USD",
            timestamp=ts,
            metadata={"items": ["product_1", "product_2"], "shipping": "express"},
        ),
        Event(
            type="payment_processed",
            logType=LogTier.PROTECTED,
            paymentId="payment_789",
            orderId="order_456",
            amount=99.99,
            status="completed",
            timestamp=ts,
            metadata={"method": "credit_card", "processor": "stripe"},
        ),
        Event(
            type="product_viewed",
            productId="product_1",
            userId="user_123",
            timestamp=ts,
            metadata={"category": "electronics", "price": 49.99},
        ),
        Event(
            type="cart_updated",
            userId="user_123",
            cartId="cart_001",
            items=["product_1", "product_3"],
            timestamp=ts,
            metadata={"totalItems": 2, "totalValue": 89.98},
        ),
        Event(
            type="user_signin",
            logType=LogTier.AUDIT,
            userId="user_123",
            timestamp=ts,
            metadata={"source": "mobile", "ip": "192.168.1.101"},
        ),
    ]


def event_identifier(body: dict) -> str:
    """Best-effort identifier for console summaries."""
    return body.get("userId") or body.get("orderId") or body.get("paymentId") or "N/A"
