"""
Client for the notification relay.

Order alerts go to the shopkeeper through the relay's POST /notify. Delivery
is best-effort: nothing is queued or retried, and a failure never affects the
order that triggered it.
"""
import logging
import os
from typing import List, Optional

import httpx

logger = logging.getLogger(__name__)

NOTIFY_URL = os.getenv("NOTIFY_URL")
NOTIFY_TIMEOUT = float(os.getenv("NOTIFY_TIMEOUT", "10"))

PAYMENT_LABELS = {"cod": "Cash on Delivery", "upi": "UPI"}


class NotificationDispatchFailed(Exception):
    def __init__(self, order_id: str, reason: str):
        super().__init__(f"Notification for order {order_id} failed: {reason}")
        self.order_id = order_id
        self.reason = reason


def format_amount(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.2f}"


def build_order_message(order_id: str, order: dict) -> str:
    item_lines: List[str] = [
        f"{item['name']} x{item['quantity']} - ₹{format_amount(item['price'] * item['quantity'])}"
        for item in order["items"]
    ]
    payment = PAYMENT_LABELS.get(order.get("payment_method"), "Online")
    return "\n".join(
        [
            f"New Order #{order_id[-6:]}",
            "",
            f"Customer: {order['user_name']}",
            "Items:",
            *item_lines,
            "",
            f"Total: ₹{format_amount(order['total'])}",
            f"Payment: {payment}",
            f"Address: {order['address']}",
            f"Phone: {order['phone']}",
        ]
    )


def send_order_notification(order_id: str, message: str, total: float, base_url: Optional[str] = None) -> str:
    """POST the order summary to the relay and return the provider message id."""
    url = base_url or NOTIFY_URL
    if not url:
        raise NotificationDispatchFailed(order_id, "NOTIFY_URL not configured")

    try:
        response = httpx.post(
            f"{url.rstrip('/')}/notify",
            json={"orderId": order_id, "message": message, "total": total},
            timeout=NOTIFY_TIMEOUT,
        )
    except httpx.HTTPError as e:
        raise NotificationDispatchFailed(order_id, str(e)) from e

    try:
        body = response.json()
    except ValueError:
        body = {}
    if response.status_code >= 400 or not body.get("success"):
        reason = body.get("error") or body.get("message") or f"HTTP {response.status_code}"
        raise NotificationDispatchFailed(order_id, reason)
    return body.get("messageSid", "")


def notify_quietly(order_id: str, message: str, total: float) -> None:
    """Send an order alert, logging instead of raising on failure."""
    try:
        sid = send_order_notification(order_id, message, total)
    except NotificationDispatchFailed as e:
        logger.warning("Shopkeeper was not notified of order %s: %s", order_id, e.reason)
        return
    logger.info("Order %s notification sent (sid=%s)", order_id, sid)
