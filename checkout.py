import logging
import os
import threading
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple
from urllib.parse import quote, urlencode

from pymongo.errors import PyMongoError

import database
from cart import Cart
from notifications import build_order_message, notify_quietly
from schemas import DeliveryProfile, Order, OrderItem

logger = logging.getLogger(__name__)

PLATFORM_FEE = float(os.getenv("PLATFORM_FEE", "0"))
UPI_ID = os.getenv("UPI_ID", "quickgrocery@upi")
UPI_PAYEE_NAME = os.getenv("UPI_PAYEE_NAME", "QuickGrocery")

MAX_ATTEMPTS = 2

PAYMENT_STATUS = {"cod": "pending", "upi": "awaiting_verification"}


class CheckoutError(Exception):
    message = "Failed to place order. Please try again."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.message
        super().__init__(self.message)


class ValidationError(CheckoutError):
    pass


class ProductNotFound(CheckoutError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{name} was removed from the store. Please refresh your cart.")


class InsufficientStock(CheckoutError):
    def __init__(self, name: str, available: int):
        self.name = name
        self.available = available
        if available > 0:
            msg = f"Only {available} of {name} left in stock. Please reduce the quantity."
        else:
            msg = f"{name} is out of stock. Please remove it from your cart."
        super().__init__(msg)


class TransactionAborted(CheckoutError):
    message = "Could not place your order right now. Please try again."


def validate_checkout(cart: Cart, profile: DeliveryProfile, payment_method: str, user: Optional[dict]) -> None:
    if not user or not user.get("id"):
        raise ValidationError("Please login to place order")
    if cart.is_empty():
        raise ValidationError("Your cart is empty")
    if not (profile.name.strip() and profile.phone.strip() and profile.address.strip()):
        raise ValidationError("Delivery details missing. Please update your profile.")
    if payment_method not in PAYMENT_STATUS:
        raise ValidationError(f"Unsupported payment method: {payment_method}")


def reserve_and_create(tx, cart: Cart, profile: DeliveryProfile, payment_method: str,
                       payment_app: Optional[str], user: dict) -> Tuple[str, dict]:
    now = datetime.now(timezone.utc)

    reserved = []
    for line in cart.lines:
        product = tx.get("product", line.product_id)
        if product is None:
            raise ProductNotFound(line.name)
        available = int(product.get("stock_count") or 0)
        if available < line.quantity:
            raise InsufficientStock(product.get("name", line.name), available)
        reserved.append((line, product))

    items = [
        OrderItem(
            product_id=line.product_id,
            name=product.get("name", line.name),
            price=float(product.get("price", 0)),
            quantity=line.quantity,
        )
        for line, product in reserved
    ]
    subtotal = round(sum(item.price * item.quantity for item in items), 2)
    platform_fee = PLATFORM_FEE if subtotal > 0 else 0
    order = Order(
        user_id=user["id"],
        user_name=profile.name,
        user_email=profile.email or user.get("email"),
        phone=profile.phone,
        address=profile.address,
        items=items,
        subtotal=subtotal,
        platform_fee=platform_fee,
        total=round(subtotal + platform_fee, 2),
        payment_method=payment_method,
        payment_app=payment_app,
        payment_status=PAYMENT_STATUS[payment_method],
        status="placed",
    )
    doc = order.model_dump()
    doc["created_at"] = now
    doc["updated_at"] = now
    order_id = tx.set("order", doc)

    for line, product in reserved:
        remaining = max(0, int(product.get("stock_count") or 0) - line.quantity)
        tx.update(
            "product",
            line.product_id,
            {"stock_count": remaining, "stock": remaining > 0, "updated_at": now},
            expect={"stock_count": product.get("stock_count")},
        )

    return order_id, doc


def _commit(cart, profile, payment_method, payment_app, user) -> Tuple[str, dict]:
    try:
        return database.run_transaction(
            lambda tx: reserve_and_create(tx, cart, profile, payment_method, payment_app, user)
        )
    except CheckoutError:
        raise
    except (database.WriteConflict, PyMongoError) as e:
        raise TransactionAborted() from e


def _dispatch_in_thread(fn: Callable, *args) -> None:
    threading.Thread(target=fn, args=args, daemon=True).start()


def place_order(cart: Cart, profile: DeliveryProfile, payment_method: str, payment_app: Optional[str] = None,
                *, user: Optional[dict], dispatch: Optional[Callable] = None) -> str:
    """Returns the new order id; the cart is only cleared on success."""
    validate_checkout(cart, profile, payment_method, user)

    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            order_id, order = _commit(cart, profile, payment_method, payment_app, user)
            break
        except TransactionAborted:
            if attempt == MAX_ATTEMPTS:
                logger.exception("Order for user %s aborted after %d attempts", user["id"], attempt)
                raise
            logger.warning("Order transaction for user %s aborted, retrying", user["id"])

    logger.info("Order %s placed by user %s, total %s", order_id, user["id"], order["total"])
    cart.clear()

    message = build_order_message(order_id, order)
    (dispatch or _dispatch_in_thread)(notify_quietly, order_id, message, order["total"])
    return order_id


def generate_payment_link(order_id: str, amount: float) -> str:
    params = {
        "pa": UPI_ID,
        "pn": UPI_PAYEE_NAME,
        "am": f"{amount:.2f}",
        "cu": "INR",
        "tn": f"Order {order_id[-6:]}",
    }
    return "upi://pay?" + urlencode(params, quote_via=quote)
