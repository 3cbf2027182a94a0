"""Keyword fast path answering common order questions from cached orders.

Matching is a case-insensitive substring test on the transcript. Anything
without an order keyword returns None and goes to the model.
"""

from typing import Sequence

from ..models import OrderRecord

ORDER_KEYWORDS = ("order", "product")
RECENT_KEYWORDS = ("recent",)
STATUS_KEYWORDS = ("status",)
DELIVERY_KEYWORDS = ("delivery date", "expected delivery")

NO_ORDERS_MESSAGE = "I don't have any order details for you at the moment."


def _mentions(text: str, keywords: Sequence[str]) -> bool:
    return any(k in text for k in keywords)


def answer_from_orders(transcript: str, orders: Sequence[OrderRecord]) -> str | None:
    """Answer an order question from cached orders, or None to fall through."""
    text = transcript.lower()
    if not _mentions(text, ORDER_KEYWORDS):
        return None

    if not orders:
        return NO_ORDERS_MESSAGE

    if _mentions(text, RECENT_KEYWORDS):
        recent = orders[-1]
        return (
            f"Your most recent order is: {recent.product}, Quantity: {recent.quantity}, "
            f"Status: {recent.status}, Ordered on: {recent.order_date}."
        )

    if _mentions(text, STATUS_KEYWORDS):
        lines = [f"Order {o.order_number} - Status: {o.status}" for o in orders]
        return "\n".join(["Your order statuses:", *lines])

    if _mentions(text, DELIVERY_KEYWORDS):
        lines = [
            f"{o.order_number} - Expected Delivery Date: {o.expected_delivery_date or 'Not available'}"
            for o in orders
        ]
        return "\n".join(["The expected delivery dates for your orders:", *lines])

    lines = [f"- {o.product}" for o in orders]
    return "\n".join(["Here are the products you ordered:", *lines])
