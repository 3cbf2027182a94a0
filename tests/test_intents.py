import pytest

from callassist.agent.intents import NO_ORDERS_MESSAGE, answer_from_orders
from callassist.models import OrderRecord


@pytest.fixture
def orders() -> list:
    return [
        OrderRecord(
            order_number="O-1",
            product="Gadget",
            quantity=1,
            status="Delivered",
            order_date="Dec 2, 2023",
            expected_delivery_date="2023-12-10",
        ),
        OrderRecord(
            order_number="O-2",
            product="Widget",
            quantity=2,
            status="Shipped",
            order_date="Jan 1, 2024",
        ),
    ]


def test_recent_order() -> None:
    orders = [
        OrderRecord(
            order_number="1",
            product="Widget",
            quantity=2,
            status="Shipped",
            order_date="Jan 1, 2024",
        )
    ]
    assert answer_from_orders("what's my recent order", orders) == (
        "Your most recent order is: Widget, Quantity: 2, Status: Shipped, Ordered on: Jan 1, 2024."
    )


def test_recent_picks_last_cached_record(orders: list) -> None:
    assert answer_from_orders("My RECENT order please", orders).startswith(
        "Your most recent order is: Widget,"
    )


def test_no_cached_orders() -> None:
    assert answer_from_orders("order status", []) == NO_ORDERS_MESSAGE
    assert NO_ORDERS_MESSAGE == "I don't have any order details for you at the moment."


def test_status_lines(orders: list) -> None:
    assert answer_from_orders("what is the status of my order", orders) == (
        "Your order statuses:\n"
        "Order O-1 - Status: Delivered\n"
        "Order O-2 - Status: Shipped"
    )


@pytest.mark.parametrize("transcript", ["order delivery date", "expected delivery of my order"])
def test_delivery_dates(orders: list, transcript: str) -> None:
    assert answer_from_orders(transcript, orders) == (
        "The expected delivery dates for your orders:\n"
        "O-1 - Expected Delivery Date: 2023-12-10\n"
        "O-2 - Expected Delivery Date: Not available"
    )


def test_default_lists_products(orders: list) -> None:
    assert answer_from_orders("which products did I buy", orders) == (
        "Here are the products you ordered:\n- Gadget\n- Widget"
    )


def test_unrecognized_falls_through(orders: list) -> None:
    assert answer_from_orders("what are your opening hours", orders) is None
    assert answer_from_orders("what is the status", orders) is None


def test_idempotent(orders: list) -> None:
    first = answer_from_orders("order status", orders)
    assert answer_from_orders("order status", orders) == first
    assert [o.order_number for o in orders] == ["O-1", "O-2"]
