"""Shared lookups used by the Order command handlers."""

import json
from datetime import date

from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from ordering.errors import AlreadyCheckedOut, CartNotFound, InvalidItemDetails, OrderNotFound
from ordering.order.order import Order, OrderStatus, cart_key_for


def load_order(order_id) -> Order:
    try:
        return current_domain.repository_for(Order).get(order_id)
    except ObjectNotFoundError:
        raise OrderNotFound(f"Order {order_id} not found") from None


def load_customer_order(order_id, customer_id) -> Order:
    """Load an order that must belong to ``customer_id``.

    Another customer's order is reported as missing rather than forbidden.
    """
    order = load_order(order_id)
    if str(order.customer_id) != str(customer_id):
        raise OrderNotFound(f"Order {order_id} not found")
    return order


def find_open_cart(customer_id) -> Order | None:
    repo = current_domain.repository_for(Order)
    results = repo._dao.query.filter(cart_key=cart_key_for(customer_id)).all().items
    return results[0] if results else None


def resolve_cart(customer_id, cart_id=None) -> Order:
    """The cart a mutation applies to: the given one, or the customer's open cart."""
    if cart_id:
        try:
            order = current_domain.repository_for(Order).get(cart_id)
        except ObjectNotFoundError:
            raise CartNotFound() from None
        if str(order.customer_id) != str(customer_id):
            raise CartNotFound()
        if order.status != OrderStatus.CART.value:
            raise AlreadyCheckedOut()
        return order

    order = find_open_cart(customer_id)
    if order is None:
        raise CartNotFound()
    return order


def parse_date(value, field: str) -> date | None:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise InvalidItemDetails(f"Invalid date: {value}", field=field) from None


def load_details(raw: str | None, date_fields: tuple[str, ...], field: str) -> dict | None:
    """Decode a JSON detail payload carried by a command, parsing its date fields."""
    if not raw:
        return None
    data = json.loads(raw)
    for name in date_fields:
        if name in data:
            data[name] = parse_date(data[name], field)
    return data
