"""Checkout: seal the customer's cart into an order.

Preconditions are checked by ``Order.checkout``: non-empty cart, complete
referees on rentals, future service slots and a fulfillment method. Pricing
is frozen from here on; later catalogue price changes never touch the order.
"""

import json

import structlog
from protean import handle
from protean.fields import Identifier, Text
from protean.utils.globals import current_domain

from ordering.domain import ordering
from ordering.order.helpers import parse_date, resolve_cart
from ordering.order.order import Order
from ordering.settings import get_settings


logger = structlog.get_logger(__name__)


@ordering.command(part_of="Order")
class ProceedToCheckout:
    customer_id = Identifier(required=True)
    cart_id = Identifier()
    fulfillment = Text()  # JSON: method, location, address, scheduled_date, scheduled_time, instructions
    referrer_info = Text()  # JSON: name, phone, email, relationship
    notes = Text()


@ordering.command_handler(part_of=Order)
class CheckoutHandler:
    @handle(ProceedToCheckout)
    def proceed_to_checkout(self, command):
        cart = resolve_cart(command.customer_id, command.cart_id)
        settings = get_settings()

        fulfillment = json.loads(command.fulfillment) if command.fulfillment else None
        if fulfillment and "scheduled_date" in fulfillment:
            fulfillment["scheduled_date"] = parse_date(fulfillment["scheduled_date"], "fulfillment")

        cart.checkout(
            fulfillment=fulfillment,
            referrer_info=json.loads(command.referrer_info) if command.referrer_info else None,
            notes=command.notes,
            delivery_fee=settings.delivery_fee,
            pickup_location=settings.pickup_location,
        )
        current_domain.repository_for(Order).add(cart)

        logger.info(
            "Order checked out",
            order_id=str(cart.id),
            order_number=cart.order_number,
            total=cart.pricing.total,
        )
        return str(cart.id)
