"""Cart management: commands and handler.

The cart is the customer's Order while it is still in ``cart`` status. The
first add-to-cart opens it implicitly. Rental and service payloads travel as
JSON text on the commands.
"""

import json

import structlog
from protean import handle
from protean.fields import Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from ordering.catalogue import get_catalogue
from ordering.domain import ordering
from ordering.errors import DependencyUnavailable, ProductUnavailable
from ordering.order.helpers import find_open_cart, load_details, parse_date, resolve_cart
from ordering.order.order import Order, ProductSnapshot
from ordering.settings import get_settings


logger = structlog.get_logger(__name__)

RENTAL_DATE_FIELDS = ("start_date", "end_date")
SERVICE_DATE_FIELDS = ("date",)


@ordering.command(part_of="Order")
class OpenCart:
    customer_id = Identifier(required=True)


@ordering.command(part_of="Order")
class AddToCart:
    customer_id = Identifier(required=True)
    cart_id = Identifier()
    product_id = Identifier(required=True)
    item_type = String(required=True, max_length=20)
    quantity = Integer(default=1)
    rental = Text()  # JSON: start_date, end_date, pickup_time, return_time, referee
    service = Text()  # JSON: date, time, duration, location_type, location_address, special_requests


@ordering.command(part_of="Order")
class UpdateCartItem:
    customer_id = Identifier(required=True)
    cart_id = Identifier()
    item_id = Identifier(required=True)
    changes = Text(required=True)  # JSON: quantity and/or detail fields


@ordering.command(part_of="Order")
class RemoveFromCart:
    customer_id = Identifier(required=True)
    cart_id = Identifier()
    item_id = Identifier(required=True)


@ordering.command(part_of="Order")
class ClearCart:
    customer_id = Identifier(required=True)
    cart_id = Identifier()


def _new_cart(customer_id) -> Order:
    settings = get_settings()
    return Order.open_cart(customer_id, currency=settings.currency, tax_rate=settings.tax_rate)


def _fetch_product(product_id, item_type):
    try:
        product = get_catalogue().get_product(str(product_id))
    except Exception as exc:
        logger.error("Catalogue lookup failed", product_id=str(product_id), error=str(exc))
        raise DependencyUnavailable("catalogue", str(exc)) from exc

    if product is None or not product.active:
        raise ProductUnavailable(f"Product {product_id} is not available")
    price = product.price_for(item_type)
    if price is None:
        raise ProductUnavailable(f"{product.name} is not offered as a {item_type}")
    return product, price


@ordering.command_handler(part_of=Order)
class CartHandler:
    @handle(OpenCart)
    def open_cart(self, command):
        cart = find_open_cart(command.customer_id)
        if cart is not None:
            return str(cart.id)

        cart = _new_cart(command.customer_id)
        current_domain.repository_for(Order).add(cart)
        logger.info("Opened cart", order_id=str(cart.id), customer_id=str(command.customer_id))
        return str(cart.id)

    @handle(AddToCart)
    def add_to_cart(self, command):
        if command.cart_id:
            cart = resolve_cart(command.customer_id, command.cart_id)
        else:
            cart = find_open_cart(command.customer_id) or _new_cart(command.customer_id)

        product, price = _fetch_product(command.product_id, command.item_type)
        cart.add_item(
            product_id=command.product_id,
            product=ProductSnapshot(
                name=product.name,
                sku=product.sku,
                product_type=product.product_type,
                category=product.category,
                thumbnail=product.thumbnail,
                stock=product.stock,
            ),
            item_type=command.item_type,
            quantity=command.quantity,
            unit_price=price,
            rental=load_details(command.rental, RENTAL_DATE_FIELDS, "rental"),
            service=load_details(command.service, SERVICE_DATE_FIELDS, "service"),
        )
        current_domain.repository_for(Order).add(cart)
        return str(cart.id)

    @handle(UpdateCartItem)
    def update_cart_item(self, command):
        cart = resolve_cart(command.customer_id, command.cart_id)
        changes = json.loads(command.changes)
        for name in RENTAL_DATE_FIELDS + SERVICE_DATE_FIELDS:
            if name in changes:
                changes[name] = parse_date(changes[name], name)
        cart.update_item(command.item_id, changes)
        current_domain.repository_for(Order).add(cart)
        return str(cart.id)

    @handle(RemoveFromCart)
    def remove_from_cart(self, command):
        cart = resolve_cart(command.customer_id, command.cart_id)
        cart.remove_item(command.item_id)
        current_domain.repository_for(Order).add(cart)
        return str(cart.id)

    @handle(ClearCart)
    def clear_cart(self, command):
        cart = resolve_cart(command.customer_id, command.cart_id)
        cart.clear_items()
        current_domain.repository_for(Order).add(cart)
        return str(cart.id)
