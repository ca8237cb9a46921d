"""Ordering bounded context: carts, orders, pricing and the order lifecycle.

A cart is an Order in ``cart`` status. Checkout seals it; payment, fulfillment,
rental returns, cancellation and refunds move it through the lifecycle.
"""

from protean.domain import Domain

from ordering.utils.logging import configure_logging, get_logger

configure_logging()

logger = get_logger(__name__)

ordering = Domain(name="ordering")
