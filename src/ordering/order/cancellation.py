"""Order cancellation and refunds: commands and handler.

Cancellation is open from checkout until fulfillment work is done
(CHECKOUT, PAYMENT_PENDING, PAYMENT_FAILED, PAYMENT_CONFIRMED, PROCESSING).
A completed order is refunded instead, never cancelled.

Refund policy on cancellation: the full amount paid is refunded before
processing starts; once processing, the configured cancellation fee is
retained. The refund itself is executed by the payment collaborator; the
order records it as pending.
"""

import structlog
from protean import handle
from protean.fields import Float, Identifier, String
from protean.utils.globals import current_domain

from ordering.domain import ordering
from ordering.order.helpers import load_customer_order, load_order
from ordering.order.order import ActorRole, Order
from ordering.settings import get_settings


logger = structlog.get_logger(__name__)


@ordering.command(part_of="Order")
class CancelOrder:
    order_id = Identifier(required=True)
    reason = String(required=True, max_length=1000)
    cancelled_by = String(required=True, max_length=255)
    actor_role = String(choices=ActorRole, default=ActorRole.CUSTOMER.value)


@ordering.command(part_of="Order")
class RefundOrder:
    order_id = Identifier(required=True)
    amount = Float(required=True)
    reason = String(max_length=1000)
    processed_by = String(max_length=255)


@ordering.command_handler(part_of=Order)
class CancellationHandler:
    @handle(CancelOrder)
    def cancel_order(self, command):
        if command.actor_role == ActorRole.CUSTOMER.value:
            order = load_customer_order(command.order_id, command.cancelled_by)
        else:
            order = load_order(command.order_id)

        order.cancel(
            reason=command.reason,
            cancelled_by=command.cancelled_by,
            actor_role=command.actor_role,
            fee_percent=get_settings().cancellation_fee_percent,
        )
        current_domain.repository_for(Order).add(order)

        logger.info(
            "Order cancelled",
            order_id=str(order.id),
            actor_role=command.actor_role,
            refund_amount=order.cancellation.refund_amount,
        )
        return str(order.id)

    @handle(RefundOrder)
    def refund_order(self, command):
        order = load_order(command.order_id)
        order.refund(command.amount, reason=command.reason, processed_by=command.processed_by)
        current_domain.repository_for(Order).add(order)

        logger.info("Order refunded", order_id=str(order.id), amount=command.amount)
        return str(order.id)
