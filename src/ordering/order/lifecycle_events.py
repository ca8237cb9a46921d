"""Lifecycle event handler: audit and notification hand-off.

Every significant order fact is written to the ``ordering.audit`` log as a
structured record. The audit store and the notification service consume
that stream; this engine does not format or deliver notifications itself.
"""

import structlog
from protean.utils.mixins import handle

from ordering.domain import ordering
from ordering.order.events import (
    DepositReleased,
    OrderCancelled,
    OrderCreated,
    OrderPlaced,
    OrderRefunded,
    OrderStatusChanged,
    PaymentConfirmed,
    PaymentFailed,
    RentalReturnProcessed,
)
from ordering.order.order import Order

audit_logger = structlog.get_logger("ordering.audit")


@ordering.event_handler(part_of=Order)
class OrderLifecycleEventHandler:
    """Publishes order lifecycle facts for audit and customer notifications."""

    @handle(OrderCreated)
    def on_order_created(self, event: OrderCreated) -> None:
        audit_logger.info(
            "order.created",
            order_id=str(event.order_id),
            order_number=event.order_number,
            customer_id=str(event.customer_id),
        )

    @handle(OrderPlaced)
    def on_order_placed(self, event: OrderPlaced) -> None:
        audit_logger.info(
            "order.placed",
            order_id=str(event.order_id),
            order_number=event.order_number,
            customer_id=str(event.customer_id),
            order_type=event.order_type,
            total=event.total,
            currency=event.currency,
            notify="customer",
        )

    @handle(OrderStatusChanged)
    def on_status_changed(self, event: OrderStatusChanged) -> None:
        audit_logger.info(
            "order.statusChanged",
            order_id=str(event.order_id),
            order_number=event.order_number,
            customer_id=str(event.customer_id),
            from_status=event.from_status,
            to_status=event.to_status,
            changed_by=event.changed_by,
        )

    @handle(OrderCancelled)
    def on_order_cancelled(self, event: OrderCancelled) -> None:
        audit_logger.info(
            "order.cancelled",
            order_id=str(event.order_id),
            order_number=event.order_number,
            customer_id=str(event.customer_id),
            previous_status=event.previous_status,
            cancelled_by=event.cancelled_by,
            actor_role=event.actor_role,
            refund_amount=event.refund_amount,
            refund_status=event.refund_status,
            notify="customer",
        )

    @handle(PaymentConfirmed)
    def on_payment_confirmed(self, event: PaymentConfirmed) -> None:
        audit_logger.info(
            "order.paymentConfirmed",
            order_id=str(event.order_id),
            order_number=event.order_number,
            amount=event.amount,
            currency=event.currency,
            notify="customer",
        )

    @handle(PaymentFailed)
    def on_payment_failed(self, event: PaymentFailed) -> None:
        audit_logger.warning(
            "order.paymentFailed",
            order_id=str(event.order_id),
            reference=event.reference,
            reason=event.reason,
            notify="customer",
        )

    @handle(OrderRefunded)
    def on_order_refunded(self, event: OrderRefunded) -> None:
        audit_logger.info(
            "order.refunded",
            order_id=str(event.order_id),
            amount=event.amount,
            payment_status=event.payment_status,
        )

    @handle(RentalReturnProcessed)
    def on_return_processed(self, event: RentalReturnProcessed) -> None:
        audit_logger.info(
            "order.returnProcessed",
            order_id=str(event.order_id),
            condition=event.condition,
            extra_charges_total=event.extra_charges_total,
            processed_by=event.processed_by,
        )

    @handle(DepositReleased)
    def on_deposit_released(self, event: DepositReleased) -> None:
        audit_logger.info(
            "order.depositReleased",
            order_id=str(event.order_id),
            released_by=event.released_by,
        )
