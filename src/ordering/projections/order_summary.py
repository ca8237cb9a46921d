"""Order summary: lightweight listing/history view."""

from protean.core.projector import on
from protean.fields import DateTime, Float, Identifier, Integer, String
from protean.utils.globals import current_domain

from ordering.domain import ordering
from ordering.order.events import (
    CartCleared,
    CartItemAdded,
    CartItemRemoved,
    CartItemUpdated,
    OrderAssigned,
    OrderCancelled,
    OrderCreated,
    OrderPlaced,
    OrderRefunded,
    OrderStatusChanged,
    PaymentConfirmed,
    PaymentFailed,
    PaymentInitiated,
)
from ordering.order.order import Order


@ordering.projection
class OrderSummary:
    order_id = Identifier(identifier=True, required=True)
    order_number = String(required=True, max_length=40)
    customer_id = Identifier(required=True)
    status = String(required=True, max_length=30)
    order_type = String(max_length=20, default="purchase")
    item_count = Integer(default=0)
    total = Float(default=0.0)
    currency = String(max_length=3, default="NGN")
    payment_status = String(max_length=30, default="pending")
    assigned_to = String(max_length=255)
    created_at = DateTime()
    placed_at = DateTime()
    updated_at = DateTime()


@ordering.projector(projector_for=OrderSummary, aggregates=[Order])
class OrderSummaryProjector:
    @on(OrderCreated)
    def on_order_created(self, event):
        current_domain.repository_for(OrderSummary).add(
            OrderSummary(
                order_id=event.order_id,
                order_number=event.order_number,
                customer_id=event.customer_id,
                status="cart",
                item_count=0,
                total=0.0,
                currency=event.currency or "NGN",
                created_at=event.created_at,
                updated_at=event.created_at,
            )
        )

    def _update(self, order_id, **changes):
        repo = current_domain.repository_for(OrderSummary)
        summary = repo.get(order_id)
        for name, value in changes.items():
            setattr(summary, name, value)
        repo.add(summary)

    @on(CartItemAdded)
    def on_item_added(self, event):
        self._update(event.order_id, item_count=event.item_count, order_type=event.order_type, total=event.total)

    @on(CartItemUpdated)
    def on_item_updated(self, event):
        self._update(event.order_id, total=event.total)

    @on(CartItemRemoved)
    def on_item_removed(self, event):
        self._update(event.order_id, item_count=event.item_count, order_type=event.order_type, total=event.total)

    @on(CartCleared)
    def on_cart_cleared(self, event):
        self._update(event.order_id, item_count=0, order_type="purchase", total=0.0)

    @on(OrderPlaced)
    def on_order_placed(self, event):
        self._update(event.order_id, total=event.total, placed_at=event.placed_at)

    @on(OrderStatusChanged)
    def on_status_changed(self, event):
        self._update(event.order_id, status=event.to_status, updated_at=event.changed_at)

    @on(PaymentInitiated)
    def on_payment_initiated(self, event):
        self._update(event.order_id, payment_status="processing")

    @on(PaymentConfirmed)
    def on_payment_confirmed(self, event):
        self._update(event.order_id, payment_status="completed")

    @on(PaymentFailed)
    def on_payment_failed(self, event):
        self._update(event.order_id, payment_status="failed")

    @on(OrderCancelled)
    def on_order_cancelled(self, event):
        if event.payment_status:
            self._update(event.order_id, payment_status=event.payment_status)

    @on(OrderRefunded)
    def on_order_refunded(self, event):
        self._update(event.order_id, payment_status=event.payment_status)

    @on(OrderAssigned)
    def on_order_assigned(self, event):
        self._update(event.order_id, assigned_to=event.assigned_to)
