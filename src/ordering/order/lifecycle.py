"""Operational lifecycle: staff moving a paid order through fulfillment.

PAYMENT_CONFIRMED -> PROCESSING -> READY_FOR_PICKUP | IN_PROGRESS -> COMPLETED

Also staff assignment and internal notes, which do not change status.
"""

import structlog
from protean import handle
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from ordering.domain import ordering
from ordering.errors import InvalidTransition
from ordering.order.helpers import load_order
from ordering.order.order import Order, OrderStatus


logger = structlog.get_logger(__name__)

# Statuses reachable through UpdateOrderStatus, and the aggregate method for each
_OPERATIONAL_TRANSITIONS = {
    OrderStatus.PROCESSING.value: Order.start_processing,
    OrderStatus.READY_FOR_PICKUP.value: Order.mark_ready,
    OrderStatus.IN_PROGRESS.value: Order.mark_delivered,
    OrderStatus.COMPLETED.value: Order.mark_completed,
}


@ordering.command(part_of="Order")
class UpdateOrderStatus:
    order_id = Identifier(required=True)
    status = String(required=True, max_length=30)
    changed_by = String(max_length=255)


@ordering.command(part_of="Order")
class AssignOrder:
    order_id = Identifier(required=True)
    assigned_to = String(required=True, max_length=255)
    assigned_by = String(max_length=255)


@ordering.command(part_of="Order")
class AddInternalNote:
    order_id = Identifier(required=True)
    note = Text(required=True)
    added_by = String(required=True, max_length=255)


@ordering.command_handler(part_of=Order)
class OrderLifecycleHandler:
    @handle(UpdateOrderStatus)
    def update_order_status(self, command):
        transition = _OPERATIONAL_TRANSITIONS.get(command.status)
        if transition is None:
            raise InvalidTransition(f"Status {command.status} cannot be set directly")

        order = load_order(command.order_id)
        previous = order.status
        transition(order, changed_by=command.changed_by)
        current_domain.repository_for(Order).add(order)

        logger.info(
            "Order status updated",
            order_id=str(order.id),
            from_status=previous,
            to_status=order.status,
            changed_by=command.changed_by,
        )
        return str(order.id)

    @handle(AssignOrder)
    def assign_order(self, command):
        order = load_order(command.order_id)
        order.assign(command.assigned_to, assigned_by=command.assigned_by)
        current_domain.repository_for(Order).add(order)
        return str(order.id)

    @handle(AddInternalNote)
    def add_internal_note(self, command):
        order = load_order(command.order_id)
        order.add_internal_note(command.note, command.added_by)
        current_domain.repository_for(Order).add(order)
        return str(order.id)
