"""Rental returns: commands and handler.

A return record is opened when a rental order completes. Staff close it when
the equipment comes back (condition, damage notes, extra charges); only then
can the referee guarantee be released, and only once.
"""

import json

from protean import handle
from protean.fields import Date, Identifier, String, Text
from protean.utils.globals import current_domain

from ordering.domain import ordering
from ordering.order.helpers import load_order
from ordering.order.order import Order, ReturnCondition


@ordering.command(part_of="Order")
class ProcessReturn:
    order_id = Identifier(required=True)
    condition = String(required=True, choices=ReturnCondition)
    damage_notes = Text()
    extra_charges = Text()  # JSON: list of {"reason", "amount"}
    returned_on = Date()
    processed_by = String(max_length=255)


@ordering.command(part_of="Order")
class ReleaseDeposit:
    order_id = Identifier(required=True)
    released_by = String(max_length=255)


@ordering.command_handler(part_of=Order)
class RentalReturnHandler:
    @handle(ProcessReturn)
    def process_return(self, command):
        order = load_order(command.order_id)
        order.process_return(
            condition=command.condition,
            damage_notes=command.damage_notes,
            extra_charges=json.loads(command.extra_charges) if command.extra_charges else [],
            processed_by=command.processed_by,
            returned_on=command.returned_on,
        )
        current_domain.repository_for(Order).add(order)
        return str(order.id)

    @handle(ReleaseDeposit)
    def release_deposit(self, command):
        order = load_order(command.order_id)
        order.release_deposit(released_by=command.released_by)
        current_domain.repository_for(Order).add(order)
        return str(order.id)
