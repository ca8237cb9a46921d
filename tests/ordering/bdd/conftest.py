"""Shared BDD fixtures and step definitions for the Ordering domain.

Steps drive the ordering services end to end; the scenario state (customer,
cart or order) lives in the ``journey`` fixture.
"""

from datetime import UTC, datetime, timedelta

import pytest
from ordering import services
from ordering.errors import InvalidTransition, ReturnNotClosed
from pytest_bdd import given, parsers, then, when

STAFF_ID = "staff-bdd-001"


@pytest.fixture()
def journey():
    return {"customer_id": None, "cart": None, "order": None}


def _rental(referee, days):
    start = datetime.now(UTC).date() + timedelta(days=7)
    return {
        "start_date": start.isoformat(),
        "end_date": (start + timedelta(days=days)).isoformat(),
        "referee": referee,
    }


# ---------------------------------------------------------------------------
# Cart steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('the customer "{customer_id}" rents "{product_id}" for {days:d} days'))
def _(journey, referee, customer_id, product_id, days):
    journey["customer_id"] = customer_id
    journey["cart"] = services.add_to_cart(customer_id, product_id, "rental", rental=_rental(referee, days))


@given(parsers.cfparse('the customer "{customer_id}" buys {quantity:d} of "{product_id}"'))
def _(journey, customer_id, quantity, product_id):
    journey["customer_id"] = customer_id
    journey["cart"] = services.add_to_cart(customer_id, product_id, "purchase", quantity=quantity)


@given(parsers.cfparse('the customer buys {quantity:d} more of "{product_id}"'))
def _(journey, quantity, product_id):
    journey["cart"] = services.add_to_cart(journey["customer_id"], product_id, "purchase", quantity=quantity)


@given(parsers.cfparse('the customer books "{product_id}"'))
def _(journey, service_details, product_id):
    journey["cart"] = services.add_to_cart(journey["customer_id"], product_id, "service", service=service_details)


@then(parsers.cfparse("the cart total is {total:f}"))
def _(journey, total):
    assert journey["cart"].pricing.total == pytest.approx(total)


@then(parsers.cfparse('the cart order type is "{order_type}"'))
def _(journey, order_type):
    assert journey["cart"].order_type == order_type


@then(parsers.cfparse("the cart has {lines:d} line with quantity {quantity:d}"))
def _(journey, lines, quantity):
    items = journey["cart"].items
    assert len(items) == lines
    assert items[0].quantity == quantity


# ---------------------------------------------------------------------------
# Order steps
# ---------------------------------------------------------------------------
@given("the customer checks out for pickup")
@when("the customer checks out for pickup")
def _(journey):
    journey["order"] = services.proceed_to_checkout(journey["customer_id"], {"method": "pickup"})


@when("the order is paid in cash")
def _(journey):
    order = services.initiate_payment(journey["order"].id, journey["customer_id"], "cash")
    journey["order"] = services.confirm_payment(order.payment_reference, succeeded=True)


@when("staff start processing the order")
def _(journey):
    journey["order"] = services.update_order_status(journey["order"].id, "processing", changed_by=STAFF_ID)


@when("staff fulfil the order at the studio")
def _(journey):
    order_id = journey["order"].id
    services.update_order_status(order_id, "processing", changed_by=STAFF_ID)
    services.mark_order_ready(order_id, changed_by=STAFF_ID)
    journey["order"] = services.mark_order_completed(order_id, changed_by=STAFF_ID)


@when("the customer cancels the order")
def _(journey):
    journey["order"] = services.cancel_order(journey["order"].id, "Plans changed", cancelled_by=journey["customer_id"])


@then(parsers.cfparse('the order status is "{status}"'))
def _(journey, status):
    assert journey["order"].status == status


@then(parsers.cfparse("the refund owed is {amount:f}"))
def _(journey, amount):
    assert journey["order"].cancellation.refund_amount == pytest.approx(amount)


@then("the refund is pending")
def _(journey):
    assert journey["order"].cancellation.refund_status == "pending"


@then("cancelling the order is refused")
def _(journey):
    with pytest.raises(InvalidTransition):
        services.cancel_order(journey["order"].id, "Too late", cancelled_by=journey["customer_id"])


# ---------------------------------------------------------------------------
# Return steps
# ---------------------------------------------------------------------------
@when(parsers.cfparse('the equipment is returned in "{condition}" condition'))
def _(journey, condition):
    journey["order"] = services.process_return(journey["order"].id, condition=condition, processed_by=STAFF_ID)


@when(parsers.cfparse('the equipment is returned in "{condition}" condition with a {amount:f} charge'))
def _(journey, condition, amount):
    journey["order"] = services.process_return(
        journey["order"].id,
        condition=condition,
        damage_notes="Cracked LCD",
        extra_charges=[{"reason": "Screen repair", "amount": amount}],
        processed_by=STAFF_ID,
    )


@when("staff release the guarantee")
def _(journey):
    journey["order"] = services.release_deposit(journey["order"].id, released_by=STAFF_ID)


@then("releasing the guarantee is refused")
def _(journey):
    with pytest.raises(ReturnNotClosed):
        services.release_deposit(journey["order"].id, released_by=STAFF_ID)


@then("the guarantee is released")
def _(journey):
    assert journey["order"].returns.deposit_returned is True
    assert journey["order"].returns.deposit_returned_at is not None


@then(parsers.cfparse("the return shows extra charges of {amount:f}"))
def _(journey, amount):
    assert journey["order"].returns.extra_charges_total == pytest.approx(amount)


@then(parsers.cfparse("the amount outstanding is {amount:f}"))
def _(journey, amount):
    assert journey["order"].payment_amounts.pending == pytest.approx(amount)
