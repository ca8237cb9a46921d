"""Public operations of the ordering engine.

Each operation runs one command through the domain as a single unit of work
and returns the resulting Order. Mutations that touch the same cart or order
are serialized with a per-key lock held around the whole unit of work
(load, mutate, commit), so concurrent writes cannot interleave. Cart
operations are keyed by customer, since a customer has at most one cart;
everything after checkout is keyed by order.

Callers must be inside a domain context.
"""

import json

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from ordering.errors import CartAlreadyExists, InvalidTransition
from ordering.order.cancellation import CancelOrder, RefundOrder
from ordering.order.cart import AddToCart, ClearCart, OpenCart, RemoveFromCart, UpdateCartItem
from ordering.order.checkout import ProceedToCheckout
from ordering.order.helpers import load_order
from ordering.order.lifecycle import AddInternalNote, AssignOrder, UpdateOrderStatus
from ordering.order.order import ActorRole, Order, OrderStatus
from ordering.order.payment import ConfirmPayment, InitiatePayment, find_by_payment_reference
from ordering.order.returns import ProcessReturn, ReleaseDeposit
from ordering.utils.locks import customer_key, order_key, order_locks

logger = structlog.get_logger(__name__)


def _json(value) -> str | None:
    if value is None:
        return None
    return json.dumps(value, default=str)


def _run(command) -> Order:
    order_id = current_domain.process(command, asynchronous=False)
    return current_domain.repository_for(Order).get(order_id)


# ---------------------------------------------------------------------------
# Cart
# ---------------------------------------------------------------------------
def get_or_create_cart(customer_id) -> Order:
    """Return the customer's open cart, creating it if there is none."""
    with order_locks.hold(customer_key(customer_id)):
        try:
            return _run(OpenCart(customer_id=customer_id))
        except ValidationError as exc:
            if "cart_key" not in exc.messages:
                raise
            # Another process opened the cart between our lookup and insert
            logger.warning("Cart creation raced with another writer", customer_id=str(customer_id))
            try:
                return _run(OpenCart(customer_id=customer_id))
            except ValidationError as retry_exc:
                raise CartAlreadyExists() from retry_exc


def add_to_cart(customer_id, product_id, item_type, quantity=1, rental=None, service=None, cart_id=None) -> Order:
    with order_locks.hold(customer_key(customer_id)):
        return _run(
            AddToCart(
                customer_id=customer_id,
                cart_id=cart_id,
                product_id=product_id,
                item_type=item_type,
                quantity=quantity,
                rental=_json(rental),
                service=_json(service),
            )
        )


def update_cart_item(customer_id, item_id, changes: dict, cart_id=None) -> Order:
    with order_locks.hold(customer_key(customer_id)):
        return _run(
            UpdateCartItem(
                customer_id=customer_id,
                cart_id=cart_id,
                item_id=item_id,
                changes=_json(changes or {}),
            )
        )


def remove_from_cart(customer_id, item_id, cart_id=None) -> Order:
    with order_locks.hold(customer_key(customer_id)):
        return _run(RemoveFromCart(customer_id=customer_id, cart_id=cart_id, item_id=item_id))


def clear_cart(customer_id, cart_id=None) -> Order:
    with order_locks.hold(customer_key(customer_id)):
        return _run(ClearCart(customer_id=customer_id, cart_id=cart_id))


# ---------------------------------------------------------------------------
# Checkout and payment
# ---------------------------------------------------------------------------
def proceed_to_checkout(customer_id, fulfillment, referrer_info=None, notes=None, cart_id=None) -> Order:
    with order_locks.hold(customer_key(customer_id)):
        return _run(
            ProceedToCheckout(
                customer_id=customer_id,
                cart_id=cart_id,
                fulfillment=_json(fulfillment),
                referrer_info=_json(referrer_info),
                notes=notes,
            )
        )


def initiate_payment(order_id, customer_id, method, customer_email=None) -> Order:
    with order_locks.hold(order_key(order_id)):
        return _run(
            InitiatePayment(
                order_id=order_id,
                customer_id=customer_id,
                method=method,
                customer_email=customer_email,
            )
        )


def confirm_payment(
    reference,
    succeeded,
    order_id=None,
    transaction_id=None,
    amount=None,
    failure_reason=None,
) -> Order:
    """Apply a payment verdict, typically from the provider's webhook."""
    if order_id is None:
        order_id = str(find_by_payment_reference(reference).id)
    with order_locks.hold(order_key(order_id)):
        return _run(
            ConfirmPayment(
                order_id=order_id,
                reference=reference,
                succeeded=succeeded,
                transaction_id=transaction_id,
                amount=amount,
                failure_reason=failure_reason,
            )
        )


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------
def update_order_status(
    order_id,
    status,
    changed_by=None,
    actor_role=ActorRole.STAFF.value,
    reason=None,
    amount=None,
) -> Order:
    """Move an order to ``status``.

    Cancellation and refunds go through their own operations so their side
    effects are applied; payment statuses only change through payment
    confirmation.
    """
    if status == OrderStatus.CANCELLED.value:
        return cancel_order(order_id, reason or "Cancelled by staff", changed_by or "staff", actor_role)
    if status == OrderStatus.REFUNDED.value:
        return process_refund(order_id, amount, reason=reason, processed_by=changed_by)
    if status in (OrderStatus.CART.value, OrderStatus.CHECKOUT.value) or status.startswith("payment_"):
        raise InvalidTransition(f"Status {status} is set by its own operation")

    with order_locks.hold(order_key(order_id)):
        return _run(UpdateOrderStatus(order_id=order_id, status=status, changed_by=changed_by))


def mark_order_ready(order_id, changed_by=None) -> Order:
    return update_order_status(order_id, OrderStatus.READY_FOR_PICKUP.value, changed_by=changed_by)


def mark_order_delivered(order_id, changed_by=None) -> Order:
    return update_order_status(order_id, OrderStatus.IN_PROGRESS.value, changed_by=changed_by)


def mark_order_completed(order_id, changed_by=None) -> Order:
    return update_order_status(order_id, OrderStatus.COMPLETED.value, changed_by=changed_by)


def cancel_order(order_id, reason, cancelled_by, actor_role=ActorRole.CUSTOMER.value) -> Order:
    with order_locks.hold(order_key(order_id)):
        return _run(
            CancelOrder(
                order_id=order_id,
                reason=reason,
                cancelled_by=str(cancelled_by),
                actor_role=actor_role,
            )
        )


def process_refund(order_id, amount=None, reason=None, processed_by=None) -> Order:
    """Refund a completed order. Without an amount, everything still refundable is refunded."""
    with order_locks.hold(order_key(order_id)):
        if amount is None:
            order = load_order(order_id)
            amounts = order.payment_amounts
            amount = round(amounts.paid - amounts.refunded, 2)
        return _run(
            RefundOrder(
                order_id=order_id,
                amount=amount,
                reason=reason,
                processed_by=processed_by,
            )
        )


def process_return(
    order_id,
    condition,
    damage_notes=None,
    extra_charges=None,
    processed_by=None,
    returned_on=None,
) -> Order:
    with order_locks.hold(order_key(order_id)):
        return _run(
            ProcessReturn(
                order_id=order_id,
                condition=condition,
                damage_notes=damage_notes,
                extra_charges=_json(extra_charges or []),
                processed_by=processed_by,
                returned_on=returned_on,
            )
        )


def release_deposit(order_id, released_by=None) -> Order:
    with order_locks.hold(order_key(order_id)):
        return _run(ReleaseDeposit(order_id=order_id, released_by=released_by))


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------
def assign_order(order_id, assigned_to, assigned_by=None) -> Order:
    with order_locks.hold(order_key(order_id)):
        return _run(AssignOrder(order_id=order_id, assigned_to=assigned_to, assigned_by=assigned_by))


def add_internal_note(order_id, note, added_by) -> Order:
    with order_locks.hold(order_key(order_id)):
        return _run(AddInternalNote(order_id=order_id, note=note, added_by=str(added_by)))
