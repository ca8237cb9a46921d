"""Domain events for the Order aggregate.

Events are immutable facts raised by the aggregate and dispatched after the
unit of work commits. They feed the projections (order summary, daily
stats) and the lifecycle subscriber that hands off to audit and
notification collaborators.
"""

from protean.fields import Boolean, Date, DateTime, Float, Identifier, Integer, String

from ordering.domain import ordering


# ---------------------------------------------------------------------------
# Cart phase
# ---------------------------------------------------------------------------
@ordering.event(part_of="Order")
class OrderCreated:
    """A customer's cart was opened; the order exists from this moment on."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    customer_id = Identifier(required=True)
    currency = String(default="NGN")
    created_at = DateTime(required=True)


@ordering.event(part_of="Order")
class CartItemAdded:
    """A line item was added to the cart, or merged into an existing purchase line."""

    __version__ = 1

    order_id = Identifier(required=True)
    item_id = Identifier(required=True)
    product_id = Identifier(required=True)
    item_type = String(required=True)
    quantity = Integer(required=True)
    merged = Boolean(default=False)
    item_count = Integer(required=True)
    order_type = String(required=True)
    subtotal = Float(required=True)
    total = Float(required=True)


@ordering.event(part_of="Order")
class CartItemUpdated:
    """Quantity, rental period or service schedule of a cart line changed."""

    __version__ = 1

    order_id = Identifier(required=True)
    item_id = Identifier(required=True)
    quantity = Integer(required=True)
    item_subtotal = Float(required=True)
    subtotal = Float(required=True)
    total = Float(required=True)


@ordering.event(part_of="Order")
class CartItemRemoved:
    __version__ = 1

    order_id = Identifier(required=True)
    item_id = Identifier(required=True)
    item_count = Integer(required=True)
    order_type = String(required=True)
    subtotal = Float(required=True)
    total = Float(required=True)


@ordering.event(part_of="Order")
class CartCleared:
    __version__ = 1

    order_id = Identifier(required=True)
    items_removed = Integer(required=True)


# ---------------------------------------------------------------------------
# Checkout and lifecycle
# ---------------------------------------------------------------------------
@ordering.event(part_of="Order")
class OrderPlaced:
    """The cart was sealed at checkout; items and pricing are frozen."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    customer_id = Identifier(required=True)
    order_type = String(required=True)
    item_count = Integer(required=True)
    fulfillment_method = String(required=True)
    subtotal = Float(required=True)
    total = Float(required=True)
    currency = String(required=True)
    placed_at = DateTime(required=True)


@ordering.event(part_of="Order")
class OrderStatusChanged:
    """Raised for every status transition, including checkout and cancellation."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    customer_id = Identifier(required=True)
    from_status = String(required=True)
    to_status = String(required=True)
    changed_by = String()
    total = Float()
    changed_at = DateTime(required=True)


@ordering.event(part_of="Order")
class OrderCancelled:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    customer_id = Identifier(required=True)
    previous_status = String(required=True)
    reason = String(required=True)
    cancelled_by = String(required=True)
    actor_role = String(required=True)
    refund_amount = Float(default=0.0)
    refund_status = String()
    payment_status = String()
    cancelled_at = DateTime(required=True)


@ordering.event(part_of="Order")
class OrderAssigned:
    __version__ = 1

    order_id = Identifier(required=True)
    assigned_to = String(required=True)
    assigned_by = String()
    assigned_at = DateTime(required=True)


@ordering.event(part_of="Order")
class InternalNoteAdded:
    __version__ = 1

    order_id = Identifier(required=True)
    note = String(required=True)
    added_by = String(required=True)
    added_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------
@ordering.event(part_of="Order")
class PaymentInitiated:
    __version__ = 1

    order_id = Identifier(required=True)
    method = String(required=True)
    reference = String(required=True)
    payment_url = String()
    amount = Float(required=True)
    initiated_at = DateTime(required=True)


@ordering.event(part_of="Order")
class PaymentConfirmed:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    reference = String(required=True)
    transaction_id = String()
    amount = Float(required=True)
    currency = String(required=True)
    confirmed_at = DateTime(required=True)


@ordering.event(part_of="Order")
class PaymentFailed:
    """The provider reported a decline. The order stays retryable."""

    __version__ = 1

    order_id = Identifier(required=True)
    reference = String(required=True)
    reason = String()
    failed_at = DateTime(required=True)


@ordering.event(part_of="Order")
class OrderRefunded:
    __version__ = 1

    order_id = Identifier(required=True)
    amount = Float(required=True)
    reason = String()
    payment_status = String(required=True)
    refunded_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# Rental returns
# ---------------------------------------------------------------------------
@ordering.event(part_of="Order")
class RentalReturnProcessed:
    __version__ = 1

    order_id = Identifier(required=True)
    condition = String(required=True)
    actual_return_date = Date(required=True)
    extra_charges_total = Float(default=0.0)
    processed_by = String()
    processed_at = DateTime(required=True)


@ordering.event(part_of="Order")
class DepositReleased:
    """The rental guarantee was released after the equipment came back."""

    __version__ = 1

    order_id = Identifier(required=True)
    released_by = String()
    released_at = DateTime(required=True)
