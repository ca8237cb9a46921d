"""Error taxonomy for the ordering domain.

Every error carries a protean-style ``messages`` dict (``{"field": ["text"]}``)
and subclasses the protean exception that matches its category, so callers
can catch either the specific error or the protean base class:

* validation (client-fixable)   -> ``ValidationError``
* not found                     -> ``ObjectNotFoundError``
* conflict (stale view / race)  -> ``InvalidStateError``
* external dependency failure   -> ``DependencyUnavailable``

Payment declines are not errors; they are the ``payment_failed`` state.
"""

from protean.exceptions import InvalidStateError, ObjectNotFoundError, ValidationError


class OrderingError(Exception):
    """Mixin giving every ordering error a stable code and a messages dict."""

    code = "ordering_error"
    field = "order"
    default_message = "The request could not be completed"

    def __init__(self, message: str | None = None, field: str | None = None, messages: dict | None = None):
        self.messages = messages or {field or self.field: [message or self.default_message]}
        Exception.__init__(self, self.messages)

    @property
    def message(self) -> str:
        return "; ".join(text for texts in self.messages.values() for text in texts)


# ---------------------------------------------------------------------------
# Validation errors
# ---------------------------------------------------------------------------
class InvalidQuantity(OrderingError, ValidationError):
    code = "invalid_quantity"
    field = "quantity"
    default_message = "Quantity must be at least 1 and not exceed available stock"


class IncompleteRefereeInfo(OrderingError, ValidationError):
    code = "incomplete_referee_info"
    field = "referee"
    default_message = "Rental items require a referee with name, email and phone"


class MissingFulfillmentMethod(OrderingError, ValidationError):
    code = "missing_fulfillment_method"
    field = "fulfillment"
    default_message = "A fulfillment method (pickup or delivery) is required"


class ItemNotFound(OrderingError, ValidationError):
    code = "item_not_found"
    field = "item_id"
    default_message = "Item not found in cart"


class InvalidItemDetails(OrderingError, ValidationError):
    code = "invalid_item_details"
    field = "details"
    default_message = "Item details are invalid for this item type"


class EmptyCart(OrderingError, ValidationError):
    code = "empty_cart"
    field = "cart"
    default_message = "Cart is empty"


class ProductUnavailable(OrderingError, ValidationError):
    code = "product_unavailable"
    field = "product_id"
    default_message = "Product is not available"


class PaymentReferenceMismatch(OrderingError, ValidationError):
    code = "payment_reference_mismatch"
    field = "reference"
    default_message = "Invalid payment reference"


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------
class CartNotFound(OrderingError, ObjectNotFoundError):
    code = "cart_not_found"
    field = "cart"
    default_message = "Cart not found"


class OrderNotFound(OrderingError, ObjectNotFoundError):
    code = "order_not_found"
    field = "order"
    default_message = "Order not found"


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------
class CartAlreadyExists(OrderingError, InvalidStateError):
    code = "cart_already_exists"
    field = "cart"
    default_message = "An open cart already exists for this customer"


class AlreadyCheckedOut(OrderingError, InvalidStateError):
    code = "already_checked_out"
    field = "status"
    default_message = "Order has already been checked out"


class InvalidTransition(OrderingError, InvalidStateError):
    code = "invalid_transition"
    field = "status"
    default_message = "Status transition is not allowed"


class ReturnNotClosed(InvalidTransition):
    code = "return_not_closed"
    field = "returns"
    default_message = "The rental return has not been recorded yet"


# ---------------------------------------------------------------------------
# External dependencies
# ---------------------------------------------------------------------------
class DependencyUnavailable(OrderingError):
    """A collaborator (catalogue, payment provider) failed or is unreachable.

    ``message`` is safe to show to callers; ``detail`` is for logs only.
    """

    code = "dependency_unavailable"
    field = "service"
    default_message = "A required service is temporarily unavailable, please try again"

    def __init__(self, dependency: str, detail: str = ""):
        super().__init__()
        self.dependency = dependency
        self.detail = detail
