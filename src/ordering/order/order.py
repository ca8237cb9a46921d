"""Order aggregate (CQRS): cart, sealed order and lifecycle in one boundary.

A customer's cart is simply an Order in ``cart`` status. Checkout seals it:
items and pricing freeze and the order moves through payment, fulfillment
and, for rentals, the return of the equipment.

State Machine:
    CART -> CHECKOUT -> PAYMENT_PENDING -> PAYMENT_CONFIRMED -> PROCESSING
    PAYMENT_PENDING -> PAYMENT_FAILED -> PAYMENT_PENDING (retry)
    PROCESSING -> READY_FOR_PICKUP (pickup) | IN_PROGRESS (delivery / service)
    READY_FOR_PICKUP | IN_PROGRESS -> COMPLETED -> REFUNDED
    CANCELLED from CHECKOUT, PAYMENT_PENDING, PAYMENT_FAILED,
              PAYMENT_CONFIRMED, PROCESSING

Pricing is never edited by hand; every cart mutation recomputes it in full
from the line items.
"""

import json
import random
import string
from datetime import UTC, date, datetime, time
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    Date,
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    Text,
    ValueObject,
)
from protean.utils.reflection import declared_fields

from ordering.domain import ordering
from ordering.errors import (
    AlreadyCheckedOut,
    EmptyCart,
    IncompleteRefereeInfo,
    InvalidItemDetails,
    InvalidQuantity,
    InvalidTransition,
    ItemNotFound,
    MissingFulfillmentMethod,
    PaymentReferenceMismatch,
    ReturnNotClosed,
)
from ordering.order.events import (
    CartCleared,
    CartItemAdded,
    CartItemRemoved,
    CartItemUpdated,
    DepositReleased,
    InternalNoteAdded,
    OrderAssigned,
    OrderCancelled,
    OrderCreated,
    OrderPlaced,
    OrderRefunded,
    OrderStatusChanged,
    PaymentConfirmed,
    PaymentFailed,
    PaymentInitiated,
    RentalReturnProcessed,
)
from ordering.pricing import (
    ItemType,
    cancellation_refund,
    money,
    price_line,
    price_order,
    rental_duration,
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    CART = "cart"
    CHECKOUT = "checkout"
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_CONFIRMED = "payment_confirmed"
    PROCESSING = "processing"
    READY_FOR_PICKUP = "ready_for_pickup"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class OrderType(Enum):
    RENTAL = "rental"
    PURCHASE = "purchase"
    BOOKING = "booking"
    MIXED = "mixed"


class ItemStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERED = "delivered"
    RETURNED = "returned"
    CANCELLED = "cancelled"


class FulfillmentMethod(Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"


class PaymentMethod(Enum):
    PAYSTACK = "paystack"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"


class PaymentStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class TransactionType(Enum):
    PAYMENT = "payment"
    REFUND = "refund"


class TransactionStatus(Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ServiceLocationType(Enum):
    STUDIO = "studio"
    OUTDOOR = "outdoor"
    CLIENT_LOCATION = "client_location"


class ReturnCondition(Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    DAMAGED = "damaged"


class ActorRole(Enum):
    CUSTOMER = "customer"
    STAFF = "staff"
    ADMIN = "admin"
    SYSTEM = "system"


# State machine transition map
_VALID_TRANSITIONS = {
    OrderStatus.CART: {OrderStatus.CHECKOUT},
    OrderStatus.CHECKOUT: {OrderStatus.PAYMENT_PENDING, OrderStatus.CANCELLED},
    OrderStatus.PAYMENT_PENDING: {
        OrderStatus.PAYMENT_CONFIRMED,
        OrderStatus.PAYMENT_FAILED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.PAYMENT_FAILED: {OrderStatus.PAYMENT_PENDING, OrderStatus.CANCELLED},
    OrderStatus.PAYMENT_CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {
        OrderStatus.READY_FOR_PICKUP,
        OrderStatus.IN_PROGRESS,
        OrderStatus.CANCELLED,
    },
    OrderStatus.READY_FOR_PICKUP: {OrderStatus.COMPLETED},
    OrderStatus.IN_PROGRESS: {OrderStatus.COMPLETED},
    OrderStatus.COMPLETED: {OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: set(),  # Terminal
    OrderStatus.REFUNDED: set(),  # Terminal
}

CANCELLABLE_STATES = {status for status, targets in _VALID_TRANSITIONS.items() if OrderStatus.CANCELLED in targets}

# Workflow timestamp stamped when the order enters each status
_WORKFLOW_STAMPS = {
    OrderStatus.CHECKOUT: "placed_at",
    OrderStatus.PAYMENT_CONFIRMED: "confirmed_at",
    OrderStatus.READY_FOR_PICKUP: "prepared_at",
    OrderStatus.IN_PROGRESS: "delivered_at",
    OrderStatus.COMPLETED: "completed_at",
    OrderStatus.CANCELLED: "cancelled_at",
}

# Line item status that follows the order status
_ITEM_STATUS_FOR = {
    OrderStatus.PAYMENT_CONFIRMED: ItemStatus.CONFIRMED,
    OrderStatus.PROCESSING: ItemStatus.PREPARING,
    OrderStatus.READY_FOR_PICKUP: ItemStatus.READY,
    OrderStatus.IN_PROGRESS: ItemStatus.DELIVERED,
    OrderStatus.COMPLETED: ItemStatus.DELIVERED,
    OrderStatus.CANCELLED: ItemStatus.CANCELLED,
}

_TERMINAL_ITEM_STATUSES = {ItemStatus.DELIVERED.value, ItemStatus.RETURNED.value, ItemStatus.CANCELLED.value}

_RENTAL_FIELDS = {"start_date", "end_date", "pickup_time", "return_time", "referee"}
_SERVICE_FIELDS = {"date", "time", "duration", "location_type", "location_address", "special_requests"}


def generate_order_number(now: datetime | None = None) -> str:
    """Human readable order number: ``ORD-<epoch millis>-<5 random chars>``."""
    now = now or datetime.now(UTC)
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=5))
    return f"ORD-{int(now.timestamp() * 1000)}-{suffix}"


def cart_key_for(customer_id) -> str:
    return f"cart:{customer_id}"


def sealed_key_for(order_id) -> str:
    return f"order:{order_id}"


def _replace(value_object, **changes):
    """Return a copy of a value object with some fields changed."""
    values = {name: getattr(value_object, name) for name in declared_fields(value_object)}
    values.update(changes)
    return value_object.__class__(**values)


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@ordering.value_object(part_of="Order")
class ProductSnapshot:
    """Catalogue data copied onto a line item when it is added.

    Later catalogue edits never reach the item; ``stock`` is the ceiling the
    item's quantity was validated against.
    """

    name = String(required=True, max_length=255)
    sku = String(max_length=100)
    product_type = String(max_length=50)
    category = String(max_length=100)
    thumbnail = String(max_length=500)
    stock = Integer()


@ordering.value_object(part_of="Order")
class RefereeInfo:
    """The person who vouches for a rental in place of a cash deposit."""

    name = String(max_length=255)
    email = String(max_length=255)
    phone = String(max_length=50)

    @property
    def is_complete(self) -> bool:
        return not any(_blank(value) for value in (self.name, self.email, self.phone))


@ordering.value_object(part_of="Order")
class RentalDetails:
    start_date = Date(required=True)
    end_date = Date(required=True)
    pickup_time = String(max_length=10)
    return_time = String(max_length=10)
    duration = Integer(min_value=1)
    daily_rate = Float(min_value=0.0)
    discount_percent = Float(default=0.0)
    referee = ValueObject(RefereeInfo)


@ordering.value_object(part_of="Order")
class ServiceDetails:
    date = Date(required=True)
    time = String(required=True, max_length=10)
    duration = Integer(min_value=1)  # minutes
    location_type = String(choices=ServiceLocationType, default=ServiceLocationType.STUDIO.value)
    location_address = String(max_length=500)
    special_requests = Text()  # JSON: list of strings

    @property
    def starts_at(self) -> datetime:
        """Scheduled start, interpreted in UTC."""
        return datetime.combine(self.date, time.fromisoformat(self.time), tzinfo=UTC)


@ordering.value_object(part_of="Order")
class OrderPricing:
    """Financial summary recomputed from the line items.

    ``total = subtotal - discount_total + tax_total + shipping_total + security_deposit``
    """

    subtotal = Float(default=0.0)
    discount_total = Float(default=0.0)
    tax_total = Float(default=0.0)
    shipping_total = Float(default=0.0)
    security_deposit = Float(default=0.0)
    total = Float(default=0.0)
    currency = String(max_length=3, default="NGN")
    tax_rate = Float(default=0.0)


@ordering.value_object(part_of="Order")
class Workflow:
    placed_at = DateTime()
    confirmed_at = DateTime()
    prepared_at = DateTime()
    delivered_at = DateTime()
    completed_at = DateTime()
    cancelled_at = DateTime()


@ordering.value_object(part_of="Order")
class PaymentAmounts:
    paid = Float(default=0.0)
    refunded = Float(default=0.0)
    pending = Float(default=0.0)


@ordering.value_object(part_of="Order")
class Fulfillment:
    method = String(choices=FulfillmentMethod, required=True)
    location = String(max_length=255)
    address = String(max_length=500)
    scheduled_date = Date()
    scheduled_time = String(max_length=10)
    actual_date = Date()
    actual_time = String(max_length=10)
    instructions = String(max_length=1000)
    notes = String(max_length=1000)


@ordering.value_object(part_of="Order")
class ReferrerInfo:
    name = String(max_length=255)
    phone = String(max_length=50)
    email = String(max_length=255)
    relationship = String(max_length=100)


@ordering.value_object(part_of="Order")
class Cancellation:
    reason = String(required=True, max_length=1000)
    cancelled_by = String(required=True, max_length=255)
    actor_role = String(choices=ActorRole, required=True)
    cancelled_at = DateTime(required=True)
    refund_amount = Float(default=0.0)
    refund_status = String(max_length=20)


@ordering.value_object(part_of="Order")
class RentalReturn:
    """Return record for rented equipment, opened when the order completes."""

    expected_return_date = Date(required=True)
    actual_return_date = Date()
    condition = String(choices=ReturnCondition)
    damage_notes = String(max_length=2000)
    extra_charges = Text()  # JSON: list of {"reason", "amount"}
    extra_charges_total = Float(default=0.0)
    processed_by = String(max_length=255)
    deposit_returned = Boolean(default=False)
    deposit_returned_at = DateTime()

    @property
    def is_closed(self) -> bool:
        return self.actual_return_date is not None


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@ordering.entity(part_of="Order")
class OrderItem:
    """A line in the order: a purchase, a rental booking or a service booking.

    Exactly one of ``rental`` / ``service`` is set for rental and service
    items; purchases carry neither.
    """

    product_id = Identifier(required=True)
    product = ValueObject(ProductSnapshot)
    item_type = String(choices=ItemType, required=True)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)
    base_total = Float(default=0.0)
    discount_amount = Float(default=0.0)
    subtotal = Float(default=0.0)
    rental = ValueObject(RentalDetails)
    service = ValueObject(ServiceDetails)
    item_status = String(choices=ItemStatus, default=ItemStatus.PENDING.value)
    added_at = DateTime()


@ordering.entity(part_of="Order")
class PaymentTransaction:
    transaction_type = String(choices=TransactionType, required=True)
    amount = Float(required=True)
    reference = String(max_length=100)
    transaction_id = String(max_length=255)
    status = String(choices=TransactionStatus, required=True)
    note = String(max_length=500)
    recorded_at = DateTime(required=True)


@ordering.entity(part_of="Order")
class InternalNote:
    note = String(required=True, max_length=2000)
    added_by = String(required=True, max_length=255)
    added_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# Line item validation helpers
# ---------------------------------------------------------------------------
def _build_referee(data) -> RefereeInfo:
    if isinstance(data, RefereeInfo):
        referee = data
    else:
        data = data or {}
        referee = RefereeInfo(name=data.get("name"), email=data.get("email"), phone=data.get("phone"))
    if not referee.is_complete:
        raise IncompleteRefereeInfo()
    return referee


def _build_rental(data: dict, daily_rate: float) -> RentalDetails:
    unknown = set(data) - _RENTAL_FIELDS
    if unknown:
        raise InvalidItemDetails(f"Unexpected rental fields: {', '.join(sorted(unknown))}", field="rental")
    start_date, end_date = data.get("start_date"), data.get("end_date")
    if start_date is None or end_date is None:
        raise InvalidItemDetails("Rental start and end dates are required", field="rental")

    referee = _build_referee(data.get("referee"))
    duration = rental_duration(start_date, end_date)
    line = price_line(ItemType.RENTAL, 1, daily_rate, duration)
    return RentalDetails(
        start_date=start_date,
        end_date=end_date,
        pickup_time=data.get("pickup_time"),
        return_time=data.get("return_time"),
        duration=duration,
        daily_rate=money(daily_rate),
        discount_percent=line.discount_percent,
        referee=referee,
    )


def _build_service(data: dict) -> ServiceDetails:
    unknown = set(data) - _SERVICE_FIELDS
    if unknown:
        raise InvalidItemDetails(f"Unexpected service fields: {', '.join(sorted(unknown))}", field="service")
    for name in ("date", "time", "duration"):
        if _blank(data.get(name)):
            raise InvalidItemDetails(f"Service {name} is required", field="service")
    if data["duration"] < 1:
        raise InvalidItemDetails("Service duration must be positive", field="service")
    try:
        time.fromisoformat(data["time"])
    except (TypeError, ValueError):
        raise InvalidItemDetails("Service time must be HH:MM", field="service") from None

    location_type = data.get("location_type") or ServiceLocationType.STUDIO.value
    if location_type == ServiceLocationType.CLIENT_LOCATION.value and _blank(data.get("location_address")):
        raise InvalidItemDetails("An address is required for services at the client's location", field="service")

    return ServiceDetails(
        date=data["date"],
        time=data["time"],
        duration=data["duration"],
        location_type=location_type,
        location_address=data.get("location_address"),
        special_requests=json.dumps(list(data.get("special_requests") or [])),
    )


def _check_stock(quantity: int, stock: int | None) -> None:
    if stock is not None and quantity > stock:
        raise InvalidQuantity(f"Only {stock} unit(s) available")


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@ordering.aggregate
class Order:
    order_number = String(required=True, max_length=40, unique=True)
    customer_id = Identifier(required=True)
    # ``cart:<customer_id>`` while in cart, ``order:<id>`` once sealed. The
    # unique constraint allows at most one open cart per customer.
    cart_key = String(required=True, max_length=120, unique=True)
    order_type = String(choices=OrderType, default=OrderType.PURCHASE.value)
    status = String(choices=OrderStatus, default=OrderStatus.CART.value)
    items = HasMany(OrderItem)
    pricing = ValueObject(OrderPricing)
    workflow = ValueObject(Workflow)
    payment_method = String(choices=PaymentMethod)
    payment_status = String(choices=PaymentStatus, default=PaymentStatus.PENDING.value)
    payment_reference = String(max_length=100)
    payment_url = String(max_length=500)
    payment_amounts = ValueObject(PaymentAmounts)
    transactions = HasMany(PaymentTransaction)
    fulfillment = ValueObject(Fulfillment)
    referrer_info = ValueObject(ReferrerInfo)
    customer_notes = String(max_length=1000)
    cancellation = ValueObject(Cancellation)
    returns = ValueObject(RentalReturn)
    assigned_to = String(max_length=255)
    internal_notes = HasMany(InternalNote)
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def total_is_sum_of_components(self):
        p = self.pricing
        if p is None:
            return
        expected = money(p.subtotal - p.discount_total + p.tax_total + p.shipping_total + p.security_deposit)
        if abs(expected - p.total) > 0.005:
            raise ValidationError({"pricing": ["Order total does not match its components"]})

    @invariant.post
    def cart_key_tracks_status(self):
        if self.status == OrderStatus.CART.value:
            expected = cart_key_for(self.customer_id)
        else:
            expected = sealed_key_for(self.id)
        if self.cart_key != expected:
            raise ValidationError({"cart_key": ["Cart key does not match the order status"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def open_cart(cls, customer_id, currency="NGN", tax_rate=0.0):
        """Create an empty cart for a customer."""
        now = datetime.now(UTC)
        order = cls(
            order_number=generate_order_number(now),
            customer_id=customer_id,
            cart_key=cart_key_for(customer_id),
            status=OrderStatus.CART.value,
            order_type=OrderType.PURCHASE.value,
            pricing=OrderPricing(currency=currency, tax_rate=tax_rate),
            workflow=Workflow(),
            payment_amounts=PaymentAmounts(),
            created_at=now,
            updated_at=now,
        )
        order.raise_(
            OrderCreated(
                order_id=str(order.id),
                order_number=order.order_number,
                customer_id=str(customer_id),
                currency=currency,
                created_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Derived views
    # -------------------------------------------------------------------
    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def rental_items(self):
        return [item for item in self.items if item.item_type == ItemType.RENTAL.value]

    @property
    def can_be_cancelled(self) -> bool:
        return OrderStatus(self.status) in CANCELLABLE_STATES

    def is_overdue(self, today: date | None = None) -> bool:
        """A rental whose equipment is out past its end date.

        Equipment is out only while the return record is open; orders that
        never reached the customer are not overdue.
        """
        if not self.rental_items or self.returns is None or self.returns.is_closed:
            return False
        today = today or datetime.now(UTC).date()
        return any(item.rental.end_date < today for item in self.rental_items)

    def _derive_order_type(self) -> str:
        kinds = {item.item_type for item in self.items}
        if len(kinds) > 1:
            return OrderType.MIXED.value
        if kinds == {ItemType.RENTAL.value}:
            return OrderType.RENTAL.value
        if kinds == {ItemType.SERVICE.value}:
            return OrderType.BOOKING.value
        return OrderType.PURCHASE.value

    def _find_item(self, item_id) -> OrderItem:
        item = next((i for i in self.items if str(i.id) == str(item_id)), None)
        if item is None:
            raise ItemNotFound()
        return item

    def _recompute_pricing(self):
        """Recompute order pricing in full from the line items."""
        current = self.pricing or OrderPricing()
        summary = price_order(
            (item.subtotal for item in self.items),
            currency=current.currency,
            discount_total=current.discount_total,
            tax_rate=current.tax_rate,
            shipping_total=current.shipping_total,
            security_deposit=0.0,
        )
        self.pricing = OrderPricing(**summary.as_dict(), tax_rate=current.tax_rate)
        self.order_type = self._derive_order_type()

    def _assert_in_cart(self):
        if self.status != OrderStatus.CART.value:
            raise AlreadyCheckedOut()

    # -------------------------------------------------------------------
    # Cart management (only in CART state)
    # -------------------------------------------------------------------
    def add_item(self, product_id, product, item_type, quantity, unit_price, rental=None, service=None):
        """Add a line item, or merge a purchase into the existing line for the product.

        Args:
            product_id: Catalogue identifier of the product.
            product: ProductSnapshot taken from the catalogue.
            item_type: ``purchase``, ``rental`` or ``service``.
            quantity: Units requested (at least 1).
            unit_price: Unit price, or daily rate for rentals.
            rental: Dict with start_date, end_date, pickup_time, return_time, referee.
            service: Dict with date, time, duration, location_type, location_address, special_requests.
        """
        self._assert_in_cart()
        item_type = ItemType(item_type)

        if quantity is None or quantity < 1:
            raise InvalidQuantity("Quantity must be at least 1")
        if item_type != ItemType.RENTAL and rental:
            raise InvalidItemDetails("Only rental items take rental details", field="rental")
        if item_type != ItemType.SERVICE and service:
            raise InvalidItemDetails("Only service items take service details", field="service")

        now = datetime.now(UTC)

        if item_type == ItemType.PURCHASE:
            existing = next(
                (
                    i
                    for i in self.items
                    if i.item_type == ItemType.PURCHASE.value and str(i.product_id) == str(product_id)
                ),
                None,
            )
            if existing is not None:
                new_quantity = existing.quantity + quantity
                _check_stock(new_quantity, existing.product.stock if existing.product else None)
                line = price_line(ItemType.PURCHASE, new_quantity, existing.unit_price)
                existing.quantity = new_quantity
                existing.base_total = line.base_total
                existing.subtotal = line.subtotal
                self._recompute_pricing()
                self.updated_at = now
                self._raise_item_added(existing, quantity, merged=True)
                return existing

        rental_details = service_details = None
        if item_type == ItemType.RENTAL:
            if not rental:
                raise IncompleteRefereeInfo("Rental items require a rental period and referee")
            rental_details = _build_rental(rental, unit_price)
            line = price_line(item_type, quantity, unit_price, rental_details.duration)
        elif item_type == ItemType.SERVICE:
            if not service:
                raise InvalidItemDetails("Service items require a date, time and duration", field="service")
            service_details = _build_service(service)
            line = price_line(item_type, quantity, unit_price, service_details.duration)
        else:
            line = price_line(item_type, quantity, unit_price)

        if item_type != ItemType.SERVICE:
            _check_stock(quantity, product.stock if product else None)

        item = OrderItem(
            product_id=product_id,
            product=product,
            item_type=item_type.value,
            quantity=quantity,
            unit_price=line.unit_price,
            base_total=line.base_total,
            discount_amount=line.discount_amount,
            subtotal=line.subtotal,
            rental=rental_details,
            service=service_details,
            added_at=now,
        )
        self.add_items(item)
        self._recompute_pricing()
        self.updated_at = now
        self._raise_item_added(item, quantity, merged=False)
        return item

    def _raise_item_added(self, item, quantity, merged):
        self.raise_(
            CartItemAdded(
                order_id=str(self.id),
                item_id=str(item.id),
                product_id=str(item.product_id),
                item_type=item.item_type,
                quantity=quantity,
                merged=merged,
                item_count=len(self.items),
                order_type=self.order_type,
                subtotal=self.pricing.subtotal,
                total=self.pricing.total,
            )
        )

    def update_item(self, item_id, changes: dict):
        """Replace detail fields of a line item and re-price it.

        ``changes`` may carry ``quantity`` plus the rental fields (dates,
        times, referee) or the service fields (date, time, duration,
        location, special requests) matching the item's type.
        """
        self._assert_in_cart()
        item = self._find_item(item_id)
        changes = dict(changes or {})

        quantity = changes.pop("quantity", None)
        quantity = item.quantity if quantity is None else quantity
        if quantity < 1:
            raise InvalidQuantity("Quantity must be at least 1")

        item_type = ItemType(item.item_type)
        rental_details, service_details = item.rental, item.service

        if item_type == ItemType.RENTAL:
            if set(changes) & _SERVICE_FIELDS - _RENTAL_FIELDS:
                raise InvalidItemDetails("Rental items do not take service details", field="service")
            if changes:
                current = {
                    "start_date": item.rental.start_date,
                    "end_date": item.rental.end_date,
                    "pickup_time": item.rental.pickup_time,
                    "return_time": item.rental.return_time,
                    "referee": item.rental.referee,
                }
                current.update(changes)
                # Dates, duration, discount and subtotal are re-derived together
                rental_details = _build_rental(current, item.rental.daily_rate)
            line = price_line(item_type, quantity, rental_details.daily_rate, rental_details.duration)
        elif item_type == ItemType.SERVICE:
            if set(changes) - _SERVICE_FIELDS:
                raise InvalidItemDetails("Service items only take service details", field="service")
            if changes:
                current = {
                    "date": item.service.date,
                    "time": item.service.time,
                    "duration": item.service.duration,
                    "location_type": item.service.location_type,
                    "location_address": item.service.location_address,
                    "special_requests": json.loads(item.service.special_requests or "[]"),
                }
                current.update(changes)
                service_details = _build_service(current)
            line = price_line(item_type, quantity, item.unit_price, service_details.duration)
        else:
            if changes:
                raise InvalidItemDetails("Purchase items only accept a quantity change")
            line = price_line(item_type, quantity, item.unit_price)

        if item_type != ItemType.SERVICE:
            _check_stock(quantity, item.product.stock if item.product else None)

        with atomic_change(self):
            item.quantity = quantity
            item.rental = rental_details
            item.service = service_details
            item.base_total = line.base_total
            item.discount_amount = line.discount_amount
            item.subtotal = line.subtotal
            self._recompute_pricing()
            self.updated_at = datetime.now(UTC)

        self.raise_(
            CartItemUpdated(
                order_id=str(self.id),
                item_id=str(item.id),
                quantity=quantity,
                item_subtotal=item.subtotal,
                subtotal=self.pricing.subtotal,
                total=self.pricing.total,
            )
        )
        return item

    def remove_item(self, item_id):
        self._assert_in_cart()
        item = self._find_item(item_id)

        self.remove_items(item)
        self._recompute_pricing()
        self.updated_at = datetime.now(UTC)

        self.raise_(
            CartItemRemoved(
                order_id=str(self.id),
                item_id=str(item_id),
                item_count=len(self.items),
                order_type=self.order_type,
                subtotal=self.pricing.subtotal,
                total=self.pricing.total,
            )
        )

    def clear_items(self):
        """Remove every line item; pricing drops to zero."""
        self._assert_in_cart()
        removed = len(self.items)
        if removed:
            self.remove_items(list(self.items))
        self._recompute_pricing()
        self.updated_at = datetime.now(UTC)

        self.raise_(CartCleared(order_id=str(self.id), items_removed=removed))

    # -------------------------------------------------------------------
    # State transition helpers
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target: OrderStatus):
        current = OrderStatus(self.status)
        if target not in _VALID_TRANSITIONS.get(current, set()):
            raise InvalidTransition(f"Cannot transition from {current.value} to {target.value}")

    def _enter(self, target: OrderStatus, now: datetime, changed_by=None):
        """Move to ``target``: stamp the workflow, cascade item statuses and raise the change.

        Callers validate the transition before mutating anything.
        """
        previous = self.status
        self.status = target.value

        stamp = _WORKFLOW_STAMPS.get(target)
        workflow = self.workflow or Workflow()
        if stamp and getattr(workflow, stamp) is None:
            self.workflow = _replace(workflow, **{stamp: now})

        item_status = _ITEM_STATUS_FOR.get(target)
        if item_status is not None:
            for item in self.items:
                if target == OrderStatus.CANCELLED and item.item_status in _TERMINAL_ITEM_STATUSES:
                    continue
                if item.item_status == ItemStatus.RETURNED.value:
                    continue
                item.item_status = item_status.value

        self.updated_at = now
        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                order_number=self.order_number,
                customer_id=str(self.customer_id),
                from_status=previous,
                to_status=target.value,
                changed_by=changed_by,
                total=self.pricing.total if self.pricing else 0.0,
                changed_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Checkout
    # -------------------------------------------------------------------
    def checkout(
        self,
        fulfillment: dict | None,
        referrer_info: dict | None = None,
        notes=None,
        delivery_fee=0.0,
        pickup_location=None,
    ):
        """Seal the cart: validate, freeze pricing and move to CHECKOUT."""
        self._assert_in_cart()
        now = datetime.now(UTC)

        if not self.items:
            raise EmptyCart()
        for item in self.rental_items:
            if item.rental.referee is None or not item.rental.referee.is_complete:
                raise IncompleteRefereeInfo()
        for item in self.items:
            if item.item_type == ItemType.SERVICE.value and item.service.starts_at <= now:
                raise InvalidItemDetails("Service bookings must be scheduled in the future", field="service")

        fulfillment = dict(fulfillment or {})
        method = fulfillment.get("method")
        if _blank(method):
            raise MissingFulfillmentMethod()
        try:
            method = FulfillmentMethod(method)
        except ValueError:
            raise MissingFulfillmentMethod(f"Unknown fulfillment method: {method}") from None
        if method == FulfillmentMethod.PICKUP and _blank(fulfillment.get("location")):
            fulfillment["location"] = pickup_location

        with atomic_change(self):
            self.fulfillment = Fulfillment(**fulfillment)
            if referrer_info:
                self.referrer_info = ReferrerInfo(**referrer_info)
            self.customer_notes = notes
            shipping = money(delivery_fee) if method == FulfillmentMethod.DELIVERY else 0.0
            self.pricing = _replace(self.pricing, shipping_total=shipping)
            self._recompute_pricing()
            self.cart_key = sealed_key_for(self.id)
            self._enter(OrderStatus.CHECKOUT, now, changed_by=str(self.customer_id))

        self.raise_(
            OrderPlaced(
                order_id=str(self.id),
                order_number=self.order_number,
                customer_id=str(self.customer_id),
                order_type=self.order_type,
                item_count=self.item_count,
                fulfillment_method=method.value,
                subtotal=self.pricing.subtotal,
                total=self.pricing.total,
                currency=self.pricing.currency,
                placed_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Payment
    # -------------------------------------------------------------------
    def ensure_payable(self):
        """Raise unless a payment attempt may start now (CHECKOUT, or retry after a failure)."""
        if self.status == OrderStatus.CART.value:
            raise InvalidTransition("Checkout must be completed before payment")
        self._assert_can_transition(OrderStatus.PAYMENT_PENDING)

    def initiate_payment(self, method, reference, payment_url=None):
        """Record a payment attempt; allowed from CHECKOUT or after a failed attempt."""
        self.ensure_payable()
        method = PaymentMethod(method)
        now = datetime.now(UTC)

        with atomic_change(self):
            self.payment_method = method.value
            self.payment_reference = reference
            self.payment_url = payment_url
            self.payment_status = PaymentStatus.PROCESSING.value
            self.payment_amounts = _replace(
                self.payment_amounts or PaymentAmounts(),
                pending=money(self.pricing.total - (self.payment_amounts.paid if self.payment_amounts else 0.0)),
            )
            self._enter(OrderStatus.PAYMENT_PENDING, now)

        self.raise_(
            PaymentInitiated(
                order_id=str(self.id),
                method=method.value,
                reference=reference,
                payment_url=payment_url,
                amount=self.pricing.total,
                initiated_at=now,
            )
        )

    def confirm_payment(self, reference, succeeded, transaction_id=None, amount=None, failure_reason=None) -> bool:
        """Apply the provider's verdict on a payment attempt.

        A decline moves the order to PAYMENT_FAILED; it is not an error.
        Returns False when the confirmation repeats one already applied.
        """
        if not reference or reference != self.payment_reference:
            raise PaymentReferenceMismatch()

        status = OrderStatus(self.status)
        if succeeded and self.payment_status == PaymentStatus.COMPLETED.value:
            return False
        if not succeeded and status in (OrderStatus.PAYMENT_FAILED, OrderStatus.CANCELLED):
            return False

        now = datetime.now(UTC)
        if status == OrderStatus.CANCELLED:
            return self._record_late_payment(reference, transaction_id, amount, now)
        if succeeded:
            self._assert_can_transition(OrderStatus.PAYMENT_CONFIRMED)
            amount = money(self.pricing.total if amount is None else amount)
            with atomic_change(self):
                paid = money(self.payment_amounts.paid + amount)
                self.payment_amounts = _replace(
                    self.payment_amounts, paid=paid, pending=money(max(self.pricing.total - paid, 0.0))
                )
                self.payment_status = PaymentStatus.COMPLETED.value
                self.add_transactions(
                    PaymentTransaction(
                        transaction_type=TransactionType.PAYMENT.value,
                        amount=amount,
                        reference=reference,
                        transaction_id=transaction_id,
                        status=TransactionStatus.SUCCEEDED.value,
                        recorded_at=now,
                    )
                )
                self._enter(OrderStatus.PAYMENT_CONFIRMED, now, changed_by="payment_provider")
            self.raise_(
                PaymentConfirmed(
                    order_id=str(self.id),
                    order_number=self.order_number,
                    reference=reference,
                    transaction_id=transaction_id,
                    amount=amount,
                    currency=self.pricing.currency,
                    confirmed_at=now,
                )
            )
            return True

        self._assert_can_transition(OrderStatus.PAYMENT_FAILED)
        with atomic_change(self):
            self.payment_status = PaymentStatus.FAILED.value
            self.add_transactions(
                PaymentTransaction(
                    transaction_type=TransactionType.PAYMENT.value,
                    amount=money(self.pricing.total if amount is None else amount),
                    reference=reference,
                    transaction_id=transaction_id,
                    status=TransactionStatus.FAILED.value,
                    note=failure_reason,
                    recorded_at=now,
                )
            )
            self._enter(OrderStatus.PAYMENT_FAILED, now, changed_by="payment_provider")
        self.raise_(
            PaymentFailed(
                order_id=str(self.id),
                reference=reference,
                reason=failure_reason,
                failed_at=now,
            )
        )
        return True

    def _record_late_payment(self, reference, transaction_id, amount, now) -> bool:
        """Money captured after the order was cancelled is owed back in full."""
        already_recorded = any(
            t.transaction_type == TransactionType.PAYMENT.value
            and t.status == TransactionStatus.SUCCEEDED.value
            and t.reference == reference
            for t in self.transactions
        )
        if already_recorded:
            return False

        amount = money(self.pricing.total if amount is None else amount)
        amounts = self.payment_amounts or PaymentAmounts()
        with atomic_change(self):
            self.payment_amounts = _replace(
                amounts,
                paid=money(amounts.paid + amount),
                refunded=money(amounts.refunded + amount),
                pending=0.0,
            )
            self.payment_status = PaymentStatus.REFUNDED.value
            self.cancellation = _replace(
                self.cancellation,
                refund_amount=money((self.cancellation.refund_amount or 0.0) + amount),
                refund_status="pending",
            )
            self.add_transactions(
                PaymentTransaction(
                    transaction_type=TransactionType.PAYMENT.value,
                    amount=amount,
                    reference=reference,
                    transaction_id=transaction_id,
                    status=TransactionStatus.SUCCEEDED.value,
                    recorded_at=now,
                )
            )
            self.add_transactions(
                PaymentTransaction(
                    transaction_type=TransactionType.REFUND.value,
                    amount=amount,
                    reference=reference,
                    status=TransactionStatus.PENDING.value,
                    note="Payment received after cancellation",
                    recorded_at=now,
                )
            )
            self.updated_at = now

        self.raise_(
            PaymentConfirmed(
                order_id=str(self.id),
                order_number=self.order_number,
                reference=reference,
                transaction_id=transaction_id,
                amount=amount,
                currency=self.pricing.currency,
                confirmed_at=now,
            )
        )
        self.raise_(
            OrderRefunded(
                order_id=str(self.id),
                amount=amount,
                reason="Payment received after cancellation",
                payment_status=self.payment_status,
                refunded_at=now,
            )
        )
        return True

    # -------------------------------------------------------------------
    # Fulfillment lifecycle
    # -------------------------------------------------------------------
    def start_processing(self, changed_by=None):
        self._assert_can_transition(OrderStatus.PROCESSING)
        self._enter(OrderStatus.PROCESSING, datetime.now(UTC), changed_by)

    def mark_ready(self, changed_by=None):
        """Equipment or goods are ready to be collected at the pickup location."""
        self._assert_can_transition(OrderStatus.READY_FOR_PICKUP)
        if self.fulfillment is None or self.fulfillment.method != FulfillmentMethod.PICKUP.value:
            raise InvalidTransition("Only pickup orders can be marked ready for pickup")
        self._enter(OrderStatus.READY_FOR_PICKUP, datetime.now(UTC), changed_by)

    def mark_delivered(self, changed_by=None):
        """Delivery dispatched or service under way."""
        self._assert_can_transition(OrderStatus.IN_PROGRESS)
        is_delivery = self.fulfillment is not None and self.fulfillment.method == FulfillmentMethod.DELIVERY.value
        has_service = any(item.item_type == ItemType.SERVICE.value for item in self.items)
        if not (is_delivery or has_service):
            raise InvalidTransition("Only delivery or service orders can move to in progress")
        self._enter(OrderStatus.IN_PROGRESS, datetime.now(UTC), changed_by)

    def mark_completed(self, changed_by=None):
        self._assert_can_transition(OrderStatus.COMPLETED)
        now = datetime.now(UTC)
        with atomic_change(self):
            self.fulfillment = _replace(self.fulfillment, actual_date=now.date(), actual_time=now.strftime("%H:%M"))
            if self.rental_items and self.returns is None:
                self.returns = RentalReturn(
                    expected_return_date=max(item.rental.end_date for item in self.rental_items),
                    extra_charges=json.dumps([]),
                )
            self._enter(OrderStatus.COMPLETED, now, changed_by)

    # -------------------------------------------------------------------
    # Cancellation and refunds
    # -------------------------------------------------------------------
    def cancel(self, reason, cancelled_by, actor_role=ActorRole.CUSTOMER.value, fee_percent=0.0):
        """Cancel before fulfillment completes and work out the refund owed."""
        current = OrderStatus(self.status)
        if current == OrderStatus.CART:
            raise InvalidTransition("A cart cannot be cancelled; clear it instead")
        self._assert_can_transition(OrderStatus.CANCELLED)

        now = datetime.now(UTC)
        amounts = self.payment_amounts or PaymentAmounts()
        refund = cancellation_refund(amounts.paid, current == OrderStatus.PROCESSING, fee_percent)

        with atomic_change(self):
            self.cancellation = Cancellation(
                reason=reason,
                cancelled_by=str(cancelled_by),
                actor_role=ActorRole(actor_role).value,
                cancelled_at=now,
                refund_amount=refund,
                refund_status="pending" if refund > 0 else None,
            )
            if refund > 0:
                self.payment_amounts = _replace(amounts, refunded=money(amounts.refunded + refund), pending=0.0)
                self.payment_status = (
                    PaymentStatus.REFUNDED.value if refund >= amounts.paid else PaymentStatus.PARTIALLY_REFUNDED.value
                )
                self.add_transactions(
                    PaymentTransaction(
                        transaction_type=TransactionType.REFUND.value,
                        amount=refund,
                        reference=self.payment_reference,
                        status=TransactionStatus.PENDING.value,
                        note=reason,
                        recorded_at=now,
                    )
                )
            else:
                self.payment_amounts = _replace(amounts, pending=0.0)
            self._enter(OrderStatus.CANCELLED, now, changed_by=str(cancelled_by))

        self.raise_(
            OrderCancelled(
                order_id=str(self.id),
                order_number=self.order_number,
                customer_id=str(self.customer_id),
                previous_status=current.value,
                reason=reason,
                cancelled_by=str(cancelled_by),
                actor_role=self.cancellation.actor_role,
                refund_amount=refund,
                refund_status=self.cancellation.refund_status,
                payment_status=self.payment_status,
                cancelled_at=now,
            )
        )

    def refund(self, amount, reason=None, processed_by=None):
        """Refund a completed order, in full or in part."""
        self._assert_can_transition(OrderStatus.REFUNDED)
        amounts = self.payment_amounts or PaymentAmounts()
        refundable = money(amounts.paid - amounts.refunded)
        if amount is None or amount <= 0:
            raise ValidationError({"amount": ["Refund amount must be positive"]})
        if money(amount) > refundable:
            raise ValidationError({"amount": [f"Refund amount cannot exceed {refundable:.2f}"]})

        now = datetime.now(UTC)
        amount = money(amount)
        refunded = money(amounts.refunded + amount)
        fully_refunded = refunded >= amounts.paid
        payment_status = PaymentStatus.REFUNDED.value if fully_refunded else PaymentStatus.PARTIALLY_REFUNDED.value

        with atomic_change(self):
            self.payment_amounts = _replace(amounts, refunded=refunded)
            self.payment_status = payment_status
            self.add_transactions(
                PaymentTransaction(
                    transaction_type=TransactionType.REFUND.value,
                    amount=amount,
                    reference=self.payment_reference,
                    status=TransactionStatus.SUCCEEDED.value,
                    note=reason,
                    recorded_at=now,
                )
            )
            self._enter(OrderStatus.REFUNDED, now, changed_by=processed_by)

        self.raise_(
            OrderRefunded(
                order_id=str(self.id),
                amount=amount,
                reason=reason,
                payment_status=payment_status,
                refunded_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Rental returns
    # -------------------------------------------------------------------
    def process_return(self, condition, damage_notes=None, extra_charges=None, processed_by=None, returned_on=None):
        """Record the equipment coming back and any extra charges."""
        if self.returns is None:
            raise InvalidTransition("This order has no open rental return")
        if self.returns.is_closed:
            raise InvalidTransition("The rental return has already been processed")

        try:
            condition = ReturnCondition(condition)
        except ValueError:
            raise ValidationError({"condition": [f"Unknown return condition: {condition}"]}) from None
        charges = []
        for charge in extra_charges or []:
            charge_amount = charge.get("amount")
            if _blank(charge.get("reason")) or charge_amount is None or charge_amount < 0:
                raise ValidationError({"extra_charges": ["Each extra charge needs a reason and a non-negative amount"]})
            charges.append({"reason": charge["reason"], "amount": money(charge_amount)})
        charges_total = money(sum(charge["amount"] for charge in charges))

        now = datetime.now(UTC)
        returned_on = returned_on or now.date()
        with atomic_change(self):
            self.returns = _replace(
                self.returns,
                actual_return_date=returned_on,
                condition=condition.value,
                damage_notes=damage_notes,
                extra_charges=json.dumps(charges),
                extra_charges_total=charges_total,
                processed_by=processed_by,
            )
            if charges_total:
                amounts = self.payment_amounts or PaymentAmounts()
                self.payment_amounts = _replace(amounts, pending=money(amounts.pending + charges_total))
            for item in self.rental_items:
                item.item_status = ItemStatus.RETURNED.value
            self.updated_at = now

        self.raise_(
            RentalReturnProcessed(
                order_id=str(self.id),
                condition=condition.value,
                actual_return_date=returned_on,
                extra_charges_total=charges_total,
                processed_by=processed_by,
                processed_at=now,
            )
        )

    def release_deposit(self, released_by=None):
        """Release the rental guarantee once the return is closed. Happens once."""
        if self.returns is None:
            raise InvalidTransition("This order has no rental return")
        if not self.returns.is_closed:
            raise ReturnNotClosed()
        if self.returns.deposit_returned:
            raise InvalidTransition("The rental guarantee has already been released")

        now = datetime.now(UTC)
        self.returns = _replace(self.returns, deposit_returned=True, deposit_returned_at=now)
        self.updated_at = now

        self.raise_(DepositReleased(order_id=str(self.id), released_by=released_by, released_at=now))

    # -------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------
    def assign(self, staff_member, assigned_by=None):
        if self.status == OrderStatus.CART.value:
            raise InvalidTransition("Carts cannot be assigned to staff")
        now = datetime.now(UTC)
        self.assigned_to = staff_member
        self.updated_at = now
        self.raise_(
            OrderAssigned(
                order_id=str(self.id),
                assigned_to=staff_member,
                assigned_by=assigned_by,
                assigned_at=now,
            )
        )

    def add_internal_note(self, note, added_by):
        if self.status == OrderStatus.CART.value:
            raise InvalidTransition("Notes can only be added to placed orders")
        if _blank(note):
            raise ValidationError({"note": ["Note cannot be empty"]})
        now = datetime.now(UTC)
        self.add_internal_notes(InternalNote(note=note, added_by=str(added_by), added_at=now))
        self.updated_at = now
        self.raise_(
            InternalNoteAdded(
                order_id=str(self.id),
                note=note,
                added_by=str(added_by),
                added_at=now,
            )
        )
