"""Pricing calculator: pure, stateless functions.

Line pricing:
    purchase / service   subtotal = unit_rate x quantity
    rental               base = daily_rate x duration x quantity
                         subtotal = base x (1 - tier discount)

Rental duration tiers (days -> discount):
    1 -> 0%, 2 -> 5%, 3-6 -> 10%, 7+ -> 15%

Order pricing is always recomputed in full from the line subtotals plus the
order-level adjustments; there is no incremental patching of totals.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum

from ordering.errors import InvalidItemDetails, InvalidQuantity

SECONDS_PER_DAY = 86400

# Checked top-down: first tier whose minimum duration is met wins
RENTAL_DISCOUNT_TIERS = (
    (7, 15.0),
    (3, 10.0),
    (2, 5.0),
    (1, 0.0),
)


class ItemType(Enum):
    PURCHASE = "purchase"
    RENTAL = "rental"
    SERVICE = "service"


@dataclass(frozen=True)
class LinePrice:
    unit_price: float
    quantity: int
    duration: int | None
    base_total: float
    discount_percent: float
    discount_amount: float
    subtotal: float


@dataclass(frozen=True)
class PricingSummary:
    subtotal: float
    discount_total: float
    tax_total: float
    shipping_total: float
    security_deposit: float
    total: float
    currency: str

    def as_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "discount_total": self.discount_total,
            "tax_total": self.tax_total,
            "shipping_total": self.shipping_total,
            "security_deposit": self.security_deposit,
            "total": self.total,
            "currency": self.currency,
        }


def money(amount: float) -> float:
    """Round a monetary amount to two decimals."""
    return round(float(amount) + 0.0, 2)


def _as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


def rental_duration(start: date | datetime, end: date | datetime) -> int:
    """Number of billable days: ceil((end - start) / 1 day), never less than 1."""
    if start is None or end is None:
        raise InvalidItemDetails("Rental start and end dates are required", field="rental")

    start_dt, end_dt = _as_datetime(start), _as_datetime(end)
    if start_dt.tzinfo is not None and end_dt.tzinfo is None:
        end_dt = end_dt.replace(tzinfo=start_dt.tzinfo)
    elif end_dt.tzinfo is not None and start_dt.tzinfo is None:
        start_dt = start_dt.replace(tzinfo=end_dt.tzinfo)

    seconds = (end_dt - start_dt).total_seconds()
    if seconds < 0:
        raise InvalidItemDetails("Rental end date cannot be before the start date", field="rental")

    return max(math.ceil(seconds / SECONDS_PER_DAY), 1)


def rental_discount_percent(duration: int) -> float:
    for minimum_days, percent in RENTAL_DISCOUNT_TIERS:
        if duration >= minimum_days:
            return percent
    return 0.0


def price_line(item_type: ItemType | str, quantity: int, unit_rate: float, duration: int | None = None) -> LinePrice:
    """Price a single line item."""
    item_type = ItemType(item_type)

    if quantity is None or quantity < 1:
        raise InvalidQuantity("Quantity must be at least 1")
    if unit_rate is None or unit_rate < 0:
        raise InvalidItemDetails("Unit price cannot be negative", field="unit_price")

    if item_type == ItemType.RENTAL:
        if duration is None or duration < 1:
            raise InvalidItemDetails("Rental duration must be at least one day", field="rental")
        base_total = money(unit_rate * duration * quantity)
        discount_percent = rental_discount_percent(duration)
        subtotal = money(base_total * (1 - discount_percent / 100))
        return LinePrice(
            unit_price=money(unit_rate),
            quantity=quantity,
            duration=duration,
            base_total=base_total,
            discount_percent=discount_percent,
            discount_amount=money(base_total - subtotal),
            subtotal=subtotal,
        )

    # Purchases and services are priced per unit; a service's duration only
    # affects scheduling.
    base_total = money(unit_rate * quantity)
    return LinePrice(
        unit_price=money(unit_rate),
        quantity=quantity,
        duration=duration if item_type == ItemType.SERVICE else None,
        base_total=base_total,
        discount_percent=0.0,
        discount_amount=0.0,
        subtotal=base_total,
    )


def price_order(
    line_subtotals,
    currency: str,
    discount_total: float = 0.0,
    tax_rate: float = 0.0,
    shipping_total: float = 0.0,
    security_deposit: float = 0.0,
) -> PricingSummary:
    """Compute the full order pricing from line subtotals and order-level adjustments.

    An empty order prices to zero across the board, adjustments included.
    """
    line_subtotals = list(line_subtotals)
    if not line_subtotals:
        return PricingSummary(0.0, 0.0, 0.0, 0.0, 0.0, 0.0, currency)

    subtotal = money(sum(line_subtotals))
    discount_total = money(min(discount_total, subtotal))
    tax_total = money((subtotal - discount_total) * tax_rate)
    shipping_total = money(shipping_total)
    security_deposit = money(security_deposit)
    total = money(subtotal - discount_total + tax_total + shipping_total + security_deposit)

    return PricingSummary(
        subtotal=subtotal,
        discount_total=discount_total,
        tax_total=tax_total,
        shipping_total=shipping_total,
        security_deposit=security_deposit,
        total=total,
        currency=currency,
    )


def cancellation_refund(amount_paid: float, cancelled_during_processing: bool, fee_percent: float) -> float:
    """Refund owed when an order is cancelled.

    Full refund before fulfillment work starts; once the order is being
    processed a cancellation fee is retained.
    """
    if not amount_paid or amount_paid <= 0:
        return 0.0
    if not cancelled_during_processing:
        return money(amount_paid)
    return money(amount_paid * (1 - fee_percent / 100))
