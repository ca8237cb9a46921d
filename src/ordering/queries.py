"""Read side of the ordering engine.

Listings come from the ``OrderSummary`` projection; anything that needs the
items, pricing breakdown or return record loads the Order aggregate itself.
Nothing here mutates state, and callers must be inside a domain context.
"""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta

from protean.utils.globals import current_domain

from ordering.errors import OrderNotFound
from ordering.order.helpers import find_open_cart, load_customer_order, load_order
from ordering.order.order import Order, OrderStatus, OrderType
from ordering.projections.daily_order_stats import DailyOrderStats
from ordering.projections.order_summary import OrderSummary
from ordering.settings import get_settings

# Repositories cap unbounded queries; full scans walk the table in batches.
_SCAN_BATCH = 100
_MAX_PAGE_SIZE = 100

_ACTIVE_STATUSES = (
    OrderStatus.PROCESSING.value,
    OrderStatus.READY_FOR_PICKUP.value,
    OrderStatus.IN_PROGRESS.value,
)


@dataclass
class OrderFilter:
    status: str | None = None
    order_type: str | None = None
    customer_id: str | None = None
    assigned_to: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    search: str | None = None

    def lookups(self) -> dict:
        criteria = {}
        for name in ("status", "order_type", "customer_id", "assigned_to"):
            value = getattr(self, name)
            if value:
                criteria[name] = str(value)
        if self.date_from:
            criteria["created_at__gte"] = self.date_from
        if self.date_to:
            criteria["created_at__lte"] = self.date_to
        if self.search:
            criteria["order_number__icontains"] = self.search
        return criteria


@dataclass
class Page:
    items: list = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 10

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.pages


def _scan(query):
    """Yield every record of ``query``, one batch at a time."""
    offset = 0
    while True:
        batch = query.offset(offset).limit(_SCAN_BATCH).all().items
        yield from batch
        if len(batch) < _SCAN_BATCH:
            return
        offset += _SCAN_BATCH


def _page(query, page: int, limit: int) -> Page:
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 10), 1), _MAX_PAGE_SIZE)
    result = query.order_by("-created_at").offset((page - 1) * limit).limit(limit).all()
    return Page(items=list(result.items), total=result.total, page=page, limit=limit)


def _summaries():
    return current_domain.repository_for(OrderSummary)._dao.query


def _placed_orders():
    return current_domain.repository_for(Order)._dao.query.exclude(status=OrderStatus.CART.value)


# ---------------------------------------------------------------------------
# Customer reads
# ---------------------------------------------------------------------------
def my_cart(customer_id) -> Order | None:
    return find_open_cart(customer_id)


def my_orders(customer_id, status=None, page=1, limit=10) -> Page:
    """The customer's placed orders, newest first. Carts are not orders yet."""
    query = _summaries().filter(customer_id=str(customer_id)).exclude(status=OrderStatus.CART.value)
    if status:
        query = query.filter(status=status)
    return _page(query, page, limit)


def my_order(order_id, customer_id) -> Order:
    return load_customer_order(order_id, customer_id)


# ---------------------------------------------------------------------------
# Staff reads
# ---------------------------------------------------------------------------
def orders(order_filter: OrderFilter | None = None, page=1, limit=10) -> Page:
    query = _summaries().exclude(status=OrderStatus.CART.value)
    criteria = (order_filter or OrderFilter()).lookups()
    if criteria:
        query = query.filter(**criteria)
    return _page(query, page, limit)


def order(order_id) -> Order:
    return load_order(order_id)


def order_by_number(order_number) -> Order:
    results = current_domain.repository_for(Order)._dao.query.filter(order_number=order_number).all().items
    if not results:
        raise OrderNotFound(f"Order {order_number} not found")
    return results[0]


def recent_orders(limit=10) -> list:
    limit = min(max(int(limit or 10), 1), _MAX_PAGE_SIZE)
    query = _summaries().exclude(status=OrderStatus.CART.value).order_by("-created_at")
    return list(query.limit(limit).all().items)


def overdue_rentals(today: date | None = None) -> list[Order]:
    """Rentals past their end date whose equipment has not come back."""
    today = today or datetime.now(UTC).date()
    query = _placed_orders().filter(order_type__in=[OrderType.RENTAL.value, OrderType.MIXED.value])
    return [o for o in _scan(query) if o.is_overdue(today)]


def stale_payments(now: datetime | None = None) -> list[Order]:
    """Orders still waiting on the provider past the payment window."""
    now = now or datetime.now(UTC)
    cutoff = now - timedelta(minutes=get_settings().payment_pending_window_minutes)
    query = current_domain.repository_for(Order)._dao.query.filter(status=OrderStatus.PAYMENT_PENDING.value)
    return [o for o in _scan(query) if o.updated_at is not None and o.updated_at < cutoff]


def order_stats(today: date | None = None) -> dict:
    total = active = completed = overdue = 0
    revenue = 0.0
    by_status: dict[str, int] = {}
    by_type: dict[str, int] = {}
    today = today or datetime.now(UTC).date()

    for o in _scan(_placed_orders()):
        total += 1
        by_status[o.status] = by_status.get(o.status, 0) + 1
        by_type[o.order_type] = by_type.get(o.order_type, 0) + 1
        if o.status in _ACTIVE_STATUSES:
            active += 1
        if o.status == OrderStatus.COMPLETED.value:
            completed += 1
            revenue += o.pricing.total
        if o.is_overdue(today):
            overdue += 1

    return {
        "total_orders": total,
        "active_orders": active,
        "completed_orders": completed,
        "total_revenue": round(revenue, 2),
        "orders_by_status": [{"status": k, "count": v} for k, v in sorted(by_status.items())],
        "orders_by_type": [{"type": k, "count": v} for k, v in sorted(by_type.items())],
        "overdue_rentals": overdue,
    }


def daily_revenue(days=30, today: date | None = None) -> list[dict]:
    """Revenue per day for the last ``days`` days, oldest first.

    Revenue is recognised when a payment is confirmed; refunds are reported
    alongside so net figures can be derived.
    """
    today = today or datetime.now(UTC).date()
    start = (today - timedelta(days=int(days))).isoformat()
    query = current_domain.repository_for(DailyOrderStats)._dao.query.filter(
        date__gte=start, date__lte=today.isoformat()
    )
    rows = sorted(_scan(query), key=lambda r: r.date)
    return [
        {
            "date": r.date,
            "revenue": r.revenue or 0.0,
            "refunds": r.refunds or 0.0,
            "order_count": r.orders_paid or 0,
        }
        for r in rows
    ]
