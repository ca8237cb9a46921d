"""Integration tests for the OrderSummary and DailyOrderStats projections."""

from datetime import UTC, datetime

from ordering import services
from ordering.projections.daily_order_stats import DailyOrderStats
from ordering.projections.order_summary import OrderSummary
from protean.utils.globals import current_domain


def _summary(order_id) -> OrderSummary:
    return current_domain.repository_for(OrderSummary).get(str(order_id))


def _today_stats() -> DailyOrderStats:
    return current_domain.repository_for(DailyOrderStats).get(datetime.now(UTC).date().isoformat())


def _paid(customer_id="cust-001"):
    services.add_to_cart(customer_id, "bag-001", "purchase", quantity=2)
    order = services.proceed_to_checkout(customer_id, {"method": "pickup"})
    order = services.initiate_payment(order.id, customer_id, "bank_transfer")
    return services.confirm_payment(order.payment_reference, succeeded=True)


class TestOrderSummary:
    def test_cart_creation_seeds_summary(self):
        cart = services.get_or_create_cart("cust-001")
        summary = _summary(cart.id)
        assert summary.status == "cart"
        assert summary.total == 0.0
        assert summary.order_number == cart.order_number

    def test_item_changes_keep_totals_current(self, rental_details):
        services.add_to_cart("cust-001", "bag-001", "purchase", quantity=2)
        cart = services.add_to_cart("cust-001", "cam-001", "rental", rental=rental_details)

        summary = _summary(cart.id)
        assert summary.item_count == 3
        assert summary.order_type == "mixed"
        assert summary.total == 29500.0

        cart = services.clear_cart("cust-001")
        summary = _summary(cart.id)
        assert summary.item_count == 0
        assert summary.total == 0.0

    def test_payment_and_status_flow_into_summary(self):
        order = _paid()
        summary = _summary(order.id)
        assert summary.status == "payment_confirmed"
        assert summary.payment_status == "completed"
        assert summary.placed_at is not None

    def test_assignment_is_recorded(self):
        order = _paid()
        services.assign_order(order.id, "staff-002", assigned_by="staff-001")
        assert _summary(order.id).assigned_to == "staff-002"

    def test_cancellation_updates_payment_status(self):
        order = _paid()
        services.cancel_order(order.id, "Changed my mind", cancelled_by="cust-001")
        summary = _summary(order.id)
        assert summary.status == "cancelled"
        assert summary.payment_status == "refunded"


class TestDailyOrderStats:
    def test_placed_and_paid_are_counted(self):
        _paid("cust-001")
        _paid("cust-002")

        stats = _today_stats()
        assert stats.orders_placed == 2
        assert stats.orders_paid == 2
        assert stats.revenue == 32000.0

    def test_cancellation_refund_is_tracked_separately(self):
        order = _paid()
        services.cancel_order(order.id, "Changed my mind", cancelled_by="cust-001")

        stats = _today_stats()
        assert stats.orders_cancelled == 1
        assert stats.refunds == 16000.0
        assert stats.revenue == 16000.0

    def test_completion_and_refund(self):
        order = _paid()
        services.update_order_status(order.id, "processing")
        services.mark_order_ready(order.id)
        services.mark_order_completed(order.id)
        services.process_refund(order.id, amount=1000.0, reason="Late pickup discount", processed_by="staff-001")

        stats = _today_stats()
        assert stats.orders_completed == 1
        assert stats.orders_refunded == 1
        assert stats.refunds == 1000.0
