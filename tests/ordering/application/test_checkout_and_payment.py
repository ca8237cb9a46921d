"""Application tests for checkout and the payment flow, including provider timeouts and failures."""

import pytest
from ordering import services
from ordering.errors import (
    DependencyUnavailable,
    EmptyCart,
    IncompleteRefereeInfo,
    MissingFulfillmentMethod,
    OrderNotFound,
)
from ordering.order.order import OrderStatus
from ordering.settings import OrderingSettings, set_settings
from protean.exceptions import ValidationError


def _checked_out(customer_id="cust-001", method="pickup"):
    services.add_to_cart(customer_id, "bag-001", "purchase")
    return services.proceed_to_checkout(customer_id, {"method": method})


class TestCheckout:
    def test_checkout_seals_cart_into_order(self):
        order = _checked_out()
        assert order.status == OrderStatus.CHECKOUT.value
        assert order.fulfillment.location == "HQ"
        assert order.workflow.placed_at is not None

    def test_next_cart_is_a_fresh_order(self):
        order = _checked_out()
        cart = services.get_or_create_cart("cust-001")
        assert cart.id != order.id
        assert cart.items == []

    def test_delivery_fee_from_settings(self):
        set_settings(OrderingSettings(delivery_fee=2500.0))
        order = _checked_out(method="delivery")
        assert order.pricing.shipping_total == 2500.0
        assert order.pricing.total == 10500.0

    def test_tax_rate_from_settings(self):
        set_settings(OrderingSettings(tax_rate=0.075))
        order = _checked_out()
        assert order.pricing.tax_total == 600.0
        assert order.pricing.total == 8600.0

    def test_referrer_and_notes_are_kept(self):
        services.add_to_cart("cust-001", "bag-001", "purchase")
        order = services.proceed_to_checkout(
            "cust-001",
            {"method": "pickup"},
            referrer_info={"name": "Tobi", "relationship": "friend"},
            notes="Please gift wrap",
        )
        assert order.referrer_info.name == "Tobi"
        assert order.customer_notes == "Please gift wrap"

    def test_missing_fulfillment_method(self):
        services.add_to_cart("cust-001", "bag-001", "purchase")
        with pytest.raises(MissingFulfillmentMethod):
            services.proceed_to_checkout("cust-001", {})
        assert services.get_or_create_cart("cust-001").status == OrderStatus.CART.value

    def test_unknown_fulfillment_method(self):
        services.add_to_cart("cust-001", "bag-001", "purchase")
        with pytest.raises(MissingFulfillmentMethod):
            services.proceed_to_checkout("cust-001", {"method": "drone"})
        assert services.get_or_create_cart("cust-001").status == OrderStatus.CART.value

    def test_empty_cart(self):
        services.get_or_create_cart("cust-001")
        with pytest.raises(EmptyCart):
            services.proceed_to_checkout("cust-001", {"method": "pickup"})

    def test_incomplete_referee_update_is_rejected(self, rental_details):
        cart = services.add_to_cart("cust-001", "cam-001", "rental", rental=rental_details)
        with pytest.raises(IncompleteRefereeInfo):
            services.update_cart_item("cust-001", cart.items[0].id, {"referee": {"name": "Ada"}})
        order = services.proceed_to_checkout("cust-001", {"method": "pickup"})
        assert order.items[0].rental.referee.phone == "+2348000000001"


class TestInitiatePayment:
    def test_online_payment_returns_provider_url(self, payment_provider):
        order = _checked_out()
        order = services.initiate_payment(order.id, "cust-001", "paystack", customer_email="c@example.com")

        assert order.status == OrderStatus.PAYMENT_PENDING.value
        assert order.payment_reference.startswith("PAY-")
        assert order.payment_url.endswith(order.payment_reference)
        call = payment_provider.calls[0]
        assert call["reference"] == order.payment_reference
        assert call["amount"] == 8000.0

    def test_offline_methods_skip_the_provider(self, payment_provider):
        order = _checked_out()
        order = services.initiate_payment(order.id, "cust-001", "bank_transfer")
        assert order.status == OrderStatus.PAYMENT_PENDING.value
        assert order.payment_url is None
        assert payment_provider.calls == []

    def test_provider_timeout_still_awaits_webhook(self, payment_provider):
        set_settings(OrderingSettings(payment_timeout_seconds=0.05))
        payment_provider.configure(delay_seconds=0.5)
        order = _checked_out()

        order = services.initiate_payment(order.id, "cust-001", "paystack", customer_email="c@example.com")

        assert order.status == OrderStatus.PAYMENT_PENDING.value
        assert order.payment_url is None
        assert order.payment_reference is not None

    def test_provider_failure_leaves_order_untouched(self, payment_provider):
        payment_provider.configure(should_fail=True)
        order = _checked_out()

        with pytest.raises(DependencyUnavailable):
            services.initiate_payment(order.id, "cust-001", "paystack", customer_email="c@example.com")

        from ordering import queries

        order = queries.order(order.id)
        assert order.status == OrderStatus.CHECKOUT.value
        assert order.payment_reference is None

    def test_online_payment_needs_an_email(self, payment_provider):
        order = _checked_out()
        with pytest.raises(ValidationError) as exc:
            services.initiate_payment(order.id, "cust-001", "paystack", customer_email="  ")
        assert "customer_email" in exc.value.messages
        assert payment_provider.calls == []

    def test_only_the_owner_can_pay(self):
        order = _checked_out()
        with pytest.raises(OrderNotFound):
            services.initiate_payment(order.id, "cust-999", "paystack")


class TestConfirmPayment:
    def test_webhook_confirmation_by_reference(self):
        order = _checked_out()
        order = services.initiate_payment(order.id, "cust-001", "paystack", customer_email="c@example.com")

        order = services.confirm_payment(order.payment_reference, succeeded=True, transaction_id="trx-1", amount=8000.0)

        assert order.status == OrderStatus.PAYMENT_CONFIRMED.value
        assert order.payment_amounts.paid == 8000.0
        assert order.workflow.confirmed_at is not None

    def test_duplicate_confirmation_is_harmless(self):
        order = _checked_out()
        order = services.initiate_payment(order.id, "cust-001", "bank_transfer")
        services.confirm_payment(order.payment_reference, succeeded=True)
        order = services.confirm_payment(order.payment_reference, succeeded=True)

        assert order.payment_amounts.paid == 8000.0
        assert len(order.transactions) == 1

    def test_decline_then_retry(self):
        order = _checked_out()
        order = services.initiate_payment(order.id, "cust-001", "paystack", customer_email="c@example.com")
        first_reference = order.payment_reference

        order = services.confirm_payment(first_reference, succeeded=False, failure_reason="Insufficient funds")
        assert order.status == OrderStatus.PAYMENT_FAILED.value

        order = services.initiate_payment(order.id, "cust-001", "paystack", customer_email="c@example.com")
        assert order.status == OrderStatus.PAYMENT_PENDING.value
        assert order.payment_reference != first_reference

    def test_unknown_reference(self):
        with pytest.raises(OrderNotFound):
            services.confirm_payment("PAY-unknown", succeeded=True)
