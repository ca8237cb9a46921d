"""Application tests for cart operations through the ordering services."""

import pytest
from ordering import services
from ordering.errors import (
    AlreadyCheckedOut,
    CartNotFound,
    DependencyUnavailable,
    InvalidQuantity,
    ItemNotFound,
    ProductUnavailable,
)
from ordering.order.order import Order, OrderStatus
from protean import current_domain


def _carts_for(customer_id):
    repo = current_domain.repository_for(Order)
    return repo._dao.query.filter(customer_id=customer_id, status=OrderStatus.CART.value).all().items


class TestGetOrCreateCart:
    def test_creates_an_empty_cart(self):
        cart = services.get_or_create_cart("cust-001")
        assert cart.status == OrderStatus.CART.value
        assert cart.items == []
        assert cart.pricing.currency == "NGN"

    def test_returns_the_same_cart(self):
        first = services.get_or_create_cart("cust-001")
        second = services.get_or_create_cart("cust-001")
        assert first.id == second.id
        assert len(_carts_for("cust-001")) == 1

    def test_customers_have_separate_carts(self):
        assert services.get_or_create_cart("cust-001").id != services.get_or_create_cart("cust-002").id


class TestAddToCart:
    def test_first_add_opens_the_cart(self):
        cart = services.add_to_cart("cust-001", "bag-001", "purchase", quantity=2)
        assert cart.pricing.total == 16000.0
        assert cart.items[0].product.name == "Camera Bag"
        assert len(_carts_for("cust-001")) == 1

    def test_rental_priced_from_catalogue_daily_rate(self, rental_details):
        cart = services.add_to_cart("cust-001", "cam-001", "rental", rental=rental_details)
        item = cart.items[0]
        assert item.unit_price == 5000.0
        assert item.rental.duration == 3
        assert item.subtotal == 13500.0

    def test_service_booking(self, service_details):
        cart = services.add_to_cart("cust-001", "svc-portrait", "service", service=service_details)
        assert cart.order_type == "booking"
        assert cart.items[0].service.time == "14:00"

    def test_inactive_product_is_unavailable(self):
        with pytest.raises(ProductUnavailable):
            services.add_to_cart("cust-001", "retired-001", "purchase")

    def test_unknown_product_is_unavailable(self):
        with pytest.raises(ProductUnavailable):
            services.add_to_cart("cust-001", "nope", "purchase")

    def test_product_not_offered_for_rental(self, rental_details):
        with pytest.raises(ProductUnavailable):
            services.add_to_cart("cust-001", "bag-001", "rental", rental=rental_details)

    def test_stock_snapshot_caps_quantity(self, rental_details):
        with pytest.raises(InvalidQuantity):
            services.add_to_cart("cust-001", "cam-001", "rental", quantity=4, rental=rental_details)

    def test_catalogue_outage_is_a_dependency_error(self, catalogue):
        services.add_to_cart("cust-001", "bag-001", "purchase")
        catalogue.configure(available=False)

        with pytest.raises(DependencyUnavailable) as exc_info:
            services.add_to_cart("cust-001", "bag-001", "purchase")

        assert exc_info.value.dependency == "catalogue"
        cart = services.get_or_create_cart("cust-001")
        assert cart.items[0].quantity == 1

    def test_rejected_add_leaves_cart_untouched(self):
        services.add_to_cart("cust-001", "bag-001", "purchase", quantity=9)
        with pytest.raises(InvalidQuantity):
            services.add_to_cart("cust-001", "bag-001", "purchase", quantity=2)
        cart = services.get_or_create_cart("cust-001")
        assert cart.items[0].quantity == 9
        assert cart.pricing.total == 72000.0


class TestUpdateRemoveClear:
    def test_update_quantity(self):
        cart = services.add_to_cart("cust-001", "bag-001", "purchase")
        cart = services.update_cart_item("cust-001", cart.items[0].id, {"quantity": 3})
        assert cart.items[0].quantity == 3
        assert cart.pricing.total == 24000.0

    def test_update_rental_period(self, rental_details):
        cart = services.add_to_cart("cust-001", "cam-001", "rental", rental=rental_details)
        item_id = cart.items[0].id
        cart = services.update_cart_item("cust-001", item_id, {"end_date": rental_details["start_date"]})
        assert cart.items[0].rental.duration == 1
        assert cart.pricing.total == 5000.0

    def test_remove_item(self):
        cart = services.add_to_cart("cust-001", "bag-001", "purchase")
        cart = services.remove_from_cart("cust-001", cart.items[0].id)
        assert cart.items == []
        assert cart.pricing.total == 0.0

    def test_remove_unknown_item(self):
        services.add_to_cart("cust-001", "bag-001", "purchase")
        with pytest.raises(ItemNotFound):
            services.remove_from_cart("cust-001", "missing")

    def test_clear_cart(self, rental_details):
        services.add_to_cart("cust-001", "bag-001", "purchase")
        services.add_to_cart("cust-001", "cam-001", "rental", rental=rental_details)
        cart = services.clear_cart("cust-001")
        assert cart.items == []
        assert cart.status == OrderStatus.CART.value

    def test_mutating_without_a_cart(self):
        with pytest.raises(CartNotFound):
            services.clear_cart("cust-without-cart")


class TestExplicitCartId:
    def test_another_customers_cart_is_not_found(self):
        cart = services.get_or_create_cart("cust-001")
        with pytest.raises(CartNotFound):
            services.clear_cart("cust-002", cart_id=cart.id)

    def test_sealed_cart_rejects_mutation(self):
        cart = services.add_to_cart("cust-001", "bag-001", "purchase")
        services.proceed_to_checkout("cust-001", {"method": "pickup"})

        with pytest.raises(AlreadyCheckedOut):
            services.add_to_cart("cust-001", "bag-001", "purchase", cart_id=cart.id)
        with pytest.raises(AlreadyCheckedOut):
            services.update_cart_item("cust-001", cart.items[0].id, {"quantity": 2}, cart_id=cart.id)

        order = current_domain.repository_for(Order).get(cart.id)
        assert order.items[0].quantity == 1
