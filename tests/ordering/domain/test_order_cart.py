"""Tests for cart behaviour on the Order aggregate: adding, merging, updating and removing lines."""

from datetime import date, timedelta

import pytest
from ordering.errors import (
    AlreadyCheckedOut,
    IncompleteRefereeInfo,
    InvalidItemDetails,
    InvalidQuantity,
    ItemNotFound,
)
from ordering.order.events import CartCleared, CartItemAdded, CartItemRemoved, CartItemUpdated, OrderCreated
from ordering.order.order import Order, OrderStatus, ProductSnapshot

START = date.today() + timedelta(days=7)
REFEREE = {"name": "Ada Obi", "email": "ada@example.com", "phone": "+2348000000001"}


def _snapshot(stock=5):
    return ProductSnapshot(name="Canon EOS R5", sku="CAM-R5", product_type="equipment", stock=stock)


def _rental(days=3, referee=REFEREE):
    return {"start_date": START, "end_date": START + timedelta(days=days), "referee": referee}


def _service(days_ahead=14):
    return {"date": date.today() + timedelta(days=days_ahead), "time": "14:00", "duration": 60}


def _cart():
    cart = Order.open_cart("cust-001")
    cart._events.clear()
    return cart


class TestOpenCart:
    def test_new_cart_is_empty_order_in_cart_status(self):
        cart = Order.open_cart("cust-001", currency="NGN")
        assert cart.status == OrderStatus.CART.value
        assert cart.items == []
        assert cart.pricing.total == 0.0
        assert cart.cart_key == "cart:cust-001"
        assert cart.order_number.startswith("ORD-")

    def test_opening_raises_order_created(self):
        cart = Order.open_cart("cust-001")
        assert isinstance(cart._events[0], OrderCreated)


class TestAddItem:
    def test_purchase_line_is_priced(self):
        cart = _cart()
        cart.add_item("bag-001", _snapshot(), "purchase", 2, 8000.0)
        assert cart.pricing.subtotal == 16000.0
        assert cart.pricing.total == 16000.0
        assert cart.order_type == "purchase"

    def test_same_purchase_merges_into_one_line(self):
        cart = _cart()
        cart.add_item("bag-001", _snapshot(), "purchase", 1, 8000.0)
        cart.add_item("bag-001", _snapshot(), "purchase", 2, 8000.0)
        assert len(cart.items) == 1
        assert cart.items[0].quantity == 3
        assert cart._events[-1].merged is True

    def test_rentals_of_same_product_stay_separate(self):
        cart = _cart()
        cart.add_item("cam-001", _snapshot(), "rental", 1, 5000.0, rental=_rental(3))
        cart.add_item("cam-001", _snapshot(), "rental", 1, 5000.0, rental=_rental(7))
        assert len(cart.items) == 2

    def test_rental_is_priced_with_duration_discount(self):
        cart = _cart()
        item = cart.add_item("cam-001", _snapshot(), "rental", 1, 5000.0, rental=_rental(3))
        assert item.rental.duration == 3
        assert item.rental.discount_percent == 10.0
        assert item.subtotal == 13500.0
        assert cart.pricing.security_deposit == 0.0
        assert cart.order_type == "rental"

    def test_mixed_cart(self):
        cart = _cart()
        cart.add_item("cam-001", _snapshot(), "rental", 1, 5000.0, rental=_rental(1))
        cart.add_item("svc-portrait", None, "service", 1, 30000.0, service=_service())
        assert cart.order_type == "mixed"
        assert cart.pricing.total == 35000.0

    def test_service_only_cart_is_a_booking(self):
        cart = _cart()
        cart.add_item("svc-portrait", None, "service", 1, 30000.0, service=_service())
        assert cart.order_type == "booking"

    def test_rental_without_referee_is_rejected(self):
        cart = _cart()
        with pytest.raises(IncompleteRefereeInfo):
            cart.add_item("cam-001", _snapshot(), "rental", 1, 5000.0, rental=_rental(referee=None))
        assert cart.items == []

    def test_rental_with_partial_referee_is_rejected(self):
        cart = _cart()
        with pytest.raises(IncompleteRefereeInfo):
            cart.add_item(
                "cam-001", _snapshot(), "rental", 1, 5000.0, rental=_rental(referee={"name": "Ada", "email": "a@x.io"})
            )

    def test_service_details_on_purchase_are_rejected(self):
        cart = _cart()
        with pytest.raises(InvalidItemDetails):
            cart.add_item("bag-001", _snapshot(), "purchase", 1, 8000.0, service=_service())

    def test_quantity_must_be_positive(self):
        cart = _cart()
        with pytest.raises(InvalidQuantity):
            cart.add_item("bag-001", _snapshot(), "purchase", 0, 8000.0)

    def test_quantity_cannot_exceed_stock(self):
        cart = _cart()
        with pytest.raises(InvalidQuantity):
            cart.add_item("bag-001", _snapshot(stock=2), "purchase", 3, 8000.0)

    def test_merged_quantity_cannot_exceed_stock(self):
        cart = _cart()
        cart.add_item("bag-001", _snapshot(stock=2), "purchase", 2, 8000.0)
        with pytest.raises(InvalidQuantity):
            cart.add_item("bag-001", _snapshot(stock=2), "purchase", 1, 8000.0)
        assert cart.items[0].quantity == 2

    def test_client_location_service_needs_address(self):
        cart = _cart()
        service = {**_service(), "location_type": "client_location"}
        with pytest.raises(InvalidItemDetails):
            cart.add_item("svc-portrait", None, "service", 1, 30000.0, service=service)

    def test_raises_item_added_event(self):
        cart = _cart()
        cart.add_item("bag-001", _snapshot(), "purchase", 1, 8000.0)
        event = cart._events[-1]
        assert isinstance(event, CartItemAdded)
        assert event.total == 8000.0


class TestUpdateItem:
    def test_quantity_change_reprices(self):
        cart = _cart()
        item = cart.add_item("bag-001", _snapshot(), "purchase", 1, 8000.0)
        cart.update_item(item.id, {"quantity": 4})
        assert cart.pricing.total == 32000.0
        assert isinstance(cart._events[-1], CartItemUpdated)

    def test_rental_dates_rederive_duration_and_discount(self):
        cart = _cart()
        item = cart.add_item("cam-001", _snapshot(), "rental", 1, 5000.0, rental=_rental(3))
        cart.update_item(item.id, {"end_date": START + timedelta(days=7)})
        item = cart.items[0]
        assert item.rental.duration == 7
        assert item.rental.discount_percent == 15.0
        assert item.subtotal == 29750.0
        assert cart.pricing.total == 29750.0

    def test_rental_end_before_start_is_rejected_without_change(self):
        cart = _cart()
        item = cart.add_item("cam-001", _snapshot(), "rental", 1, 5000.0, rental=_rental(3))
        with pytest.raises(InvalidItemDetails):
            cart.update_item(item.id, {"end_date": START - timedelta(days=1)})
        item = cart.items[0]
        assert item.rental.duration == 3
        assert cart.pricing.total == 13500.0

    def test_service_fields_on_rental_are_rejected(self):
        cart = _cart()
        item = cart.add_item("cam-001", _snapshot(), "rental", 1, 5000.0, rental=_rental(3))
        with pytest.raises(InvalidItemDetails):
            cart.update_item(item.id, {"location_type": "outdoor"})

    def test_service_reschedule(self):
        cart = _cart()
        item = cart.add_item("svc-portrait", None, "service", 1, 30000.0, service=_service())
        cart.update_item(item.id, {"time": "09:30", "duration": 120})
        item = cart.items[0]
        assert item.service.time == "09:30"
        assert item.service.duration == 120

    def test_unknown_item(self):
        cart = _cart()
        with pytest.raises(ItemNotFound):
            cart.update_item("missing", {"quantity": 2})


class TestRemoveAndClear:
    def test_remove_item_reprices(self):
        cart = _cart()
        bag = cart.add_item("bag-001", _snapshot(), "purchase", 1, 8000.0)
        cart.add_item("cam-001", _snapshot(), "rental", 1, 5000.0, rental=_rental(3))
        cart.remove_item(bag.id)
        assert len(cart.items) == 1
        assert cart.pricing.total == 13500.0
        assert isinstance(cart._events[-1], CartItemRemoved)

    def test_remove_unknown_item(self):
        cart = _cart()
        with pytest.raises(ItemNotFound):
            cart.remove_item("missing")

    def test_clear_drops_pricing_to_zero(self):
        cart = _cart()
        cart.add_item("bag-001", _snapshot(), "purchase", 1, 8000.0)
        cart.clear_items()
        assert cart.items == []
        assert cart.pricing.total == 0.0
        assert isinstance(cart._events[-1], CartCleared)


class TestSealedCart:
    def test_mutations_after_checkout_are_rejected(self):
        cart = _cart()
        item = cart.add_item("bag-001", _snapshot(), "purchase", 1, 8000.0)
        cart.checkout({"method": "pickup"}, pickup_location="HQ")

        with pytest.raises(AlreadyCheckedOut):
            cart.add_item("bag-001", _snapshot(), "purchase", 1, 8000.0)
        with pytest.raises(AlreadyCheckedOut):
            cart.update_item(item.id, {"quantity": 2})
        with pytest.raises(AlreadyCheckedOut):
            cart.remove_item(item.id)
        with pytest.raises(AlreadyCheckedOut):
            cart.clear_items()
        assert cart.pricing.total == 8000.0
