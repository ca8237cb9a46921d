"""Integration tests for the payment provider webhook."""

import json

import pytest
from ordering.gateway.fake_adapter import TEST_SIGNATURE

CUSTOMER = {"X-Customer-Id": "cust-api-001"}


@pytest.fixture()
def pending(client):
    client.post("/cart/items", json={"product_id": "bag-001", "item_type": "purchase"}, headers=CUSTOMER)
    order = client.post("/cart/checkout", json={"fulfillment": {"method": "pickup"}}, headers=CUSTOMER).json()
    return client.post(
        f"/orders/{order['order_id']}/payment",
        json={"method": "paystack", "customer_email": "ada@example.com"},
        headers=CUSTOMER,
    ).json()


def _webhook(client, event, signature=TEST_SIGNATURE):
    return client.post(
        "/payments/webhook",
        content=json.dumps(event),
        headers={"x-paystack-signature": signature, "content-type": "application/json"},
    )


def _charge(event_name, reference, **data):
    return {"event": event_name, "data": {"reference": reference, "id": 4411, "amount": 800000, **data}}


class TestPaymentWebhook:
    def test_success_confirms_order(self, client, pending):
        response = _webhook(client, _charge("charge.success", pending["payment_reference"]))
        assert response.json() == {"status": "ok"}

        order = client.get(f"/orders/{pending['order_id']}", headers=CUSTOMER).json()
        assert order["status"] == "payment_confirmed"
        assert order["amount_paid"] == 8000.0

    def test_redelivery_is_harmless(self, client, pending):
        event = _charge("charge.success", pending["payment_reference"])
        _webhook(client, event)
        _webhook(client, event)

        order = client.get(f"/orders/{pending['order_id']}", headers=CUSTOMER).json()
        assert order["amount_paid"] == 8000.0

    def test_payment_after_cancellation_is_owed_back(self, client, pending):
        client.post(f"/orders/{pending['order_id']}/cancel", json={"reason": "Found it cheaper"}, headers=CUSTOMER)
        event = _charge("charge.success", pending["payment_reference"])

        assert _webhook(client, event).json() == {"status": "ok"}
        assert _webhook(client, event).json() == {"status": "ok"}

        order = client.get(f"/orders/{pending['order_id']}", headers=CUSTOMER).json()
        assert order["status"] == "cancelled"
        assert order["amount_paid"] == 8000.0
        assert order["amount_refunded"] == 8000.0
        assert order["payment_status"] == "refunded"
        assert order["cancellation"]["refund_amount"] == 8000.0
        assert order["cancellation"]["refund_status"] == "pending"

    def test_failure_records_decline(self, client, pending):
        _webhook(client, _charge("charge.failed", pending["payment_reference"], gateway_response="Declined"))

        order = client.get(f"/orders/{pending['order_id']}", headers=CUSTOMER).json()
        assert order["status"] == "payment_failed"
        assert order["payment_status"] == "failed"

    def test_bad_signature_is_401(self, client, pending):
        response = _webhook(client, _charge("charge.success", pending["payment_reference"]), signature="forged")
        assert response.status_code == 401

        order = client.get(f"/orders/{pending['order_id']}", headers=CUSTOMER).json()
        assert order["status"] == "payment_pending"

    def test_malformed_body_is_400(self, client):
        response = client.post("/payments/webhook", content=b"not json", headers={"x-paystack-signature": TEST_SIGNATURE})
        assert response.status_code == 400

    def test_unrelated_event_is_ignored(self, client):
        response = _webhook(client, {"event": "transfer.success", "data": {}})
        assert response.json() == {"status": "ignored"}

    def test_unknown_reference_is_404(self, client, pending):
        response = _webhook(client, _charge("charge.success", "PAY-0-deadbeef"))
        assert response.status_code == 404
