"""HTTP adapters against canned responses served by httpx's mock transport."""

import hashlib
import hmac
import json

import httpx
import pytest

from ordering.catalogue.http_adapter import HttpCatalogue
from ordering.gateway.paystack_adapter import PaystackProvider


def _client(handler, base_url="https://example.test"):
    return httpx.Client(base_url=base_url, transport=httpx.MockTransport(handler))


class TestHttpCatalogue:
    def test_maps_catalogue_product(self):
        def handler(request):
            assert request.url.path == "/products/cam-001"
            return httpx.Response(
                200,
                json={
                    "id": "cam-001",
                    "name": "Canon EOS R5",
                    "type": "equipment",
                    "sku": "CAM-R5",
                    "pricing": {"sale_price": 2500000, "rental_price": {"daily": 5000}},
                    "inventory": {"available_units": 4},
                    "images": {"thumbnail": "r5.jpg"},
                },
            )

        product = HttpCatalogue("unused", client=_client(handler)).get_product("cam-001")

        assert product.name == "Canon EOS R5"
        assert product.price_for("rental") == 5000
        assert product.price_for("purchase") == 2500000
        assert product.price_for("service") is None
        assert product.stock == 4
        assert product.thumbnail == "r5.jpg"
        assert product.active is True

    def test_unknown_product_is_none(self):
        catalogue = HttpCatalogue("unused", client=_client(lambda request: httpx.Response(404)))
        assert catalogue.get_product("missing") is None

    def test_server_error_propagates(self):
        catalogue = HttpCatalogue("unused", client=_client(lambda request: httpx.Response(502)))
        with pytest.raises(httpx.HTTPStatusError):
            catalogue.get_product("cam-001")


class TestPaystackProvider:
    def test_initiate_sends_minor_units(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "status": True,
                    "data": {
                        "reference": seen["body"]["reference"],
                        "authorization_url": "https://checkout.paystack.com/abc",
                        "access_code": "abc",
                    },
                },
            )

        provider = PaystackProvider("sk_test", callback_url="https://studio.test/paid", client=_client(handler))
        session = provider.initiate("PAY-1-deadbeef", 8000.5, "NGN", "ada@example.com", {"order": "ORD-1"})

        assert seen["path"] == "/transaction/initialize"
        assert seen["body"]["amount"] == 800050
        assert seen["body"]["callback_url"] == "https://studio.test/paid"
        assert session.reference == "PAY-1-deadbeef"
        assert session.payment_url == "https://checkout.paystack.com/abc"
        assert session.access_code == "abc"

    def test_initiate_requires_email(self):
        provider = PaystackProvider("sk_test", client=_client(lambda request: httpx.Response(200)))
        with pytest.raises(ValueError):
            provider.initiate("PAY-1", 100.0, "NGN", None, {})

    def test_rejected_transaction_raises(self):
        def handler(request):
            return httpx.Response(200, json={"status": False, "message": "Invalid key"})

        provider = PaystackProvider("sk_test", client=_client(handler))
        with pytest.raises(RuntimeError, match="Invalid key"):
            provider.initiate("PAY-1", 100.0, "NGN", "ada@example.com", {})

    def test_webhook_signature(self):
        provider = PaystackProvider("sk_test", client=_client(lambda request: httpx.Response(200)))
        payload = b'{"event":"charge.success"}'
        signature = hmac.new(b"sk_test", payload, hashlib.sha512).hexdigest()

        assert provider.verify_webhook_signature(payload, signature)
        assert not provider.verify_webhook_signature(payload, "forged")
        assert not provider.verify_webhook_signature(payload, None)
