"""Paystack payment provider adapter.

Uses Paystack's transaction initialize endpoint; amounts are sent in the
currency's minor unit (kobo for NGN). Webhooks are signed with an
HMAC-SHA512 of the raw body keyed by the secret key.
"""

import hashlib
import hmac

import httpx

from ordering.gateway.port import PaymentProvider, PaymentSession

PAYSTACK_API = "https://api.paystack.co"


class PaystackProvider(PaymentProvider):
    def __init__(
        self,
        secret_key: str,
        callback_url: str | None = None,
        base_url: str = PAYSTACK_API,
        client: httpx.Client | None = None,
    ) -> None:
        self.secret_key = secret_key
        self.callback_url = callback_url
        self.client = client or httpx.Client(
            base_url=base_url,
            headers={"Authorization": f"Bearer {secret_key}"},
        )

    def initiate(self, reference, amount, currency, customer_email, metadata) -> PaymentSession:
        if not customer_email:
            raise ValueError("Paystack requires the customer's email address")

        payload = {
            "reference": reference,
            "amount": int(round(amount * 100)),
            "currency": currency,
            "email": customer_email,
            "metadata": metadata,
        }
        if self.callback_url:
            payload["callback_url"] = self.callback_url

        response = self.client.post("/transaction/initialize", json=payload)
        response.raise_for_status()
        body = response.json()
        if not body.get("status"):
            raise RuntimeError(body.get("message", "Paystack rejected the transaction"))

        data = body["data"]
        return PaymentSession(
            reference=data.get("reference", reference),
            payment_url=data.get("authorization_url"),
            access_code=data.get("access_code"),
        )

    def verify_webhook_signature(self, payload: bytes, signature: str | None) -> bool:
        if not signature:
            return False
        expected = hmac.new(self.secret_key.encode(), payload, hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature)
