"""Configurable fake payment provider for development and testing.

No external calls. It can be told to fail (simulating an outage) or to
stall for a while (simulating a slow provider, to exercise the timeout).
"""

import time

from ordering.gateway.port import PaymentProvider, PaymentSession

TEST_SIGNATURE = "test-signature"


class FakePaymentProvider(PaymentProvider):
    """Configurable fake payment provider."""

    def __init__(self) -> None:
        self.should_fail: bool = False
        self.failure_reason: str = "Provider unavailable"
        self.delay_seconds: float = 0.0
        self.calls: list[dict] = []

    def configure(
        self,
        should_fail: bool = False,
        failure_reason: str = "Provider unavailable",
        delay_seconds: float = 0.0,
    ) -> None:
        """Configure provider behavior at runtime."""
        self.should_fail = should_fail
        self.failure_reason = failure_reason
        self.delay_seconds = delay_seconds

    def initiate(self, reference, amount, currency, customer_email, metadata) -> PaymentSession:
        self.calls.append(
            {
                "method": "initiate",
                "reference": reference,
                "amount": amount,
                "currency": currency,
                "customer_email": customer_email,
                "metadata": metadata,
            }
        )
        if self.delay_seconds:
            time.sleep(self.delay_seconds)
        if self.should_fail:
            raise ConnectionError(self.failure_reason)
        return PaymentSession(
            reference=reference,
            payment_url=f"https://checkout.fake-pay.test/{reference}",
            access_code=f"fake_{reference[-8:].lower()}",
        )

    def verify_webhook_signature(self, payload: bytes, signature: str | None) -> bool:  # noqa: ARG002
        return signature == TEST_SIGNATURE
