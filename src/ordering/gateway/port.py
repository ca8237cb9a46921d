"""Payment provider port (abstract interface).

The engine generates the payment reference itself and hands it to the
provider, so the asynchronous confirmation (webhook) can always be matched
back to the order even if the initiation call times out.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class PaymentSession:
    """Result of initiating a payment with the provider."""

    reference: str
    payment_url: str | None = None
    access_code: str | None = None


class PaymentProvider(ABC):
    """Abstract payment provider interface."""

    @abstractmethod
    def initiate(
        self,
        reference: str,
        amount: float,
        currency: str,
        customer_email: str | None,
        metadata: dict,
    ) -> PaymentSession:
        """Start a hosted payment and return where the customer should pay."""
        ...

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: str | None) -> bool:
        """Verify that a webhook payload is authentically from the provider."""
        ...
