"""Payment provider factory.

Selected by the ``PAYMENT_PROVIDER`` environment variable:
- ``fake`` (default): FakePaymentProvider for development and testing
- ``paystack``: PaystackProvider using ``PAYSTACK_SECRET_KEY``
"""

import os

from ordering.gateway.port import PaymentProvider

_current_provider: PaymentProvider | None = None


def get_provider() -> PaymentProvider:
    """Return the current payment provider. Defaults to FakePaymentProvider."""
    global _current_provider
    if _current_provider is None:
        provider = os.environ.get("PAYMENT_PROVIDER", "fake")
        if provider == "fake":
            from ordering.gateway.fake_adapter import FakePaymentProvider

            _current_provider = FakePaymentProvider()
        elif provider == "paystack":
            from ordering.gateway.paystack_adapter import PaystackProvider

            _current_provider = PaystackProvider(
                secret_key=os.environ["PAYSTACK_SECRET_KEY"],
                callback_url=os.environ.get("PAYSTACK_CALLBACK_URL"),
            )
        else:
            raise ValueError(f"Unknown payment provider: {provider}")
    return _current_provider


def set_provider(provider: PaymentProvider) -> None:
    """Override the active payment provider (useful for tests)."""
    global _current_provider
    _current_provider = provider


def reset_provider() -> None:
    """Reset to the default provider."""
    global _current_provider
    _current_provider = None
