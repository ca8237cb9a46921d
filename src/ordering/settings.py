"""Business settings for the ordering service.

Framework configuration (providers, event processing) lives in
``domain.toml``. Pricing and policy knobs are read from the environment so
they can differ per deployment without touching code.
"""

import os
from dataclasses import dataclass


def _float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    return float(raw) if raw not in (None, "") else default


def _int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    return int(raw) if raw not in (None, "") else default


@dataclass(frozen=True)
class OrderingSettings:
    currency: str = "NGN"
    tax_rate: float = 0.0
    delivery_fee: float = 0.0
    pickup_location: str = "HQ"
    payment_timeout_seconds: float = 10.0
    payment_pending_window_minutes: int = 60
    cancellation_fee_percent: float = 10.0

    @classmethod
    def from_env(cls) -> "OrderingSettings":
        return cls(
            currency=os.environ.get("ORDERING_CURRENCY", "NGN"),
            tax_rate=_float("ORDERING_TAX_RATE", 0.0),
            delivery_fee=_float("ORDERING_DELIVERY_FEE", 0.0),
            pickup_location=os.environ.get("ORDERING_PICKUP_LOCATION", "HQ"),
            payment_timeout_seconds=_float("ORDERING_PAYMENT_TIMEOUT_SECONDS", 10.0),
            payment_pending_window_minutes=_int("ORDERING_PAYMENT_PENDING_WINDOW_MINUTES", 60),
            cancellation_fee_percent=_float("ORDERING_CANCELLATION_FEE_PERCENT", 10.0),
        )


_settings: OrderingSettings | None = None


def get_settings() -> OrderingSettings:
    """Return the active settings, loading them from the environment on first use."""
    global _settings
    if _settings is None:
        _settings = OrderingSettings.from_env()
    return _settings


def set_settings(settings: OrderingSettings) -> None:
    """Override the active settings (useful for tests)."""
    global _settings
    _settings = settings


def reset_settings() -> None:
    global _settings
    _settings = None
