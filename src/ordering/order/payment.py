"""Order payment: commands and handler.

Initiation generates the payment reference, then (for online methods) asks
the provider for a hosted payment page. The provider call is bounded by
``payment_timeout_seconds``: a timeout still leaves the order in
PAYMENT_PENDING so the provider's webhook can confirm it later, while a
provider error aborts without touching the order.

Confirmation applies the provider's verdict. A decline moves the order to
PAYMENT_FAILED, from where the customer may retry.
"""

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from datetime import UTC, datetime
from uuid import uuid4

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Boolean, Float, Identifier, String
from protean.utils.globals import current_domain

from ordering.domain import ordering
from ordering.errors import DependencyUnavailable, OrderNotFound
from ordering.gateway import get_provider
from ordering.order.helpers import load_customer_order, load_order
from ordering.order.order import Order, PaymentMethod
from ordering.settings import get_settings


logger = structlog.get_logger(__name__)

# Methods settled through the online provider; the rest are confirmed by staff
ONLINE_METHODS = {PaymentMethod.PAYSTACK.value}


def new_payment_reference(now: datetime | None = None) -> str:
    now = now or datetime.now(UTC)
    return f"PAY-{int(now.timestamp() * 1000)}-{uuid4().hex[:8].upper()}"


@ordering.command(part_of="Order")
class InitiatePayment:
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    method = String(required=True, choices=PaymentMethod)
    customer_email = String(max_length=255)


@ordering.command(part_of="Order")
class ConfirmPayment:
    order_id = Identifier()
    reference = String(required=True, max_length=100)
    succeeded = Boolean(required=True)
    transaction_id = String(max_length=255)
    amount = Float()
    failure_reason = String(max_length=500)


def _start_provider_session(order, reference, customer_email):
    """Call the provider with a timeout. Returns None if it did not answer in time."""
    settings = get_settings()
    provider = get_provider()
    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(
        provider.initiate,
        reference=reference,
        amount=order.pricing.total,
        currency=order.pricing.currency,
        customer_email=customer_email,
        metadata={"order_id": str(order.id), "order_number": order.order_number},
    )
    try:
        return future.result(timeout=settings.payment_timeout_seconds)
    except FuturesTimeoutError:
        logger.warning(
            "Payment provider did not answer in time; awaiting webhook",
            order_id=str(order.id),
            reference=reference,
            timeout_seconds=settings.payment_timeout_seconds,
        )
        return None
    except Exception as exc:
        logger.error(
            "Payment provider call failed",
            order_id=str(order.id),
            reference=reference,
            error=str(exc),
        )
        raise DependencyUnavailable("payment_provider", str(exc)) from exc
    finally:
        executor.shutdown(wait=False)


def find_by_payment_reference(reference) -> Order:
    repo = current_domain.repository_for(Order)
    results = repo._dao.query.filter(payment_reference=reference).all().items
    if not results:
        raise OrderNotFound(f"No order for payment reference {reference}")
    return results[0]


@ordering.command_handler(part_of=Order)
class PaymentHandler:
    @handle(InitiatePayment)
    def initiate_payment(self, command):
        order = load_customer_order(command.order_id, command.customer_id)
        order.ensure_payable()
        if command.method in ONLINE_METHODS and not (command.customer_email or "").strip():
            raise ValidationError({"customer_email": ["An email address is required for online payment"]})

        reference = new_payment_reference()
        payment_url = None
        if command.method in ONLINE_METHODS:
            session = _start_provider_session(order, reference, command.customer_email)
            if session is not None:
                payment_url = session.payment_url

        order.initiate_payment(command.method, reference, payment_url)
        current_domain.repository_for(Order).add(order)

        logger.info(
            "Payment initiated",
            order_id=str(order.id),
            method=command.method,
            reference=reference,
            has_payment_url=payment_url is not None,
        )
        return str(order.id)

    @handle(ConfirmPayment)
    def confirm_payment(self, command):
        order = load_order(command.order_id) if command.order_id else find_by_payment_reference(command.reference)

        applied = order.confirm_payment(
            reference=command.reference,
            succeeded=command.succeeded,
            transaction_id=command.transaction_id,
            amount=command.amount,
            failure_reason=command.failure_reason,
        )
        if not applied:
            logger.info("Ignoring repeated payment confirmation", order_id=str(order.id), reference=command.reference)
            return str(order.id)

        current_domain.repository_for(Order).add(order)
        logger.info(
            "Payment confirmation applied",
            order_id=str(order.id),
            reference=command.reference,
            succeeded=command.succeeded,
        )
        return str(order.id)
