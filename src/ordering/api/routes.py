"""FastAPI routes for the Ordering domain: cart, orders, staff console and payment webhook.

Authentication happens upstream; the gateway forwards the caller's identity
in the ``X-Customer-Id`` and ``X-Role`` headers.
"""

import json
from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from ordering import queries, services
from ordering.api.schemas import (
    AddToCartRequest,
    AssignOrderRequest,
    CancelOrderRequest,
    CartResponse,
    CheckoutRequest,
    DailyRevenueResponse,
    InitiatePaymentRequest,
    InternalNoteRequest,
    OrderListResponse,
    OrderResponse,
    OrderStatsResponse,
    OrderSummaryResponse,
    ProcessReturnRequest,
    RefundOrderRequest,
    StatusResponse,
    UpdateCartItemRequest,
    UpdateOrderStatusRequest,
)
from ordering.gateway import get_provider
from ordering.order.order import ActorRole
from ordering.queries import OrderFilter

logger = structlog.get_logger(__name__)

_STAFF_ROLES = {ActorRole.STAFF.value, ActorRole.ADMIN.value}


# ---------------------------------------------------------------------------
# Caller identity
# ---------------------------------------------------------------------------
def current_customer(x_customer_id: str | None = Header(default=None)) -> str:
    if not x_customer_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_customer_id


def current_staff(
    x_customer_id: str | None = Header(default=None),
    x_role: str | None = Header(default=None),
) -> tuple[str, str]:
    if not x_customer_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    if x_role not in _STAFF_ROLES:
        raise HTTPException(status_code=403, detail="Staff access required")
    return x_customer_id, x_role


# ---------------------------------------------------------------------------
# Cart Router
# ---------------------------------------------------------------------------
cart_router = APIRouter(prefix="/cart", tags=["cart"])


@cart_router.get("", response_model=CartResponse | None)
async def get_my_cart(customer_id: str = Depends(current_customer)) -> CartResponse | None:
    cart = queries.my_cart(customer_id)
    return CartResponse.from_order(cart) if cart is not None else None


@cart_router.post("", response_model=CartResponse)
async def get_or_create_cart(customer_id: str = Depends(current_customer)) -> CartResponse:
    return CartResponse.from_order(services.get_or_create_cart(customer_id))


@cart_router.post("/items", status_code=201, response_model=CartResponse)
async def add_cart_item(body: AddToCartRequest, customer_id: str = Depends(current_customer)) -> CartResponse:
    cart = services.add_to_cart(
        customer_id,
        product_id=body.product_id,
        item_type=body.item_type,
        quantity=body.quantity,
        rental=body.rental.model_dump(mode="json", exclude_none=True) if body.rental else None,
        service=body.service.model_dump(mode="json", exclude_none=True) if body.service else None,
    )
    return CartResponse.from_order(cart)


@cart_router.patch("/items/{item_id}", response_model=CartResponse)
async def update_cart_item(
    item_id: str,
    body: UpdateCartItemRequest,
    customer_id: str = Depends(current_customer),
) -> CartResponse:
    return CartResponse.from_order(services.update_cart_item(customer_id, item_id, body.changes()))


@cart_router.delete("/items/{item_id}", response_model=CartResponse)
async def remove_cart_item(item_id: str, customer_id: str = Depends(current_customer)) -> CartResponse:
    return CartResponse.from_order(services.remove_from_cart(customer_id, item_id))


@cart_router.delete("", response_model=CartResponse)
async def clear_cart(customer_id: str = Depends(current_customer)) -> CartResponse:
    return CartResponse.from_order(services.clear_cart(customer_id))


@cart_router.post("/checkout", status_code=201, response_model=OrderResponse)
async def checkout(body: CheckoutRequest, customer_id: str = Depends(current_customer)) -> OrderResponse:
    """Seal the cart into an order awaiting payment."""
    order = services.proceed_to_checkout(
        customer_id,
        fulfillment=body.fulfillment.model_dump(mode="json", exclude_none=True),
        referrer_info=body.referrer_info.model_dump(mode="json", exclude_none=True) if body.referrer_info else None,
        notes=body.notes,
    )
    return OrderResponse.from_order(order)


# ---------------------------------------------------------------------------
# Customer Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.get("", response_model=OrderListResponse)
async def list_my_orders(
    status: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    customer_id: str = Depends(current_customer),
) -> OrderListResponse:
    return OrderListResponse.from_page(queries.my_orders(customer_id, status=status, page=page, limit=limit))


@order_router.get("/{order_id}", response_model=OrderResponse)
async def get_my_order(order_id: str, customer_id: str = Depends(current_customer)) -> OrderResponse:
    return OrderResponse.from_order(queries.my_order(order_id, customer_id))


@order_router.post("/{order_id}/payment", response_model=OrderResponse)
async def initiate_payment(
    order_id: str,
    body: InitiatePaymentRequest,
    customer_id: str = Depends(current_customer),
) -> OrderResponse:
    order = services.initiate_payment(order_id, customer_id, body.method, customer_email=body.customer_email)
    return OrderResponse.from_order(order)


@order_router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_my_order(
    order_id: str,
    body: CancelOrderRequest,
    customer_id: str = Depends(current_customer),
) -> OrderResponse:
    order = services.cancel_order(order_id, body.reason, cancelled_by=customer_id, actor_role=ActorRole.CUSTOMER.value)
    return OrderResponse.from_order(order)


# ---------------------------------------------------------------------------
# Staff Router
# ---------------------------------------------------------------------------
admin_router = APIRouter(prefix="/admin/orders", tags=["admin"])


@admin_router.get("", response_model=OrderListResponse)
async def list_orders(
    status: str | None = None,
    order_type: str | None = None,
    customer_id: str | None = None,
    assigned_to: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    search: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    staff: tuple = Depends(current_staff),
) -> OrderListResponse:
    order_filter = OrderFilter(
        status=status,
        order_type=order_type,
        customer_id=customer_id,
        assigned_to=assigned_to,
        date_from=date_from,
        date_to=date_to,
        search=search,
    )
    return OrderListResponse.from_page(queries.orders(order_filter, page=page, limit=limit))


@admin_router.get("/stats", response_model=OrderStatsResponse)
async def order_stats(staff: tuple = Depends(current_staff)) -> OrderStatsResponse:
    return OrderStatsResponse(**queries.order_stats())


@admin_router.get("/overdue-rentals", response_model=list[OrderResponse])
async def overdue_rentals(staff: tuple = Depends(current_staff)) -> list[OrderResponse]:
    return [OrderResponse.from_order(o) for o in queries.overdue_rentals()]


@admin_router.get("/stale-payments", response_model=list[OrderResponse])
async def stale_payments(staff: tuple = Depends(current_staff)) -> list[OrderResponse]:
    return [OrderResponse.from_order(o) for o in queries.stale_payments()]


@admin_router.get("/recent", response_model=list[OrderSummaryResponse])
async def recent_orders(
    limit: int = Query(default=10, ge=1, le=100),
    staff: tuple = Depends(current_staff),
) -> list[OrderSummaryResponse]:
    return [OrderSummaryResponse.from_summary(s) for s in queries.recent_orders(limit)]


@admin_router.get("/daily-revenue", response_model=list[DailyRevenueResponse])
async def daily_revenue(
    days: int = Query(default=30, ge=1, le=366),
    staff: tuple = Depends(current_staff),
) -> list[DailyRevenueResponse]:
    return [DailyRevenueResponse(**row) for row in queries.daily_revenue(days)]


@admin_router.get("/by-number/{order_number}", response_model=OrderResponse)
async def get_order_by_number(order_number: str, staff: tuple = Depends(current_staff)) -> OrderResponse:
    return OrderResponse.from_order(queries.order_by_number(order_number))


@admin_router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str, staff: tuple = Depends(current_staff)) -> OrderResponse:
    return OrderResponse.from_order(queries.order(order_id))


@admin_router.patch("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: str,
    body: UpdateOrderStatusRequest,
    staff: tuple = Depends(current_staff),
) -> OrderResponse:
    staff_id, role = staff
    order = services.update_order_status(
        order_id,
        body.status,
        changed_by=staff_id,
        actor_role=role,
        reason=body.reason,
        amount=body.amount,
    )
    return OrderResponse.from_order(order)


@admin_router.post("/{order_id}/ready", response_model=OrderResponse)
async def mark_ready(order_id: str, staff: tuple = Depends(current_staff)) -> OrderResponse:
    return OrderResponse.from_order(services.mark_order_ready(order_id, changed_by=staff[0]))


@admin_router.post("/{order_id}/delivered", response_model=OrderResponse)
async def mark_delivered(order_id: str, staff: tuple = Depends(current_staff)) -> OrderResponse:
    return OrderResponse.from_order(services.mark_order_delivered(order_id, changed_by=staff[0]))


@admin_router.post("/{order_id}/complete", response_model=OrderResponse)
async def mark_completed(order_id: str, staff: tuple = Depends(current_staff)) -> OrderResponse:
    return OrderResponse.from_order(services.mark_order_completed(order_id, changed_by=staff[0]))


@admin_router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: str,
    body: CancelOrderRequest,
    staff: tuple = Depends(current_staff),
) -> OrderResponse:
    staff_id, role = staff
    return OrderResponse.from_order(services.cancel_order(order_id, body.reason, cancelled_by=staff_id, actor_role=role))


@admin_router.post("/{order_id}/payment/confirm", response_model=OrderResponse)
async def confirm_offline_payment(order_id: str, staff: tuple = Depends(current_staff)) -> OrderResponse:
    """Record a bank transfer or cash payment received by staff."""
    order = queries.order(order_id)
    confirmed = services.confirm_payment(
        order.payment_reference,
        succeeded=True,
        order_id=order_id,
        transaction_id=f"manual:{staff[0]}",
    )
    return OrderResponse.from_order(confirmed)


@admin_router.post("/{order_id}/refund", response_model=OrderResponse)
async def refund_order(
    order_id: str,
    body: RefundOrderRequest,
    staff: tuple = Depends(current_staff),
) -> OrderResponse:
    order = services.process_refund(order_id, amount=body.amount, reason=body.reason, processed_by=staff[0])
    return OrderResponse.from_order(order)


@admin_router.post("/{order_id}/return", response_model=OrderResponse)
async def process_return(
    order_id: str,
    body: ProcessReturnRequest,
    staff: tuple = Depends(current_staff),
) -> OrderResponse:
    order = services.process_return(
        order_id,
        condition=body.condition,
        damage_notes=body.damage_notes,
        extra_charges=[charge.model_dump() for charge in body.extra_charges],
        processed_by=staff[0],
        returned_on=body.returned_on,
    )
    return OrderResponse.from_order(order)


@admin_router.post("/{order_id}/release-deposit", response_model=OrderResponse)
async def release_deposit(order_id: str, staff: tuple = Depends(current_staff)) -> OrderResponse:
    return OrderResponse.from_order(services.release_deposit(order_id, released_by=staff[0]))


@admin_router.post("/{order_id}/assign", response_model=OrderResponse)
async def assign_order(
    order_id: str,
    body: AssignOrderRequest,
    staff: tuple = Depends(current_staff),
) -> OrderResponse:
    return OrderResponse.from_order(services.assign_order(order_id, body.assigned_to, assigned_by=staff[0]))


@admin_router.post("/{order_id}/notes", status_code=201, response_model=OrderResponse)
async def add_internal_note(
    order_id: str,
    body: InternalNoteRequest,
    staff: tuple = Depends(current_staff),
) -> OrderResponse:
    return OrderResponse.from_order(services.add_internal_note(order_id, body.note, added_by=staff[0]))


# ---------------------------------------------------------------------------
# Payment Webhook Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])

_WEBHOOK_VERDICTS = {"charge.success": True, "charge.failed": False}


@payment_router.post("/webhook", response_model=StatusResponse)
async def payment_webhook(
    request: Request,
    x_paystack_signature: str | None = Header(default=None),
) -> StatusResponse:
    """Receive the provider's asynchronous payment verdict."""
    payload = await request.body()
    if not get_provider().verify_webhook_signature(payload, x_paystack_signature):
        logger.warning("Rejected payment webhook with invalid signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        event = json.loads(payload)
    except ValueError:
        raise HTTPException(status_code=400, detail="Malformed payload") from None

    succeeded = _WEBHOOK_VERDICTS.get(event.get("event"))
    if succeeded is None:
        logger.info("Ignoring payment webhook event", webhook_event=event.get("event"))
        return StatusResponse(status="ignored")

    data = event.get("data") or {}
    amount = data.get("amount")
    services.confirm_payment(
        reference=data.get("reference"),
        succeeded=succeeded,
        transaction_id=str(data["id"]) if data.get("id") is not None else None,
        # Provider amounts are in the minor unit (kobo)
        amount=amount / 100 if amount is not None else None,
        failure_reason=data.get("gateway_response") if not succeeded else None,
    )
    return StatusResponse()
