"""Pydantic request/response schemas for the Ordering API.

These are external contracts (anti-corruption layer), separate from the
internal Protean commands. Item details are a tagged union: ``rental`` for
rental items, ``service`` for service bookings, neither for purchases.
"""

import json
from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class RefereeSchema(BaseModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None


class RentalDetailsSchema(BaseModel):
    start_date: date
    end_date: date
    pickup_time: str | None = None
    return_time: str | None = None
    referee: RefereeSchema | None = None


class ServiceDetailsSchema(BaseModel):
    date: date
    time: str = Field(pattern=r"^\d{2}:\d{2}$")
    duration: int = Field(ge=1, description="Minutes")
    location_type: Literal["studio", "outdoor", "client_location"] = "studio"
    location_address: str | None = None
    special_requests: list[str] = Field(default_factory=list)


class FulfillmentSchema(BaseModel):
    method: Literal["pickup", "delivery"] | None = None
    location: str | None = None
    address: str | None = None
    scheduled_date: date | None = None
    scheduled_time: str | None = None
    instructions: str | None = None


class ReferrerSchema(BaseModel):
    name: str | None = None
    phone: str | None = None
    email: str | None = None
    relationship: str | None = None


class ExtraChargeSchema(BaseModel):
    reason: str
    amount: float = Field(ge=0)


# ---------------------------------------------------------------------------
# Cart Request Schemas
# ---------------------------------------------------------------------------
class AddToCartRequest(BaseModel):
    product_id: str
    item_type: Literal["purchase", "rental", "service"]
    quantity: int = Field(ge=1, default=1)
    rental: RentalDetailsSchema | None = None
    service: ServiceDetailsSchema | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "product_id": "cam-001",
                    "item_type": "rental",
                    "quantity": 1,
                    "rental": {
                        "start_date": "2026-03-10",
                        "end_date": "2026-03-13",
                        "referee": {"name": "Ada Obi", "email": "ada@example.com", "phone": "+2348000000000"},
                    },
                }
            ]
        }
    }


class UpdateCartItemRequest(BaseModel):
    quantity: int | None = None
    rental: dict | None = None
    service: dict | None = None

    def changes(self) -> dict:
        """Flatten into the field changes the cart understands."""
        changes = {}
        if self.quantity is not None:
            changes["quantity"] = self.quantity
        changes.update(self.rental or {})
        changes.update(self.service or {})
        return changes


class CheckoutRequest(BaseModel):
    fulfillment: FulfillmentSchema = Field(default_factory=FulfillmentSchema)
    referrer_info: ReferrerSchema | None = None
    notes: str | None = None


# ---------------------------------------------------------------------------
# Order Request Schemas
# ---------------------------------------------------------------------------
class InitiatePaymentRequest(BaseModel):
    method: Literal["paystack", "bank_transfer", "cash"]
    customer_email: str | None = None


class CancelOrderRequest(BaseModel):
    reason: str


class UpdateOrderStatusRequest(BaseModel):
    status: str
    reason: str | None = None
    amount: float | None = None


class RefundOrderRequest(BaseModel):
    amount: float | None = Field(default=None, gt=0)
    reason: str | None = None


class ProcessReturnRequest(BaseModel):
    condition: Literal["excellent", "good", "fair", "damaged"]
    damage_notes: str | None = None
    extra_charges: list[ExtraChargeSchema] = Field(default_factory=list)
    returned_on: date | None = None


class AssignOrderRequest(BaseModel):
    assigned_to: str


class InternalNoteRequest(BaseModel):
    note: str


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------
class PricingResponse(BaseModel):
    subtotal: float = 0.0
    discount_total: float = 0.0
    tax_total: float = 0.0
    shipping_total: float = 0.0
    security_deposit: float = 0.0
    total: float = 0.0
    currency: str = "NGN"


class ItemResponse(BaseModel):
    item_id: str
    product_id: str
    product_name: str | None = None
    item_type: str
    quantity: int
    unit_price: float
    base_total: float
    discount_amount: float
    subtotal: float
    item_status: str
    rental: dict | None = None
    service: dict | None = None


def _rental_view(rental) -> dict | None:
    if rental is None:
        return None
    referee = rental.referee
    return {
        "start_date": rental.start_date.isoformat(),
        "end_date": rental.end_date.isoformat(),
        "pickup_time": rental.pickup_time,
        "return_time": rental.return_time,
        "duration": rental.duration,
        "daily_rate": rental.daily_rate,
        "discount_percent": rental.discount_percent,
        "referee": {"name": referee.name, "email": referee.email, "phone": referee.phone} if referee else None,
    }


def _service_view(service) -> dict | None:
    if service is None:
        return None
    return {
        "date": service.date.isoformat(),
        "time": service.time,
        "duration": service.duration,
        "location_type": service.location_type,
        "location_address": service.location_address,
        "special_requests": json.loads(service.special_requests or "[]"),
    }


def _item_view(item) -> ItemResponse:
    return ItemResponse(
        item_id=str(item.id),
        product_id=str(item.product_id),
        product_name=item.product.name if item.product else None,
        item_type=item.item_type,
        quantity=item.quantity,
        unit_price=item.unit_price,
        base_total=item.base_total,
        discount_amount=item.discount_amount,
        subtotal=item.subtotal,
        item_status=item.item_status,
        rental=_rental_view(item.rental),
        service=_service_view(item.service),
    )


def _pricing_view(pricing) -> PricingResponse:
    if pricing is None:
        return PricingResponse()
    return PricingResponse(
        subtotal=pricing.subtotal,
        discount_total=pricing.discount_total,
        tax_total=pricing.tax_total,
        shipping_total=pricing.shipping_total,
        security_deposit=pricing.security_deposit,
        total=pricing.total,
        currency=pricing.currency,
    )


class CartResponse(BaseModel):
    cart_id: str
    customer_id: str
    status: str
    order_type: str
    item_count: int
    items: list[ItemResponse]
    pricing: PricingResponse

    @classmethod
    def from_order(cls, order) -> "CartResponse":
        return cls(
            cart_id=str(order.id),
            customer_id=str(order.customer_id),
            status=order.status,
            order_type=order.order_type,
            item_count=order.item_count,
            items=[_item_view(item) for item in order.items],
            pricing=_pricing_view(order.pricing),
        )


class OrderResponse(BaseModel):
    order_id: str
    order_number: str
    customer_id: str
    status: str
    order_type: str
    items: list[ItemResponse]
    pricing: PricingResponse
    payment_method: str | None = None
    payment_status: str
    payment_reference: str | None = None
    payment_url: str | None = None
    amount_paid: float = 0.0
    amount_refunded: float = 0.0
    fulfillment: dict | None = None
    workflow: dict | None = None
    cancellation: dict | None = None
    returns: dict | None = None
    assigned_to: str | None = None
    customer_notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_order(cls, order) -> "OrderResponse":
        amounts = order.payment_amounts
        fulfillment = order.fulfillment
        workflow = order.workflow
        cancellation = order.cancellation
        returns = order.returns
        return cls(
            order_id=str(order.id),
            order_number=order.order_number,
            customer_id=str(order.customer_id),
            status=order.status,
            order_type=order.order_type,
            items=[_item_view(item) for item in order.items],
            pricing=_pricing_view(order.pricing),
            payment_method=order.payment_method,
            payment_status=order.payment_status,
            payment_reference=order.payment_reference,
            payment_url=order.payment_url,
            amount_paid=amounts.paid if amounts else 0.0,
            amount_refunded=amounts.refunded if amounts else 0.0,
            fulfillment=fulfillment.to_dict() if fulfillment else None,
            workflow=workflow.to_dict() if workflow else None,
            cancellation=cancellation.to_dict() if cancellation else None,
            returns=returns.to_dict() if returns else None,
            assigned_to=order.assigned_to,
            customer_notes=order.customer_notes,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class OrderSummaryResponse(BaseModel):
    order_id: str
    order_number: str
    customer_id: str
    status: str
    order_type: str | None = None
    item_count: int = 0
    total: float = 0.0
    currency: str = "NGN"
    payment_status: str | None = None
    assigned_to: str | None = None
    created_at: datetime | None = None
    placed_at: datetime | None = None

    @classmethod
    def from_summary(cls, summary) -> "OrderSummaryResponse":
        return cls(
            order_id=str(summary.order_id),
            order_number=summary.order_number,
            customer_id=str(summary.customer_id),
            status=summary.status,
            order_type=summary.order_type,
            item_count=summary.item_count or 0,
            total=summary.total or 0.0,
            currency=summary.currency or "NGN",
            payment_status=summary.payment_status,
            assigned_to=summary.assigned_to,
            created_at=summary.created_at,
            placed_at=summary.placed_at,
        )


class OrderListResponse(BaseModel):
    orders: list[OrderSummaryResponse]
    total: int
    page: int
    limit: int
    pages: int

    @classmethod
    def from_page(cls, page) -> "OrderListResponse":
        return cls(
            orders=[OrderSummaryResponse.from_summary(s) for s in page.items],
            total=page.total,
            page=page.page,
            limit=page.limit,
            pages=page.pages,
        )


class OrderStatsResponse(BaseModel):
    total_orders: int
    active_orders: int
    completed_orders: int
    total_revenue: float
    orders_by_status: list[dict]
    orders_by_type: list[dict]
    overdue_rentals: int


class DailyRevenueResponse(BaseModel):
    date: str
    revenue: float
    refunds: float
    order_count: int


class StatusResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    error: str
    message: str
    fields: dict[str, list[str]] = Field(default_factory=dict)
