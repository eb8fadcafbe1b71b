"""
HTTP routes. Thin: decode, call the service, encode.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse
from kungfu import Error, Ok

from settlement.api._errors import error_response
from settlement.api._schemas import (
    CheckoutIn,
    CheckoutOut,
    DiscountCheckOut,
    DiscountIn,
    DiscountOut,
    OrderOut,
    PaymentIntentIn,
    PaymentIntentOut,
    StatusIn,
    WebhookOut,
)
from settlement.errors import SettlementErrors
from settlement.orders import OrderStatus
from settlement.service import SettlementService


def _service(request: Request) -> SettlementService:
    return request.app.state.service


Service = Annotated[SettlementService, Depends(_service)]

router = APIRouter()


# ═══════════════════════════════════════════════════════════════════════════════
# Checkout + Discounts
# ═══════════════════════════════════════════════════════════════════════════════


@router.post("/checkout", response_model=CheckoutOut)
async def checkout(
    body: CheckoutIn,
    service: Service,
    x_cart_id: Annotated[str | None, Header()] = None,
) -> CheckoutOut | JSONResponse:
    match await service.checkout(body.to_domain(cart_id=x_cart_id)):
        case Ok(receipt):
            return CheckoutOut.from_domain(receipt)
        case Error(err):
            return error_response(err)


@router.get(
    "/discounts/validate",
    response_model=DiscountCheckOut,
    response_model_exclude_none=True,
)
async def validate_discount(
    service: Service,
    code: Annotated[str, Query(min_length=1)],
    subtotal_cents: Annotated[int | None, Query(alias="subtotalCents", ge=0)] = None,
) -> DiscountCheckOut | JSONResponse:
    match await service.validate_discount(code, subtotal_cents):
        case Ok(check):
            return DiscountCheckOut.from_domain(check)
        case Error(err):
            return error_response(err)


@router.post("/discounts", response_model=DiscountOut, status_code=201)
async def create_discount(body: DiscountIn, service: Service) -> DiscountOut | JSONResponse:
    match await service.create_discount(body.to_domain()):
        case Ok(code):
            return DiscountOut.from_domain(code)
        case Error(err):
            return error_response(err)


# ═══════════════════════════════════════════════════════════════════════════════
# Payments
# ═══════════════════════════════════════════════════════════════════════════════


@router.post("/payments/intent", response_model=PaymentIntentOut)
async def create_payment_intent(
    body: PaymentIntentIn, service: Service
) -> PaymentIntentOut | JSONResponse:
    match await service.create_payment_intent(body.order_id):
        case Ok(intent):
            return PaymentIntentOut.from_domain(intent)
        case Error(err):
            return error_response(err)


@router.post("/payments/webhook", response_model=WebhookOut)
async def payment_webhook(request: Request, service: Service) -> WebhookOut | JSONResponse:
    payload = await request.body()
    match await service.handle_webhook(payload, dict(request.headers)):
        case Ok(receipt):
            return WebhookOut.from_domain(receipt)
        case Error(err):
            return error_response(err)


# ═══════════════════════════════════════════════════════════════════════════════
# Orders
# ═══════════════════════════════════════════════════════════════════════════════


@router.get("/orders/{order_id}", response_model=OrderOut)
async def get_order(order_id: str, service: Service) -> OrderOut | JSONResponse:
    match await service.get_order(order_id):
        case Ok(order):
            return OrderOut.from_domain(order)
        case Error(err):
            return error_response(err)


@router.post("/orders/{order_id}/status", response_model=OrderOut)
async def update_order_status(
    order_id: str, body: StatusIn, service: Service
) -> OrderOut | JSONResponse:
    try:
        target = OrderStatus(body.status.strip().upper())
    except ValueError:
        return error_response(
            SettlementErrors.invalid_request(f"Unknown order status {body.status!r}")
        )
    match await service.update_status(order_id, target):
        case Ok(order):
            return OrderOut.from_domain(order)
        case Error(err):
            return error_response(err)


@router.post("/orders/{order_id}/cancel", response_model=OrderOut)
async def cancel_order(order_id: str, service: Service) -> OrderOut | JSONResponse:
    match await service.cancel_order(order_id):
        case Ok(order):
            return OrderOut.from_domain(order)
        case Error(err):
            return error_response(err)


# ═══════════════════════════════════════════════════════════════════════════════
# Health
# ═══════════════════════════════════════════════════════════════════════════════


@router.get("/health")
async def health(service: Service) -> JSONResponse:
    circuit = service.provider_circuit()
    match await service.health():
        case Ok(checks):
            return JSONResponse(
                {"status": "ok", **checks, "providerCircuit": circuit.state.value}
            )
        case Error(err):
            return JSONResponse(
                status_code=503,
                content={"status": "degraded", "error": err.code},
            )


__all__ = ("router",)
