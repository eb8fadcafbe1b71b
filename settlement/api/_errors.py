"""
Error responses — ErrorKind to HTTP status, body ``{"error": code, **details}``.
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from settlement.errors import ErrorFamily, ErrorKind, SettlementError
from settlement.observability import get_logger

log = get_logger(__name__)

STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.EMPTY_CART: 400,
    ErrorKind.INVALID_DISCOUNT: 400,
    ErrorKind.DISCOUNT_MIN_SUBTOTAL: 400,
    ErrorKind.DISCOUNT_EXHAUSTED: 400,
    ErrorKind.INVALID_TRANSITION: 400,
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.MALFORMED_WEBHOOK: 400,
    ErrorKind.INVALID_SIGNATURE: 400,
    ErrorKind.STOCK_CONFLICT: 409,
    ErrorKind.ORDER_NOT_PAYABLE: 409,
    ErrorKind.ORDER_NOT_FOUND: 404,
    ErrorKind.UNKNOWN_PAYMENT_REFERENCE: 404,
    ErrorKind.PROVIDER_UNAVAILABLE: 503,
    ErrorKind.INFRASTRUCTURE: 500,
}


def error_response(err: SettlementError) -> JSONResponse:
    # Transition errors carry the readable message as the error field.
    code = err.message if err.kind is ErrorKind.INVALID_TRANSITION else err.code
    body = {"error": code, **err.details}
    if err.kind.family is not ErrorFamily.INFRASTRUCTURE and "message" not in body:
        body["message"] = err.message
    return JSONResponse(status_code=STATUS_CODES[err.kind], content=body)


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "error": ErrorKind.INVALID_REQUEST.value,
            "details": [
                {"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()
            ],
        },
    )


async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
    log.error(
        "unhandled_error",
        method=request.method,
        path=request.url.path,
        exc_info=exc,
    )
    return JSONResponse(status_code=500, content={"error": "internal_error"})


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, _validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled)


__all__ = ("STATUS_CODES", "error_response", "install_error_handlers")
