"""
Application factory.

    app = create_app()                       # service built in lifespan
    app = create_app(service=service)        # pre-built (tests, embedding)

Request ids are taken from ``X-Request-Id`` (or generated) and bound to every
log line emitted while the request is handled.
"""

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request, Response

from settlement import __version__
from settlement.api._errors import install_error_handlers
from settlement.api._routes import router
from settlement.config import Settings, get_settings
from settlement.observability import (
    bind_request,
    clear_request,
    configure_logging,
    get_logger,
)
from settlement.service import SettlementService

log = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-Id"


async def _request_context(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
    clear_request()
    bind_request(request_id=request_id, method=request.method, path=request.url.path)
    try:
        response = await call_next(request)
    finally:
        clear_request()
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


def create_app(
    settings: Settings | None = None,
    service: SettlementService | None = None,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings.log_level, settings.log_json)
        owned: SettlementService | None = None
        if getattr(app.state, "service", None) is None:
            owned = await SettlementService.create(settings)
            app.state.service = owned
        log.info("app_started", provider=settings.provider, currency=settings.currency)
        try:
            yield
        finally:
            if owned is not None:
                await owned.close()
            log.info("app_stopped")

    app = FastAPI(title="settlement", version=__version__, lifespan=lifespan)
    if service is not None:
        app.state.service = service
    app.middleware("http")(_request_context)
    install_error_handlers(app)
    app.include_router(router)
    return app


__all__ = ("create_app", "REQUEST_ID_HEADER")
