"""
Webhook processor — verify, normalize, settle in one transaction.
"""

from __future__ import annotations

from collections.abc import Mapping

from kungfu import Error, Ok, Result
from sqlalchemy.exc import SQLAlchemyError

from settlement._types import SessionFactory
from settlement.checkout import CartRepository
from settlement.errors import AbortTransaction, SettlementError, SettlementErrors
from settlement.observability import get_logger
from settlement.orders import OrderRepository
from settlement.webhooks._graph import WebhookContext, run_webhook
from settlement.webhooks._parse import parse_payload
from settlement.webhooks._signature import SignatureVerifier, Unverified
from settlement.webhooks._types import Disposition, WebhookEvent, WebhookReceipt

log = get_logger(__name__)


class WebhookProcessor:
    def __init__(
        self,
        session_factory: SessionFactory,
        verifier: SignatureVerifier | None = None,
        orders: OrderRepository | None = None,
        carts: CartRepository | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._verifier = verifier or Unverified()
        self._orders = orders or OrderRepository()
        self._carts = carts or CartRepository()

    async def process(
        self, payload: bytes, headers: Mapping[str, str]
    ) -> Result[WebhookReceipt, SettlementError]:
        """Raw delivery in, receipt out. Rejected deliveries leave no trace in the store."""
        lowered = {k.lower(): v for k, v in headers.items()}

        match self._verifier.verify(payload, lowered):
            case Error(err):
                log.warning("webhook_rejected", error=err.code, reason=err.message)
                return Error(err)
            case Ok(_):
                pass

        match parse_payload(payload, lowered):
            case Error(err):
                log.warning("webhook_rejected", error=err.code, reason=err.message)
                return Error(err)
            case Ok(None):
                log.info("webhook_ignored")
                return Ok(WebhookReceipt(Disposition.IGNORED))
            case Ok(event):
                return await self.apply(event)

    async def apply(self, event: WebhookEvent) -> Result[WebhookReceipt, SettlementError]:
        """Settle a normalized event. Side effects and ledger row commit together."""
        try:
            async with self._session_factory() as session, session.begin():
                ctx = WebhookContext(
                    session=session,
                    event=event,
                    orders=self._orders,
                    carts=self._carts,
                )
                match await run_webhook(ctx):
                    case Ok(receipt):
                        return Ok(receipt)
                    case Error(err):
                        raise AbortTransaction(err)
        except AbortTransaction as abort:
            log.info(
                "webhook_rolled_back",
                event_id=event.event_id,
                provider_ref=event.provider_ref,
                error=abort.error.code,
            )
            return Error(abort.error)
        except SQLAlchemyError as e:
            log.error("webhook_store_error", event_id=event.event_id, exc_info=e)
            return Error(SettlementErrors.infrastructure("webhook not recorded"))


__all__ = ("WebhookProcessor",)
