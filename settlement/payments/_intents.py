"""
Payment intent manager — create or reuse a provider intent for an order.

    read: order exists? payable? PENDING record? ──► reuse (reused=True)
            │
            ▼
    saga ┌─ provider intent (resilience: timeout, retry, breaker)
         │     compensate: cancel the provider intent (final errors only)
         └─ persist record PENDING + PENDING → AWAITING_PAYMENT + event

The provider call happens outside any transaction. If persisting fails because
the order stopped being payable, the intent is cancelled at the provider. A
store failure leaves it live: the idempotency key is fixed per order, so the
next attempt gets the same intent back and records it.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from kungfu import Error, LazyCoroResult, Ok, Result
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from settlement import saga as S
from settlement._types import Cents, SessionFactory, utcnow
from settlement.errors import AbortTransaction, ErrorKind, SettlementError, SettlementErrors
from settlement.observability import get_logger
from settlement.orders import OrderEventKind, OrderStateMachine, OrderStatus, append_event
from settlement.payments._provider import PaymentProvider
from settlement.payments._resilience import ResilienceContext
from settlement.payments._types import PaymentIntent, ProviderIntent
from settlement.store import OrderTable, PaymentRecordTable, PaymentStatus

log = get_logger(__name__)

PAYABLE: tuple[OrderStatus, ...] = (OrderStatus.PENDING, OrderStatus.AWAITING_PAYMENT)

CREATE_INTENT = "payments.create_intent"
CANCEL_INTENT = "payments.cancel_intent"


def intent_key(order_id: str) -> str:
    """Provider idempotency key. One live intent per order."""
    return f"settlement-intent-{order_id}"


@dataclass(frozen=True, slots=True)
class _Payable:
    order_id: str
    amount: Cents
    currency: str


def _from_record(record: PaymentRecordTable, reused: bool) -> PaymentIntent:
    return PaymentIntent(
        order_id=record.order_id,
        payment_intent_id=record.provider_ref,
        client_secret=record.client_secret or "",
        amount=record.amount_cents,
        currency=record.currency,
        reused=reused,
    )


async def pending_record(
    session: AsyncSession, order_id: str
) -> PaymentRecordTable | None:
    return await session.scalar(
        select(PaymentRecordTable)
        .where(
            PaymentRecordTable.order_id == order_id,
            PaymentRecordTable.status == PaymentStatus.PENDING.value,
        )
        .order_by(PaymentRecordTable.id.desc())
        .limit(1)
    )


async def pending_refs(session: AsyncSession, order_id: str) -> list[str]:
    refs = await session.scalars(
        select(PaymentRecordTable.provider_ref).where(
            PaymentRecordTable.order_id == order_id,
            PaymentRecordTable.status == PaymentStatus.PENDING.value,
        )
    )
    return list(refs)


class PaymentIntentManager:
    def __init__(
        self,
        session_factory: SessionFactory,
        provider: PaymentProvider,
        resilience: ResilienceContext | None = None,
        machine: OrderStateMachine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._provider = provider
        self._resilience = resilience or ResilienceContext()
        self._machine = machine or OrderStateMachine()

    async def create_intent(self, order_id: str) -> Result[PaymentIntent, SettlementError]:
        try:
            async with self._session_factory() as session:
                prepared = await self._prepare(session, order_id)
        except SQLAlchemyError as e:
            log.error("intent_store_error", order_id=order_id, exc_info=e)
            return Error(SettlementErrors.infrastructure("order store unavailable"))

        match prepared:
            case Error(err):
                return Error(err)
            case Ok(PaymentIntent() as reused):
                log.info("payment_intent_reused", order_id=order_id, provider_ref=reused.payment_intent_id)
                return Ok(reused)
            case Ok(_Payable() as payable):
                pass

        flow = S.step(
            LazyCoroResult(lambda: self._create_remote(payable)),
            compensate=self._void,
            name="provider_intent",
        ).then(
            lambda remote: S.from_async(
                lambda: self._persist(payable, remote),
                on_error=self._persist_failed,
                name="payment_record",
            )
        )

        match await S.run_chain(flow, compensate_if=_final):
            case Ok(done):
                return Ok(done.value)
            case Error(failure):
                if failure.compensators_run:
                    log.warning("payment_intent_voided", order_id=order_id, error=failure.error.code)
                if failure.compensators_kept:
                    log.warning("payment_intent_left_live", order_id=order_id, error=failure.error.code)
                if failure.compensators_failed:
                    log.error("payment_intent_void_failed", order_id=order_id)
                return Error(failure.error)

    async def void_intents(self, provider_refs: Sequence[str]) -> int:
        """
        Cancel provider intents whose records were voided locally.

        Runs after the local cancellation committed, so a provider failure is
        logged and counted rather than returned. Returns the number cancelled.
        """
        cancelled = 0
        for ref in provider_refs:
            match await self._resilience.call(
                CANCEL_INTENT, lambda: self._provider.cancel_intent(ref)
            ):
                case Ok(_):
                    cancelled += 1
                    log.info("provider_intent_cancelled", provider_ref=ref)
                case Error(failure):
                    log.error(
                        "provider_intent_cancel_failed",
                        provider_ref=ref,
                        error_class=failure.error_class.value,
                        attempts=failure.attempts,
                    )
        return cancelled

    # ───────────────────────────────────────────────────────────────────────────
    # Steps
    # ───────────────────────────────────────────────────────────────────────────

    async def _prepare(
        self, session: AsyncSession, order_id: str
    ) -> Result[_Payable | PaymentIntent, SettlementError]:
        row = await session.get(OrderTable, order_id)
        if row is None:
            return Error(SettlementErrors.order_not_found(order_id))
        if OrderStatus(row.status) not in PAYABLE:
            return Error(SettlementErrors.order_not_payable(order_id, row.status))

        existing = await pending_record(session, order_id)
        if existing is not None:
            return Ok(_from_record(existing, reused=True))
        return Ok(_Payable(row.id, row.total_cents, row.currency))

    async def _create_remote(
        self, payable: _Payable
    ) -> Result[ProviderIntent, SettlementError]:
        result = await self._resilience.call(
            CREATE_INTENT,
            lambda: self._provider.create_intent(
                order_id=payable.order_id,
                amount=payable.amount,
                currency=payable.currency,
                idempotency_key=intent_key(payable.order_id),
            ),
        )
        match result:
            case Ok(intent):
                return Ok(intent)
            case Error(failure):
                return Error(failure.to_error())

    async def _void(self, intent: ProviderIntent) -> None:
        await self._provider.cancel_intent(intent.provider_ref)
        log.info("provider_intent_cancelled", provider_ref=intent.provider_ref)

    async def _persist(self, payable: _Payable, remote: ProviderIntent) -> PaymentIntent:
        try:
            async with self._session_factory() as session, session.begin():
                return await self._record(session, payable, remote)
        except IntegrityError:
            # Same idempotency key, same provider_ref: a concurrent call won.
            return await self._recorded_by_race(remote)

    def _persist_failed(self, exc: Exception) -> SettlementError:
        match exc:
            case AbortTransaction(error=error):
                return error
            case _:
                log.error("intent_store_error", exc_info=exc)
                return SettlementErrors.infrastructure("payment record not persisted")

    async def _record(
        self, session: AsyncSession, payable: _Payable, remote: ProviderIntent
    ) -> PaymentIntent:
        order_id = payable.order_id
        row = await session.get(OrderTable, order_id, populate_existing=True)
        if row is None:
            raise AbortTransaction(SettlementErrors.order_not_found(order_id))
        if OrderStatus(row.status) not in PAYABLE:
            raise AbortTransaction(SettlementErrors.order_not_payable(order_id, row.status))

        existing = await pending_record(session, order_id)
        if existing is not None and existing.provider_ref == remote.provider_ref:
            return _from_record(existing, reused=True)

        now = utcnow()
        session.add(
            PaymentRecordTable(
                order_id=order_id,
                provider=self._provider.name,
                provider_ref=remote.provider_ref,
                client_secret=remote.client_secret,
                amount_cents=remote.amount,
                currency=remote.currency,
                status=PaymentStatus.PENDING.value,
                created_at=now,
                updated_at=now,
            )
        )
        await session.flush()

        match await self._machine.transition(
            session, order_id, OrderStatus.AWAITING_PAYMENT, reason="payment_intent_created"
        ):
            case Error(err):
                raise AbortTransaction(err)
            case Ok(_):
                pass

        append_event(
            session,
            order_id,
            OrderEventKind.PAYMENT_INTENT_CREATED,
            f"Payment intent {remote.provider_ref} created",
            {
                "paymentIntentId": remote.provider_ref,
                "provider": self._provider.name,
                "amount": remote.amount,
            },
        )
        log.info(
            "payment_intent_created",
            order_id=order_id,
            provider_ref=remote.provider_ref,
            amount=remote.amount,
        )
        return PaymentIntent(
            order_id=order_id,
            payment_intent_id=remote.provider_ref,
            client_secret=remote.client_secret,
            amount=remote.amount,
            currency=remote.currency,
            reused=False,
        )

    async def _recorded_by_race(self, remote: ProviderIntent) -> PaymentIntent:
        async with self._session_factory() as session:
            record = await session.scalar(
                select(PaymentRecordTable).where(
                    PaymentRecordTable.provider_ref == remote.provider_ref
                )
            )
        if record is None or record.status != PaymentStatus.PENDING.value:
            raise AbortTransaction(SettlementErrors.infrastructure("payment record conflicted"))
        return _from_record(record, reused=True)


def _final(error: SettlementError) -> bool:
    """The order can no longer take this intent; anything else may succeed on retry."""
    return error.kind in (ErrorKind.ORDER_NOT_FOUND, ErrorKind.ORDER_NOT_PAYABLE)


__all__ = (
    "PaymentIntentManager",
    "PAYABLE",
    "CREATE_INTENT",
    "CANCEL_INTENT",
    "intent_key",
    "pending_record",
    "pending_refs",
)
