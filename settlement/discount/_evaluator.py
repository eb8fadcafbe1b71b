"""
Discount evaluator — validation order and pricing.

Validation order (first failure wins):
    exists → active → not exhausted → subtotal meets minimum

evaluate() is used by checkout inside its transaction; check() is the
client-facing pre-check. Neither mutates usage: the counter is incremented
by the order repository with a guarded UPDATE.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from kungfu import Result, Ok, Error
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from settlement._types import Cents, utcnow
from settlement.discount._types import (
    AppliedDiscount,
    DiscountCheck,
    DiscountCode,
    DiscountKind,
    DiscountRejected,
    Fixed,
    Percent,
    Rejection,
    normalize_code,
)
from settlement.errors import SettlementError, SettlementErrors
from settlement.observability import get_logger
from settlement.store import DiscountCodeTable

log = get_logger(__name__)


class DiscountEvaluator:
    def __init__(self, now: Callable[[], datetime] = utcnow) -> None:
        self._now = now

    async def lookup(self, session: AsyncSession, code: str) -> DiscountCode | None:
        row = await session.scalar(
            select(DiscountCodeTable).where(DiscountCodeTable.code == normalize_code(code))
        )
        if row is None:
            return None
        return DiscountCode.from_row(row)

    async def evaluate(
        self,
        session: AsyncSession,
        code: str,
        subtotal: Cents,
    ) -> Result[AppliedDiscount, DiscountRejected]:
        normalized = normalize_code(code)
        found = await self.lookup(session, normalized)

        if found is None:
            return Error(DiscountRejected(Rejection.NOT_FOUND, normalized))
        if not found.is_active(self._now()):
            return Error(DiscountRejected(Rejection.INACTIVE, normalized))
        if found.is_exhausted:
            return Error(DiscountRejected(Rejection.EXHAUSTED, normalized))
        if found.min_subtotal_cents is not None and subtotal < found.min_subtotal_cents:
            return Error(
                DiscountRejected(
                    Rejection.MIN_SUBTOTAL_UNMET, normalized, found.min_subtotal_cents
                )
            )

        return Ok(AppliedDiscount(code=found, amount=found.kind.amount(subtotal)))

    async def check(
        self,
        session: AsyncSession,
        code: str,
        subtotal: Cents | None = None,
    ) -> DiscountCheck:
        """
        Read-only pre-check.

        Without a subtotal the minimum-subtotal rule cannot fail; the
        threshold is reported so the client can show it.
        """
        if subtotal is not None:
            result = await self.evaluate(session, code, subtotal)
            match result:
                case Ok(applied):
                    return DiscountCheck(
                        valid=True,
                        kind=applied.kind,
                        min_subtotal_cents=applied.code.min_subtotal_cents,
                        amount=applied.amount,
                    )
                case Error(rejected):
                    return DiscountCheck(
                        valid=False,
                        reason=rejected.reason,
                        min_subtotal_cents=rejected.required,
                    )

        found = await self.lookup(session, code)
        if found is None:
            return DiscountCheck(valid=False, reason=Rejection.NOT_FOUND)
        if not found.is_active(self._now()):
            return DiscountCheck(valid=False, reason=Rejection.INACTIVE)
        if found.is_exhausted:
            return DiscountCheck(valid=False, reason=Rejection.EXHAUSTED)
        return DiscountCheck(
            valid=True,
            kind=found.kind,
            min_subtotal_cents=found.min_subtotal_cents,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Code Creation (admin collaborator)
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class DiscountDraft:
    code: str
    kind: DiscountKind
    min_subtotal_cents: Cents | None = None
    usage_limit: int | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    active: bool = True


def validate_draft(draft: DiscountDraft) -> Result[DiscountDraft, SettlementError]:
    code = normalize_code(draft.code)
    if not 2 <= len(code) <= 32:
        return Error(SettlementErrors.invalid_request("code must be 2-32 characters"))
    match draft.kind:
        case Fixed(value_cents=v) if v < 0:
            return Error(SettlementErrors.invalid_request("valueCents must be non-negative"))
        case Percent(percent=p) if not 1 <= p <= 100:
            return Error(SettlementErrors.invalid_request("percent must be 1-100"))
    if draft.usage_limit is not None and draft.usage_limit < 1:
        return Error(SettlementErrors.invalid_request("usageLimit must be at least 1"))
    if draft.starts_at and draft.ends_at and draft.ends_at <= draft.starts_at:
        return Error(SettlementErrors.invalid_request("endsAt must be after startsAt"))
    return Ok(draft)


async def create_code(
    session: AsyncSession, draft: DiscountDraft
) -> Result[DiscountCode, SettlementError]:
    """Insert a new code. The caller owns the transaction."""
    match validate_draft(draft):
        case Error(err):
            return Error(err)
        case Ok(_):
            pass

    match draft.kind:
        case Fixed(value_cents=v):
            value_cents, percent = v, None
        case Percent(percent=p):
            value_cents, percent = None, p

    row = DiscountCodeTable(
        code=normalize_code(draft.code),
        kind=draft.kind.tag,
        value_cents=value_cents,
        percent=percent,
        min_subtotal_cents=draft.min_subtotal_cents,
        usage_limit=draft.usage_limit,
        times_used=0,
        active=draft.active,
        starts_at=draft.starts_at,
        ends_at=draft.ends_at,
    )
    try:
        async with session.begin_nested():
            session.add(row)
    except IntegrityError:
        return Error(SettlementErrors.invalid_request(f"code {row.code} already exists"))

    log.info("discount_code_created", code=row.code, kind=row.kind)
    return Ok(DiscountCode.from_row(row))


__all__ = ("DiscountEvaluator", "DiscountDraft", "validate_draft", "create_code")
