"""
Resilience context for provider calls: classification, retry, circuit breakers.

    resilience = ResilienceContext.from_settings(settings)

    match await resilience.call("payments.create_intent", lambda: provider.create_intent(...)):
        case Ok(intent):
            ...
        case Error(ProviderFailure(error_class=ErrorClass.RATE_LIMIT)):
            ...

Retries use tenacity with exponential backoff and multiplicative jitter
(x0.5 to x1.0). Each attempt is bounded by a timeout. One breaker per
operation name:

    CLOSED ──(failure_threshold consecutive failures)──► OPEN
    OPEN ──(reset_timeout elapsed)──► HALF_OPEN
    HALF_OPEN ──(one trial call at a time; success_threshold successes)──► CLOSED
    HALF_OPEN ──(any failure)──► OPEN

State lives in this object only. It is never consulted for money or stock.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import stripe
from kungfu import Error, Ok, Result
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from settlement.config import Settings
from settlement.errors import SettlementError, SettlementErrors
from settlement.observability import get_logger
from settlement.payments._types import ProviderError

log = get_logger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# Classification
# ═══════════════════════════════════════════════════════════════════════════════


class ErrorClass(Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    CLIENT_ERROR = "client_error"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self not in (
            ErrorClass.AUTHENTICATION,
            ErrorClass.CLIENT_ERROR,
            ErrorClass.UNKNOWN,
        )

    @property
    def trips_breaker(self) -> bool:
        """A rejected request says nothing about the provider's health."""
        return self is not ErrorClass.CLIENT_ERROR


def _from_status(status: int | None, default: ErrorClass) -> ErrorClass:
    if status is None:
        return default
    if status in (401, 403):
        return ErrorClass.AUTHENTICATION
    if status == 429:
        return ErrorClass.RATE_LIMIT
    if status >= 500:
        return ErrorClass.SERVER_ERROR
    if status >= 400:
        return ErrorClass.CLIENT_ERROR
    return default


def classify(exc: BaseException) -> ErrorClass:
    match exc:
        case TimeoutError():
            return ErrorClass.TIMEOUT
        case stripe.APIConnectionError():
            return ErrorClass.NETWORK
        case stripe.AuthenticationError():
            return ErrorClass.AUTHENTICATION
        case stripe.RateLimitError():
            return ErrorClass.RATE_LIMIT
        case stripe.StripeError():
            return _from_status(exc.http_status, ErrorClass.UNKNOWN)
        case ProviderError():
            return _from_status(exc.status, ErrorClass.NETWORK)
        case ConnectionError() | OSError():
            return ErrorClass.NETWORK
        case _:
            return ErrorClass.UNKNOWN


# ═══════════════════════════════════════════════════════════════════════════════
# Policies
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """attempts counts the first call: attempts=1 disables retries."""

    attempts: int = 3
    base_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 10.0
    jitter: bool = True

    def delay(self, attempt: int, rng: random.Random) -> float:
        """Sleep after the given failed attempt (1-based)."""
        raw = min(self.max_delay, self.base_delay * self.factor ** (attempt - 1))
        if self.jitter:
            raw *= rng.uniform(0.5, 1.0)
        return raw


@dataclass(frozen=True, slots=True)
class BreakerPolicy:
    failure_threshold: int = 5
    reset_timeout: float = 60.0
    success_threshold: int = 3


# ═══════════════════════════════════════════════════════════════════════════════
# Circuit Breaker
# ═══════════════════════════════════════════════════════════════════════════════


class BreakerState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True, slots=True)
class BreakerStatus:
    state: BreakerState
    failure_count: int
    success_count: int
    last_failure_time: float | None


class CircuitBreaker:
    def __init__(self, policy: BreakerPolicy, clock: Callable[[], float]) -> None:
        self.policy = policy
        self._clock = clock
        self.state = BreakerState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: float | None = None
        self._trial_in_flight = False

    def allow(self) -> bool:
        """
        False while OPEN; moves to HALF_OPEN once the cooldown has elapsed.

        HALF_OPEN admits a single trial call until it is recorded or released.
        """
        if self.state is BreakerState.OPEN:
            assert self.last_failure_time is not None
            if self._clock() - self.last_failure_time < self.policy.reset_timeout:
                return False
            self.state = BreakerState.HALF_OPEN
            self.success_count = 0
        if self.state is BreakerState.HALF_OPEN:
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
        return True

    def release(self) -> None:
        """End a trial call without a verdict."""
        self._trial_in_flight = False

    def record_success(self) -> None:
        self._trial_in_flight = False
        if self.state is BreakerState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.policy.success_threshold:
                self.state = BreakerState.CLOSED
                self.failure_count = 0
                self.success_count = 0
            return
        self.failure_count = 0

    def record_failure(self) -> None:
        self._trial_in_flight = False
        self.last_failure_time = self._clock()
        self.success_count = 0
        if self.state is BreakerState.HALF_OPEN:
            self.state = BreakerState.OPEN
            return
        self.failure_count += 1
        if self.failure_count >= self.policy.failure_threshold:
            self.state = BreakerState.OPEN

    def status(self) -> BreakerStatus:
        return BreakerStatus(
            state=self.state,
            failure_count=self.failure_count,
            success_count=self.success_count,
            last_failure_time=self.last_failure_time,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Context
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class ProviderFailure:
    operation: str
    error_class: ErrorClass
    message: str
    attempts: int
    circuit_open: bool = False

    def to_error(self) -> SettlementError:
        err = SettlementErrors.provider_unavailable(
            "Payment provider temporarily unavailable"
            if self.circuit_open
            else f"Payment provider call failed: {self.message}"
        )
        return SettlementError(
            err.kind,
            err.message,
            {"errorClass": self.error_class.value, "attempts": self.attempts},
        )


class ResilienceContext:
    def __init__(
        self,
        retry: RetryPolicy = RetryPolicy(),
        breaker: BreakerPolicy = BreakerPolicy(),
        timeout: float | None = 10.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.retry = retry
        self.breaker_policy = breaker
        self.timeout = timeout
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._breakers: dict[str, CircuitBreaker] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> ResilienceContext:
        return cls(
            retry=RetryPolicy(
                attempts=settings.retry_attempts,
                base_delay=settings.retry_base_delay,
                factor=settings.retry_factor,
                max_delay=settings.retry_max_delay,
            ),
            breaker=BreakerPolicy(
                failure_threshold=settings.breaker_failure_threshold,
                reset_timeout=settings.breaker_reset_timeout,
                success_threshold=settings.breaker_success_threshold,
            ),
            timeout=settings.provider_timeout_seconds,
        )

    def breaker(self, operation: str) -> CircuitBreaker:
        if operation not in self._breakers:
            self._breakers[operation] = CircuitBreaker(self.breaker_policy, self._clock)
        return self._breakers[operation]

    def status(self, operation: str) -> BreakerStatus:
        return self.breaker(operation).status()

    def _wait(self, retry_state: RetryCallState) -> float:
        return self.retry.delay(retry_state.attempt_number, self._rng)

    async def call[T](
        self,
        operation: str,
        fn: Callable[[], Awaitable[T]],
    ) -> Result[T, ProviderFailure]:
        breaker = self.breaker(operation)
        if not breaker.allow():
            log.warning("circuit_open", operation=operation)
            return Error(
                ProviderFailure(operation, ErrorClass.UNKNOWN, "circuit open", 0, True)
            )

        def log_retry(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            log.warning(
                "provider_call_retry",
                operation=operation,
                attempt=retry_state.attempt_number,
                max_attempts=self.retry.attempts,
                wait_seconds=retry_state.upcoming_sleep,
                error=str(exc),
            )

        attempts = 0
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.retry.attempts),
                wait=self._wait,
                retry=retry_if_exception(
                    lambda e: isinstance(e, Exception) and classify(e).retryable
                ),
                sleep=self._sleep,
                before_sleep=log_retry,
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    async with asyncio.timeout(self.timeout):
                        value = await fn()
        except Exception as e:
            error_class = classify(e)
            if error_class.trips_breaker:
                breaker.record_failure()
            log.warning(
                "provider_call_failed",
                operation=operation,
                error_class=error_class.value,
                attempts=attempts,
                breaker=breaker.state.value,
                error=str(e),
            )
            return Error(ProviderFailure(operation, error_class, str(e), attempts))
        else:
            breaker.record_success()
            return Ok(value)
        finally:
            breaker.release()


__all__ = (
    "ErrorClass",
    "classify",
    "RetryPolicy",
    "BreakerPolicy",
    "BreakerState",
    "BreakerStatus",
    "CircuitBreaker",
    "ProviderFailure",
    "ResilienceContext",
)
