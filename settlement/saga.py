"""
Saga — a remote side effect followed by a local write, undone together.

    from settlement import saga as S

    flow = S.step(create_remote, compensate=cancel_remote, name="provider_intent").then(
        lambda remote: S.from_async(lambda: persist(remote), on_error=to_error, name="payment_record")
    )
    match await S.run_chain(flow, compensate_if=is_final):
        case Ok(done):
            done.value
        case Error(failed):
            failed.error, failed.rollback_complete

Once a step succeeds its compensator is journaled with the step's value.
When a later step fails the journal is unwound newest first. A compensator
that raises is logged and counted; unwinding continues past it.

``compensate_if`` gates the unwind on the error: when it returns False the
completed steps are left standing and reported as ``compensators_kept``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from combinators import lift as L
from kungfu import Error, LazyCoroResult, Ok, Result

from settlement.observability import get_logger

log = get_logger(__name__)

type Compensator[T] = Callable[[T], Awaitable[None]]


# ═══════════════════════════════════════════════════════════════════════════════
# Steps
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class SagaStep[T, E]:
    action: LazyCoroResult[T, E]
    compensate: Compensator[T] | None = None
    name: str = "step"

    def then[U, E2](self, f: Callable[[T], SagaStep[U, E2]]) -> Then[T, U, E, E2]:
        return Then(self, f)


@dataclass(frozen=True, slots=True)
class Then[T, U, E, E2]:
    """``first``, then the step built from its value."""

    first: SagaStep[T, E]
    next: Callable[[T], SagaStep[U, E2]]


def step[T, E](
    action: LazyCoroResult[T, E],
    compensate: Compensator[T] | None = None,
    *,
    name: str = "step",
) -> SagaStep[T, E]:
    return SagaStep(action, compensate, name)


def from_async[T, E](
    action: Callable[[], Awaitable[T]],
    on_error: Callable[[Exception], E],
    compensate: Compensator[T] | None = None,
    *,
    name: str = "step",
) -> SagaStep[T, E]:
    """Step from a plain coroutine function; a raised exception becomes ``on_error(exc)``."""
    return SagaStep(L.catching_async(action, on_error=on_error), compensate, name)


# ═══════════════════════════════════════════════════════════════════════════════
# Outcomes
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class SagaResult[T]:
    value: T
    steps_executed: int
    compensators_recorded: int


@dataclass(frozen=True, slots=True)
class SagaError[E]:
    error: E
    step_failed: int
    compensators_run: int
    compensators_failed: int
    compensators_kept: int = 0

    @property
    def rollback_complete(self) -> bool:
        return self.compensators_failed == 0 and self.compensators_kept == 0


# ═══════════════════════════════════════════════════════════════════════════════
# Journal
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True)
class _Journal:
    """Undo thunks for completed steps, oldest first."""

    entries: list[tuple[str, Callable[[], Awaitable[None]]]] = field(default_factory=list)
    executed: int = 0

    async def perform[T, E](self, saga_step: SagaStep[T, E]) -> Result[T, E]:
        self.executed += 1
        match await saga_step.action:
            case Ok(value):
                if saga_step.compensate is not None:
                    undo = saga_step.compensate
                    self.entries.append((saga_step.name, lambda: undo(value)))
                return Ok(value)
            case Error(e):
                log.info("saga_step_failed", step=saga_step.name, index=self.executed)
                return Error(e)

    async def unwind[E](
        self, error: E, compensate_if: Callable[[E], bool] | None = None
    ) -> SagaError[E]:
        if self.entries and compensate_if is not None and not compensate_if(error):
            kept = len(self.entries)
            log.info("saga_compensation_skipped", steps=[name for name, _ in self.entries])
            self.entries.clear()
            return SagaError(error, self.executed, 0, 0, kept)

        ran = failed = 0
        for name, undo in reversed(self.entries):
            try:
                await undo()
            except Exception as e:
                failed += 1
                log.error("saga_compensation_failed", step=name, exc_info=e)
            else:
                ran += 1
        self.entries.clear()
        return SagaError(error, self.executed, ran, failed)

    def done[T](self, value: T) -> SagaResult[T]:
        return SagaResult(value, self.executed, len(self.entries))


# ═══════════════════════════════════════════════════════════════════════════════
# Execution
# ═══════════════════════════════════════════════════════════════════════════════


async def run[T, E](saga_step: SagaStep[T, E]) -> Result[SagaResult[T], SagaError[E]]:
    journal = _Journal()
    match await journal.perform(saga_step):
        case Ok(value):
            return Ok(journal.done(value))
        case Error(e):
            return Error(await journal.unwind(e))


async def run_chain[T, U, E, E2](
    chain: Then[T, U, E, E2],
    *,
    compensate_if: Callable[[E | E2], bool] | None = None,
) -> Result[SagaResult[U], SagaError[E | E2]]:
    journal = _Journal()
    match await journal.perform(chain.first):
        case Error(e):
            return Error(await journal.unwind(e, compensate_if))
        case Ok(value):
            pass

    match await journal.perform(chain.next(value)):
        case Ok(final):
            return Ok(journal.done(final))
        case Error(e2):
            return Error(await journal.unwind(e2, compensate_if))


__all__ = (
    "Compensator",
    "SagaStep",
    "Then",
    "SagaResult",
    "SagaError",
    "step",
    "from_async",
    "run",
    "run_chain",
)
