"""
Saga -- ordered, named steps with an explicit outcome.

Posting a document touches several records (the document, journal entries,
account balances, stock, linked bills) inside one session.  The saga runs
the steps in order and stops at the first failure.  It never undoes the
completed steps: the outcome names them, and the caller decides whether to
roll the session back or repair forward.

    Completed(steps)
    PartiallyFailed(steps_done, steps_remaining, cause)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from books_kernel.logging_config import get_logger

logger = get_logger("domain.saga")


@dataclass(frozen=True)
class SagaStep:
    name: str
    action: Callable[[], object]
    # What undoing this step would take; surfaced in failure logs
    compensation: str = ""


@dataclass(frozen=True)
class Completed:
    steps: tuple[str, ...]

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class PartiallyFailed:
    steps_done: tuple[str, ...]
    failed_step: str
    steps_remaining: tuple[str, ...]
    cause: BaseException = field(compare=False)
    compensations: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return False


SagaOutcome = Completed | PartiallyFailed


class Saga:
    """
    Runs a list of steps, recording which ones completed.

    Only exceptions derived from Exception are captured; anything else
    (KeyboardInterrupt, SystemExit) propagates untouched.
    """

    def __init__(self, name: str, steps: list[SagaStep]):
        self.name = name
        self.steps = steps

    def run(self) -> SagaOutcome:
        done: list[str] = []
        for index, step in enumerate(self.steps):
            try:
                step.action()
            except Exception as exc:
                remaining = tuple(s.name for s in self.steps[index + 1:])
                compensations = tuple(
                    s.compensation for s in reversed(self.steps[:index]) if s.compensation
                )
                logger.error(
                    "saga_step_failed",
                    extra={
                        "saga": self.name,
                        "failed_step": step.name,
                        "steps_done": list(done),
                        "steps_remaining": list(remaining),
                        "compensations": list(compensations),
                        "error": f"{type(exc).__name__}: {exc}",
                    },
                )
                return PartiallyFailed(
                    steps_done=tuple(done),
                    failed_step=step.name,
                    steps_remaining=remaining,
                    cause=exc,
                    compensations=compensations,
                )
            done.append(step.name)
            logger.debug(
                "saga_step_completed",
                extra={"saga": self.name, "step": step.name},
            )
        return Completed(steps=tuple(done))
