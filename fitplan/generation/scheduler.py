"""Schedulers that decide when the next ``advance`` runs.

The orchestrator only says "advance this user from this step after N
seconds"; a scheduler owns the timing. Scheduled advances go through
``advance_if_at``, so a trigger that fires after the step already moved on is
a no-op.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Protocol

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from loguru import logger

from fitplan.generation.errors import GenerationError
from fitplan.generation.steps import GenerationStep

AdvanceCallback = Callable[[str, GenerationStep], Awaitable[object]]


class AdvanceScheduler(Protocol):
    def bind(self, callback: AdvanceCallback) -> None: ...

    def schedule(self, user_id: str, expected_step: GenerationStep, delay_seconds: float) -> None: ...


def advance_job_id(user_id: str, expected_step: GenerationStep) -> str:
    return f"plan_advance:{user_id}:{int(expected_step)}"


class ApschedulerAdvanceScheduler:
    """Runs scheduled advances on an APScheduler ``AsyncIOScheduler``.

    One job per (user, step): rescheduling the same step replaces the pending
    job instead of queueing a duplicate.
    """

    def __init__(self, scheduler: AsyncIOScheduler | None = None) -> None:
        self._scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self._callback: AdvanceCallback | None = None

    def bind(self, callback: AdvanceCallback) -> None:
        self._callback = callback

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("[SCHEDULER] Started plan advance scheduler")

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("[SCHEDULER] Stopped plan advance scheduler")

    def schedule(self, user_id: str, expected_step: GenerationStep, delay_seconds: float) -> None:
        run_date = datetime.now(timezone.utc) + timedelta(seconds=delay_seconds)
        self._scheduler.add_job(
            self._run,
            trigger=DateTrigger(run_date=run_date),
            args=[user_id, int(expected_step)],
            id=advance_job_id(user_id, expected_step),
            name=f"Plan advance for {user_id} at {expected_step.name}",
            replace_existing=True,
        )
        logger.debug(
            "[SCHEDULER] Advance scheduled",
            user_id=user_id,
            expected_step=expected_step.name,
            delay_seconds=delay_seconds,
        )

    async def _run(self, user_id: str, expected_step: int) -> None:
        if self._callback is None:
            logger.error("[SCHEDULER] Advance fired before a callback was bound", user_id=user_id)
            return
        try:
            await self._callback(user_id, GenerationStep(expected_step))
        except GenerationError as e:
            # Already recorded on the status record; the next trigger is the caller's
            logger.warning(
                "[SCHEDULER] Scheduled advance failed",
                user_id=user_id,
                expected_step=GenerationStep(expected_step).name,
                error=str(e),
            )
        except Exception as e:
            logger.exception(f"[SCHEDULER] Scheduled advance crashed for user {user_id}: {e}")


@dataclass(frozen=True)
class ScheduledAdvance:
    user_id: str
    expected_step: GenerationStep
    delay_seconds: float


class ManualAdvanceScheduler:
    """Records advance requests and runs them only when told to.

    Used by tests and by callers that drive generation by polling.
    """

    def __init__(self) -> None:
        self.requests: list[ScheduledAdvance] = []
        self._callback: AdvanceCallback | None = None

    def bind(self, callback: AdvanceCallback) -> None:
        self._callback = callback

    def schedule(self, user_id: str, expected_step: GenerationStep, delay_seconds: float) -> None:
        self.requests.append(ScheduledAdvance(user_id, expected_step, delay_seconds))

    async def run_pending(self) -> list[object]:
        """Fire every recorded request once, in order, and return the results."""
        if self._callback is None:
            raise RuntimeError("ManualAdvanceScheduler has no callback bound")
        pending, self.requests = self.requests, []
        return [await self._callback(request.user_id, request.expected_step) for request in pending]
