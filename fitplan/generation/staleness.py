"""Stale generation detection and the explicit operator reset.

Detection is read-only. Only ``reset_stale_generations`` changes records,
and only when an operator (or the startup repair job) asks for it.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from loguru import logger

from fitplan.generation.state import as_utc, utcnow
from fitplan.generation.state_store import GenerationStateStore
from fitplan.generation.steps import GenerationStep

STALE_RESET_MESSAGE = "Plan generation timed out. Please try again."


@dataclass(frozen=True)
class StaleGeneration:
    """A status flagged generating but not updated within the threshold."""

    user_id: str
    generation_id: str
    current_step: GenerationStep
    updated_at: datetime
    inactive_for: timedelta


def find_stale_generations(
    store: GenerationStateStore,
    threshold: timedelta,
    now: datetime | None = None,
) -> list[StaleGeneration]:
    now = now or utcnow()
    stale = [
        StaleGeneration(
            user_id=status.user_id,
            generation_id=status.generation_id,
            current_step=status.current_step,
            updated_at=status.updated_at,
            inactive_for=now - as_utc(status.updated_at),
        )
        for status in store.list_generating()
        if status.is_stale(now, threshold)
    ]
    if stale:
        logger.info("Stale plan generations detected", count=len(stale), threshold_minutes=threshold.total_seconds() / 60)
    return stale


def reset_stale_generations(
    store: GenerationStateStore,
    threshold: timedelta,
    now: datetime | None = None,
) -> list[StaleGeneration]:
    """Mark every stale generation as failed so the user can start again.

    Each reset is a compare-and-set against the version that was found stale,
    so a run that makes progress in the meantime is left alone.

    Returns:
        The generations that were actually reset
    """
    now = now or utcnow()
    reset: list[StaleGeneration] = []
    for stale in find_stale_generations(store, threshold, now):
        status = store.get_status(stale.user_id)
        if status is None or status.generation_id != stale.generation_id or not status.is_stale(now, threshold):
            continue

        if store.compare_and_set_status(stale.user_id, status.version, status.failed(STALE_RESET_MESSAGE, now)):
            logger.warning(
                "Reset stale plan generation",
                user_id=stale.user_id,
                step=stale.current_step.name,
                inactive_minutes=int(stale.inactive_for.total_seconds() // 60),
            )
            reset.append(stale)
    return reset
