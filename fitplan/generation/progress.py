"""Progress emission for plan generation.

Progress is emitted as structured ``generation_progress`` log events so step
timing and failures can be followed per user and per run.
"""

import time

from loguru import logger

from fitplan.generation.state import AccumulatedPlanData, GenerationStatus


def emit_generation_progress(
    user_id: str,
    generation_id: str,
    step: str,
    status: str,
    *,
    percent: int | None = None,
    summary: dict[str, object] | None = None,
    error: str | None = None,
    duration_ms: int | None = None,
) -> None:
    """Emit a generation progress event.

    Args:
        user_id: User the run belongs to
        generation_id: Run identifier
        step: Stage name (e.g., "workout_plan", "shopping_list")
        status: "in_progress", "completed" or "failed"
        percent: Progress percentage (0-100)
        summary: Optional stage-specific counts
        error: Error message when status is "failed"
        duration_ms: Stage duration in milliseconds
    """
    event: dict[str, object] = {
        "user_id": user_id,
        "generation_id": generation_id,
        "step": step,
        "status": status,
    }

    if percent is not None:
        event["percent"] = percent

    if summary:
        event["summary"] = summary

    if error:
        event["error"] = error

    if duration_ms is not None:
        event["duration_ms"] = duration_ms

    logger.info("generation_progress", **event)


def emit_step_start(user_id: str, generation_id: str, step: str, percent: int) -> float:
    """Emit step start event and return the monotonic start time."""
    emit_generation_progress(user_id, generation_id, step, "in_progress", percent=percent)
    return time.monotonic()


def emit_step_complete(
    user_id: str,
    generation_id: str,
    step: str,
    percent: int,
    start_time: float,
    summary: dict[str, object] | None = None,
) -> None:
    duration_ms = int((time.monotonic() - start_time) * 1000)
    emit_generation_progress(
        user_id,
        generation_id,
        step,
        "completed",
        percent=percent,
        summary=summary,
        duration_ms=duration_ms,
    )


def emit_step_failed(
    user_id: str,
    generation_id: str,
    step: str,
    start_time: float | None,
    error: str,
) -> None:
    duration_ms = None
    if start_time is not None:
        duration_ms = int((time.monotonic() - start_time) * 1000)

    emit_generation_progress(user_id, generation_id, step, "failed", error=error, duration_ms=duration_ms)


def emit_generation_summary(status: GenerationStatus, data: AccumulatedPlanData) -> None:
    """Emit the final summary once a run reaches COMPLETE."""
    summary: dict[str, object] = {
        "user_id": status.user_id,
        "generation_id": status.generation_id,
        "plan_id": data.plan_id,
        "duration_s": int((status.updated_at - status.started_at).total_seconds()),
    }

    if data.workout_plan is not None:
        summary["training_days"] = data.workout_plan.training_days
    if data.meal_plan is not None:
        summary["meals"] = data.meal_plan.meal_count
    if data.ingredients is not None:
        summary["ingredients"] = data.ingredients.total_count
    if data.shopping_list is not None:
        summary["shopping_items"] = len(data.shopping_list.items)
        summary["total_cost"] = data.shopping_list.total_cost
        summary["budget_status"] = data.shopping_list.budget_status

    logger.info("generation_summary", **summary)
