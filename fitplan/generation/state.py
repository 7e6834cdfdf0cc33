"""Generation status record and the per-user plan accumulator.

``GenerationStatus`` is immutable; every transition builds a new instance
with ``model_copy(update=...)`` and a bumped ``version``.

``AccumulatedPlanData`` is append-only: each stage fills exactly one field
and later stages read earlier fields through the ``require_*`` accessors.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from fitplan.generation.errors import MissingStageDataError
from fitplan.generation.steps import STEP_TIME_ESTIMATES, TOTAL_STEPS, GenerationStep
from fitplan.plans.models import CamelModel, IngredientList, MealPlan, NutritionTargets, PlanInput, ShoppingList, WorkoutPlan


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def remaining_seconds(step: GenerationStep) -> int:
    """Sum of the time estimates for every step not yet reached."""
    return sum(seconds for s, seconds in STEP_TIME_ESTIMATES.items() if s > step)


class RunState(StrEnum):
    RUNNING = "running"
    FAILED = "failed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class GenerationStatus(BaseModel):
    """Live generation record for one user.

    Attributes:
        generation_id: Identifies one run; plan persistence is idempotent on it
        current_step: Last completed step
        run_state: Why ``is_generating`` is what it is
        version: Incremented on every write; writers compare-and-set on it
        claimed_step: Step an ``advance`` is currently working on, if any
        claimed_at: When the claim was taken
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    generation_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    is_generating: bool = True
    current_step: GenerationStep = GenerationStep.INITIALIZE
    step_message: str = GenerationStep.INITIALIZE.message
    estimated_seconds_remaining: int = remaining_seconds(GenerationStep.INITIALIZE)
    total_steps: int = TOTAL_STEPS
    error_message: str | None = None
    run_state: RunState = RunState.RUNNING
    version: int = 0
    claimed_step: GenerationStep | None = None
    claimed_at: datetime | None = None
    started_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def new(cls, user_id: str, now: datetime | None = None) -> GenerationStatus:
        now = now or utcnow()
        return cls(user_id=user_id, started_at=now, updated_at=now)

    @property
    def is_complete(self) -> bool:
        return self.current_step == GenerationStep.COMPLETE

    def is_stale(self, now: datetime, threshold: timedelta) -> bool:
        return self.is_generating and now - as_utc(self.updated_at) > threshold

    def has_live_claim(self, now: datetime, claim_timeout: timedelta) -> bool:
        if self.claimed_step is None or self.claimed_at is None:
            return False
        return now - as_utc(self.claimed_at) <= claim_timeout

    def claimed(self, now: datetime) -> GenerationStatus:
        """Return a copy holding the claim on the current step.

        Claiming also clears a previous failure, so a retried step reports
        as running while it is being worked on.
        """
        return self.model_copy(
            update={
                "is_generating": True,
                "run_state": RunState.RUNNING,
                "error_message": None,
                "claimed_step": self.current_step,
                "claimed_at": now,
                "version": self.version + 1,
                "updated_at": now,
            }
        )

    def advanced_to(self, step: GenerationStep, now: datetime) -> GenerationStatus:
        done = step == GenerationStep.COMPLETE
        return self.model_copy(
            update={
                "current_step": step,
                "step_message": step.message,
                "estimated_seconds_remaining": remaining_seconds(step),
                "is_generating": not done,
                "run_state": RunState.COMPLETED if done else RunState.RUNNING,
                "error_message": None,
                "claimed_step": None,
                "claimed_at": None,
                "version": self.version + 1,
                "updated_at": now,
            }
        )

    def failed(self, error_message: str, now: datetime) -> GenerationStatus:
        return self.model_copy(
            update={
                "is_generating": False,
                "run_state": RunState.FAILED,
                "error_message": error_message,
                "claimed_step": None,
                "claimed_at": None,
                "version": self.version + 1,
                "updated_at": now,
            }
        )

    def cancelled(self, error_message: str, now: datetime) -> GenerationStatus:
        return self.model_copy(
            update={
                "is_generating": False,
                "run_state": RunState.CANCELLED,
                "error_message": error_message,
                "claimed_step": None,
                "claimed_at": None,
                "version": self.version + 1,
                "updated_at": now,
            }
        )


# Accumulated fields produced by the action taken at each step
PRODUCED_BY: dict[GenerationStep, str] = {
    GenerationStep.INITIALIZE: "nutrition_data",
    GenerationStep.NUTRITION_CALCULATION: "workout_plan",
    GenerationStep.WORKOUT_PLAN: "meal_plan",
    GenerationStep.MEAL_PLAN: "ingredients",
    GenerationStep.EXTRACT_INGREDIENTS: "shopping_list",
    GenerationStep.SHOPPING_LIST: "plan_id",
}


def fields_required_for(step: GenerationStep) -> list[str]:
    """Accumulated fields that must exist before acting at ``step``."""
    return [field for s, field in PRODUCED_BY.items() if s < step]


class AccumulatedPlanData(CamelModel):
    """Per-run accumulator; each field stays None until its stage has run.

    Serialized with camelCase keys, like the plan models it holds.
    """

    input_snapshot: PlanInput
    nutrition_data: NutritionTargets | None = None
    workout_plan: WorkoutPlan | None = None
    meal_plan: MealPlan | None = None
    ingredients: IngredientList | None = None
    shopping_list: ShoppingList | None = None
    plan_id: str | None = None

    def _require(self, field: str, step: GenerationStep):
        value = getattr(self, field)
        if value is None:
            raise MissingStageDataError(field, step.name.lower())
        return value

    def require_nutrition_data(self, step: GenerationStep) -> NutritionTargets:
        return self._require("nutrition_data", step)

    def require_workout_plan(self, step: GenerationStep) -> WorkoutPlan:
        return self._require("workout_plan", step)

    def require_meal_plan(self, step: GenerationStep) -> MealPlan:
        return self._require("meal_plan", step)

    def require_ingredients(self, step: GenerationStep) -> IngredientList:
        return self._require("ingredients", step)

    def require_shopping_list(self, step: GenerationStep) -> ShoppingList:
        return self._require("shopping_list", step)

    def check_consistent_with(self, step: GenerationStep) -> None:
        """Raise MissingStageDataError if any field earlier steps produced is absent."""
        for field in fields_required_for(step):
            self._require(field, step)

    def with_field(self, field: str, value: object) -> AccumulatedPlanData:
        return self.model_copy(update={field: value})
