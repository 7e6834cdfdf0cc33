"""Stepwise plan-generation orchestrator.

Drives one user's run through the generation steps, one step per
``advance`` call. Every state write is a compare-and-set on the status
version:

1. ``advance`` claims the current step (CAS). A caller that loses the claim
   returns the current status without running the stage.
2. The stage runs outside any lock.
3. The new step and the grown accumulator are committed together (CAS
   against the claim version). If the record changed meanwhile, for
   example because the run was cancelled, the result is discarded.

Stage failures, and store failures while committing, are recorded on the
status (``run_state=failed``, step unchanged, claim released) and re-raised.
Calling ``advance`` again retries the same step.
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from loguru import logger
from pydantic import ValidationError

from fitplan.config.settings import Settings, settings
from fitplan.generation.errors import InvalidInputError, MissingStageDataError, NoActiveGenerationError, PersistenceError
from fitplan.generation.execution import StageRunner
from fitplan.generation.progress import emit_generation_summary
from fitplan.generation.scheduler import AdvanceScheduler, ApschedulerAdvanceScheduler
from fitplan.generation.state import AccumulatedPlanData, GenerationStatus, RunState, utcnow
from fitplan.generation.sql_state_store import SqlStateStore
from fitplan.generation.state_store import GenerationStateStore
from fitplan.generation.steps import FOLLOW_UP_DELAYS, GenerationStep
from fitplan.plans.models import PlanInput
from fitplan.plans.persister import PlanPersister
from fitplan.plans.repository import NutritionGoalRepository, PlanRepository, SqlNutritionGoalRepository, SqlPlanRepository
from fitplan.services.llm.client import CompletionClient, PydanticAICompletionClient
from fitplan.stages.ingredients import IngredientExtractor
from fitplan.stages.meal import MealPlanGenerator
from fitplan.stages.shopping_list import ShoppingListGenerator
from fitplan.stages.workout import WorkoutPlanGenerator

CANCEL_MESSAGE = "Plan generation cancelled by user"


class StepwiseOrchestrator:
    def __init__(
        self,
        store: GenerationStateStore,
        runner: StageRunner,
        scheduler: AdvanceScheduler,
        plans: PlanRepository,
        *,
        stale_after: timedelta = timedelta(minutes=15),
        claim_timeout: timedelta = timedelta(seconds=300),
        start_delay_seconds: float = 2.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.runner = runner
        self.scheduler = scheduler
        self.plans = plans
        self.stale_after = stale_after
        self.claim_timeout = claim_timeout
        self.start_delay_seconds = start_delay_seconds
        self._clock = clock
        scheduler.bind(self.advance_if_at)

    def _schedule(self, user_id: str, expected_step: GenerationStep, delay_seconds: float) -> None:
        try:
            self.scheduler.schedule(user_id, expected_step, delay_seconds)
        except Exception as e:
            # Polling via advance still drives the run
            logger.error(
                "Failed to schedule follow-up advance",
                user_id=user_id,
                expected_step=expected_step.name,
                error=str(e),
            )

    @staticmethod
    def validate_input(plan_input: PlanInput | dict[str, Any]) -> PlanInput:
        if isinstance(plan_input, PlanInput):
            return plan_input
        try:
            return PlanInput.model_validate(plan_input)
        except ValidationError as e:
            errors = e.errors(include_url=False, include_context=False)
            raise InvalidInputError(f"Invalid plan input: {e.error_count()} validation error(s)", errors=errors) from e

    async def start(self, user_id: str, plan_input: PlanInput | dict[str, Any]) -> GenerationStatus:
        """Start a generation run, or return the run already in flight.

        Returns immediately; the first step runs on the scheduler.

        Raises:
            InvalidInputError: If ``plan_input`` does not validate
            PersistenceError: If the state store fails
        """
        validated = self.validate_input(plan_input)

        existing = self.store.get_status(user_id)
        if existing is not None and existing.is_generating:
            logger.info(
                "Generation already in progress, returning current status",
                user_id=user_id,
                step=existing.current_step.name,
            )
            return existing

        if existing is not None:
            self.store.delete_status(user_id)

        status = GenerationStatus.new(user_id, self._clock())
        if not self.store.compare_and_set_status(user_id, None, status, AccumulatedPlanData(input_snapshot=validated)):
            # A concurrent start created the record first
            current = self.store.get_status(user_id)
            if current is None:
                raise PersistenceError(f"Could not create generation record for user {user_id}")
            return current

        self.store.set_input_snapshot(user_id, validated)
        logger.info("Plan generation started", user_id=user_id, generation_id=status.generation_id)
        self._schedule(user_id, GenerationStep.INITIALIZE, self.start_delay_seconds)
        return status

    async def advance(self, user_id: str) -> GenerationStatus:
        """Run the action for the current step and commit the next step.

        A failed run is resumed at the step that failed. A completed run is
        returned unchanged.

        Raises:
            NoActiveGenerationError: If there is no run, or it was cancelled
            UpstreamGenerationError: If the stage's upstream call fails
            MissingStageDataError: If an earlier stage's output is absent
            PersistenceError: If the plan or the state cannot be stored
        """
        status = self.store.get_status(user_id)
        if status is None or status.run_state == RunState.CANCELLED:
            raise NoActiveGenerationError(user_id)
        if status.is_complete:
            return status

        now = self._clock()
        if status.has_live_claim(now, self.claim_timeout):
            logger.info(
                "Step already being worked on, returning current status",
                user_id=user_id,
                step=status.current_step.name,
            )
            return status

        claimed = status.claimed(now)
        if not self.store.compare_and_set_status(user_id, status.version, claimed):
            current = self.store.get_status(user_id)
            logger.info("Lost step claim to a concurrent advance", user_id=user_id, step=status.current_step.name)
            if current is None:
                raise NoActiveGenerationError(user_id)
            return current

        return await self._run_claimed(user_id, claimed)

    def _load_data(self, user_id: str, claimed: GenerationStatus) -> AccumulatedPlanData:
        data = self.store.get_accumulated_data(user_id)
        if data is not None:
            return data
        plan_input = self.store.get_input_snapshot(user_id)
        if plan_input is None:
            raise MissingStageDataError("input_snapshot", claimed.current_step.name.lower())
        return AccumulatedPlanData(input_snapshot=plan_input)

    async def _run_claimed(self, user_id: str, claimed: GenerationStatus) -> GenerationStatus:
        step = claimed.current_step
        try:
            data = self._load_data(user_id, claimed)
            updated = await self.runner.run_step(claimed, data)
        except Exception as e:
            self._record_failure(user_id, claimed, e)
            raise

        next_step = step.next_step()
        committed = claimed.advanced_to(next_step, self._clock())
        try:
            written = self.store.compare_and_set_status(user_id, claimed.version, committed, updated)
        except Exception as e:
            self._record_failure(user_id, claimed, e)
            raise

        if not written:
            logger.warning(
                "Generation record changed while stage ran, discarding result",
                user_id=user_id,
                step=step.name,
            )
            current = self.store.get_status(user_id)
            if updated.plan_id is not None:
                self._withdraw_plan(user_id, claimed.generation_id, updated.plan_id, current)
            if current is None:
                raise NoActiveGenerationError(user_id)
            return current

        logger.info(
            "Generation step completed",
            user_id=user_id,
            from_step=step.name,
            to_step=next_step.name,
        )
        if next_step == GenerationStep.COMPLETE:
            emit_generation_summary(committed, updated)
        else:
            self._schedule(user_id, next_step, FOLLOW_UP_DELAYS[next_step])
        return committed

    def _withdraw_plan(
        self, user_id: str, generation_id: str, plan_id: str, current: GenerationStatus | None
    ) -> None:
        """Deactivate a plan whose run was cancelled or replaced before the final commit."""
        if current is not None and current.generation_id == generation_id:
            # Same run still on record; a retry reuses the saved plan
            return
        try:
            withdrawn = self.plans.deactivate_plan(user_id, plan_id)
        except Exception as e:
            logger.error("Failed to deactivate plan of discarded run", user_id=user_id, plan_id=plan_id, error=str(e))
            return
        logger.warning(
            "Deactivated plan of discarded run",
            user_id=user_id,
            generation_id=generation_id,
            plan_id=plan_id,
            deactivated=withdrawn,
        )

    def _record_failure(self, user_id: str, claimed: GenerationStatus, error: Exception) -> None:
        failed = claimed.failed(str(error), self._clock())
        try:
            written = self.store.compare_and_set_status(user_id, claimed.version, failed)
        except Exception as store_error:
            logger.error(
                "Could not record stage failure",
                user_id=user_id,
                step=claimed.current_step.name,
                error=str(store_error),
            )
            return

        if written:
            logger.error(
                "Generation step failed",
                user_id=user_id,
                step=claimed.current_step.name,
                error=str(error),
                error_type=type(error).__name__,
            )
        else:
            logger.warning("Generation record changed before failure could be recorded", user_id=user_id)

    async def advance_if_at(self, user_id: str, expected_step: GenerationStep) -> GenerationStatus | None:
        """Scheduled-advance entry point: advance only if still running at ``expected_step``."""
        status = self.store.get_status(user_id)
        if status is None or status.run_state != RunState.RUNNING or status.current_step != expected_step:
            logger.debug(
                "Skipping scheduled advance, run has moved on",
                user_id=user_id,
                expected_step=expected_step.name,
                current_step=status.current_step.name if status else None,
            )
            return status
        if status.has_live_claim(self._clock(), self.claim_timeout):
            return status
        return await self.advance(user_id)

    async def get_status(self, user_id: str) -> GenerationStatus | None:
        status = self.store.get_status(user_id)
        if status is not None and self.is_stale(status):
            logger.warning(
                "Generation looks stale",
                user_id=user_id,
                step=status.current_step.name,
                updated_at=status.updated_at.isoformat(),
            )
        return status

    def is_stale(self, status: GenerationStatus) -> bool:
        return status.is_stale(self._clock(), self.stale_after)

    async def cancel(self, user_id: str) -> bool:
        """Cancel the user's run. Never raises; always returns True.

        Deletes the record; if that fails, marks it cancelled instead.
        """
        try:
            self.store.delete_status(user_id)
            logger.info("Plan generation cancelled", user_id=user_id)
            return True
        except Exception as e:
            logger.warning("Failed to delete generation record, marking cancelled", user_id=user_id, error=str(e))

        try:
            status = self.store.get_status(user_id)
            if status is not None:
                self.store.set_status(user_id, status.cancelled(CANCEL_MESSAGE, self._clock()))
        except Exception as e:
            logger.error("Failed to mark generation cancelled", user_id=user_id, error=str(e))
        return True

    async def get_result(self, user_id: str) -> AccumulatedPlanData | None:
        status = self.store.get_status(user_id)
        if status is None or status.is_generating or status.run_state != RunState.COMPLETED:
            return None
        return self.store.get_accumulated_data(user_id)

    async def reset(self, user_id: str) -> bool:
        """Cancel any run and deactivate the user's active plans."""
        await self.cancel(user_id)
        try:
            deactivated = self.plans.deactivate_active_plans(user_id)
            logger.info("Plan state reset", user_id=user_id, deactivated_plans=deactivated)
        except Exception as e:
            logger.error("Failed to deactivate plans during reset", user_id=user_id, error=str(e))
        return True


def build_orchestrator(
    config: Settings = settings,
    *,
    client: CompletionClient | None = None,
    store: GenerationStateStore | None = None,
    scheduler: AdvanceScheduler | None = None,
    plans: PlanRepository | None = None,
    goals: NutritionGoalRepository | None = None,
) -> StepwiseOrchestrator:
    """Wire an orchestrator from settings; any collaborator can be overridden."""
    if client is None:
        client = PydanticAICompletionClient(config.llm_provider, config.llm_model)
    if store is None:
        store = SqlStateStore()
    plans = plans or SqlPlanRepository()
    goals = goals or SqlNutritionGoalRepository()

    budget = {
        "default_budget": config.default_weekly_budget,
        "minimum_budget": config.minimum_weekly_budget,
        "budget_margin": config.budget_margin,
        "default_store": config.default_store,
    }
    runner = StageRunner(
        workout=WorkoutPlanGenerator(client, strict_weekdays=config.strict_weekdays),
        meal=MealPlanGenerator(client, strict_weekdays=config.strict_weekdays, default_store=config.default_store),
        ingredients=IngredientExtractor(client),
        shopping_list=ShoppingListGenerator(client, **budget),
        persister=PlanPersister(plans, goals, **budget),
    )
    return StepwiseOrchestrator(
        store,
        runner,
        scheduler or ApschedulerAdvanceScheduler(),
        plans,
        stale_after=timedelta(minutes=config.stale_generation_minutes),
        claim_timeout=timedelta(seconds=config.claim_timeout_seconds),
        start_delay_seconds=config.start_delay_seconds,
    )
