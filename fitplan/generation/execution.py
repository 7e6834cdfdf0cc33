"""Step dispatch table and stage execution.

Each handler takes the accumulator for the current step and returns it with
exactly one new field filled in. Handlers never write state; committing the
result is the orchestrator's job.
"""

from collections.abc import Awaitable, Callable

from loguru import logger

from fitplan.generation.progress import emit_step_complete, emit_step_failed, emit_step_start
from fitplan.generation.state import PRODUCED_BY, AccumulatedPlanData, GenerationStatus
from fitplan.generation.steps import STAGE_NAMES, GenerationStep, step_percent
from fitplan.nutrition.calculator import calculate_nutrition
from fitplan.plans.persister import PlanPersister
from fitplan.stages.ingredients import IngredientExtractor
from fitplan.stages.meal import MealPlanGenerator
from fitplan.stages.shopping_list import ShoppingListGenerator
from fitplan.stages.workout import WorkoutPlanGenerator

StepHandler = Callable[[GenerationStatus, AccumulatedPlanData], Awaitable[AccumulatedPlanData]]


class StageRunner:
    def __init__(
        self,
        workout: WorkoutPlanGenerator,
        meal: MealPlanGenerator,
        ingredients: IngredientExtractor,
        shopping_list: ShoppingListGenerator,
        persister: PlanPersister,
    ) -> None:
        self.workout = workout
        self.meal = meal
        self.ingredients = ingredients
        self.shopping_list = shopping_list
        self.persister = persister
        self.handlers: dict[GenerationStep, StepHandler] = {
            GenerationStep.INITIALIZE: self.run_nutrition,
            GenerationStep.NUTRITION_CALCULATION: self.run_workout_plan,
            GenerationStep.WORKOUT_PLAN: self.run_meal_plan,
            GenerationStep.MEAL_PLAN: self.run_ingredients,
            GenerationStep.EXTRACT_INGREDIENTS: self.run_shopping_list,
            GenerationStep.SHOPPING_LIST: self.run_persist,
        }

    async def run_nutrition(self, _status: GenerationStatus, data: AccumulatedPlanData) -> AccumulatedPlanData:
        return data.with_field("nutrition_data", calculate_nutrition(data.input_snapshot))

    async def run_workout_plan(self, status: GenerationStatus, data: AccumulatedPlanData) -> AccumulatedPlanData:
        nutrition = data.require_nutrition_data(status.current_step)
        plan = await self.workout.generate(data.input_snapshot, nutrition)
        return data.with_field("workout_plan", plan)

    async def run_meal_plan(self, status: GenerationStatus, data: AccumulatedPlanData) -> AccumulatedPlanData:
        nutrition = data.require_nutrition_data(status.current_step)
        plan = await self.meal.generate(data.input_snapshot, nutrition)
        return data.with_field("meal_plan", plan)

    async def run_ingredients(self, status: GenerationStatus, data: AccumulatedPlanData) -> AccumulatedPlanData:
        meal_plan = data.require_meal_plan(status.current_step)
        if meal_plan.structured_ingredients is not None:
            logger.info(
                "Reusing structured ingredients from meal plan",
                user_id=status.user_id,
                total_count=meal_plan.structured_ingredients.total_count,
            )
            return data.with_field("ingredients", meal_plan.structured_ingredients)

        ingredients = await self.ingredients.generate(meal_plan)
        return data.with_field("ingredients", ingredients)

    async def run_shopping_list(self, status: GenerationStatus, data: AccumulatedPlanData) -> AccumulatedPlanData:
        ingredients = data.require_ingredients(status.current_step)
        shopping_list = await self.shopping_list.generate(ingredients, data.input_snapshot)
        return data.with_field("shopping_list", shopping_list)

    async def run_persist(self, status: GenerationStatus, data: AccumulatedPlanData) -> AccumulatedPlanData:
        plan_id = self.persister.persist(status.user_id, status.generation_id, data)
        return data.with_field("plan_id", plan_id)

    async def run_step(self, status: GenerationStatus, data: AccumulatedPlanData) -> AccumulatedPlanData:
        """Run the action for ``status.current_step`` and return the grown accumulator.

        Raises:
            MissingStageDataError: If an earlier stage's output is absent
            UpstreamGenerationError: If the stage's upstream call fails
            PersistenceError: If the final plan cannot be stored
        """
        step = status.current_step
        handler = self.handlers.get(step)
        if handler is None:
            return data

        stage = STAGE_NAMES[step]
        start_time = emit_step_start(status.user_id, status.generation_id, stage, step_percent(step))
        try:
            data.check_consistent_with(step)
            updated = await handler(status, data)
        except Exception as e:
            emit_step_failed(status.user_id, status.generation_id, stage, start_time, str(e))
            raise

        emit_step_complete(
            status.user_id,
            status.generation_id,
            stage,
            step_percent(step.next_step()),
            start_time,
            summary={"produced": PRODUCED_BY[step]},
        )
        return updated
