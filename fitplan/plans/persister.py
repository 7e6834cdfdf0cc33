"""Writes a completed generation run as the user's active fitness plan."""

from datetime import datetime, timezone

from loguru import logger

from fitplan.generation.state import AccumulatedPlanData
from fitplan.generation.steps import GenerationStep
from fitplan.plans.models import IngredientList, PlanInput, ShoppingList
from fitplan.plans.repository import NutritionGoal, NutritionGoalRepository, PlanRecord, PlanRepository
from fitplan.stages.pricing import normalize_budget
from fitplan.stages.shopping_list import normalize_shopping_list, shopping_list_from_ingredients


def plan_name(plan_input: PlanInput, now: datetime) -> str:
    goal = plan_input.fitness_goal.replace("_", " ").title()
    return f"{goal} Plan - {now:%Y-%m-%d}"


class PlanPersister:
    """Builds and stores the final plan record for a run.

    Idempotent per ``generation_id``: persisting the same run twice returns
    the plan created the first time.
    """

    def __init__(
        self,
        plans: PlanRepository,
        goals: NutritionGoalRepository,
        *,
        default_budget: float = 50.0,
        minimum_budget: float = 30.0,
        budget_margin: float = 0.1,
        default_store: str = "Tesco",
    ) -> None:
        self.plans = plans
        self.goals = goals
        self.default_budget = default_budget
        self.minimum_budget = minimum_budget
        self.budget_margin = budget_margin
        self.default_store = default_store

    def final_shopping_list(self, data: AccumulatedPlanData, ingredients: IngredientList) -> ShoppingList:
        """Shopping list in both shapes, derived from ingredients if none was generated."""
        plan_input = data.input_snapshot
        store = plan_input.preferred_store or self.default_store
        budget = normalize_budget(plan_input.weekly_budget, self.default_budget, self.minimum_budget)

        shopping_list = data.shopping_list
        if shopping_list is None or not (shopping_list.items or any(shopping_list.categories.values())):
            logger.warning("No shopping list generated, deriving one from ingredients")
            return shopping_list_from_ingredients(ingredients, budget=budget, store=store, margin=self.budget_margin)

        return normalize_shopping_list(
            shopping_list,
            budget=shopping_list.budget if shopping_list.budget is not None else budget,
            store=shopping_list.store or store,
            margin=self.budget_margin,
        )

    def build_record(self, generation_id: str, data: AccumulatedPlanData, now: datetime) -> PlanRecord:
        step = GenerationStep.SHOPPING_LIST
        nutrition = data.require_nutrition_data(step)
        workout_plan = data.require_workout_plan(step)
        meal_plan = data.require_meal_plan(step)
        ingredients = data.require_ingredients(step)
        plan_input = data.input_snapshot

        preferences = {key: value for key, value in plan_input.to_json_dict().items() if value is not None}
        preferences["nutritionGoals"] = {
            "calories": nutrition.calories,
            "protein": nutrition.protein,
            "carbs": nutrition.carbs,
            "fat": nutrition.fat,
        }

        workout_json = workout_plan.to_json_dict()
        workout_json["nutritionData"] = nutrition.to_json_dict()

        meal_json = meal_plan.to_json_dict()
        meal_json["shoppingList"] = self.final_shopping_list(data, ingredients).to_json_dict()
        meal_json["ingredients"] = ingredients.to_json_dict()

        return PlanRecord(
            generation_id=generation_id,
            name=plan_name(plan_input, now),
            preferences=preferences,
            workout_plan=workout_json,
            meal_plan=meal_json,
        )

    def persist(self, user_id: str, generation_id: str, data: AccumulatedPlanData) -> str:
        """Store the run's plan as the user's active plan and return its id.

        Raises:
            MissingStageDataError: If an earlier stage's output is absent
            PersistenceError: If the plan repository fails
        """
        existing = self.plans.find_plan_for_generation(user_id, generation_id)
        if existing is not None:
            logger.info("Plan already persisted for generation", user_id=user_id, generation_id=generation_id, plan_id=existing)
            return existing

        record = self.build_record(generation_id, data, datetime.now(timezone.utc))
        plan_id = self.plans.create_plan(user_id, record)

        nutrition = data.require_nutrition_data(GenerationStep.SHOPPING_LIST)
        try:
            self.goals.upsert_goal(
                user_id,
                NutritionGoal(
                    calories=round(nutrition.calories),
                    protein=round(nutrition.protein),
                    carbs=round(nutrition.carbs),
                    fat=round(nutrition.fat),
                ),
            )
        except Exception as e:
            # The plan is already stored; goals are refreshed by the next plan
            logger.error(
                "Failed to update nutrition goals, continuing with plan",
                user_id=user_id,
                plan_id=plan_id,
                error=str(e),
            )

        logger.info("Plan persisted", user_id=user_id, generation_id=generation_id, plan_id=plan_id)
        return plan_id
