from loguru import logger

from fitplan.generation.errors import UpstreamGenerationError
from fitplan.plans.models import MealPlan, NutritionTargets, PlanInput
from fitplan.services.llm.client import CompletionClient
from fitplan.stages.common import call_upstream, check_weekdays, parse_stage_output
from fitplan.stages.ingredients import standardize_ingredient_list

STAGE = "meal_plan"

SYSTEM_PROMPT = """You are a sports nutritionist and chef.

Your task is to design a ONE-WEEK meal plan that hits the given daily targets.

Rules:
- Include all seven days, monday to sunday, as keys of weeklyMealPlan.
- Every day has at least one meal, keyed by meal type (breakfast, lunch, dinner, snack...).
- Every meal has calories, protein, carbs and fat as non-negative numbers, plus its ingredients.
- Respect every dietary preference.
- Also return structuredIngredients: the week's ingredients grouped under
  Produce, Protein, Dairy & Eggs, Grains & Bread and Other.
- You must output ONLY valid JSON.
"""


def build_meal_payload(plan_input: PlanInput, nutrition: NutritionTargets, store: str) -> dict:
    return {
        "dailyTargets": {
            "calories": nutrition.calories,
            "protein": nutrition.protein,
            "carbs": nutrition.carbs,
            "fat": nutrition.fat,
        },
        "fitnessGoal": plan_input.fitness_goal,
        "dietaryPreferences": plan_input.dietary_preferences,
        "weeklyBudget": plan_input.weekly_budget,
        "preferredStore": store,
        "location": plan_input.location,
    }


class MealPlanGenerator:
    def __init__(self, client: CompletionClient, *, strict_weekdays: bool = True, default_store: str = "Tesco") -> None:
        self.client = client
        self.strict_weekdays = strict_weekdays
        self.default_store = default_store

    async def generate(self, plan_input: PlanInput, nutrition: NutritionTargets) -> MealPlan:
        """Generate a weekly meal plan.

        Embedded ``structuredIngredients`` are standardized to the ingredient
        category keys; an empty embedded list is dropped so extraction runs.

        Raises:
            UpstreamGenerationError: If the call fails, the response does not
                validate, a present day has no meals, or (in strict mode) a
                weekday is missing
        """
        store = plan_input.preferred_store or self.default_store
        raw = await call_upstream(
            self.client,
            STAGE,
            SYSTEM_PROMPT,
            build_meal_payload(plan_input, nutrition, store),
            MealPlan,
        )
        plan = parse_stage_output(STAGE, MealPlan, raw)

        empty_days = [day for day, meals in plan.weekly_meal_plan.items() if not meals]
        if empty_days:
            raise UpstreamGenerationError(STAGE, f"days without meals: {', '.join(empty_days)}")

        missing = check_weekdays(STAGE, set(plan.weekly_meal_plan), strict=self.strict_weekdays)

        structured = plan.structured_ingredients
        if structured is not None:
            structured = standardize_ingredient_list(structured)
            if structured.total_count == 0:
                structured = None

        logger.info(
            "Meal plan generated",
            meals=plan.meal_count,
            missing_days=len(missing),
            has_structured_ingredients=structured is not None,
        )
        return plan.model_copy(update={"missing_days": missing, "structured_ingredients": structured})
