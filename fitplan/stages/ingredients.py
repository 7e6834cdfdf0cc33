"""Ingredient extraction from a meal plan.

Extraction runs one upstream call per day, in weekday order, to keep each
response small; the daily lists are merged by (name, unit) with quantities
summed.
"""

from loguru import logger

from fitplan.generation.errors import UpstreamGenerationError
from fitplan.plans.models import Ingredient, IngredientList, MealPlan, Weekday
from fitplan.services.llm.client import CompletionClient
from fitplan.stages.common import call_upstream, parse_stage_output
from fitplan.stages.pricing import INGREDIENT_CATEGORIES, standardize_ingredient_category

STAGE = "ingredients"

SYSTEM_PROMPT = """You are a meal-prep assistant.

Your task is to list every ingredient needed to cook the given day's meals.

Rules:
- Group ingredients under the categories Produce, Protein, Dairy & Eggs, Grains & Bread and Other.
- Give each ingredient a name, a numeric quantity where possible and a unit.
- Combine repeated ingredients within the day.
- You must output ONLY valid JSON.
"""


def _merge_quantity(left: float | str, right: float | str) -> float | str:
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return round(left + right, 2)
    if left == right:
        return left
    return f"{left} + {right}"


def standardize_ingredient_list(ingredients: IngredientList) -> IngredientList:
    """Merge an ingredient list into the standard category keys.

    Category keys become produce/protein/dairy/grains/other, duplicate
    (name, unit) pairs are combined and each category is sorted by name.
    """
    merged: dict[tuple[str, str], Ingredient] = {}
    for category, items in ingredients.categories.items():
        key_category = standardize_ingredient_category(category)
        for item in items:
            key = (item.name.strip().lower(), item.unit.strip().lower())
            existing = merged.get(key)
            if existing is None:
                merged[key] = item.model_copy(update={"category": key_category})
                continue
            merged[key] = existing.model_copy(
                update={
                    "quantity": _merge_quantity(existing.quantity, item.quantity),
                    "optional": existing.optional and item.optional,
                    "price": existing.price if existing.price is not None else item.price,
                }
            )

    categories: dict[str, list[Ingredient]] = {}
    for category in INGREDIENT_CATEGORIES:
        items = sorted((i for i in merged.values() if i.category == category), key=lambda i: i.name.lower())
        if items:
            categories[category] = items
    return IngredientList(categories=categories)


class IngredientExtractor:
    def __init__(self, client: CompletionClient) -> None:
        self.client = client

    async def generate(self, meal_plan: MealPlan) -> IngredientList:
        days = [day for day in Weekday if meal_plan.weekly_meal_plan.get(day)]
        if not days:
            raise UpstreamGenerationError(STAGE, "meal plan has no meals to extract ingredients from")

        daily_categories: dict[str, list[Ingredient]] = {}
        for day in days:
            meals = meal_plan.weekly_meal_plan[day]
            payload = {
                "day": day.value,
                "meals": {meal_type: meal.to_json_dict() for meal_type, meal in meals.items()},
            }
            raw = await call_upstream(self.client, STAGE, SYSTEM_PROMPT, payload, IngredientList)
            day_list = parse_stage_output(STAGE, IngredientList, raw)
            logger.debug("Extracted ingredients for day", day=day.value, count=day_list.total_count)

            for category, items in day_list.categories.items():
                daily_categories.setdefault(category, []).extend(items)

        ingredients = standardize_ingredient_list(IngredientList(categories=daily_categories))
        if ingredients.total_count == 0:
            raise UpstreamGenerationError(STAGE, "no ingredients extracted from meal plan")

        logger.info("Ingredients extracted", days=len(days), total_count=ingredients.total_count)
        return ingredients
