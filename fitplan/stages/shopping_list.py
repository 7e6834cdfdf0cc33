"""Shopping list generation and normalization.

Whatever shape upstream returns, a normalized list has both a category-keyed
structure and a flat item list, every item priced (category estimates fill
the gaps) and a budget status computed against the weekly budget.
"""

from loguru import logger

from fitplan.generation.errors import UpstreamGenerationError
from fitplan.plans.models import IngredientList, PlanInput, ShoppingItem, ShoppingList
from fitplan.services.llm.client import CompletionClient
from fitplan.stages.common import call_upstream, parse_stage_output
from fitplan.stages.pricing import (
    SHOPPING_CATEGORIES,
    budget_status,
    estimate_price,
    map_to_shopping_category,
    normalize_budget,
)

STAGE = "shopping_list"

SYSTEM_PROMPT = """You are a grocery shopping assistant.

Your task is to turn a week's ingredient list into a shopping list for the given store.

Rules:
- Group items by store aisle category.
- Give each item a purchasable quantity, unit and an estimated price in GBP.
- Stay within the weekly budget where possible.
- You must output ONLY valid JSON.
"""


def normalize_shopping_list(
    shopping_list: ShoppingList,
    *,
    budget: float,
    store: str | None,
    margin: float,
) -> ShoppingList:
    """Normalize a shopping list into both shapes with prices and totals.

    Items come from the category structure when it has any, otherwise from
    the flat list. Categories are mapped to the standard shopping
    categories, sorted by item name and dropped when empty.
    """
    if any(shopping_list.categories.values()):
        source = [
            item.model_copy(update={"category": category})
            for category, items in shopping_list.categories.items()
            for item in items
        ]
    else:
        source = list(shopping_list.items)

    categories: dict[str, list[ShoppingItem]] = {}
    for item in source:
        category = map_to_shopping_category(item.category)
        update: dict[str, object] = {"category": category, "store": item.store or store}
        if item.estimated_price is None:
            update["estimated_price"] = estimate_price(category)
            update["price_estimated"] = True
        categories.setdefault(category, []).append(item.model_copy(update=update))

    ordered = {
        category: sorted(categories[category], key=lambda i: i.name.lower())
        for category in SHOPPING_CATEGORIES
        if categories.get(category)
    }
    items = [item for category_items in ordered.values() for item in category_items]
    total_cost = round(sum(item.estimated_price or 0.0 for item in items), 2)

    return ShoppingList(
        categories=ordered,
        items=items,
        total_cost=total_cost,
        budget=budget,
        budget_status=budget_status(total_cost, budget, margin),
        store=store,
    )


def shopping_list_from_ingredients(
    ingredients: IngredientList,
    *,
    budget: float,
    store: str | None,
    margin: float,
) -> ShoppingList:
    """Derive a shopping list directly from an ingredient list."""
    items = [
        ShoppingItem(
            name=ingredient.name,
            quantity=ingredient.quantity,
            unit=ingredient.unit,
            category=ingredient.category or category,
            estimated_price=ingredient.price,
            optional=ingredient.optional,
            store=ingredient.store,
        )
        for category, category_items in ingredients.categories.items()
        for ingredient in category_items
    ]
    return normalize_shopping_list(ShoppingList(items=items), budget=budget, store=store, margin=margin)


class ShoppingListGenerator:
    def __init__(
        self,
        client: CompletionClient,
        *,
        default_budget: float = 50.0,
        minimum_budget: float = 30.0,
        budget_margin: float = 0.1,
        default_store: str = "Tesco",
    ) -> None:
        self.client = client
        self.default_budget = default_budget
        self.minimum_budget = minimum_budget
        self.budget_margin = budget_margin
        self.default_store = default_store

    def budget_for(self, plan_input: PlanInput) -> float:
        return normalize_budget(plan_input.weekly_budget, self.default_budget, self.minimum_budget)

    def store_for(self, plan_input: PlanInput) -> str:
        return plan_input.preferred_store or self.default_store

    async def generate(self, ingredients: IngredientList, plan_input: PlanInput) -> ShoppingList:
        budget = self.budget_for(plan_input)
        store = self.store_for(plan_input)
        payload = {
            "ingredients": ingredients.to_json_dict()["categories"],
            "weeklyBudget": budget,
            "store": store,
            "location": plan_input.location,
        }
        raw = await call_upstream(self.client, STAGE, SYSTEM_PROMPT, payload, ShoppingList)
        parsed = parse_stage_output(STAGE, ShoppingList, raw)

        shopping_list = normalize_shopping_list(parsed, budget=budget, store=store, margin=self.budget_margin)
        if not shopping_list.items:
            raise UpstreamGenerationError(STAGE, "shopping list has no items")

        estimated = sum(1 for item in shopping_list.items if item.price_estimated)
        logger.info(
            "Shopping list generated",
            items=len(shopping_list.items),
            estimated_prices=estimated,
            total_cost=shopping_list.total_cost,
            budget=budget,
            budget_status=shopping_list.budget_status,
        )
        return shopping_list
