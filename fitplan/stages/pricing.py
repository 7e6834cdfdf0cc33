"""Category mapping, fallback prices and budget rules for shopping lists."""

import re

SHOPPING_CATEGORIES = [
    "Produce",
    "Meat & Seafood",
    "Dairy & Eggs",
    "Grains & Bread",
    "Canned Goods",
    "Frozen",
    "Pantry",
    "Spices & Herbs",
    "Beverages",
    "Other",
]

_CATEGORY_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("Produce", re.compile(r"produce|vegetable|fruit|veg|fresh", re.IGNORECASE)),
    ("Meat & Seafood", re.compile(r"meat|poultry|beef|chicken|pork|seafood|fish|protein", re.IGNORECASE)),
    ("Dairy & Eggs", re.compile(r"dairy|cheese|milk|egg|yogurt", re.IGNORECASE)),
    ("Grains & Bread", re.compile(r"grain|bread|pasta|rice|cereal", re.IGNORECASE)),
    ("Canned Goods", re.compile(r"can|tin", re.IGNORECASE)),
    ("Frozen", re.compile(r"frozen", re.IGNORECASE)),
    ("Pantry", re.compile(r"pantry|dry good|staple|baking", re.IGNORECASE)),
    ("Spices & Herbs", re.compile(r"spice|herb|seasoning", re.IGNORECASE)),
    ("Beverages", re.compile(r"beverage|drink|juice|water", re.IGNORECASE)),
]

# Typical UK package price (GBP) per category, used when upstream omits a price
CATEGORY_PRICE_ESTIMATES: dict[str, float] = {
    "Produce": 1.20,
    "Meat & Seafood": 4.00,
    "Dairy & Eggs": 1.80,
    "Grains & Bread": 1.30,
    "Canned Goods": 0.90,
    "Frozen": 2.50,
    "Pantry": 1.50,
    "Spices & Herbs": 1.00,
    "Beverages": 1.50,
    "Other": 2.00,
}

# Ingredient-list keys used by extraction, keyed by their upstream display names
INGREDIENT_CATEGORY_KEYS: dict[str, str] = {
    "produce": "produce",
    "protein": "protein",
    "dairy & eggs": "dairy",
    "dairy": "dairy",
    "grains & bread": "grains",
    "grains": "grains",
    "other": "other",
}

INGREDIENT_CATEGORIES = ["produce", "protein", "dairy", "grains", "other"]


def map_to_shopping_category(category: str | None) -> str:
    if not category:
        return "Other"
    if category in SHOPPING_CATEGORIES:
        return category
    for name, pattern in _CATEGORY_PATTERNS:
        if pattern.search(category):
            return name
    return "Other"


def standardize_ingredient_category(category: str | None) -> str:
    if not category:
        return "other"
    return INGREDIENT_CATEGORY_KEYS.get(category.strip().lower(), "other")


def estimate_price(category: str) -> float:
    return CATEGORY_PRICE_ESTIMATES.get(map_to_shopping_category(category), CATEGORY_PRICE_ESTIMATES["Other"])


def normalize_budget(budget: float | int | str | None, default: float, minimum: float) -> float:
    """Normalize a weekly budget to a number.

    Strings such as "£50/week" use their first number. Missing or unparseable
    budgets fall back to ``default``; anything below ``minimum`` is raised to it.
    """
    value: float | None = None
    if isinstance(budget, bool):
        value = None
    elif isinstance(budget, (int, float)):
        value = float(budget)
    elif isinstance(budget, str):
        match = re.search(r"\d+(?:\.\d+)?", budget)
        value = float(match.group()) if match else None

    if value is None:
        value = default
    return max(value, minimum)


def budget_status(total_cost: float, budget: float, margin: float) -> str:
    return "under_budget" if total_cost <= budget * (1 + margin) else "over_budget"
