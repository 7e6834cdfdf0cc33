"""Typed plan data produced by the generation stages.

Upstream responses and persisted JSON use camelCase keys; Python code uses
snake_case attributes. Every model accepts either form.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, NonNegativeFloat, PositiveInt, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Weekday(StrEnum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"


def _lowercase_day_keys(value: object) -> object:
    if isinstance(value, dict):
        return {key.strip().lower() if isinstance(key, str) else key: item for key, item in value.items()}
    return value


ActivityLevel = Literal["sedentary", "light", "moderate", "very_active", "extra_active"]
FitnessGoal = Literal["weight_loss", "muscle_gain", "strength", "stamina", "endurance"]
BudgetStatus = Literal["under_budget", "over_budget", "unknown"]


class PlanInput(CamelModel):
    """Onboarding answers a plan is generated from."""

    age: int = Field(ge=16, le=100)
    sex: Literal["male", "female"]
    height: float = Field(ge=100, le=250, description="Height in cm")
    weight: float = Field(ge=30, le=250, description="Weight in kg")
    activity_level: ActivityLevel
    fitness_goal: FitnessGoal
    workout_days_per_week: int = Field(ge=1, le=7)
    dietary_preferences: list[str] = Field(default_factory=list)
    weekly_budget: float | str | None = None
    preferred_store: str | None = None
    preferred_workout_days: list[str] = Field(default_factory=list)
    workout_duration: int = Field(default=60, gt=0)
    fitness_level: str | None = None
    workout_names: dict[str, str] | None = None
    location: str | None = None


class NutritionTargets(CamelModel):
    calories: int
    protein: int
    carbs: int
    fat: int
    bmr: int
    tdee: int


class Exercise(CamelModel):
    name: str
    sets: PositiveInt
    reps: int | str
    rest: int | str | None = None
    notes: str = ""


class WorkoutDay(CamelModel):
    name: str = ""
    workout_type: str = ""
    target_muscle_groups: list[str] = Field(default_factory=list)
    exercises: list[Exercise] = Field(default_factory=list)

    @property
    def is_rest_day(self) -> bool:
        return not self.exercises


class WorkoutPlan(CamelModel):
    weekly_schedule: dict[Weekday, WorkoutDay]
    notes: str = ""
    missing_days: list[Weekday] = Field(default_factory=list)

    @field_validator("weekly_schedule", mode="before")
    @classmethod
    def normalize_days(cls, value: object) -> object:
        return _lowercase_day_keys(value)

    @property
    def training_days(self) -> int:
        return sum(1 for day in self.weekly_schedule.values() if not day.is_rest_day)


class Ingredient(CamelModel):
    name: str
    quantity: float | str = "as needed"
    unit: str = ""
    category: str | None = None
    optional: bool = False
    price: NonNegativeFloat | None = None
    store: str | None = None

    @model_validator(mode="before")
    @classmethod
    def accept_estimated_price(cls, data: object) -> object:
        # Older upstream responses name the field estimated_price
        if isinstance(data, dict) and data.get("price") is None:
            for key in ("estimatedPrice", "estimated_price"):
                if data.get(key) is not None:
                    return {**data, "price": data[key]}
        return data


class IngredientList(CamelModel):
    categories: dict[str, list[Ingredient]]
    total_count: int = 0

    @model_validator(mode="after")
    def count_ingredients(self) -> IngredientList:
        self.total_count = sum(len(items) for items in self.categories.values())
        return self


class Meal(CamelModel):
    name: str
    time: str | None = None
    description: str = ""
    ingredients: list[Ingredient] = Field(default_factory=list)
    calories: NonNegativeFloat
    protein: NonNegativeFloat
    carbs: NonNegativeFloat
    fat: NonNegativeFloat
    cooking_instructions: list[str] = Field(default_factory=list)
    prep_time: int | None = None
    cook_time: int | None = None
    difficulty: str | None = None
    price: NonNegativeFloat | None = None
    store: str | None = None


class MealFrequency(CamelModel):
    meals_per_day: PositiveInt
    explanation: str = ""


class MealPlan(CamelModel):
    meal_frequency: MealFrequency | None = None
    weekly_meal_plan: dict[Weekday, dict[str, Meal]]
    notes: str = ""
    structured_ingredients: IngredientList | None = None
    missing_days: list[Weekday] = Field(default_factory=list)

    @field_validator("weekly_meal_plan", mode="before")
    @classmethod
    def normalize_days(cls, value: object) -> object:
        return _lowercase_day_keys(value)

    @property
    def meal_count(self) -> int:
        return sum(len(meals) for meals in self.weekly_meal_plan.values())


class ShoppingItem(CamelModel):
    name: str
    quantity: float | str = "as needed"
    unit: str = ""
    category: str = "Other"
    estimated_price: NonNegativeFloat | None = None
    price_estimated: bool = False
    optional: bool = False
    store: str | None = None
    checked: bool = False


class ShoppingList(CamelModel):
    categories: dict[str, list[ShoppingItem]] = Field(default_factory=dict)
    items: list[ShoppingItem] = Field(default_factory=list)
    total_cost: NonNegativeFloat = 0.0
    budget: float | None = None
    budget_status: BudgetStatus = "unknown"
    store: str | None = None
