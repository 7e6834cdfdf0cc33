"""Root conftest for all tests.

Shared fixtures: a scripted completion client with canned upstream
responses, in-memory stores and repositories, a manual scheduler, and an
isolated in-memory SQLite database for the SQL-backed implementations.
"""

import asyncio
import copy

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from fitplan.config.settings import settings
from fitplan.db.models import Base
from fitplan.db.session import make_session_factory
from fitplan.generation.orchestrator import build_orchestrator
from fitplan.generation.scheduler import ManualAdvanceScheduler
from fitplan.generation.state_store import InMemoryStateStore
from fitplan.plans.models import IngredientList, MealPlan, PlanInput, ShoppingList, WorkoutPlan
from fitplan.plans.repository import InMemoryNutritionGoalRepository, InMemoryPlanRepository

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


def workout_response(days: list[str] = WEEKDAYS) -> dict:
    schedule = {}
    for index, day in enumerate(days):
        if index % 2 == 0:
            schedule[day] = {
                "name": "Upper Body Strength",
                "workoutType": "strength",
                "targetMuscleGroups": ["chest", "back"],
                "exercises": [
                    {"name": "Bench Press", "sets": 4, "reps": "8-12", "rest": 90},
                    {"name": "Barbell Row", "sets": 4, "reps": 10, "rest": 90},
                ],
            }
        else:
            schedule[day] = {"name": "Rest", "workoutType": "rest", "exercises": []}
    return {"weeklySchedule": schedule, "notes": "Progressive overload week"}


def meal(name: str, calories: float) -> dict:
    return {
        "name": name,
        "calories": calories,
        "protein": 35,
        "carbs": 60,
        "fat": 15,
        "ingredients": [{"name": "Oats", "quantity": 80, "unit": "g", "category": "Grains & Bread"}],
    }


def meal_response(days: list[str] = WEEKDAYS, structured: bool = True) -> dict:
    plan: dict = {
        "mealFrequency": {"mealsPerDay": 3, "explanation": "Three balanced meals"},
        "weeklyMealPlan": {
            day: {
                "breakfast": meal("Overnight Oats", 600),
                "lunch": meal("Chicken Rice Bowl", 900),
                "dinner": meal("Salmon and Greens", 800),
            }
            for day in days
        },
    }
    if structured:
        plan["structuredIngredients"] = {
            "categories": {
                "Produce": [{"name": "Spinach", "quantity": 200, "unit": "g"}],
                "Protein": [{"name": "Chicken Breast", "quantity": 1, "unit": "kg"}],
                "Dairy & Eggs": [{"name": "Eggs", "quantity": 12, "unit": "pcs"}],
                "Grains & Bread": [{"name": "Oats", "quantity": 500, "unit": "g"}],
            }
        }
    return plan


def day_ingredients_response() -> dict:
    return {
        "categories": {
            "Produce": [{"name": "Spinach", "quantity": 100, "unit": "g"}],
            "Protein": [{"name": "Chicken Breast", "quantity": 200, "unit": "g"}],
        }
    }


def shopping_response() -> dict:
    return {
        "categories": {
            "Vegetables": [{"name": "Spinach", "quantity": 1, "unit": "bag", "estimatedPrice": 1.5}],
            "Meat": [{"name": "Chicken Breast", "quantity": 1, "unit": "kg", "estimatedPrice": 6.0}],
            "Dairy": [{"name": "Eggs", "quantity": 12, "unit": "pcs"}],
        },
        "totalCost": 7.5,
    }


class FakeCompletionClient:
    """Scripted CompletionClient keyed by response shape.

    ``failures[shape] = n`` makes the next n calls for that shape raise;
    ``delay`` makes every call suspend for that many seconds first.
    """

    def __init__(self) -> None:
        self.responses: dict[type, dict] = {
            WorkoutPlan: workout_response(),
            MealPlan: meal_response(),
            IngredientList: day_ingredients_response(),
            ShoppingList: shopping_response(),
        }
        self.failures: dict[type, int] = {}
        self.delay = 0.0
        self.calls: list[tuple[type, dict]] = []

    async def complete(self, system_prompt: str, user_payload: dict, response_shape: type) -> dict:
        self.calls.append((response_shape, user_payload))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures.get(response_shape, 0) > 0:
            self.failures[response_shape] -= 1
            raise RuntimeError(f"upstream unavailable for {response_shape.__name__}")
        return copy.deepcopy(self.responses[response_shape])

    def call_count(self, response_shape: type) -> int:
        return sum(1 for shape, _ in self.calls if shape is response_shape)


@pytest.fixture
def plan_input_payload() -> dict:
    """Onboarding payload as the UI sends it (camelCase)."""
    return {
        "age": 30,
        "sex": "male",
        "height": 180,
        "weight": 80,
        "activityLevel": "moderate",
        "fitnessGoal": "muscle_gain",
        "workoutDaysPerWeek": 4,
    }


@pytest.fixture
def plan_input(plan_input_payload) -> PlanInput:
    return PlanInput.model_validate(plan_input_payload)


@pytest.fixture
def fake_client() -> FakeCompletionClient:
    return FakeCompletionClient()


@pytest.fixture
def state_store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def plan_repo() -> InMemoryPlanRepository:
    return InMemoryPlanRepository()


@pytest.fixture
def goal_repo() -> InMemoryNutritionGoalRepository:
    return InMemoryNutritionGoalRepository()


@pytest.fixture
def manual_scheduler() -> ManualAdvanceScheduler:
    return ManualAdvanceScheduler()


@pytest.fixture
def orchestrator(fake_client, state_store, manual_scheduler, plan_repo, goal_repo, monkeypatch):
    """Orchestrator over in-memory collaborators with strict weekday checks."""
    monkeypatch.setattr(settings, "strict_weekdays", True)
    return build_orchestrator(
        settings,
        client=fake_client,
        store=state_store,
        scheduler=manual_scheduler,
        plans=plan_repo,
        goals=goal_repo,
    )


@pytest.fixture
def sql_session_factory():
    """Session factory over an isolated in-memory SQLite database.

    StaticPool keeps a single connection, so every session sees the same
    in-memory database.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield make_session_factory(engine)
    engine.dispose()
