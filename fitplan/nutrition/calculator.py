"""Calorie and macronutrient targets from biometrics and goal.

BMR uses the Mifflin-St Jeor equation; TDEE applies a standard activity
multiplier; the goal then sets a calorie adjustment and macro split.
Pure functions, no I/O.
"""

import math
from dataclasses import dataclass

from fitplan.plans.models import NutritionTargets, PlanInput

ACTIVITY_FACTORS: dict[str, float] = {
    "sedentary": 1.2,
    "light": 1.375,
    "moderate": 1.55,
    "very_active": 1.725,
    "extra_active": 1.9,
}

CALORIES_PER_GRAM_PROTEIN = 4
CALORIES_PER_GRAM_CARBS = 4
CALORIES_PER_GRAM_FAT = 9

# Macro totals within this many calories of the target are left as computed
CALORIE_TOLERANCE = 50


@dataclass(frozen=True)
class GoalProfile:
    calorie_factor: float
    protein_per_kg: float
    fat_share: float
    carb_share: float


GOAL_PROFILES: dict[str, GoalProfile] = {
    "weight_loss": GoalProfile(calorie_factor=0.8, protein_per_kg=2.0, fat_share=0.3, carb_share=0.3),
    "muscle_gain": GoalProfile(calorie_factor=1.1, protein_per_kg=2.2, fat_share=0.25, carb_share=0.45),
    "strength": GoalProfile(calorie_factor=1.05, protein_per_kg=2.0, fat_share=0.3, carb_share=0.4),
    "stamina": GoalProfile(calorie_factor=1.0, protein_per_kg=1.6, fat_share=0.25, carb_share=0.55),
    "endurance": GoalProfile(calorie_factor=1.1, protein_per_kg=1.6, fat_share=0.25, carb_share=0.55),
}

DEFAULT_GOAL_PROFILE = GoalProfile(calorie_factor=1.0, protein_per_kg=1.6, fat_share=0.3, carb_share=0.4)


def round_half_up(value: float) -> int:
    """Round halves up: 2.5 -> 3, -2.5 -> -2."""
    return math.floor(value + 0.5)


def calculate_bmr(sex: str, weight_kg: float, height_cm: float, age: int) -> float:
    base = 10 * weight_kg + 6.25 * height_cm - 5 * age
    return base + 5 if sex == "male" else base - 161


def calculate_tdee(bmr: float, activity_level: str) -> float:
    return bmr * ACTIVITY_FACTORS.get(activity_level, ACTIVITY_FACTORS["moderate"])


def calculate_nutrition(plan_input: PlanInput) -> NutritionTargets:
    """Compute daily calorie and macro targets for a plan input.

    Protein is set per kg of bodyweight; fat and carbs take fixed shares of
    the calorie target. When the resulting macros miss the target by more
    than ``CALORIE_TOLERANCE`` calories, carbs absorb the difference.

    Args:
        plan_input: Validated onboarding input

    Returns:
        NutritionTargets with rounded calories, macros, BMR and TDEE
    """
    bmr = calculate_bmr(plan_input.sex, plan_input.weight, plan_input.height, plan_input.age)
    tdee = calculate_tdee(bmr, plan_input.activity_level)
    profile = GOAL_PROFILES.get(plan_input.fitness_goal, DEFAULT_GOAL_PROFILE)

    calorie_target = tdee * profile.calorie_factor
    protein = round_half_up(plan_input.weight * profile.protein_per_kg)
    fat = round_half_up(calorie_target * profile.fat_share / CALORIES_PER_GRAM_FAT)
    carbs = round_half_up(calorie_target * profile.carb_share / CALORIES_PER_GRAM_CARBS)

    macro_calories = (
        protein * CALORIES_PER_GRAM_PROTEIN + fat * CALORIES_PER_GRAM_FAT + carbs * CALORIES_PER_GRAM_CARBS
    )
    if abs(macro_calories - calorie_target) > CALORIE_TOLERANCE:
        carbs += round_half_up((calorie_target - macro_calories) / CALORIES_PER_GRAM_CARBS)

    return NutritionTargets(
        calories=round_half_up(calorie_target),
        protein=protein,
        carbs=max(carbs, 0),
        fat=fat,
        bmr=round_half_up(bmr),
        tdee=round_half_up(tdee),
    )
