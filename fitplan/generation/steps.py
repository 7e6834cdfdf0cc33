"""Generation step enum and per-step metadata.

A step names the last *completed* stage: the action taken while at step N
produces the output that moves the run to step N + 1.
"""

from enum import IntEnum


class GenerationStep(IntEnum):
    INITIALIZE = 0
    NUTRITION_CALCULATION = 1
    WORKOUT_PLAN = 2
    MEAL_PLAN = 3
    EXTRACT_INGREDIENTS = 4
    SHOPPING_LIST = 5
    COMPLETE = 6

    @property
    def message(self) -> str:
        return STEP_MESSAGES[self]

    @property
    def estimated_seconds(self) -> int:
        return STEP_TIME_ESTIMATES[self]

    def next_step(self) -> "GenerationStep":
        if self is GenerationStep.COMPLETE:
            return self
        return GenerationStep(self + 1)


TOTAL_STEPS = len(GenerationStep) - 1

STEP_MESSAGES: dict[GenerationStep, str] = {
    GenerationStep.INITIALIZE: "Initializing plan generation",
    GenerationStep.NUTRITION_CALCULATION: "Calculating nutritional requirements",
    GenerationStep.WORKOUT_PLAN: "Generating workout plan",
    GenerationStep.MEAL_PLAN: "Creating meal plan based on nutritional needs",
    GenerationStep.EXTRACT_INGREDIENTS: "Extracting ingredients from meal plan",
    GenerationStep.SHOPPING_LIST: "Building shopping list",
    GenerationStep.COMPLETE: "Plan generation complete",
}

STEP_TIME_ESTIMATES: dict[GenerationStep, int] = {
    GenerationStep.INITIALIZE: 5,
    GenerationStep.NUTRITION_CALCULATION: 15,
    GenerationStep.WORKOUT_PLAN: 60,
    GenerationStep.MEAL_PLAN: 90,
    GenerationStep.EXTRACT_INGREDIENTS: 45,
    GenerationStep.SHOPPING_LIST: 30,
    GenerationStep.COMPLETE: 0,
}

# Delay before the self-scheduled follow-up advance, keyed by the step just reached.
# Later steps wait longer: they precede the slower upstream calls.
FOLLOW_UP_DELAYS: dict[GenerationStep, float] = {
    GenerationStep.INITIALIZE: 1.0,
    GenerationStep.NUTRITION_CALCULATION: 1.5,
    GenerationStep.WORKOUT_PLAN: 2.0,
    GenerationStep.MEAL_PLAN: 2.5,
    GenerationStep.EXTRACT_INGREDIENTS: 3.0,
    GenerationStep.SHOPPING_LIST: 3.5,
}

# Stage name reported in progress events and errors for the action taken at each step
STAGE_NAMES: dict[GenerationStep, str] = {
    GenerationStep.INITIALIZE: "nutrition",
    GenerationStep.NUTRITION_CALCULATION: "workout_plan",
    GenerationStep.WORKOUT_PLAN: "meal_plan",
    GenerationStep.MEAL_PLAN: "ingredients",
    GenerationStep.EXTRACT_INGREDIENTS: "shopping_list",
    GenerationStep.SHOPPING_LIST: "persist",
}


def step_percent(step: GenerationStep) -> int:
    """Progress percentage once ``step`` has been reached."""
    return round(100 * int(step) / TOTAL_STEPS)
