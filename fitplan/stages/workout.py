from loguru import logger

from fitplan.plans.models import NutritionTargets, PlanInput, WorkoutPlan
from fitplan.services.llm.client import CompletionClient
from fitplan.stages.common import call_upstream, check_weekdays, parse_stage_output

STAGE = "workout_plan"

SYSTEM_PROMPT = """You are a certified strength and conditioning coach.

Your task is to design a ONE-WEEK workout schedule.

Rules:
- Include all seven days, monday to sunday, as keys of weeklySchedule.
- Schedule exactly the requested number of training days; the rest are rest days with no exercises.
- Prefer the user's preferred workout days when given.
- Every exercise has a name, a positive integer number of sets and reps (a number or a range like "8-12").
- Keep each session within the requested duration.
- You must output ONLY valid JSON.
"""


def build_workout_payload(plan_input: PlanInput, nutrition: NutritionTargets) -> dict:
    return {
        "profile": {
            "age": plan_input.age,
            "sex": plan_input.sex,
            "heightCm": plan_input.height,
            "weightKg": plan_input.weight,
            "fitnessLevel": plan_input.fitness_level or "intermediate",
        },
        "fitnessGoal": plan_input.fitness_goal,
        "activityLevel": plan_input.activity_level,
        "workoutDaysPerWeek": plan_input.workout_days_per_week,
        "preferredWorkoutDays": plan_input.preferred_workout_days,
        "workoutDurationMinutes": plan_input.workout_duration,
        "workoutNames": plan_input.workout_names or {},
        "location": plan_input.location,
        "dailyCalories": nutrition.calories,
    }


class WorkoutPlanGenerator:
    def __init__(self, client: CompletionClient, *, strict_weekdays: bool = True) -> None:
        self.client = client
        self.strict_weekdays = strict_weekdays

    async def generate(self, plan_input: PlanInput, nutrition: NutritionTargets) -> WorkoutPlan:
        """Generate a weekly workout plan.

        Raises:
            UpstreamGenerationError: If the call fails, the response does not
                validate, or (in strict mode) a weekday is missing
        """
        raw = await call_upstream(
            self.client,
            STAGE,
            SYSTEM_PROMPT,
            build_workout_payload(plan_input, nutrition),
            WorkoutPlan,
        )
        plan = parse_stage_output(STAGE, WorkoutPlan, raw)
        missing = check_weekdays(STAGE, set(plan.weekly_schedule), strict=self.strict_weekdays)

        logger.info(
            "Workout plan generated",
            training_days=plan.training_days,
            requested_days=plan_input.workout_days_per_week,
            missing_days=len(missing),
        )
        return plan.model_copy(update={"missing_days": missing})
