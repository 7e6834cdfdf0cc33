"""Tests for the stepwise generation orchestrator.

Verifies:
1. start is idempotent while a run is in flight and rejects invalid input
2. advance moves exactly one step per call and never goes backwards
3. A failed stage keeps earlier data, records the error and can be retried
4. Concurrent advances run a stage once
5. cancel always succeeds and discards in-flight results
6. The full run persists one active plan and exposes the result
7. Scheduled follow-ups drive the run without polling
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from fitplan.generation.errors import (
    InvalidInputError,
    MissingStageDataError,
    NoActiveGenerationError,
    PersistenceError,
    UpstreamGenerationError,
)
from fitplan.generation.orchestrator import CANCEL_MESSAGE
from fitplan.generation.state import AccumulatedPlanData, RunState
from fitplan.generation.steps import FOLLOW_UP_DELAYS, TOTAL_STEPS, GenerationStep
from fitplan.plans.models import IngredientList, MealPlan, ShoppingList, WorkoutPlan

USER = "user-123"


async def _advance_to(orchestrator, step: GenerationStep):
    status = None
    for _ in range(int(step)):
        status = await orchestrator.advance(USER)
    return status


@pytest.mark.asyncio
async def test_start_creates_running_status(orchestrator, plan_input_payload, manual_scheduler):
    status = await orchestrator.start(USER, plan_input_payload)

    assert status.is_generating is True
    assert status.current_step == GenerationStep.INITIALIZE
    assert status.run_state == RunState.RUNNING
    assert status.total_steps == TOTAL_STEPS
    assert status.estimated_seconds_remaining == 240
    assert [(r.user_id, r.expected_step) for r in manual_scheduler.requests] == [(USER, GenerationStep.INITIALIZE)]


@pytest.mark.asyncio
async def test_start_is_idempotent_while_generating(orchestrator, plan_input_payload, manual_scheduler):
    first = await orchestrator.start(USER, plan_input_payload)
    second = await orchestrator.start(USER, {**plan_input_payload, "age": 45})

    assert second == first
    assert len(manual_scheduler.requests) == 1


@pytest.mark.asyncio
async def test_start_rejects_invalid_input(orchestrator, plan_input_payload, state_store):
    del plan_input_payload["fitnessGoal"]

    with pytest.raises(InvalidInputError) as exc_info:
        await orchestrator.start(USER, plan_input_payload)

    assert any(error["loc"] == ("fitnessGoal",) for error in exc_info.value.errors)
    assert state_store.get_status(USER) is None


@pytest.mark.asyncio
async def test_start_after_failure_begins_new_run(orchestrator, plan_input_payload, fake_client):
    first = await orchestrator.start(USER, plan_input_payload)
    fake_client.failures[WorkoutPlan] = 1
    await orchestrator.advance(USER)
    with pytest.raises(UpstreamGenerationError):
        await orchestrator.advance(USER)

    second = await orchestrator.start(USER, plan_input_payload)

    assert second.generation_id != first.generation_id
    assert second.current_step == GenerationStep.INITIALIZE
    assert second.is_generating is True


@pytest.mark.asyncio
async def test_advance_without_run_raises(orchestrator):
    with pytest.raises(NoActiveGenerationError):
        await orchestrator.advance(USER)


@pytest.mark.asyncio
async def test_steps_are_monotonic(orchestrator, plan_input_payload):
    await orchestrator.start(USER, plan_input_payload)

    steps = []
    for _ in range(TOTAL_STEPS):
        status = await orchestrator.advance(USER)
        steps.append(status.current_step)

    assert steps == [
        GenerationStep.NUTRITION_CALCULATION,
        GenerationStep.WORKOUT_PLAN,
        GenerationStep.MEAL_PLAN,
        GenerationStep.EXTRACT_INGREDIENTS,
        GenerationStep.SHOPPING_LIST,
        GenerationStep.COMPLETE,
    ]

    again = await orchestrator.advance(USER)
    assert again.current_step == GenerationStep.COMPLETE
    assert again.version == status.version


@pytest.mark.asyncio
async def test_full_run_persists_active_plan(orchestrator, plan_input_payload, plan_repo, goal_repo, fake_client):
    await orchestrator.start(USER, plan_input_payload)
    final = await _advance_to(orchestrator, GenerationStep.COMPLETE)

    assert final.is_generating is False
    assert final.run_state == RunState.COMPLETED
    assert final.estimated_seconds_remaining == 0
    assert final.error_message is None

    result = await orchestrator.get_result(USER)
    assert result is not None
    assert result.nutrition_data.calories == 3035
    assert result.workout_plan is not None
    assert result.meal_plan is not None
    assert result.ingredients is not None
    assert result.shopping_list is not None

    active = plan_repo.active_plans(USER)
    assert len(active) == 1
    assert active[0].plan_id == result.plan_id
    assert active[0].record.generation_id == final.generation_id
    assert goal_repo.goals[USER].calories == 3035

    # Structured ingredients from the meal plan replace extraction calls
    assert fake_client.call_count(IngredientList) == 0


@pytest.mark.asyncio
async def test_full_run_extracts_ingredients_when_meal_plan_has_none(orchestrator, plan_input_payload, fake_client):
    del fake_client.responses[MealPlan]["structuredIngredients"]
    await orchestrator.start(USER, plan_input_payload)

    await _advance_to(orchestrator, GenerationStep.COMPLETE)

    assert fake_client.call_count(IngredientList) == 7
    result = await orchestrator.get_result(USER)
    assert result.ingredients.total_count == 2


@pytest.mark.asyncio
async def test_failure_keeps_data_and_allows_retry(orchestrator, plan_input_payload, fake_client, state_store):
    await orchestrator.start(USER, plan_input_payload)
    await _advance_to(orchestrator, GenerationStep.WORKOUT_PLAN)
    fake_client.failures[MealPlan] = 1

    with pytest.raises(UpstreamGenerationError) as exc_info:
        await orchestrator.advance(USER)
    assert exc_info.value.stage == "meal_plan"

    failed = await orchestrator.get_status(USER)
    assert failed.is_generating is False
    assert failed.run_state == RunState.FAILED
    assert failed.current_step == GenerationStep.WORKOUT_PLAN
    assert "meal_plan" in failed.error_message

    data = state_store.get_accumulated_data(USER)
    assert data.nutrition_data is not None
    assert data.workout_plan is not None
    assert data.meal_plan is None
    assert await orchestrator.get_result(USER) is None

    retried = await orchestrator.advance(USER)

    assert retried.current_step == GenerationStep.MEAL_PLAN
    assert retried.is_generating is True
    assert retried.error_message is None
    assert fake_client.call_count(WorkoutPlan) == 1


@pytest.mark.asyncio
async def test_failure_at_first_upstream_step_keeps_nutrition(orchestrator, plan_input_payload, fake_client, state_store):
    await orchestrator.start(USER, plan_input_payload)
    await orchestrator.advance(USER)
    fake_client.failures[WorkoutPlan] = 1

    with pytest.raises(UpstreamGenerationError):
        await orchestrator.advance(USER)

    status = state_store.get_status(USER)
    assert status.current_step == GenerationStep.NUTRITION_CALCULATION
    assert status.claimed_step is None
    assert state_store.get_accumulated_data(USER).nutrition_data.calories == 3035


@pytest.mark.asyncio
async def test_concurrent_advances_run_stage_once(orchestrator, plan_input_payload, fake_client, state_store):
    await orchestrator.start(USER, plan_input_payload)
    await orchestrator.advance(USER)
    fake_client.delay = 0.05

    results = await asyncio.gather(orchestrator.advance(USER), orchestrator.advance(USER))

    assert fake_client.call_count(WorkoutPlan) == 1
    assert sorted(r.current_step for r in results) == [
        GenerationStep.NUTRITION_CALCULATION,
        GenerationStep.WORKOUT_PLAN,
    ]
    assert state_store.get_status(USER).current_step == GenerationStep.WORKOUT_PLAN


@pytest.mark.asyncio
async def test_expired_claim_can_be_taken_over(orchestrator, plan_input_payload, state_store):
    await orchestrator.start(USER, plan_input_payload)
    status = state_store.get_status(USER)
    abandoned = status.claimed(datetime.now(timezone.utc) - timedelta(hours=1))
    state_store.set_status(USER, abandoned)

    advanced = await orchestrator.advance(USER)

    assert advanced.current_step == GenerationStep.NUTRITION_CALCULATION


@pytest.mark.asyncio
async def test_missing_stage_data_fails_the_run(orchestrator, plan_input_payload, state_store):
    await orchestrator.start(USER, plan_input_payload)
    await orchestrator.advance(USER)
    state_store.set_accumulated_data(USER, AccumulatedPlanData(input_snapshot=state_store.get_input_snapshot(USER)))

    with pytest.raises(MissingStageDataError) as exc_info:
        await orchestrator.advance(USER)

    assert exc_info.value.field == "nutrition_data"
    status = state_store.get_status(USER)
    assert status.run_state == RunState.FAILED
    assert status.current_step == GenerationStep.NUTRITION_CALCULATION


@pytest.mark.asyncio
async def test_cancel_removes_run(orchestrator, plan_input_payload):
    await orchestrator.start(USER, plan_input_payload)

    assert await orchestrator.cancel(USER) is True
    assert await orchestrator.get_status(USER) is None
    with pytest.raises(NoActiveGenerationError):
        await orchestrator.advance(USER)


@pytest.mark.asyncio
async def test_cancel_without_run_succeeds(orchestrator):
    assert await orchestrator.cancel(USER) is True


@pytest.mark.asyncio
async def test_cancel_falls_back_to_marking_cancelled(orchestrator, plan_input_payload, monkeypatch, state_store):
    """Test that cancel still stops the run when the record cannot be deleted."""
    await orchestrator.start(USER, plan_input_payload)

    def broken_delete(user_id):
        raise PersistenceError("database unavailable")

    monkeypatch.setattr(state_store, "delete_status", broken_delete)

    assert await orchestrator.cancel(USER) is True

    status = state_store.get_status(USER)
    assert status.is_generating is False
    assert status.run_state == RunState.CANCELLED
    assert status.error_message == CANCEL_MESSAGE
    with pytest.raises(NoActiveGenerationError):
        await orchestrator.advance(USER)


@pytest.mark.asyncio
async def test_cancel_never_raises(orchestrator, plan_input_payload, monkeypatch, state_store):
    await orchestrator.start(USER, plan_input_payload)

    def broken(*args, **kwargs):
        raise PersistenceError("database unavailable")

    monkeypatch.setattr(state_store, "delete_status", broken)
    monkeypatch.setattr(state_store, "set_status", broken)

    assert await orchestrator.cancel(USER) is True


@pytest.mark.asyncio
async def test_cancel_during_stage_discards_result(orchestrator, plan_input_payload, fake_client, state_store):
    await orchestrator.start(USER, plan_input_payload)
    await orchestrator.advance(USER)
    fake_client.delay = 0.05

    in_flight = asyncio.create_task(orchestrator.advance(USER))
    await asyncio.sleep(0.01)
    await orchestrator.cancel(USER)

    with pytest.raises(NoActiveGenerationError):
        await in_flight
    assert state_store.get_status(USER) is None
    assert state_store.get_accumulated_data(USER) is None


@pytest.mark.asyncio
async def test_restart_during_stage_fences_old_writer(orchestrator, plan_input_payload, fake_client, state_store):
    """Test that a stage finishing after cancel and restart cannot write into the new run."""
    await orchestrator.start(USER, plan_input_payload)
    await orchestrator.advance(USER)
    fake_client.delay = 0.05

    in_flight = asyncio.create_task(orchestrator.advance(USER))
    await asyncio.sleep(0.01)
    await orchestrator.cancel(USER)
    fresh = await orchestrator.start(USER, plan_input_payload)

    returned = await in_flight

    assert returned.generation_id == fresh.generation_id
    current = state_store.get_status(USER)
    assert current.generation_id == fresh.generation_id
    assert current.current_step == GenerationStep.INITIALIZE
    assert state_store.get_accumulated_data(USER).workout_plan is None


@pytest.mark.asyncio
async def test_commit_failure_is_recorded_and_retryable(orchestrator, plan_input_payload, monkeypatch, state_store):
    """Test that a store failure while committing a step releases the claim and marks the run failed."""
    await orchestrator.start(USER, plan_input_payload)
    original = state_store.compare_and_set_status
    writes = []

    def flaky_commit(user_id, expected_version, status, data=None):
        writes.append(status.current_step)
        # Second write of the advance is the commit after the claim
        if len(writes) == 2:
            raise PersistenceError("connection reset")
        return original(user_id, expected_version, status, data)

    monkeypatch.setattr(state_store, "compare_and_set_status", flaky_commit)

    with pytest.raises(PersistenceError):
        await orchestrator.advance(USER)

    failed = state_store.get_status(USER)
    assert failed.is_generating is False
    assert failed.run_state == RunState.FAILED
    assert failed.error_message == "connection reset"
    assert failed.claimed_step is None
    assert failed.current_step == GenerationStep.INITIALIZE

    retried = await orchestrator.advance(USER)
    assert retried.current_step == GenerationStep.NUTRITION_CALCULATION
    assert retried.run_state == RunState.RUNNING


@pytest.mark.asyncio
async def test_cancel_before_final_commit_withdraws_plan(orchestrator, plan_input_payload, monkeypatch, state_store, plan_repo):
    """Test that a plan saved by a run cancelled before its final commit does not stay active."""
    await orchestrator.start(USER, plan_input_payload)
    await _advance_to(orchestrator, GenerationStep.SHOPPING_LIST)
    persister = orchestrator.runner.persister
    original = persister.persist

    def persist_then_cancel(user_id, generation_id, data):
        plan_id = original(user_id, generation_id, data)
        # Cancel from another worker lands between persist and commit
        state_store.delete_status(user_id)
        return plan_id

    monkeypatch.setattr(persister, "persist", persist_then_cancel)

    with pytest.raises(NoActiveGenerationError):
        await orchestrator.advance(USER)

    assert len(plan_repo.plans) == 1
    assert plan_repo.active_plans(USER) == []


@pytest.mark.asyncio
async def test_get_result_only_after_completion(orchestrator, plan_input_payload):
    assert await orchestrator.get_result(USER) is None

    await orchestrator.start(USER, plan_input_payload)
    await _advance_to(orchestrator, GenerationStep.SHOPPING_LIST)

    assert await orchestrator.get_result(USER) is None


@pytest.mark.asyncio
async def test_reset_deactivates_plans(orchestrator, plan_input_payload, plan_repo):
    await orchestrator.start(USER, plan_input_payload)
    await _advance_to(orchestrator, GenerationStep.COMPLETE)

    assert await orchestrator.reset(USER) is True

    assert plan_repo.active_plans(USER) == []
    assert await orchestrator.get_status(USER) is None


@pytest.mark.asyncio
async def test_second_plan_replaces_first(orchestrator, plan_input_payload, plan_repo):
    await orchestrator.start(USER, plan_input_payload)
    await _advance_to(orchestrator, GenerationStep.COMPLETE)
    await orchestrator.start(USER, plan_input_payload)
    await _advance_to(orchestrator, GenerationStep.COMPLETE)

    assert len(plan_repo.plans) == 2
    assert len(plan_repo.active_plans(USER)) == 1


@pytest.mark.asyncio
async def test_scheduled_follow_ups_drive_run_to_completion(orchestrator, plan_input_payload, manual_scheduler):
    await orchestrator.start(USER, plan_input_payload)

    delays = []
    while manual_scheduler.requests:
        delays.extend(request.delay_seconds for request in manual_scheduler.requests)
        await manual_scheduler.run_pending()

    status = await orchestrator.get_status(USER)
    assert status.current_step == GenerationStep.COMPLETE
    assert delays[1:] == [FOLLOW_UP_DELAYS[step] for step in list(GenerationStep)[1:-1]]


@pytest.mark.asyncio
async def test_scheduled_advance_skipped_after_step_moved(orchestrator, plan_input_payload, manual_scheduler, fake_client):
    await orchestrator.start(USER, plan_input_payload)
    await orchestrator.advance(USER)
    await orchestrator.advance(USER)
    calls_before = len(fake_client.calls)

    # The INITIALIZE trigger from start is now out of date, the rest are not
    stale_request = manual_scheduler.requests[0]
    manual_scheduler.requests = [stale_request]
    results = await manual_scheduler.run_pending()

    assert results[0].current_step == GenerationStep.WORKOUT_PLAN
    assert len(fake_client.calls) == calls_before


@pytest.mark.asyncio
async def test_scheduled_advance_skipped_for_failed_run(orchestrator, plan_input_payload, manual_scheduler, fake_client):
    await orchestrator.start(USER, plan_input_payload)
    await orchestrator.advance(USER)
    fake_client.failures[WorkoutPlan] = 1
    with pytest.raises(UpstreamGenerationError):
        await orchestrator.advance(USER)

    status = await orchestrator.advance_if_at(USER, GenerationStep.NUTRITION_CALCULATION)

    assert status.run_state == RunState.FAILED
    assert fake_client.call_count(WorkoutPlan) == 1


@pytest.mark.asyncio
async def test_staleness_is_reported_not_repaired(orchestrator, plan_input_payload, state_store):
    await orchestrator.start(USER, plan_input_payload)
    status = state_store.get_status(USER)
    old = datetime.now(timezone.utc) - timedelta(hours=1)
    state_store.set_status(USER, status.model_copy(update={"updated_at": old}))

    reported = await orchestrator.get_status(USER)

    assert orchestrator.is_stale(reported) is True
    assert reported.is_generating is True


@pytest.mark.asyncio
async def test_shopping_list_in_result_is_normalized(orchestrator, plan_input_payload):
    await orchestrator.start(USER, plan_input_payload)
    await _advance_to(orchestrator, GenerationStep.COMPLETE)

    result = await orchestrator.get_result(USER)

    assert isinstance(result.shopping_list, ShoppingList)
    assert result.shopping_list.budget_status == "under_budget"
    assert set(result.to_json_dict()) >= {
        "inputSnapshot",
        "nutritionData",
        "workoutPlan",
        "mealPlan",
        "ingredients",
        "shoppingList",
        "planId",
    }


@pytest.mark.asyncio
async def test_separate_users_are_independent(orchestrator, plan_input_payload):
    await orchestrator.start("alice", plan_input_payload)
    await orchestrator.start("bob", plan_input_payload)
    await orchestrator.advance("alice")

    assert (await orchestrator.get_status("alice")).current_step == GenerationStep.NUTRITION_CALCULATION
    assert (await orchestrator.get_status("bob")).current_step == GenerationStep.INITIALIZE
