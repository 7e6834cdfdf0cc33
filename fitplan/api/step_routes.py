"""Step-by-step plan generation API.

Thin adapter over ``StepwiseOrchestrator``: each endpoint maps to one
orchestrator operation and translates generation errors to HTTP status codes.
"""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Request, status
from loguru import logger
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from fitplan.generation.errors import (
    GenerationError,
    InvalidInputError,
    NoActiveGenerationError,
    PersistenceError,
    UpstreamGenerationError,
)
from fitplan.generation.orchestrator import StepwiseOrchestrator
from fitplan.generation.state import GenerationStatus

router = APIRouter(prefix="/api/step-coach", tags=["plan-generation"])


class StatusResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    generation_id: str
    is_generating: bool
    current_step: int
    step_name: str
    step_message: str
    estimated_time_remaining: int
    total_steps: int
    error_message: str | None
    run_state: str
    is_stale: bool
    started_at: datetime
    updated_at: datetime


class SuccessResponse(BaseModel):
    success: bool


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity from the X-User-Id header."""
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    return x_user_id


def get_orchestrator(request: Request) -> StepwiseOrchestrator:
    return request.app.state.orchestrator


def to_status_response(generation: GenerationStatus, orchestrator: StepwiseOrchestrator) -> StatusResponse:
    return StatusResponse(
        generation_id=generation.generation_id,
        is_generating=generation.is_generating,
        current_step=int(generation.current_step),
        step_name=generation.current_step.name,
        step_message=generation.step_message,
        estimated_time_remaining=generation.estimated_seconds_remaining,
        total_steps=generation.total_steps,
        error_message=generation.error_message,
        run_state=generation.run_state.value,
        is_stale=orchestrator.is_stale(generation),
        started_at=generation.started_at,
        updated_at=generation.updated_at,
    )


def _http_error(e: GenerationError) -> HTTPException:
    if isinstance(e, InvalidInputError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"message": str(e), "errors": e.errors})
    if isinstance(e, NoActiveGenerationError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, UpstreamGenerationError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    if isinstance(e, PersistenceError):
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to store plan generation state")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.post("/start", response_model=StatusResponse, response_model_by_alias=True)
async def start_generation(
    plan_input: dict[str, Any] = Body(...),
    user_id: str = Depends(get_current_user_id),
    orchestrator: StepwiseOrchestrator = Depends(get_orchestrator),
) -> StatusResponse:
    """Start plan generation, or return the generation already in progress.

    Raises:
        HTTPException: 400 if the plan input is invalid
    """
    logger.info("Plan generation start requested", user_id=user_id)
    try:
        generation = await orchestrator.start(user_id, plan_input)
    except GenerationError as e:
        raise _http_error(e) from e
    return to_status_response(generation, orchestrator)


@router.get("/status", response_model=StatusResponse | None, response_model_by_alias=True)
async def get_generation_status(
    user_id: str = Depends(get_current_user_id),
    orchestrator: StepwiseOrchestrator = Depends(get_orchestrator),
) -> StatusResponse | None:
    try:
        generation = await orchestrator.get_status(user_id)
    except GenerationError as e:
        raise _http_error(e) from e
    if generation is None:
        return None
    return to_status_response(generation, orchestrator)


@router.post("/continue", response_model=StatusResponse, response_model_by_alias=True)
async def continue_generation(
    user_id: str = Depends(get_current_user_id),
    orchestrator: StepwiseOrchestrator = Depends(get_orchestrator),
) -> StatusResponse:
    """Run the next generation step (or retry the failed one).

    Raises:
        HTTPException: 404 with no active generation, 502 if the stage's
            upstream call failed, 500 if state could not be stored
    """
    try:
        generation = await orchestrator.advance(user_id)
    except GenerationError as e:
        raise _http_error(e) from e
    return to_status_response(generation, orchestrator)


@router.post("/cancel", response_model=SuccessResponse)
async def cancel_generation(
    user_id: str = Depends(get_current_user_id),
    orchestrator: StepwiseOrchestrator = Depends(get_orchestrator),
) -> SuccessResponse:
    return SuccessResponse(success=await orchestrator.cancel(user_id))


@router.post("/reset", response_model=SuccessResponse)
async def reset_generation(
    user_id: str = Depends(get_current_user_id),
    orchestrator: StepwiseOrchestrator = Depends(get_orchestrator),
) -> SuccessResponse:
    """Cancel any generation and deactivate the user's active plans."""
    return SuccessResponse(success=await orchestrator.reset(user_id))


@router.get("/result")
async def get_generation_result(
    user_id: str = Depends(get_current_user_id),
    orchestrator: StepwiseOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    try:
        result = await orchestrator.get_result(user_id)
    except GenerationError as e:
        raise _http_error(e) from e
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No completed plan generation found")
    return result.to_json_dict()
