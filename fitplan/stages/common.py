"""Helpers shared by the stage generators.

Every stage goes through ``call_upstream`` and ``parse_stage_output`` so
client failures and malformed responses surface as
``UpstreamGenerationError`` with the stage name attached.
"""

from typing import Any, TypeVar

from loguru import logger
from pydantic import BaseModel, ValidationError

from fitplan.generation.errors import UpstreamGenerationError
from fitplan.plans.models import Weekday
from fitplan.services.llm.client import CompletionClient

ModelT = TypeVar("ModelT", bound=BaseModel)


async def call_upstream(
    client: CompletionClient,
    stage: str,
    system_prompt: str,
    user_payload: dict[str, Any],
    response_shape: type[BaseModel],
) -> dict[str, Any]:
    try:
        raw = await client.complete(system_prompt, user_payload, response_shape)
    except Exception as e:
        logger.error(
            "Upstream call failed",
            stage=stage,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise UpstreamGenerationError(stage, f"upstream call failed: {e}", cause=e) from e

    if not isinstance(raw, dict):
        raise UpstreamGenerationError(stage, f"expected a JSON object, got {type(raw).__name__}")
    return raw


def parse_stage_output(stage: str, model: type[ModelT], raw: dict[str, Any]) -> ModelT:
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        logger.error(
            "Upstream response failed validation",
            stage=stage,
            error_count=e.error_count(),
            first_error=str(e.errors()[0]) if e.errors() else None,
        )
        raise UpstreamGenerationError(stage, f"invalid response structure: {e.error_count()} validation error(s)", cause=e) from e


def check_weekdays(stage: str, present: set[Weekday], *, strict: bool) -> list[Weekday]:
    """Return the weekdays missing from ``present``.

    Raises:
        UpstreamGenerationError: If any day is missing and ``strict`` is set
    """
    missing = [day for day in Weekday if day not in present]
    if missing and strict:
        raise UpstreamGenerationError(stage, f"response is missing weekdays: {', '.join(missing)}")
    if missing:
        logger.warning("Upstream response missing weekdays, recording as missing", stage=stage, missing_days=missing)
    return missing
