"""Completion client shared by every generation stage.

Stages depend on the ``CompletionClient`` protocol only: structured input in,
a JSON-shaped dict out, or an exception. Prompt text is the stage's concern.
"""

import json
from typing import Any, Protocol

from loguru import logger
from pydantic import BaseModel
from pydantic_ai import Agent

from fitplan.config.settings import settings
from fitplan.services.llm.model import get_model


class CompletionClient(Protocol):
    async def complete(
        self,
        system_prompt: str,
        user_payload: dict[str, Any],
        response_shape: type[BaseModel],
    ) -> dict[str, Any]: ...


class PydanticAICompletionClient:
    """CompletionClient backed by a pydantic_ai ``Agent``.

    The agent is asked for ``response_shape`` as structured output; the result
    is returned as a camelCase JSON dict so stages validate one format
    regardless of which client produced it.
    """

    def __init__(self, provider: str | None = None, model_name: str | None = None) -> None:
        self.provider = provider or settings.llm_provider
        self.model_name = model_name or settings.llm_model

    async def complete(
        self,
        system_prompt: str,
        user_payload: dict[str, Any],
        response_shape: type[BaseModel],
    ) -> dict[str, Any]:
        model = get_model(self.provider, self.model_name)
        agent = Agent(
            model=model,
            system_prompt=system_prompt,
            output_type=response_shape,
        )
        user_prompt = json.dumps(user_payload, indent=2, default=str)

        logger.debug(
            "LLM completion requested",
            response_shape=response_shape.__name__,
            prompt_length=len(user_prompt),
        )
        result = await agent.run(user_prompt)
        output = result.output

        if not isinstance(output, response_shape):
            raise TypeError(f"Expected {response_shape.__name__}, got {type(output).__name__}")

        logger.debug("LLM completion received", response_shape=response_shape.__name__)
        return output.model_dump(mode="json", by_alias=True)
