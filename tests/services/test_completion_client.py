"""Tests for the pydantic_ai-backed completion client."""

import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from fitplan.plans.models import MealFrequency, NutritionTargets
from fitplan.services.llm.client import PydanticAICompletionClient
from fitplan.services.llm.model import get_model


@pytest.mark.asyncio
@patch("fitplan.services.llm.client.get_model")
@patch("fitplan.services.llm.client.Agent")
async def test_complete_returns_camel_case_dict(mock_agent_cls, mock_get_model):
    agent = MagicMock()
    agent.run = AsyncMock(return_value=MagicMock(output=MealFrequency(meals_per_day=4, explanation="Spread protein")))
    mock_agent_cls.return_value = agent

    client = PydanticAICompletionClient("openai", "gpt-4o")
    result = await client.complete("system", {"dailyTargets": {"calories": 2500}}, MealFrequency)

    assert result == {"mealsPerDay": 4, "explanation": "Spread protein"}
    mock_get_model.assert_called_once_with("openai", "gpt-4o")
    assert mock_agent_cls.call_args.kwargs["output_type"] is MealFrequency
    prompt = agent.run.call_args.args[0]
    assert '"calories": 2500' in prompt


@pytest.mark.asyncio
@patch("fitplan.services.llm.client.get_model")
@patch("fitplan.services.llm.client.Agent")
async def test_complete_rejects_wrong_output_type(mock_agent_cls, mock_get_model):
    agent = MagicMock()
    agent.run = AsyncMock(return_value=MagicMock(output="not a model"))
    mock_agent_cls.return_value = agent

    with pytest.raises(TypeError):
        await PydanticAICompletionClient("openai", "gpt-4o").complete("system", {}, NutritionTargets)


def test_unsupported_provider():
    with pytest.raises(ValueError, match="Unsupported LLM provider"):
        get_model("carrier-pigeon", "v1")


@patch("fitplan.services.llm.model.OpenAIModel")
def test_get_model_exports_api_key(mock_model_cls, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    model = get_model("openai", "gpt-4o", api_key="sk-test")

    assert model is mock_model_cls.return_value
    mock_model_cls.assert_called_once_with("gpt-4o")
    assert os.environ["OPENAI_API_KEY"] == "sk-test"


@patch("fitplan.services.llm.model.OpenAIModel")
def test_get_model_keeps_existing_env_key(mock_model_cls, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-from-env")

    get_model("openai", "gpt-4o-mini", api_key="sk-other")

    assert os.environ["OPENAI_API_KEY"] == "sk-from-env"
