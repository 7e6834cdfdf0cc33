"""pydantic_ai model lookup for the stage generators."""

import os

from loguru import logger
from pydantic_ai.models.openai import OpenAIModel

from fitplan.config.settings import settings

# provider -> environment variable its pydantic_ai client reads the key from
PROVIDER_KEY_ENV: dict[str, str] = {"openai": "OPENAI_API_KEY"}


def get_model(provider: str, model_name: str, api_key: str | None = None) -> OpenAIModel:
    """Resolve the model used for structured stage output.

    Raises:
        ValueError: If ``provider`` is not supported
    """
    key_env = PROVIDER_KEY_ENV.get(provider)
    if key_env is None:
        raise ValueError(f"Unsupported LLM provider: {provider} (supported: {', '.join(PROVIDER_KEY_ENV)})")

    key = api_key or settings.openai_api_key
    if key and not os.getenv(key_env):
        os.environ[key_env] = key
    if not os.getenv(key_env):
        logger.warning("LLM API key is not configured, stage calls will fail", provider=provider, env_var=key_env)

    return OpenAIModel(model_name)
