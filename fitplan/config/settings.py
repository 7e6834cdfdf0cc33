import os
from pathlib import Path

from loguru import logger
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_database_url() -> str:
    """Get database URL, using an absolute SQLite path when DATABASE_URL is unset.

    ⚠️ SQLite is for local development only. Generation state lives in this
    database, so a lost SQLite file loses every in-flight generation.
    """
    db_url = os.getenv("DATABASE_URL", "")
    if db_url:
        logger.info(f"Using DATABASE_URL from environment: {db_url}")
        return db_url

    db_path = Path(__file__).parent.parent.parent / "fitplan.db"
    db_url = f"sqlite:///{db_path.resolve()}"
    logger.warning(
        f"⚠️ Using SQLite database (LOCAL DEV ONLY): {db_url}\n"
        "⚠️ Set DATABASE_URL environment variable to use PostgreSQL in production."
    )
    return db_url


class Settings(BaseSettings):
    database_url: str = Field(
        default_factory=get_database_url,
        validation_alias="DATABASE_URL",
    )
    openai_api_key: str = Field(default="", validation_alias="OPENAI_API_KEY")
    llm_provider: str = Field(default="openai", validation_alias="LLM_PROVIDER")
    llm_model: str = Field(default="gpt-4o", validation_alias="LLM_MODEL")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, validation_alias="LOG_FILE")
    log_json: bool = Field(default=False, validation_alias="LOG_JSON", description="Write the log file as JSON lines")

    stale_generation_minutes: int = Field(
        default=15,
        validation_alias="STALE_GENERATION_MINUTES",
        description="A generating status not updated for this long is reported as stale",
    )
    claim_timeout_seconds: int = Field(
        default=300,
        validation_alias="CLAIM_TIMEOUT_SECONDS",
        description="A step claim older than this is considered abandoned and may be re-claimed",
    )
    start_delay_seconds: float = Field(
        default=2.0,
        validation_alias="START_DELAY_SECONDS",
        description="Delay before the first advance after start",
    )
    strict_weekdays: bool = Field(
        default=True,
        validation_alias="STRICT_WEEKDAYS",
        description="Reject upstream plans missing a weekday instead of recording it as missing",
    )

    default_weekly_budget: float = Field(default=50.0, validation_alias="DEFAULT_WEEKLY_BUDGET")
    minimum_weekly_budget: float = Field(default=30.0, validation_alias="MINIMUM_WEEKLY_BUDGET")
    budget_margin: float = Field(
        default=0.1,
        validation_alias="BUDGET_MARGIN",
        description="Fraction over budget still reported as under_budget",
    )
    default_store: str = Field(default="Tesco", validation_alias="DEFAULT_STORE")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate that log level is one of the standard logging levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_value = value.upper()
        if upper_value not in valid_levels:
            logger.warning(f"Invalid LOG_LEVEL '{value}'. Valid levels are: {', '.join(valid_levels)}. Defaulting to INFO.")
            return "INFO"
        return upper_value

    @field_validator("openai_api_key")
    @classmethod
    def validate_openai_api_key(cls, value: str) -> str:
        """Warn when no API key is configured.

        Local development and tests run with stubbed stage generators, so an
        empty key is allowed.
        """
        if not value:
            logger.warning(
                "⚠️ OPENAI_API_KEY is not set. Workout, meal, ingredient and shopping-list "
                "generation will fail until it is configured."
            )
        return value

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
