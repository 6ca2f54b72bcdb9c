from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

AIProvider = Literal["openai", "azure"]


class Settings(BaseSettings):
    database_url: str

    ai_provider: AIProvider = "openai"
    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    azure_openai_endpoint: str | None = None
    azure_openai_api_key: str | None = None
    azure_openai_api_version: str = "2024-02-15-preview"
    ai_model: str = "gpt-4o-mini"
    ai_temperature: float = 0.3
    ai_max_tokens: int = 2000
    ai_timeout_seconds: float = 60.0
    ai_min_request_interval_seconds: float = 1.0
    ai_max_retries: int = 3
    ai_retry_backoff_base_seconds: float = 1.0
    ai_rate_limit_status_codes: str = "429"

    lead_positive_threshold: float = 1.0
    statistical_sample_size: int = 40
    positive_percent_threshold: float = 2.5

    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_timeout_seconds: int = 30
    db_echo_sql: bool = False

    ops_event_buffer_size: int = 500

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    @field_validator("ai_provider", mode="before")
    @classmethod
    def normalize_provider(cls, value: str) -> str:
        return str(value).strip().lower()

    @field_validator("ai_temperature")
    @classmethod
    def validate_temperature(cls, value: float) -> float:
        if not 0.0 <= value <= 2.0:
            raise ValueError("AI_TEMPERATURE must be between 0 and 2")
        return value

    @field_validator("ai_max_retries")
    @classmethod
    def validate_max_retries(cls, value: int) -> int:
        if value < 1:
            raise ValueError("AI_MAX_RETRIES must allow at least one attempt")
        return value

    def ai_rate_limit_status_code_set(self) -> set[int]:
        return {int(item.strip()) for item in self.ai_rate_limit_status_codes.split(",") if item.strip()}

    def ai_api_key(self) -> str | None:
        if self.ai_provider == "azure":
            return self.azure_openai_api_key
        return self.openai_api_key


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
