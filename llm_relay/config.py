"""
Library configuration via pydantic-settings.

Every client in llm_relay is configured programmatically through its
constructor. Settings is the optional environment-backed layer on top: it
reads LLM_RELAY_* variables (or a .env file) and llm_relay.factory turns it
into ready-to-use providers, routers and history stores.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="LLM_RELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Provider credentials
    # ------------------------------------------------------------------ #
    openrouter_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="OpenRouter API key. Leave empty to disable the provider.",
    )
    groq_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="Groq API key. Leave empty to disable the provider.",
    )
    mistral_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="Mistral API key. Leave empty to disable the provider.",
    )

    # ------------------------------------------------------------------ #
    # Model selection
    # ------------------------------------------------------------------ #
    primary_provider: str = Field(
        default="mistral",
        description="Provider tried (or raced) first by the multi-provider router",
    )
    primary_model: str = Field(
        default="mistral-small-latest",
        description="Model used by the primary provider",
    )
    openrouter_fallback_models: list[str] = Field(default_factory=list)
    groq_fallback_models: list[str] = Field(default_factory=list)
    mistral_fallback_models: list[str] = Field(default_factory=list)

    # ------------------------------------------------------------------ #
    # Sampling & resolution
    # ------------------------------------------------------------------ #
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1000, ge=1)
    request_timeout_ms: int = Field(
        default=20_000,
        ge=0,
        description="Per-attempt timeout in milliseconds. 0 disables the timeout.",
    )
    first_to_finish: bool = Field(
        default=False,
        description=(
            "Race every candidate concurrently and keep the first success. "
            "Losing calls are not cancelled and still consume provider quota."
        ),
    )

    # ------------------------------------------------------------------ #
    # Conversation history
    # ------------------------------------------------------------------ #
    history_url: str = Field(
        default="memory://",
        description=(
            "History store location. 'memory://' keeps turns in-process; any "
            "async SQLAlchemy URL (e.g. sqlite+aiosqlite:///history.db) persists them."
        ),
    )
    history_table: str = Field(default="ai_memory")
    history_scope: str = Field(default="default")
    history_limit: int = Field(default=10, ge=1, le=200)
    history_max_entries: int = Field(
        default=80,
        ge=1,
        description="Retention ceiling per (scope, chat id); older turns are pruned",
    )

    # ------------------------------------------------------------------ #
    # Logging
    # ------------------------------------------------------------------ #
    log_level: str = Field(default="INFO")
    json_logs: bool = False

    @model_validator(mode="after")
    def _validate_history_window(self) -> Settings:
        if self.history_limit > self.history_max_entries:
            raise ValueError(
                "history_limit cannot exceed history_max_entries; "
                "turns beyond the retention ceiling are never kept."
            )
        return self

    def api_keys(self) -> dict[str, str]:
        """Return provider id -> plain API key for every configured provider."""
        return {
            "openrouter": self.openrouter_api_key.get_secret_value(),
            "mistral": self.mistral_api_key.get_secret_value(),
            "groq": self.groq_api_key.get_secret_value(),
        }

    def fallback_models(self) -> dict[str, list[str]]:
        return {
            "openrouter": list(self.openrouter_fallback_models),
            "mistral": list(self.mistral_fallback_models),
            "groq": list(self.groq_fallback_models),
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings singleton."""
    return Settings()
