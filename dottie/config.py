"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Dottie chat configuration. All values come from environment variables."""

    # Anthropic
    anthropic_api_key: str = Field(default="")
    chat_model: str = Field(default="haiku")
    ai_max_tokens: int = Field(default=1024)
    ai_timeout_seconds: float = Field(default=30.0)

    # Service selection: "" (auto-detect), "ai" or "mock"
    chat_service_mode: str = Field(default="")

    # Conversation
    follow_up_history_window: int = Field(default=20)
    response_options_count: int = Field(default=3)
    preview_length: int = Field(default=120)

    # Message validation
    message_max_length: int = Field(default=4000)
    blocked_patterns: list[str] = Field(default_factory=lambda: [r"(.)\1{50,}"])

    # Database
    database_path: Path = Field(default=Path("data/dottie.db"))

    # Turso (hosted libSQL): when set, overrides local database_path
    turso_database_url: str = Field(default="")
    turso_auth_token: str = Field(default="")

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    def get_forced_service_mode(self) -> str | None:
        """Return "ai" or "mock" when CHAT_SERVICE_MODE pins the mode, else None."""
        mode = self.chat_service_mode.strip().lower()
        if mode in ("ai", "mock"):
            return mode
        return None


settings = Settings()
