"""Application configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from the environment and an optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Provider endpoints
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    vsegpt_base_url: str = "https://api.vsegpt.ru/v1"
    validation_timeout: float = Field(default=10.0, gt=0)

    # Storage
    database_url: str = "sqlite+aiosqlite:///./data/aichat.db"
    database_echo: bool = False
    keyring_service: str = "aichat"
    preferences_path: str = "./data/preferences.json"

    log_level: str = "INFO"

    @property
    def vsegpt_enabled(self) -> bool:
        """Whether a VSEGPT base URL has been configured."""
        return bool(self.vsegpt_base_url.strip())


settings = Settings()
