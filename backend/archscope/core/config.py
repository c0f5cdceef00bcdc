from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    PROJECT_NAME: str = "ArchScope"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    LOG_LEVEL: str = "INFO"

    SQLALCHEMY_DATABASE_URI: str = "sqlite:///./archscope.db"

    # Source control host
    GITHUB_HOST: str = "github.com"
    GITHUB_API_BASE: str = "https://api.github.com"
    GITHUB_TOKEN: str | None = None

    # Snapshot bounds
    SNAPSHOT_MAX_FILES: int = 30
    SNAPSHOT_TRUNCATE_THRESHOLD: int = 10_000
    SNAPSHOT_TRUNCATE_PREFIX: int = 5_000
    MODEL_CONTENT_MAX_CHARS: int = 80_000

    # Model service (OpenAI-compatible chat completions)
    LLM_BASE_URL: str = "https://api.openai.com/v1"
    LLM_API_KEY: str | None = None
    MODEL_DEFAULT: str = "gpt-4o-mini"

    HTTP_CONNECT_TIMEOUT: float = 10.0
    HTTP_READ_TIMEOUT: float = 120.0


settings = Settings()  # type: ignore
