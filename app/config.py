"""Application configuration using Pydantic Settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite:///./roundtable.db"
    RUN_MIGRATIONS: bool = True

    # OpenRouter
    OPENROUTER_API_KEY: str = ""
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    LLM_MODEL: str = "openai/gpt-4o"
    LLM_TIMEOUT_SECONDS: float = 120.0
    SITE_URL: str = ""
    SITE_NAME: str = "RoundTable"

    # Retry policy (delay after attempt k is 2^k * base)
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 1.0

    # Runs
    MESSAGE_MAX_CHARS: int = 700
    IDEA_MIN_CHARS: int = 10
    IDEA_MAX_CHARS: int = 5000
    RUN_TTL_SECONDS: int = 2592000  # 30 days
    DEFAULT_PRESET_ID: str = "default"

    # Worker
    WORKER_POLL_INTERVAL: int = 2
    WORKER_THREADS: int = 2
    JOB_LEASE_SECONDS: int = 600
    MAX_JOB_DELIVERIES: int = 3

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


# Global settings instance
settings = Settings()
