from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    LOCAL = "local"
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.

    Settings are read once by the application factory and handed to each
    component as plain constructor arguments.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Server
    APP_VERSION: str = "0.1.0"
    ENVIRONMENT: Environment = Environment.LOCAL
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./message.db"

    # Redis cache of recently sent messages
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_TTL_SECONDS: int = 3600

    # Outbound webhook
    WEBHOOK_URL: str = "http://localhost:9000/webhook"
    WEBHOOK_AUTH_KEY: str = ""
    HTTP_CLIENT_TIMEOUT: float = 5.0
    HTTP_CLIENT_MAX_CONNECTIONS: int = 5

    # Dispatch scheduler
    SCHEDULER_INTERVAL_SECONDS: float = 120.0
    SCHEDULER_BATCH_SIZE: int = 2
    SCHEDULER_AUTOSTART: bool = False


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every call.
    """
    return Settings()
