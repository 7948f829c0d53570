"""Application configuration and settings management.

This module defines the application settings loaded from environment
variables and provides a helper for accessing the cached settings.
"""

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables.

    Attributes:
        DATABASE_URL: Database connection string.
        DB_ISOLATION_LEVEL: Isolation level used for write transactions.
        SECRET_KEY: Secret key used to verify API tokens.
        ALGORITHM: Algorithm used to sign API tokens.
        ACCESS_TOKEN_EXPIRE_MINUTES: Lifetime of issued API tokens.
        API_PREFIX: Path prefix under which the versioned API is mounted.
        API_PERMISSION: Permission a token must carry to use the API.
        PAGE_SIZE: Number of rows fetched per page when streaming lists.
        LOG_LEVEL: Level of the ``app`` logger.
        ALLOWED_ORIGINS: Allowed origins for CORS.
    """

    DATABASE_URL: str = "sqlite:///./notifications.db"
    DB_ISOLATION_LEVEL: str = "SERIALIZABLE"
    SECRET_KEY: str = "dev-secret"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    API_PREFIX: str = "/notifications/api"
    API_PERMISSION: str = "notifications/api"
    PAGE_SIZE: int = 500
    LOG_LEVEL: str = "INFO"
    ALLOWED_ORIGINS: List[str] = ["*"]

    class Config:
        """Pydantic configuration for loading environment variables."""

        env_file = ".env"
        extra = "allow"


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings.

    The settings object is cached to prevent reloading environment
    variables multiple times during application lifetime.
    """

    return Settings()
