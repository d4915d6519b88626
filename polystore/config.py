"""Configuration for polystore."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Polystore configuration.

    All settings can be overridden via environment variables or a .env file.
    Backend addresses and secrets are not configured here; they travel with
    the Credentials supplied at provider registration.
    """

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO"
    )
    LOG_JSON: bool = Field(default=True)

    # SQL connection pool
    SQL_POOL_SIZE: int = Field(default=10, ge=1)
    SQL_MAX_OVERFLOW: int = Field(default=10, ge=0)
    SQL_POOL_TIMEOUT: int = Field(default=30, ge=1)
    SQL_POOL_RECYCLE: int = Field(default=3600)
    SQL_POOL_PRE_PING: bool = Field(default=True)
    SQL_SLOW_QUERY_MS: int = Field(default=100, ge=0)

    # Redis
    REDIS_MAX_CONNECTIONS: int = Field(default=50, ge=1)
    REDIS_SOCKET_TIMEOUT: int = Field(default=5, ge=1)
    REDIS_CONNECT_TIMEOUT: int = Field(default=5, ge=1)
    REDIS_SCAN_COUNT: int = Field(default=100, ge=1)
    REDIS_SECTION_REGISTRY_KEY: str = Field(default="__sections__", min_length=1)

    # MongoDB
    MONGO_SERVER_SELECTION_TIMEOUT_MS: int = Field(default=5000, ge=1)
    MONGO_MAX_POOL_SIZE: int = Field(default=50, ge=1)

    # RethinkDB
    RETHINK_TIMEOUT: int = Field(default=20, ge=1)

    # JSON file store
    DEFAULT_FILE_REPOSITORY: str = Field(default="polystore-data")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
