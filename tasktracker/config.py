"""
Application Configuration
=========================

Centralized configuration using Pydantic Settings.
Loads from environment variables with validation.
"""

from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_JWT_SECRET = "change-this-secret-in-production-please"

CACHE_BACKENDS = ("redis", "redis-single-key", "memory")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    ENVIRONMENT: str = Field(default="development")
    LOG_LEVEL: str = Field(default="INFO")

    # Database
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./tasktracker.db",
        description="SQLAlchemy URL; plain postgresql:// URLs are upgraded to asyncpg",
    )
    DB_ECHO: bool = Field(default=False)

    # Redis / task cache
    REDIS_URL: str = Field(default="redis://localhost:6379/0")
    CACHE_BACKEND: str = Field(
        default="redis",
        description="One of: redis, redis-single-key, memory",
    )

    # JWT Authentication
    JWT_SECRET: str = Field(default=DEFAULT_JWT_SECRET)
    JWT_ALGORITHM: str = Field(default="HS256")
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=15)
    JWT_REFRESH_TOKEN_EXPIRE_DAYS: int = Field(default=14)

    # External sync (tasks/populate)
    API_POPULATE_KEY: str = Field(default="")
    EXTERNAL_TODOS_URL: str = Field(default="https://jsonplaceholder.typicode.com/todos")
    EXTERNAL_SYNC_ATTEMPTS: int = Field(default=3, ge=1)
    EXTERNAL_SYNC_BACKOFF_MS: int = Field(default=100, ge=0)
    EXTERNAL_SYNC_TIMEOUT: float = Field(default=10.0)

    # App Configuration
    ALLOWED_ORIGINS: str = Field(default="http://localhost:3000,http://localhost:8000")

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse ALLOWED_ORIGINS into a list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    @property
    def database_url_async(self) -> str:
        """Convert database URL to async format for asyncpg."""
        if self.DATABASE_URL.startswith("postgresql://"):
            return self.DATABASE_URL.replace(
                "postgresql://", "postgresql+asyncpg://", 1
            )
        return self.DATABASE_URL

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.ENVIRONMENT.lower() == "development"

    @field_validator("JWT_SECRET")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        """Ensure JWT secret is sufficiently long."""
        if len(v) < 32:
            raise ValueError("JWT_SECRET must be at least 32 characters long")
        return v

    @field_validator("CACHE_BACKEND")
    @classmethod
    def validate_cache_backend(cls, v: str) -> str:
        """Only known cache backends are accepted."""
        v = v.lower()
        if v not in CACHE_BACKENDS:
            raise ValueError(f"CACHE_BACKEND must be one of {', '.join(CACHE_BACKENDS)}")
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.
    """
    return Settings()


# Export a default settings instance
settings = get_settings()
