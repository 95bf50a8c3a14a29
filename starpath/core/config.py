"""Configuration management for Starpath Progress Service."""

from typing import List, Optional
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
import json


class Settings(BaseSettings):
    """Application settings with validation."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    # Application
    APP_NAME: str = "Starpath Progress Service"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = Field(default="development", pattern="^(development|staging|test|production)$")
    SERVICE_NAME: str = "starpath-progress"
    SERVICE_PORT: int = 8004

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://localhost:5432/starpath"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40
    DATABASE_ECHO: bool = False

    # Cache (badge catalog read-through)
    REDIS_URL: str = "redis://localhost:6379"
    BADGE_CATALOG_CACHE_TTL: int = 300  # 5 minutes
    SEED_BADGE_CATALOG: bool = False

    # JWT
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRATION_MINUTES: int = 60

    # Completion eligibility
    BOOK_MIN_TIME_SECONDS: float = 60
    BOOK_MIN_PROGRESS_PERCENT: float = 80
    BOOK_MAX_SCORE_BYPASS: bool = True
    VIDEO_MIN_COMPLETION_PERCENT: float = 80

    # Reward defaults (used when a content record leaves the value unset)
    DEFAULT_BOOK_REQUIRED_READINGS: int = 5
    DEFAULT_BOOK_STARS: int = 50
    DEFAULT_VIDEO_REQUIRED_WATCHES: int = 5
    DEFAULT_VIDEO_STARS: int = 10
    DEFAULT_EXPLORE_VIDEO_STARS: int = 10

    # Duplicate submission suppression
    DEDUP_WINDOW_SECONDS: float = 5.0

    # Optimistic retry budget for streak compare-and-set
    STREAK_CAS_RETRIES: int = 5

    # Logging
    LOG_LEVEL: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    LOG_FORMAT: str = Field(default="json", pattern="^(json|plain)$")

    # CORS
    CORS_ORIGINS: List[str] = Field(default_factory=list)

    @field_validator("CORS_ORIGINS", mode="before")
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(",")]
        return v

    # Monitoring
    ENABLE_METRICS: bool = True

    def is_production(self) -> bool:
        """Check if running in production."""
        return self.ENVIRONMENT == "production"

    def is_postgres(self) -> bool:
        """Check if the configured database is PostgreSQL."""
        return self.DATABASE_URL.startswith("postgresql")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
