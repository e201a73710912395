"""
staffplan Configuration Management

Uses Pydantic Settings for type-safe configuration from environment variables.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    # =========================================================================
    # APPLICATION
    # =========================================================================
    APP_NAME: str = "staffplan"
    APP_ENV: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "info"
    VERSION: str = "0.1.0"

    # =========================================================================
    # API SERVER
    # =========================================================================
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    CORS_ORIGINS: str = "http://localhost:3000"

    # =========================================================================
    # DATABASE
    # =========================================================================
    # Connection settings live in storage.database.DatabaseConfig
    DB_AUTO_CREATE: bool = False

    # =========================================================================
    # CAPACITY POLICY
    # =========================================================================
    DEFAULT_WEEKLY_CAPACITY_HOURS: float = 40.0
    HIGH_UTILIZATION_THRESHOLD: float = 80.0
    OVER_ALLOCATION_THRESHOLD: float = 100.0
    UNDERUTILIZED_THRESHOLD: float = 70.0
    MAX_ALLOCATION_HOURS: float = 1000.0

    # Severity bands on the utilization fraction (allocated / capacity)
    SEVERITY_MEDIUM_RATIO: float = 1.1
    SEVERITY_HIGH_RATIO: float = 1.2
    SEVERITY_CRITICAL_RATIO: float = 1.4

    # =========================================================================
    # OBSERVABILITY
    # =========================================================================
    METRICS_ENABLED: bool = True

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
