"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class PointsConfig(BaseSettings):
    """Points economy configuration"""

    model_config = SettingsConfigDict(
        env_prefix="POINTS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Database configuration
    database_url: str = "sqlite:///points.db"  # or memory:// for a throwaway store
    sqlite_busy_timeout_seconds: float = 5.0  # Wait for another unit of work's write lock

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Token verification (issuance belongs to the auth service)
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"

    # Logging configuration
    log_level: str = "INFO"
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    default_award_reason: str = "Points awarded"
    leaderboard_default_limit: int = 25
    leaderboard_max_limit: int = 100
    requests_page_default_limit: int = 10
    requests_page_max_limit: int = 50

    # Feature flags
    enable_audit_logging: bool = True


# Global configuration instance
config = PointsConfig()


def get_config() -> PointsConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> PointsConfig:
    """Reload configuration from environment"""
    global config
    config = PointsConfig()
    return config
