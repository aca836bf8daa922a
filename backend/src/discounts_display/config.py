"""Application configuration using pydantic-settings."""
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./discounts.db",
        description="SQLAlchemy async connection string (asyncpg or aiosqlite driver)",
    )

    # Application Configuration
    app_env: str = Field(default="development", description="Application environment (development/staging/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Admin JWT Configuration
    jwt_secret_key: str = Field(
        default="change-this-jwt-secret-in-production",
        description="JWT signing key for admin endpoints",
    )
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    access_token_expire_minutes: int = Field(default=30, description="JWT token expiration time in minutes")

    # CORS Configuration
    cors_origins: List[str] = Field(
        default=["*"],
        description="Allowed CORS origins (storefront themes call the API cross-origin)",
    )

    # Rate Limiting
    rate_limit_max_requests: int = Field(default=60, description="Requests allowed per shop per window")
    rate_limit_window_seconds: int = Field(default=60, description="Fixed rate-limit window size in seconds")
    rate_limit_max_tracked_shops: int = Field(
        default=10000,
        description="Tracked shop windows before expired windows are purged",
    )

    # Storefront Authentication
    storefront_token_cache_ttl_seconds: int = Field(default=300, description="Storefront token cache TTL in seconds")
    storefront_token_cache_size: int = Field(default=1000, description="Maximum cached storefront tokens")
    storefront_auth_enforce: bool = Field(
        default=False,
        description="Reject unauthenticated storefront requests (off during gradual rollout)",
    )


# Global settings instance
settings = Settings()
