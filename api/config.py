"""
Configuration utilities and environment settings.

Handles environment variables and path resolution. Application settings
that administrators change at runtime live in the database (see
core.settings_service); this module only covers deployment configuration.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")
    api_debug: bool = Field(default=True, alias="API_DEBUG")

    # Storage
    database_path: str = Field(
        default="./data/cosmic.db",
        alias="DATABASE_PATH",
        description="Path to the SQLite database holding users and settings",
    )

    # Authentication
    auth_enabled: bool = Field(default=True, alias="AUTH_ENABLED", description="Enable JWT authentication")
    jwt_secret_key: str | None = Field(
        default=None,
        alias="JWT_SECRET_KEY",
        description="Secret key for signing JWT tokens (required when AUTH_ENABLED=true)",
    )
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM", description="Algorithm for JWT signing")
    jwt_expiry_minutes: int = Field(
        default=60, alias="JWT_EXPIRY_MINUTES", description="JWT token expiration time in minutes"
    )

    # First-time setup
    force_first_time_setup: bool = Field(
        default=False,
        alias="FORCE_FIRST_TIME_SETUP",
        description="Allow the setup endpoint to run again even after setup was completed",
    )

    # Coarse HTTP flood protection (per client IP, independent of persisted rate limit settings)
    http_rate_limit: str = Field(default="120/minute", alias="HTTP_RATE_LIMIT")
    http_rate_limit_login: str = Field(default="10/minute", alias="HTTP_RATE_LIMIT_LOGIN")

    # CORS
    cors_allowed_origins: str = Field(
        default="",
        alias="CORS_ALLOWED_ORIGINS",
        description="Comma-separated list of allowed CORS origins (empty = wildcard in debug mode only)",
    )

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Ignore extra fields in .env file


# Global settings instance
settings = Settings()


def ensure_directories():
    """Ensure the database directory exists (for development/testing)."""
    Path(settings.database_path).parent.mkdir(parents=True, exist_ok=True)
