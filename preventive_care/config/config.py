"""
Application configuration with environment-based settings.
All configuration is explicit, validated, and logged at startup.
"""

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults for development but require
    explicit configuration in production environments.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
        populate_by_name=True,
    )

    # Application
    app_name: str = Field(default="Preventive Care Guidelines", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")

    # CORS
    cors_origins: list[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )

    # Row store
    store_backend: Literal["arango", "memory"] = Field(
        default="memory",
        description="Row store backend (memory is for development and tests)"
    )
    arango_host: str = Field(
        default="http://localhost:8529",
        description="ArangoDB host URL"
    )
    arango_database: str = Field(default="preventive_care", description="ArangoDB database name")
    arango_username: str = Field(
        default="root",
        validation_alias=AliasChoices("ARANGODB_USERNAME", "arango_username"),
        description="ArangoDB username (from ARANGODB_USERNAME env var)"
    )
    arango_password: str = Field(
        default="",
        validation_alias=AliasChoices("ARANGODB_PASSWORD", "arango_password"),
        description="ArangoDB password (from ARANGODB_PASSWORD env var)"
    )

    # Recommendation defaults
    default_upcoming_years: int = Field(
        default=5,
        ge=0,
        description="Look-ahead window for upcoming guidelines, in years"
    )
    default_frequency_months: int = Field(
        default=12,
        ge=1,
        description="Screening interval used when a guideline has none"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "console"] = Field(
        default="console",
        description="Log output format"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    def get_safe_config_dict(self) -> dict:
        """Return configuration dict with secrets redacted for logging."""
        config = self.model_dump()
        if config.get("arango_password"):
            config["arango_password"] = "***REDACTED***"
        return config


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once and cached for the application lifetime.
    Use dependency injection in FastAPI routes for testability.
    """
    return Settings()
