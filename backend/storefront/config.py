"""
Storefront Backend — Application Configuration
================================================

What:  Centralized configuration management using Pydantic Settings.
Why:   Type-safe environment variable loading with validation on startup.
How:   Pydantic Settings reads from environment variables (or .env file),
       validates types/ranges, and produces a `Settings` object.
Who:   Built once by the startup entry point (or the app factory) and passed
       to every component that needs it: logging, middleware, error handler.
When:  Constructed once per process; never mutated afterwards.

Design Decision:
    The settings object is handed to components explicitly instead of being
    imported as a module-level singleton. Tests build their own `Settings`
    (e.g. `Settings(environment="production")`) and pass it to `create_app()`,
    so each test controls the mode it runs in.
"""

from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from storefront.exceptions import ConfigurationError

VALID_ENVIRONMENTS = {"development", "production", "test"}


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults for development.
    Production deployments MUST set the secrets checked by
    `validate_required_for_production()`.
    """

    # ── Runtime Mode ──────────────────────────────────────────────────────
    # What: Selects development (pretty logs, stack traces in error bodies)
    #       or production (single-line JSON logs, no internal details leaked)
    environment: str = Field(default="development")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        lower = v.strip().lower()
        if lower not in VALID_ENVIRONMENTS:
            raise ValueError(
                f"Invalid environment '{v}'. Must be one of: {sorted(VALID_ENVIRONMENTS)}"
            )
        return lower

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    # ── Server ────────────────────────────────────────────────────────────
    host: str = Field(default="0.0.0.0")
    # Preferred port; the startup port resolver may pick a later one if busy
    port: int = Field(default=3000, ge=1, le=65535)

    # Root logger level for third-party libraries (uvicorn, httpx).
    # The application's own structured logger follows `environment`.
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    # ── CORS ──────────────────────────────────────────────────────────────
    # Format: Comma-separated URLs; "*" allows any origin
    cors_origins: str = Field(default="http://localhost:3000")

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    # ── Rate Limiting ─────────────────────────────────────────────────────
    # What: Per-IP fixed window rate limit (100 requests per minute by default)
    rate_limit_requests: int = Field(default=100, ge=1)
    rate_limit_window_ms: int = Field(default=60_000, ge=1)
    # Seconds between background sweeps of expired entries
    rate_limit_sweep_interval: float = Field(default=60.0, gt=0)

    # ── Consumed by excluded components ───────────────────────────────────
    # Auth, persistence and OAuth live outside this core. They are only
    # checked for presence when running in production.
    jwt_secret: str = Field(default="")
    database_url: str = Field(default="")
    oauth_server_url: str = Field(default="")
    app_id: str = Field(default="")
    owner_open_id: str = Field(default="")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def validate_required_for_production(self) -> None:
        """
        What:  Validates that critical settings are configured in production.
        When:  Called by the startup entry point before the server binds.
        Why:   Fail fast with clear error messages instead of cryptic runtime failures.

        Raises:
            ConfigurationError: listing every problem found.
        """
        if not self.is_production:
            return

        errors = []
        if len(self.jwt_secret) < 32:
            errors.append("JWT_SECRET must be set and at least 32 characters in production")
        if not self.database_url:
            errors.append("DATABASE_URL must be set in production")
        if not self.oauth_server_url:
            errors.append("OAUTH_SERVER_URL must be set in production")
        if not self.app_id:
            errors.append("APP_ID must be set in production")

        if errors:
            raise ConfigurationError(errors)


def load_settings() -> Settings:
    """Read settings from the process environment (and .env)."""
    return Settings()
