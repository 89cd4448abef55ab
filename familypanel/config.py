"""
Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

# Public, so only good enough for local development
DEV_JWT_SECRET = "dev-jwt-secret-change-in-production"


class ConfigurationError(RuntimeError):
    """Settings the app refuses to start with."""


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================================================
    # Environment
    # ==========================================================================

    environment: str = "development"
    debug: bool = True
    seed_demo_household: bool = True

    # ==========================================================================
    # API Server
    # ==========================================================================

    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    # ==========================================================================
    # Authentication
    # ==========================================================================

    # An empty secret means auth is not configured yet (build / static
    # generation); the route guard then passes every request through.
    jwt_secret_key: str = DEV_JWT_SECRET
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 60
    jwt_refresh_token_expire_days: int = 7

    # Single-use proof minted and redeemed inside one PIN login
    link_proof_ttl_seconds: int = 60

    session_cookie_name: str = "session_token"
    refresh_cookie_name: str = "refresh_token"

    login_path: str = "/login"
    default_landing_path: str = "/dashboard"

    # ==========================================================================
    # Timeouts
    # ==========================================================================

    store_timeout_seconds: float = 5.0
    issue_timeout_seconds: float = 5.0

    # ==========================================================================
    # Optional Services
    # ==========================================================================

    sentry_dsn: str = ""

    # ==========================================================================
    # Helpers
    # ==========================================================================

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def auth_configured(self) -> bool:
        """Whether sessions can be issued and validated at all."""
        return bool(self.jwt_secret_key)

    @property
    def should_seed(self) -> bool:
        """Demo accounts have published passwords; never in production."""
        return self.seed_demo_household and not self.is_production

    def production_errors(self) -> list[str]:
        """Settings that must not reach production. Empty outside production."""
        if not self.is_production:
            return []
        errors = []
        if not self.jwt_secret_key:
            errors.append("JWT_SECRET_KEY is empty; the route guard would enforce nothing")
        elif self.jwt_secret_key == DEV_JWT_SECRET:
            errors.append("JWT_SECRET_KEY is the public development default")
        return errors


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
