"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys
from datetime import timedelta
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Key-value store backend
    store_backend: Literal["sql", "memory"] = "sql"
    store_namespace: str = "imghost"

    # Database Configuration (SQL store backend) - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = True

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Image Host API"
    api_version: str = "0.1.0"
    api_description: str = "Account and image hosting service over a key-value store"
    trust_proxy_headers: bool = True

    # Accounts and sessions
    password_min_length: int = 6
    session_ttl_seconds: int = 7 * 24 * 3600
    session_cookie_name: str = "session"
    session_cookie_secure: bool = True

    # Rate limiting (fixed windows, per client address)
    auth_failure_limit: int = 10
    auth_failure_window_seconds: int = 15 * 60
    signup_limit: int = 10
    signup_window_seconds: int = 60 * 60
    upload_limit: int = 50
    upload_window_seconds: int = 60 * 60
    not_found_window_seconds: int = 10 * 60
    not_found_escalation_threshold: int = 20

    # Uploads
    max_upload_bytes: int = 10 * 1024 * 1024
    allowed_content_types: str = "image/png,image/jpeg,image/gif,image/webp"
    min_expiry_seconds: int = 60
    max_expiry_seconds: int = 30 * 24 * 3600

    # Expiry sweep - shared secret for the scheduled trigger (empty = open)
    sweep_token: str = ""

    # Notifications (fire-and-forget webhook sink)
    webhook_url: str = ""
    webhook_timeout_seconds: float = 3.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "imghost-api"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        This prevents silent failures that only manifest at runtime.
        """
        errors: list[str] = []

        # The SQL backend cannot run without a database
        if self.store_backend == "sql":
            if not self.database_url:
                errors.append("DATABASE_URL is required when STORE_BACKEND=sql")
            elif not self.database_url.startswith(("postgresql", "postgres")):
                errors.append(
                    f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
                )

        if self.password_min_length < 1:
            errors.append("PASSWORD_MIN_LENGTH must be at least 1")
        if self.session_ttl_seconds <= 0:
            errors.append("SESSION_TTL_SECONDS must be positive")
        if self.min_expiry_seconds > self.max_expiry_seconds:
            errors.append("MIN_EXPIRY_SECONDS cannot exceed MAX_EXPIRY_SECONDS")

        # If we have errors, fail immediately with clear messaging
        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def session_ttl(self) -> timedelta:
        """Lifetime of an issued session."""
        return timedelta(seconds=self.session_ttl_seconds)

    @property
    def content_type_allowlist(self) -> list[str]:
        """Get list of accepted upload content types."""
        types = []
        for ctype in self.allowed_content_types.split(","):
            ctype = ctype.strip().lower()
            if ctype and ctype not in types:
                types.append(ctype)
        return types


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
