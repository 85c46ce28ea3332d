"""Centralized, typed configuration using pydantic-settings.

Provides a single ``Settings`` class backed by ``.env`` file and environment
variables, a cached ``get_settings()`` accessor, and the fixed OAuth2
constants (redirect URI and scope set) the Auth Manager depends on.

IMPORTANT: This module has ZERO imports from the ``mailbridge`` package to
prevent circular imports.  Only stdlib, pydantic, pydantic_settings, and
structlog are used.
"""

from __future__ import annotations

import sys
from functools import lru_cache
from pathlib import Path

import structlog
from pydantic import Field, SecretStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()

OAUTH_REDIRECT_URI: str = "http://localhost:3000/oauth/callback"
OAUTH_CALLBACK_HOST: str = "localhost"
OAUTH_CALLBACK_PORT: int = 3000
OAUTH_CALLBACK_PATH: str = "/oauth/callback"

# Order is preserved in the authorization URL.
GMAIL_SCOPES: tuple[str, ...] = (
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/gmail.compose",
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables and ``.env`` file.

    ``SecretStr`` fields prevent accidental leaks of the OAuth client secret
    in logs or error output.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -- General ---------------------------------------------------------------
    production: bool = False
    sentry_dsn: str = ""

    # -- OAuth2 client -------------------------------------------------------------
    google_client_id: str = ""
    google_client_secret: SecretStr = SecretStr("")
    google_application_credentials: Path | None = None
    oauth_timeout_seconds: float = Field(default=300.0, gt=0)

    # -- Credential storage ------------------------------------------------------
    gmail_token_path: Path = Path("gmail-token.json")

    # -- Mailbox operations ------------------------------------------------------
    batch_size: int = Field(default=50, gt=0)
    listing_enrichment_limit: int = Field(default=10, ge=0)

    @property
    def uses_service_identity(self) -> bool:
        """Return True when a pre-provisioned service identity is configured."""
        return self.google_application_credentials is not None

    def missing_oauth_settings(self) -> list[str]:
        """Return the env var names of absent OAuth client settings."""
        missing: list[str] = []
        if not self.google_client_id:
            missing.append("GOOGLE_CLIENT_ID")
        if not self.google_client_secret.get_secret_value():
            missing.append("GOOGLE_CLIENT_SECRET")
        return missing


@lru_cache
def get_settings() -> Settings:
    """Return a cached ``Settings`` instance.

    The ``@lru_cache`` decorator ensures environment variables are parsed
    exactly once.  Call ``get_settings.cache_clear()`` in tests to reset.

    Returns:
        The application ``Settings``.
    """
    try:
        return Settings()
    except ValidationError as exc:
        # Log only the structured errors list -- never the full exception
        # which may contain raw SecretStr values.
        logger.error("settings_validation_failed", errors=exc.errors())
        sys.exit(1)
