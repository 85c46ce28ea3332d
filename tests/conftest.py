"""Shared pytest fixtures for the mailbridge test suite."""

from __future__ import annotations

from pathlib import Path

import pytest

from mailbridge.config import Settings, get_settings


@pytest.fixture
def anyio_backend() -> str:
    """Run async tests on asyncio only (the manager uses asyncio primitives)."""
    return "asyncio"


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> None:
    """Clear get_settings lru_cache before each test."""
    get_settings.cache_clear()


@pytest.fixture
def token_path(tmp_path: Path) -> Path:
    return tmp_path / "gmail-token.json"


@pytest.fixture
def settings(token_path: Path) -> Settings:
    """Settings with a test OAuth client and a temp credential file."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        google_client_id="client-id.apps.googleusercontent.com",
        google_client_secret="client-secret",
        google_application_credentials=None,
        gmail_token_path=token_path,
        oauth_timeout_seconds=5.0,
    )
