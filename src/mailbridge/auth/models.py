"""Credential and authorization-session models for the OAuth2 lifecycle."""

from __future__ import annotations

from datetime import UTC, datetime

from google.oauth2.credentials import Credentials
from pydantic import BaseModel, ConfigDict, field_validator

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"


class CredentialRecord(BaseModel):
    """Persisted token material enabling reuse across process restarts.

    A record without an ``access_token`` is invalid and cannot be constructed,
    so every instance is safe to persist or treat as authenticated.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str | None = None
    expiry: datetime | None = None  # always UTC-aware
    scope: str = ""
    token_type: str = "Bearer"

    @field_validator("access_token")
    @classmethod
    def _require_access_token(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("access_token must be non-empty")
        return value

    @field_validator("expiry")
    @classmethod
    def _expiry_as_utc(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    @property
    def scopes(self) -> list[str]:
        """Return the granted scopes as a list."""
        return self.scope.split()

    def is_expired(self, now: datetime | None = None) -> bool:
        """Return True when a known expiry has passed."""
        if self.expiry is None:
            return False
        return (now or datetime.now(tz=UTC)) >= self.expiry

    @classmethod
    def from_credentials(cls, creds: Credentials) -> CredentialRecord:
        """Snapshot a google-auth ``Credentials`` object.

        google-auth keeps ``expiry`` as a naive UTC datetime; it is stored
        here as an aware one.
        """
        granted = creds.granted_scopes or creds.scopes or []
        return cls(
            access_token=creds.token or "",
            refresh_token=creds.refresh_token,
            expiry=creds.expiry,
            scope=" ".join(granted),
        )

    def to_credentials(
        self,
        client_id: str | None,
        client_secret: str | None,
        scopes: list[str] | tuple[str, ...],
    ) -> Credentials:
        """Build google-auth ``Credentials`` that can refresh this record."""
        expiry = self.expiry.astimezone(UTC).replace(tzinfo=None) if self.expiry else None
        return Credentials(  # type: ignore[no-untyped-call]
            token=self.access_token,
            refresh_token=self.refresh_token,
            token_uri=GOOGLE_TOKEN_URI,
            client_id=client_id,
            client_secret=client_secret,
            scopes=list(scopes),
            expiry=expiry,
        )


class AuthSession(BaseModel):
    """State of one interactive authorization attempt.

    Lives only until the callback arrives or the attempt times out.
    """

    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: str
    redirect_uri: str
    requested_scopes: tuple[str, ...]
    pending_state: str
