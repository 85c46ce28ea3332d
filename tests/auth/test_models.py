"""Tests for CredentialRecord conversion and expiry handling."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest
from google.oauth2.credentials import Credentials
from pydantic import ValidationError

from mailbridge.auth.models import GOOGLE_TOKEN_URI, CredentialRecord
from mailbridge.config import GMAIL_SCOPES


class TestCredentialRecord:
    def test_empty_access_token_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CredentialRecord(access_token="  ")

    def test_naive_expiry_is_treated_as_utc(self) -> None:
        record = CredentialRecord(access_token="tok", expiry=datetime(2030, 1, 1, 12, 0))

        assert record.expiry == datetime(2030, 1, 1, 12, 0, tzinfo=UTC)

    def test_aware_expiry_normalized_to_utc(self) -> None:
        plus_two = timezone(timedelta(hours=2))
        record = CredentialRecord(
            access_token="tok", expiry=datetime(2030, 1, 1, 14, 0, tzinfo=plus_two)
        )

        assert record.expiry == datetime(2030, 1, 1, 12, 0, tzinfo=UTC)
        assert record.expiry.tzinfo == UTC

    @pytest.mark.parametrize(
        ("expiry", "expected"),
        [
            (None, False),
            (datetime(2030, 1, 1, tzinfo=UTC), False),
            (datetime(2020, 1, 1, tzinfo=UTC), True),
        ],
    )
    def test_is_expired(self, expiry: datetime | None, expected: bool) -> None:
        record = CredentialRecord(access_token="tok", expiry=expiry)

        assert record.is_expired(now=datetime(2025, 6, 1, tzinfo=UTC)) is expected

    def test_scopes_split(self) -> None:
        record = CredentialRecord(access_token="tok", scope="a b c")

        assert record.scopes == ["a", "b", "c"]

    def test_from_credentials(self) -> None:
        creds = Credentials(
            token="access-1",
            refresh_token="refresh-1",
            scopes=list(GMAIL_SCOPES),
            expiry=datetime(2030, 1, 1, 12, 0),
        )

        record = CredentialRecord.from_credentials(creds)

        assert record.access_token == "access-1"
        assert record.refresh_token == "refresh-1"
        assert record.expiry == datetime(2030, 1, 1, 12, 0, tzinfo=UTC)
        assert record.scopes == list(GMAIL_SCOPES)

    def test_to_credentials(self) -> None:
        record = CredentialRecord(
            access_token="access-1",
            refresh_token="refresh-1",
            expiry=datetime(2030, 1, 1, 12, 0, tzinfo=UTC),
        )

        creds = record.to_credentials("cid", "secret", GMAIL_SCOPES)

        assert creds.token == "access-1"
        assert creds.refresh_token == "refresh-1"
        assert creds.client_id == "cid"
        assert creds.client_secret == "secret"
        assert creds.token_uri == GOOGLE_TOKEN_URI
        assert creds.expiry == datetime(2030, 1, 1, 12, 0)
        assert creds.expired is False
