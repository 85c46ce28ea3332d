"""Exception taxonomy for mailbridge.

Credential and MIME failures abort the requesting operation.  Remote
failures are isolated per item inside batches and surfaced directly for
single-item operations.
"""

from __future__ import annotations


class MailbridgeError(Exception):
    """Base class for all mailbridge errors."""


class ConfigurationError(MailbridgeError):
    """Raised when required OAuth client settings are absent.

    Attributes:
        missing: The environment variable names that were not set.
    """

    def __init__(self, missing: list[str]) -> None:
        self.missing = list(missing)
        super().__init__(
            "Missing OAuth2 credentials. Set both GOOGLE_CLIENT_ID and "
            f"GOOGLE_CLIENT_SECRET (missing: {', '.join(self.missing)})"
        )


class AuthorizationError(MailbridgeError):
    """Raised when the user denies access or the provider returns an error."""


class AuthorizationTimeout(AuthorizationError):
    """Raised when no OAuth callback arrives within the authorization window.

    Attributes:
        timeout_seconds: The window that elapsed.
    """

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Authentication timeout after {timeout_seconds:g} seconds")


class AuthorizationInProgress(MailbridgeError):
    """Raised when an interactive authorization is already awaiting its callback."""

    def __init__(self) -> None:
        super().__init__("An interactive authorization is already in progress")


class TokenRefreshFailure(MailbridgeError):
    """Raised when the provider rejects a refresh attempt."""


class InvalidAuthTransition(MailbridgeError):
    """Raised when the auth state machine is asked for a disallowed transition.

    Attributes:
        current_state: The state the machine was in.
        target_state: The state that was requested.
    """

    def __init__(self, current_state: str, target_state: str) -> None:
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(f"Cannot move auth state from '{current_state}' to '{target_state}'")


class RemoteOperationFailure(MailbridgeError):
    """Raised when a Gmail API call fails.

    Attributes:
        message: The provider's error message.
        status: The HTTP status code, when the failure came from an HTTP response.
    """

    def __init__(self, message: str, status: int | None = None) -> None:
        self.message = message
        self.status = status
        super().__init__(message)


class TokenRejected(RemoteOperationFailure):
    """Raised when the provider answers 401 for an otherwise valid request."""
