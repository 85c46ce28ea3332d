"""Authentication module for the Gmail OAuth2 credential lifecycle."""

from mailbridge.auth.manager import AuthManager
from mailbridge.auth.models import AuthSession, CredentialRecord
from mailbridge.auth.states import AuthState
from mailbridge.auth.store import CredentialStore

__all__ = [
    "AuthManager",
    "AuthSession",
    "AuthState",
    "CredentialRecord",
    "CredentialStore",
]
