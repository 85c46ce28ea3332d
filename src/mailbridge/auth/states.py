"""Auth state machine: states, the transition table, and history tracking."""

from __future__ import annotations

from enum import StrEnum

import structlog

from mailbridge.errors import InvalidAuthTransition
from mailbridge.observability.metrics import AUTH_TRANSITIONS

logger = structlog.get_logger()


class AuthState(StrEnum):
    """States in the OAuth2 credential lifecycle."""

    UNAUTHENTICATED = "unauthenticated"
    REFRESHING = "refreshing"
    AWAITING_CALLBACK = "awaiting_callback"
    AUTHENTICATED = "authenticated"


# All valid (current_state, next_state) pairs.
# Any pair not in this set is an invalid transition.
TRANSITIONS: frozenset[tuple[AuthState, AuthState]] = frozenset(
    {
        # Stored token or service identity still valid
        (AuthState.UNAUTHENTICATED, AuthState.AUTHENTICATED),
        # Silent refresh of stored refresh material
        (AuthState.UNAUTHENTICATED, AuthState.REFRESHING),
        (AuthState.REFRESHING, AuthState.AUTHENTICATED),
        (AuthState.REFRESHING, AuthState.UNAUTHENTICATED),
        # Interactive authorization-code flow
        (AuthState.UNAUTHENTICATED, AuthState.AWAITING_CALLBACK),
        (AuthState.AWAITING_CALLBACK, AuthState.AUTHENTICATED),
        (AuthState.AWAITING_CALLBACK, AuthState.UNAUTHENTICATED),
        # Token rejected by the provider, or cached expiry passed
        (AuthState.AUTHENTICATED, AuthState.REFRESHING),
        # Explicit re-authorization discards the in-memory credentials
        (AuthState.AUTHENTICATED, AuthState.UNAUTHENTICATED),
    }
)


class AuthStateMachine:
    """Tracks the current auth state and validates every move against ``TRANSITIONS``.

    Usage::

        sm = AuthStateMachine()
        sm.transition(AuthState.REFRESHING)
        sm.transition(AuthState.AUTHENTICATED)
    """

    def __init__(self, initial_state: AuthState = AuthState.UNAUTHENTICATED) -> None:
        self._state = initial_state
        self._history: list[tuple[AuthState, AuthState]] = []

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def history(self) -> list[tuple[AuthState, AuthState]]:
        """Return a copy of the ``(from_state, to_state)`` history in order."""
        return list(self._history)

    def can_transition(self, target: AuthState) -> bool:
        return (self._state, target) in TRANSITIONS

    def transition(self, target: AuthState) -> AuthState:
        """Move to ``target``.

        Raises:
            InvalidAuthTransition: If ``(state, target)`` is not in ``TRANSITIONS``.
        """
        if not self.can_transition(target):
            raise InvalidAuthTransition(self._state, target)

        previous = self._state
        self._history.append((previous, target))
        self._state = target
        AUTH_TRANSITIONS.labels(from_state=previous.value, to_state=target.value).inc()
        logger.debug("auth_state_changed", from_state=previous.value, to_state=target.value)
        return target
