"""Resilient API call decorator with tenacity retry for transient Gmail errors.

Only transient HTTP statuses (rate limiting and server-side failures) are
retried.  Client errors such as 400/403/404 and token rejections (401)
surface immediately so callers can handle them.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

import structlog
from googleapiclient.errors import HttpError
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

logger = structlog.get_logger()

F = TypeVar("F", bound=Callable[..., Any])

TRANSIENT_STATUSES: frozenset[int] = frozenset({429, 500, 502, 503, 504})


def http_status(exc: BaseException) -> int | None:
    """Return the HTTP status carried by a googleapiclient ``HttpError``."""
    if isinstance(exc, HttpError):
        try:
            return int(exc.resp.status)
        except (AttributeError, TypeError, ValueError):
            return None
    return None


def is_transient(exc: BaseException) -> bool:
    """Return True for errors worth retrying."""
    return http_status(exc) in TRANSIENT_STATUSES


def log_final_failure(retry_state: RetryCallState) -> Any:
    """Log retry exhaustion and re-raise the last exception.

    tenacity returns whatever ``retry_error_callback`` returns, so the
    outcome is re-raised here explicitly.

    Args:
        retry_state: Tenacity retry state with attempt info and exception.
    """
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    api_name = retry_state.kwargs.get("api_name", "unknown")

    logger.error(
        "gmail_call_retries_exhausted",
        api_name=api_name,
        attempts=retry_state.attempt_number,
        exception=str(exception),
    )
    if retry_state.outcome is None:
        return None
    return retry_state.outcome.result()


def _before_sleep_log(retry_state: RetryCallState) -> None:
    """Log a warning before each retry attempt.

    Args:
        retry_state: Tenacity retry state with attempt info.
    """
    logger.warning(
        "gmail_call_retrying",
        api_name=retry_state.kwargs.get("api_name", "unknown"),
        attempt=retry_state.attempt_number,
        wait=retry_state.next_action.sleep if retry_state.next_action else 0,
    )


def resilient_api_call(attempts: int = 3) -> Callable[[F], F]:
    """Create a retry decorator for a Gmail API call.

    Returns a tenacity retry decorator configured with:
    - ``attempts`` attempts maximum (default 3)
    - Exponential backoff with jitter (1s initial, 30s max, 5s jitter)
    - Retries only for ``TRANSIENT_STATUSES``
    - Warning log before each retry, error log on exhaustion
    - Original exception re-raised after exhaustion

    The decorated function should accept an ``api_name`` keyword argument,
    which is used in the log events.

    Args:
        attempts: Maximum number of attempts.

    Returns:
        A decorator that wraps the function with retry logic.
    """

    def decorator(func: F) -> F:
        wrapped = retry(
            retry=retry_if_exception(is_transient),
            stop=stop_after_attempt(attempts),
            wait=wait_exponential_jitter(initial=1, max=30, jitter=5),
            before_sleep=_before_sleep_log,
            retry_error_callback=log_final_failure,
            reraise=True,
        )(func)

        return wrapped  # type: ignore[return-value]

    return decorator
