"""Gmail API gateway used by the mailbox operations.

Provides the ``GmailGateway`` class, a thin synchronous wrapper over the
Gmail v1 discovery client.  Every method executes exactly one request
against ``userId="me"`` and returns the provider's response dict.  Provider
``HttpError``s are mapped to ``RemoteOperationFailure`` (``TokenRejected`` for
401) after transient statuses have been retried.
"""

from __future__ import annotations

from typing import Any

import httplib2
import structlog
from google.auth.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import HttpRequest

from mailbridge.errors import RemoteOperationFailure, TokenRejected
from mailbridge.resilience.retry import http_status, resilient_api_call

logger = structlog.get_logger()

_USER_ID = "me"


def _drop_none(**kwargs: Any) -> dict[str, Any]:
    return {key: value for key, value in kwargs.items() if value is not None}


def _failure_from_http_error(exc: HttpError) -> RemoteOperationFailure:
    status = http_status(exc)
    message = getattr(exc, "reason", None) or str(exc)
    if status == 401:
        return TokenRejected(message, status=status)
    return RemoteOperationFailure(message, status=status)


@resilient_api_call()
def _execute_request(request: Any, *, api_name: str) -> dict[str, Any]:
    result: dict[str, Any] | None = request.execute()
    # Endpoints such as messages.delete answer with an empty body.
    return result or {}


class GmailGateway:
    """Wrapper around the Gmail API service for mailbox operations.

    No real network calls are made by this class directly -- the service
    object handles transport.  When the service is built by
    ``build_gateway`` each request gets its own HTTP connection, so one
    gateway may be shared by concurrent worker threads.

    Args:
        service: An authenticated Gmail API v1 service resource.
    """

    def __init__(self, service: Any) -> None:
        self._service = service

    # -- Messages ------------------------------------------------------------

    def get_message(
        self,
        message_id: str,
        format: str = "full",
        metadata_headers: list[str] | None = None,
    ) -> dict[str, Any]:
        request = self._messages().get(
            **_drop_none(
                userId=_USER_ID,
                id=message_id,
                format=format,
                metadataHeaders=metadata_headers,
            )
        )
        return self._execute("messages.get", request)

    def list_messages(
        self,
        query: str | None = None,
        max_results: int | None = None,
        label_ids: list[str] | None = None,
    ) -> dict[str, Any]:
        request = self._messages().list(
            **_drop_none(userId=_USER_ID, q=query, maxResults=max_results, labelIds=label_ids)
        )
        return self._execute("messages.list", request)

    def send_message(self, raw: str, thread_id: str | None = None) -> dict[str, Any]:
        """Send a base64url ``raw`` message, optionally within ``thread_id``."""
        body = _drop_none(raw=raw, threadId=thread_id)
        return self._execute("messages.send", self._messages().send(userId=_USER_ID, body=body))

    def modify_message(
        self,
        message_id: str,
        add_label_ids: list[str] | None = None,
        remove_label_ids: list[str] | None = None,
    ) -> dict[str, Any]:
        request = self._messages().modify(
            userId=_USER_ID,
            id=message_id,
            body={
                "addLabelIds": list(add_label_ids or []),
                "removeLabelIds": list(remove_label_ids or []),
            },
        )
        return self._execute("messages.modify", request)

    def delete_message(self, message_id: str) -> None:
        """Permanently delete a message (bypasses trash)."""
        self._execute("messages.delete", self._messages().delete(userId=_USER_ID, id=message_id))

    def trash_message(self, message_id: str) -> dict[str, Any]:
        return self._execute("messages.trash", self._messages().trash(userId=_USER_ID, id=message_id))

    def untrash_message(self, message_id: str) -> dict[str, Any]:
        return self._execute(
            "messages.untrash", self._messages().untrash(userId=_USER_ID, id=message_id)
        )

    def get_attachment(self, message_id: str, attachment_id: str) -> dict[str, Any]:
        request = (
            self._messages()
            .attachments()
            .get(userId=_USER_ID, messageId=message_id, id=attachment_id)
        )
        return self._execute("messages.attachments.get", request)

    # -- Drafts --------------------------------------------------------------

    def get_draft(self, draft_id: str, format: str = "full") -> dict[str, Any]:
        request = self._drafts().get(userId=_USER_ID, id=draft_id, format=format)
        return self._execute("drafts.get", request)

    def list_drafts(
        self, max_results: int | None = None, query: str | None = None
    ) -> dict[str, Any]:
        request = self._drafts().list(
            **_drop_none(userId=_USER_ID, maxResults=max_results, q=query)
        )
        return self._execute("drafts.list", request)

    def create_draft(self, raw: str, thread_id: str | None = None) -> dict[str, Any]:
        body = {"message": _drop_none(raw=raw, threadId=thread_id)}
        return self._execute("drafts.create", self._drafts().create(userId=_USER_ID, body=body))

    def send_draft(self, draft_id: str) -> dict[str, Any]:
        return self._execute(
            "drafts.send", self._drafts().send(userId=_USER_ID, body={"id": draft_id})
        )

    def delete_draft(self, draft_id: str) -> None:
        self._execute("drafts.delete", self._drafts().delete(userId=_USER_ID, id=draft_id))

    # -- Labels --------------------------------------------------------------

    def list_labels(self) -> dict[str, Any]:
        return self._execute("labels.list", self._labels().list(userId=_USER_ID))

    def create_label(
        self,
        name: str,
        message_list_visibility: str | None = None,
        label_list_visibility: str | None = None,
    ) -> dict[str, Any]:
        body = _drop_none(
            name=name,
            messageListVisibility=message_list_visibility,
            labelListVisibility=label_list_visibility,
        )
        return self._execute("labels.create", self._labels().create(userId=_USER_ID, body=body))

    def delete_label(self, label_id: str) -> None:
        self._execute("labels.delete", self._labels().delete(userId=_USER_ID, id=label_id))

    # -- Threads -------------------------------------------------------------

    def get_thread(
        self,
        thread_id: str,
        format: str = "full",
        metadata_headers: list[str] | None = None,
    ) -> dict[str, Any]:
        request = self._threads().get(
            **_drop_none(
                userId=_USER_ID,
                id=thread_id,
                format=format,
                metadataHeaders=metadata_headers,
            )
        )
        return self._execute("threads.get", request)

    def list_threads(
        self,
        query: str | None = None,
        max_results: int | None = None,
        label_ids: list[str] | None = None,
    ) -> dict[str, Any]:
        request = self._threads().list(
            **_drop_none(userId=_USER_ID, q=query, maxResults=max_results, labelIds=label_ids)
        )
        return self._execute("threads.list", request)

    # -- Internal helpers ----------------------------------------------------

    def _messages(self) -> Any:
        return self._service.users().messages()

    def _drafts(self) -> Any:
        return self._service.users().drafts()

    def _labels(self) -> Any:
        return self._service.users().labels()

    def _threads(self) -> Any:
        return self._service.users().threads()

    @staticmethod
    def _execute(api_name: str, request: Any) -> dict[str, Any]:
        try:
            return _execute_request(request, api_name=api_name)
        except HttpError as exc:
            failure = _failure_from_http_error(exc)
            logger.warning(
                "gmail_request_failed",
                api_name=api_name,
                status=failure.status,
                error=failure.message,
            )
            raise failure from exc


def _authorized_http(credentials: Credentials) -> AuthorizedHttp:
    # 401s are not refreshed here; the AuthManager handles TokenRejected.
    return AuthorizedHttp(credentials, http=httplib2.Http(), refresh_status_codes=())


def build_gateway(credentials: Credentials) -> GmailGateway:
    """Build a ``GmailGateway`` for ``credentials``.

    httplib2 connections are not thread-safe, so the service is built with a
    request builder that gives every request its own authorized connection.
    Those connections never refresh the token themselves; a 401 surfaces as
    ``TokenRejected``.

    Args:
        credentials: OAuth2 user or service credentials with Gmail scopes.

    Returns:
        A gateway safe for concurrent use from worker threads.
    """

    def _request_builder(http: Any, *args: Any, **kwargs: Any) -> HttpRequest:
        return HttpRequest(_authorized_http(credentials), *args, **kwargs)

    service = build(
        "gmail",
        "v1",
        http=_authorized_http(credentials),
        requestBuilder=_request_builder,
        cache_discovery=False,
    )
    return GmailGateway(service)
