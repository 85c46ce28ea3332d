"""Mailbox operations exposed to callers as text-returning coroutines.

Each public method acquires an authenticated gateway through the
``AuthManager``, runs the blocking Gmail call in a worker thread, and renders
the result as a human-readable string.  Failures come back as
``"Failed to <operation>: <reason>"`` rather than as raised exceptions.

When the provider rejects the access token mid-call, the manager refreshes
(or re-authorizes) once and the call is retried exactly once.
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Literal, ParamSpec, TypeVar

import structlog

from mailbridge.auth.manager import AuthManager
from mailbridge.batch.engine import failure_reason, run_batch
from mailbridge.config import Settings
from mailbridge.email.codec import build_message
from mailbridge.email.models import ContentMode, OutboundMessageSpec
from mailbridge.errors import MailbridgeError, RemoteOperationFailure, TokenRejected
from mailbridge.gateway.client import GmailGateway
from mailbridge.mailbox.formatting import (
    body_with_note,
    format_attachments,
    format_labels,
    format_size_kb,
    get_header,
    message_content,
    preview,
)

logger = structlog.get_logger()

P = ParamSpec("P")
T = TypeVar("T")

ThreadFormat = Literal["minimal", "full", "metadata"]

_LISTING_HEADERS = ["Subject", "From", "Date"]
_ATTACHMENT_DATA_PREVIEW = 100


def reports_failure(
    operation: str,
) -> Callable[[Callable[P, Awaitable[str]]], Callable[P, Awaitable[str]]]:
    """Turn any error raised by the wrapped operation into a failure message."""

    def decorator(fn: Callable[P, Awaitable[str]]) -> Callable[P, Awaitable[str]]:
        @functools.wraps(fn)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> str:
            try:
                return await fn(*args, **kwargs)
            except MailbridgeError as exc:
                logger.warning("mailbox_operation_failed", operation=operation, error=str(exc))
                return f"Failed to {operation}: {exc}"
            except Exception as exc:
                logger.exception("mailbox_operation_error", operation=operation)
                return f"Failed to {operation}: {failure_reason(exc)}"

        return wrapper

    return decorator


class MailboxTools:
    """The mailbox operations, bound to one ``AuthManager``."""

    def __init__(self, auth: AuthManager, settings: Settings) -> None:
        self._auth = auth
        self._settings = settings

    async def _call(self, operation: Callable[[GmailGateway], T]) -> T:
        """Run ``operation`` against the gateway in a worker thread.

        Retries once after the manager has replaced a rejected access token.
        """
        gateway = await self._auth.get_authenticated_client()
        token = self._auth.access_token
        try:
            return await asyncio.to_thread(operation, gateway)
        except TokenRejected:
            await self._auth.handle_token_rejected(token)
            gateway = await self._auth.get_authenticated_client()
            return await asyncio.to_thread(operation, gateway)

    def _enrichment_limit(self, override: int | None) -> int:
        return self._settings.listing_enrichment_limit if override is None else max(override, 0)

    # -- Composing ----------------------------------------------------------

    @reports_failure("send email")
    async def send_email(
        self,
        to: Sequence[str],
        subject: str,
        body: str,
        cc: Sequence[str] | None = None,
        bcc: Sequence[str] | None = None,
        html_body: str | None = None,
        content_mode: ContentMode | str = ContentMode.PLAIN,
        in_reply_to: str | None = None,
        thread_id: str | None = None,
    ) -> str:
        spec = OutboundMessageSpec(
            to=to,
            subject=subject,
            plain_body=body,
            cc=cc,
            bcc=bcc,
            html_body=html_body,
            content_mode=content_mode,
            in_reply_to=in_reply_to,
            thread_id=thread_id,
        )
        raw = build_message(spec).decode("ascii")
        sent = await self._call(lambda gw: gw.send_message(raw, thread_id=spec.thread_id))
        logger.info("email_sent", message_id=sent.get("id"), recipients=len(spec.to))
        return f"Email sent successfully. Message ID: {sent.get('id')}"

    @reports_failure("create draft")
    async def draft_email(
        self,
        to: Sequence[str],
        subject: str,
        body: str,
        cc: Sequence[str] | None = None,
        bcc: Sequence[str] | None = None,
        html_body: str | None = None,
        content_mode: ContentMode | str = ContentMode.PLAIN,
        in_reply_to: str | None = None,
        thread_id: str | None = None,
    ) -> str:
        spec = OutboundMessageSpec(
            to=to,
            subject=subject,
            plain_body=body,
            cc=cc,
            bcc=bcc,
            html_body=html_body,
            content_mode=content_mode,
            in_reply_to=in_reply_to,
            thread_id=thread_id,
        )
        raw = build_message(spec).decode("ascii")
        draft = await self._call(lambda gw: gw.create_draft(raw, thread_id=spec.thread_id))
        return f"Draft created successfully. Draft ID: {draft.get('id')}"

    # -- Reading ------------------------------------------------------------

    @reports_failure("read email")
    async def read_email(self, message_id: str) -> str:
        message = await self._call(lambda gw: gw.get_message(message_id, format="full"))
        content = message_content(message)
        return (
            f"Thread ID: {message.get('threadId')}\n"
            f"Message ID: {message_id}\n"
            f"Subject: {get_header(message, 'Subject')}\n"
            f"From: {get_header(message, 'From')}\n"
            f"To: {get_header(message, 'To')}\n"
            f"Date: {get_header(message, 'Date')}\n\n"
            f"{body_with_note(content)}"
            f"{format_attachments(content.attachments)}"
        )

    @reports_failure("search emails")
    async def search_emails(
        self,
        query: str,
        max_results: int | None = None,
        enrich_limit: int | None = None,
    ) -> str:
        listing = await self._call(lambda gw: gw.list_messages(query=query, max_results=max_results))
        messages = listing.get("messages") or []
        if not messages:
            return "No messages found matching the search query."

        limit = self._enrichment_limit(enrich_limit)
        details = await asyncio.gather(
            *(self._message_metadata(m["id"]) for m in messages[:limit]),
            return_exceptions=True,
        )
        entries = []
        for summary, detail in zip(messages[:limit], details, strict=True):
            if isinstance(detail, RemoteOperationFailure):
                logger.debug("search_result_skipped", message_id=summary["id"], error=detail.message)
                continue
            if isinstance(detail, BaseException):
                raise detail
            entries.append(
                f"ID: {summary['id']}\n"
                f"Subject: {get_header(detail, 'Subject')}\n"
                f"From: {get_header(detail, 'From')}\n"
                f"Date: {get_header(detail, 'Date')}\n---"
            )
        return f"Found {len(messages)} messages. Showing first {len(entries)}:\n\n" + "\n".join(
            entries
        )

    async def _message_metadata(self, message_id: str) -> dict[str, Any]:
        return await self._call(
            lambda gw: gw.get_message(
                message_id, format="metadata", metadata_headers=_LISTING_HEADERS
            )
        )

    # -- Labels on messages -------------------------------------------------

    @reports_failure("modify email")
    async def modify_email(
        self,
        message_id: str,
        add_label_ids: list[str] | None = None,
        remove_label_ids: list[str] | None = None,
    ) -> str:
        modified = await self._call(
            lambda gw: gw.modify_message(message_id, add_label_ids, remove_label_ids)
        )
        return f"Email labels modified successfully. Message ID: {modified.get('id', message_id)}"

    @reports_failure("delete email")
    async def delete_email(self, message_id: str) -> str:
        await self._call(lambda gw: gw.delete_message(message_id))
        return f"Email deleted successfully. Message ID: {message_id}"

    @reports_failure("batch modify emails")
    async def batch_modify_emails(
        self,
        message_ids: Sequence[str],
        add_label_ids: list[str] | None = None,
        remove_label_ids: list[str] | None = None,
        batch_size: int | None = None,
    ) -> str:
        # Authorize once up front so items do not each wait on the flow.
        await self._auth.get_authenticated_client()

        async def _modify(message_id: str) -> None:
            await self._call(
                lambda gw: gw.modify_message(message_id, add_label_ids, remove_label_ids)
            )

        report = await run_batch(
            list(message_ids), _modify, chunk_size=batch_size or self._settings.batch_size
        )
        return report.summary("modify", "modified")

    @reports_failure("batch delete emails")
    async def batch_delete_emails(
        self,
        message_ids: Sequence[str],
        batch_size: int | None = None,
    ) -> str:
        await self._auth.get_authenticated_client()

        async def _delete(message_id: str) -> None:
            await self._call(lambda gw: gw.delete_message(message_id))

        report = await run_batch(
            list(message_ids), _delete, chunk_size=batch_size or self._settings.batch_size
        )
        return report.summary("delete", "deleted")

    @reports_failure("move email to trash")
    async def trash_message(self, message_id: str) -> str:
        trashed = await self._call(lambda gw: gw.trash_message(message_id))
        return f"Email moved to trash successfully. Message ID: {trashed.get('id', message_id)}"

    @reports_failure("remove email from trash")
    async def untrash_message(self, message_id: str) -> str:
        restored = await self._call(lambda gw: gw.untrash_message(message_id))
        return (
            "Email removed from trash successfully. "
            f"Message ID: {restored.get('id', message_id)}"
        )

    # -- Labels -------------------------------------------------------------

    @reports_failure("list labels")
    async def list_labels(self) -> str:
        listing = await self._call(lambda gw: gw.list_labels())
        return format_labels(listing.get("labels") or [])

    @reports_failure("create label")
    async def create_label(
        self,
        name: str,
        message_list_visibility: str | None = None,
        label_list_visibility: str | None = None,
    ) -> str:
        label = await self._call(
            lambda gw: gw.create_label(name, message_list_visibility, label_list_visibility)
        )
        return f"Label created successfully:\nID: {label.get('id')}\nName: {label.get('name')}"

    @reports_failure("delete label")
    async def delete_label(self, label_id: str) -> str:
        await self._call(lambda gw: gw.delete_label(label_id))
        return f"Label deleted successfully. Label ID: {label_id}"

    # -- Drafts -------------------------------------------------------------

    @reports_failure("get draft")
    async def get_draft(self, draft_id: str) -> str:
        draft = await self._call(lambda gw: gw.get_draft(draft_id))
        message = draft.get("message") or {}
        content = message_content(message)
        return (
            f"Draft ID: {draft.get('id')}\n"
            f"Message ID: {message.get('id')}\n"
            f"Subject: {get_header(message, 'Subject')}\n"
            f"To: {get_header(message, 'To')}\n"
            f"CC: {get_header(message, 'Cc') or 'None'}\n"
            f"BCC: {get_header(message, 'Bcc') or 'None'}\n\n"
            f"{body_with_note(content)}"
            f"{format_attachments(content.attachments, detailed=False)}"
        )

    @reports_failure("list drafts")
    async def list_drafts(self, max_results: int | None = None, query: str | None = None) -> str:
        listing = await self._call(lambda gw: gw.list_drafts(max_results=max_results, query=query))
        drafts = listing.get("drafts") or []
        if not drafts:
            return "No drafts found."

        details = await asyncio.gather(
            *(self._draft_detail(d["id"]) for d in drafts)
        )
        entries = []
        for detail in details:
            message = detail.get("message") or {}
            entries.append(
                f"ID: {detail.get('id')}\n"
                f"Subject: {get_header(message, 'Subject') or '(No Subject)'}\n"
                f"To: {get_header(message, 'To') or '(No Recipients)'}\n"
                f"Date: {get_header(message, 'Date') or 'No Date'}\n---"
            )
        return f"Found {len(drafts)} drafts:\n\n" + "\n".join(entries)

    async def _draft_detail(self, draft_id: str) -> dict[str, Any]:
        return await self._call(lambda gw: gw.get_draft(draft_id))

    @reports_failure("send draft")
    async def send_draft(self, draft_id: str) -> str:
        sent = await self._call(lambda gw: gw.send_draft(draft_id))
        return f"Draft sent successfully. Message ID: {sent.get('id')}"

    @reports_failure("delete draft")
    async def delete_draft(self, draft_id: str) -> str:
        await self._call(lambda gw: gw.delete_draft(draft_id))
        return f"Draft deleted successfully. Draft ID: {draft_id}"

    # -- Attachments --------------------------------------------------------

    @reports_failure("get attachment")
    async def get_attachment(self, message_id: str, attachment_id: str) -> str:
        attachment = await self._call(lambda gw: gw.get_attachment(message_id, attachment_id))
        data = attachment.get("data") or ""
        return (
            "Attachment downloaded successfully:\n"
            f"Attachment ID: {attachment_id}\n"
            f"Size: {format_size_kb(int(attachment.get('size') or 0))}\n"
            f"Data: {data[:_ATTACHMENT_DATA_PREVIEW]}..."
        )

    # -- Threads ------------------------------------------------------------

    @reports_failure("get thread")
    async def get_thread(self, thread_id: str, format: ThreadFormat = "full") -> str:
        thread = await self._call(lambda gw: gw.get_thread(thread_id, format=format))
        messages = thread.get("messages") or []
        if not messages:
            return "No messages found in this thread."

        entries = []
        for index, message in enumerate(messages, start=1):
            entries.append(
                f"Message {index}:\n"
                f"ID: {message.get('id')}\n"
                f"From: {get_header(message, 'From')}\n"
                f"Date: {get_header(message, 'Date')}\n"
                f"Subject: {get_header(message, 'Subject')}\n"
                f"Preview: {preview(message_content(message))}\n---"
            )
        return f"Thread ID: {thread_id}\nMessages: {len(messages)}\n\n" + "\n".join(entries)

    @reports_failure("list threads")
    async def list_threads(
        self,
        query: str | None = None,
        max_results: int | None = None,
        label_ids: list[str] | None = None,
        enrich_limit: int | None = None,
    ) -> str:
        listing = await self._call(
            lambda gw: gw.list_threads(query=query, max_results=max_results, label_ids=label_ids)
        )
        threads = listing.get("threads") or []
        if not threads:
            return "No threads found matching the criteria."

        limit = self._enrichment_limit(enrich_limit)
        details = await asyncio.gather(
            *(self._thread_metadata(t["id"]) for t in threads[:limit])
        )
        entries = []
        for summary, detail in zip(threads[:limit], details, strict=True):
            thread_messages = detail.get("messages") or []
            first = thread_messages[0] if thread_messages else None
            entries.append(
                f"Thread ID: {summary['id']}\n"
                f"Messages: {len(thread_messages)}\n"
                f"Subject: {get_header(first, 'Subject') or '(No Subject)'}\n"
                f"Participants: {get_header(first, 'From') or 'Unknown'}\n"
                f"Last Activity: {get_header(first, 'Date') or 'No Date'}\n---"
            )
        return f"Found {len(threads)} threads. Showing first {len(entries)}:\n\n" + "\n".join(
            entries
        )

    async def _thread_metadata(self, thread_id: str) -> dict[str, Any]:
        return await self._call(
            lambda gw: gw.get_thread(
                thread_id, format="metadata", metadata_headers=_LISTING_HEADERS
            )
        )

