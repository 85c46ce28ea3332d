"""Tests for the text-returning mailbox operations.

The AuthManager and the gateway are mocks; operations run their gateway calls
in worker threads exactly as in production.
"""

from __future__ import annotations

import base64
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from mailbridge.auth.manager import AuthManager
from mailbridge.config import Settings
from mailbridge.email.codec import decode_payload
from mailbridge.errors import ConfigurationError, RemoteOperationFailure, TokenRejected
from mailbridge.gateway.client import GmailGateway
from mailbridge.mailbox.tools import MailboxTools


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def _message(
    message_id: str,
    subject: str = "Hello",
    text: str | None = None,
    html: str | None = None,
    attachments: tuple[dict[str, Any], ...] = (),
) -> dict[str, Any]:
    parts: list[dict[str, Any]] = []
    if text is not None:
        parts.append({"mimeType": "text/plain", "body": {"data": _b64(text), "size": len(text)}})
    if html is not None:
        parts.append({"mimeType": "text/html", "body": {"data": _b64(html), "size": len(html)}})
    parts.extend(attachments)
    return {
        "id": message_id,
        "threadId": f"thread-{message_id}",
        "payload": {
            "mimeType": "multipart/mixed",
            "headers": [
                {"name": "Subject", "value": subject},
                {"name": "From", "value": "alice@example.com"},
                {"name": "To", "value": "bob@example.com"},
                {"name": "Date", "value": "Mon, 6 Jan 2025 10:00:00 +0000"},
            ],
            "parts": parts,
        },
    }


@pytest.fixture
def gateway() -> MagicMock:
    return MagicMock(spec=GmailGateway)


@pytest.fixture
def auth(gateway: MagicMock) -> MagicMock:
    manager = MagicMock(spec=AuthManager)
    manager.get_authenticated_client = AsyncMock(return_value=gateway)
    manager.handle_token_rejected = AsyncMock()
    manager.access_token = "access-1"
    return manager


@pytest.fixture
def tools(auth: MagicMock, settings: Settings) -> MailboxTools:
    return MailboxTools(auth, settings)


# ---------------------------------------------------------------------------
# Composing
# ---------------------------------------------------------------------------


class TestSendEmail:
    @pytest.mark.anyio()
    async def test_send_plain(self, tools: MailboxTools, gateway: MagicMock) -> None:
        gateway.send_message.return_value = {"id": "m1", "threadId": "t1"}

        result = await tools.send_email(["bob@example.com"], "Hi", "Body text")

        assert result == "Email sent successfully. Message ID: m1"
        raw = gateway.send_message.call_args.args[0]
        rendered = decode_payload(raw).decode("utf-8")
        assert rendered.startswith("To: bob@example.com\nSubject: Hi\n")
        assert rendered.endswith("\n\nBody text")
        assert gateway.send_message.call_args.kwargs == {"thread_id": None}

    @pytest.mark.anyio()
    async def test_send_alternative_reply(self, tools: MailboxTools, gateway: MagicMock) -> None:
        gateway.send_message.return_value = {"id": "m2"}

        await tools.send_email(
            ["bob@example.com"],
            "Re: Hi",
            "plain",
            html_body="<p>rich</p>",
            content_mode="alternative",
            in_reply_to="<abc@mail.example.com>",
            thread_id="t1",
        )

        raw = gateway.send_message.call_args.args[0]
        rendered = decode_payload(raw).decode("utf-8")
        assert "Content-Type: multipart/alternative" in rendered
        assert "In-Reply-To: <abc@mail.example.com>" in rendered
        assert gateway.send_message.call_args.kwargs == {"thread_id": "t1"}

    @pytest.mark.anyio()
    async def test_provider_failure_reported(
        self, tools: MailboxTools, gateway: MagicMock
    ) -> None:
        gateway.send_message.side_effect = RemoteOperationFailure("Invalid To header", 400)

        result = await tools.send_email(["not-an-address"], "Hi", "Body")

        assert result == "Failed to send email: Invalid To header"

    @pytest.mark.anyio()
    async def test_invalid_content_mode_reported(self, tools: MailboxTools) -> None:
        result = await tools.send_email(["bob@example.com"], "Hi", "Body", content_mode="rtf")

        assert result.startswith("Failed to send email: ")

    @pytest.mark.anyio()
    async def test_header_injection_rejected_before_sending(
        self, tools: MailboxTools, gateway: MagicMock
    ) -> None:
        result = await tools.send_email(["bob@example.com"], "Hi\nBcc: eve@example.com", "Body")

        assert result.startswith("Failed to send email: ")
        assert "line breaks" in result
        gateway.send_message.assert_not_called()

    @pytest.mark.anyio()
    async def test_missing_configuration_reported(
        self, tools: MailboxTools, auth: MagicMock
    ) -> None:
        auth.get_authenticated_client.side_effect = ConfigurationError(["GOOGLE_CLIENT_ID"])

        result = await tools.send_email(["bob@example.com"], "Hi", "Body")

        assert result.startswith("Failed to send email: Missing OAuth2 credentials.")
        assert "GOOGLE_CLIENT_ID" in result


class TestDraftEmail:
    @pytest.mark.anyio()
    async def test_create_draft(self, tools: MailboxTools, gateway: MagicMock) -> None:
        gateway.create_draft.return_value = {"id": "r-123"}

        result = await tools.draft_email(["bob@example.com"], "Draft", "Later", cc=["c@x.com"])

        assert result == "Draft created successfully. Draft ID: r-123"
        rendered = decode_payload(gateway.create_draft.call_args.args[0]).decode("utf-8")
        assert "Cc: c@x.com" in rendered


# ---------------------------------------------------------------------------
# Token rejection
# ---------------------------------------------------------------------------


class TestTokenRejection:
    @pytest.mark.anyio()
    async def test_rejected_call_retried_once(
        self, tools: MailboxTools, gateway: MagicMock, auth: MagicMock
    ) -> None:
        gateway.send_message.side_effect = [
            TokenRejected("Invalid Credentials", 401),
            {"id": "m1"},
        ]

        result = await tools.send_email(["bob@example.com"], "Hi", "Body")

        assert result == "Email sent successfully. Message ID: m1"
        auth.handle_token_rejected.assert_awaited_once_with("access-1")
        assert gateway.send_message.call_count == 2

    @pytest.mark.anyio()
    async def test_second_rejection_reported(
        self, tools: MailboxTools, gateway: MagicMock, auth: MagicMock
    ) -> None:
        gateway.delete_message.side_effect = TokenRejected("Invalid Credentials", 401)

        result = await tools.delete_email("m1")

        assert result == "Failed to delete email: Invalid Credentials"
        auth.handle_token_rejected.assert_awaited_once()
        assert gateway.delete_message.call_count == 2


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------


class TestReadEmail:
    @pytest.mark.anyio()
    async def test_plain_with_attachment(self, tools: MailboxTools, gateway: MagicMock) -> None:
        gateway.get_message.return_value = _message(
            "m1",
            text="Hello Bob",
            html="<p>Hello Bob</p>",
            attachments=(
                {
                    "mimeType": "application/pdf",
                    "filename": "invoice.pdf",
                    "body": {"attachmentId": "att-1", "size": 3072},
                },
            ),
        )

        result = await tools.read_email("m1")

        assert result == (
            "Thread ID: thread-m1\n"
            "Message ID: m1\n"
            "Subject: Hello\n"
            "From: alice@example.com\n"
            "To: bob@example.com\n"
            "Date: Mon, 6 Jan 2025 10:00:00 +0000\n\n"
            "Hello Bob\n\n"
            "Attachments (1):\n"
            "- invoice.pdf (application/pdf, 3 KB, ID: att-1)"
        )
        gateway.get_message.assert_called_once_with("m1", format="full")

    @pytest.mark.anyio()
    async def test_html_only_adds_note(self, tools: MailboxTools, gateway: MagicMock) -> None:
        gateway.get_message.return_value = _message("m1", html="<p>Only html</p>")

        result = await tools.read_email("m1")

        assert result.endswith("\n\n[HTML content converted to text]\n\n<p>Only html</p>")

    @pytest.mark.anyio()
    async def test_not_found(self, tools: MailboxTools, gateway: MagicMock) -> None:
        gateway.get_message.side_effect = RemoteOperationFailure("Not Found", 404)

        assert await tools.read_email("nope") == "Failed to read email: Not Found"


class TestSearchEmails:
    @pytest.mark.anyio()
    async def test_no_results(self, tools: MailboxTools, gateway: MagicMock) -> None:
        gateway.list_messages.return_value = {"resultSizeEstimate": 0}

        result = await tools.search_emails("from:nobody")

        assert result == "No messages found matching the search query."

    @pytest.mark.anyio()
    async def test_enrichment_capped(self, tools: MailboxTools, gateway: MagicMock) -> None:
        gateway.list_messages.return_value = {"messages": [{"id": f"m{i}"} for i in range(15)]}
        gateway.get_message.side_effect = lambda message_id, **kwargs: _message(message_id)

        result = await tools.search_emails("in:inbox")

        assert result.startswith("Found 15 messages. Showing first 10:\n\nID: m0\nSubject: Hello")
        assert gateway.get_message.call_count == 10
        assert gateway.get_message.call_args.kwargs == {
            "format": "metadata",
            "metadata_headers": ["Subject", "From", "Date"],
        }
        assert result.count("\n---") == 10

    @pytest.mark.anyio()
    async def test_enrichment_limit_override(
        self, tools: MailboxTools, gateway: MagicMock
    ) -> None:
        gateway.list_messages.return_value = {"messages": [{"id": f"m{i}"} for i in range(5)]}
        gateway.get_message.side_effect = lambda message_id, **kwargs: _message(message_id)

        result = await tools.search_emails("in:inbox", enrich_limit=2)

        assert result.startswith("Found 5 messages. Showing first 2:")
        assert gateway.get_message.call_count == 2

    @pytest.mark.anyio()
    async def test_unreadable_results_skipped(
        self, tools: MailboxTools, gateway: MagicMock
    ) -> None:
        gateway.list_messages.return_value = {"messages": [{"id": "m0"}, {"id": "m1"}]}

        def _get(message_id: str, **kwargs: Any) -> dict[str, Any]:
            if message_id == "m0":
                raise RemoteOperationFailure("Not Found", 404)
            return _message(message_id)

        gateway.get_message.side_effect = _get

        result = await tools.search_emails("in:inbox")

        assert result.startswith("Found 2 messages. Showing first 1:\n\nID: m1\n")


# ---------------------------------------------------------------------------
# Modifying and deleting
# ---------------------------------------------------------------------------


class TestModifyAndDelete:
    @pytest.mark.anyio()
    async def test_modify(self, tools: MailboxTools, gateway: MagicMock) -> None:
        gateway.modify_message.return_value = {"id": "m1"}

        result = await tools.modify_email("m1", add_label_ids=["STARRED"])

        assert result == "Email labels modified successfully. Message ID: m1"
        gateway.modify_message.assert_called_once_with("m1", ["STARRED"], None)

    @pytest.mark.anyio()
    async def test_delete(self, tools: MailboxTools, gateway: MagicMock) -> None:
        gateway.delete_message.return_value = None

        assert await tools.delete_email("m1") == "Email deleted successfully. Message ID: m1"

    @pytest.mark.anyio()
    async def test_trash_and_untrash(self, tools: MailboxTools, gateway: MagicMock) -> None:
        gateway.trash_message.return_value = {"id": "m1"}
        gateway.untrash_message.return_value = {"id": "m1"}

        assert await tools.trash_message("m1") == (
            "Email moved to trash successfully. Message ID: m1"
        )
        assert await tools.untrash_message("m1") == (
            "Email removed from trash successfully. Message ID: m1"
        )


class TestBatchOperations:
    @pytest.mark.anyio()
    async def test_batch_modify_reports_failures(
        self, tools: MailboxTools, gateway: MagicMock
    ) -> None:
        def _modify(message_id: str, add: Any, remove: Any) -> dict[str, Any]:
            if message_id == "m2":
                raise RemoteOperationFailure("Requested entity was not found.", 404)
            return {"id": message_id}

        gateway.modify_message.side_effect = _modify

        result = await tools.batch_modify_emails(
            ["m1", "m2", "m3"], remove_label_ids=["UNREAD"], batch_size=2
        )

        assert result == (
            "Batch modify completed. Successfully modified: 2, Failed: 1\n\n"
            "Failures:\n"
            "- m2: Requested entity was not found."
        )
        assert gateway.modify_message.call_count == 3

    @pytest.mark.anyio()
    async def test_batch_delete(self, tools: MailboxTools, gateway: MagicMock) -> None:
        gateway.delete_message.return_value = None

        result = await tools.batch_delete_emails([f"m{i}" for i in range(120)])

        assert result == "Batch delete completed. Successfully deleted: 120, Failed: 0"
        assert gateway.delete_message.call_count == 120

    @pytest.mark.anyio()
    async def test_batch_aborts_when_unauthorized(
        self, tools: MailboxTools, gateway: MagicMock, auth: MagicMock
    ) -> None:
        auth.get_authenticated_client.side_effect = ConfigurationError(["GOOGLE_CLIENT_SECRET"])

        result = await tools.batch_delete_emails(["m1"])

        assert result.startswith("Failed to batch delete emails: Missing OAuth2 credentials.")
        gateway.delete_message.assert_not_called()


# ---------------------------------------------------------------------------
# Labels
# ---------------------------------------------------------------------------


class TestLabels:
    @pytest.mark.anyio()
    async def test_list_labels(self, tools: MailboxTools, gateway: MagicMock) -> None:
        gateway.list_labels.return_value = {
            "labels": [{"id": "INBOX", "name": "INBOX", "type": "system"}]
        }

        result = await tools.list_labels()

        assert result.startswith("Found 1 labels (1 system, 0 user):")

    @pytest.mark.anyio()
    async def test_create_label(self, tools: MailboxTools, gateway: MagicMock) -> None:
        gateway.create_label.return_value = {"id": "Label_7", "name": "Receipts"}

        result = await tools.create_label("Receipts", label_list_visibility="labelShow")

        assert result == "Label created successfully:\nID: Label_7\nName: Receipts"
        gateway.create_label.assert_called_once_with("Receipts", None, "labelShow")

    @pytest.mark.anyio()
    async def test_delete_label(self, tools: MailboxTools, gateway: MagicMock) -> None:
        gateway.delete_label.return_value = None

        assert await tools.delete_label("Label_7") == (
            "Label deleted successfully. Label ID: Label_7"
        )


# ---------------------------------------------------------------------------
# Drafts
# ---------------------------------------------------------------------------


class TestDrafts:
    @pytest.mark.anyio()
    async def test_get_draft(self, tools: MailboxTools, gateway: MagicMock) -> None:
        gateway.get_draft.return_value = {"id": "r-1", "message": _message("m1", text="Draft body")}

        result = await tools.get_draft("r-1")

        assert result == (
            "Draft ID: r-1\n"
            "Message ID: m1\n"
            "Subject: Hello\n"
            "To: bob@example.com\n"
            "CC: None\n"
            "BCC: None\n\n"
            "Draft body"
        )

    @pytest.mark.anyio()
    async def test_get_draft_html_only_adds_note(
        self, tools: MailboxTools, gateway: MagicMock
    ) -> None:
        gateway.get_draft.return_value = {
            "id": "r-1",
            "message": _message("m1", html="<p>Draft html</p>"),
        }

        result = await tools.get_draft("r-1")

        assert result.endswith("BCC: None\n\n[HTML content converted to text]\n\n<p>Draft html</p>")

    @pytest.mark.anyio()
    async def test_list_drafts_empty(self, tools: MailboxTools, gateway: MagicMock) -> None:
        gateway.list_drafts.return_value = {}

        assert await tools.list_drafts() == "No drafts found."

    @pytest.mark.anyio()
    async def test_list_drafts(self, tools: MailboxTools, gateway: MagicMock) -> None:
        gateway.list_drafts.return_value = {"drafts": [{"id": "r-1"}, {"id": "r-2"}]}
        gateway.get_draft.side_effect = lambda draft_id: {
            "id": draft_id,
            "message": {"id": "m", "payload": {"headers": []}},
        }

        result = await tools.list_drafts(max_results=2)

        assert result == (
            "Found 2 drafts:\n\n"
            "ID: r-1\nSubject: (No Subject)\nTo: (No Recipients)\nDate: No Date\n---\n"
            "ID: r-2\nSubject: (No Subject)\nTo: (No Recipients)\nDate: No Date\n---"
        )

    @pytest.mark.anyio()
    async def test_send_and_delete_draft(self, tools: MailboxTools, gateway: MagicMock) -> None:
        gateway.send_draft.return_value = {"id": "m5"}
        gateway.delete_draft.return_value = None

        assert await tools.send_draft("r-1") == "Draft sent successfully. Message ID: m5"
        assert await tools.delete_draft("r-2") == "Draft deleted successfully. Draft ID: r-2"


# ---------------------------------------------------------------------------
# Attachments and threads
# ---------------------------------------------------------------------------


class TestAttachment:
    @pytest.mark.anyio()
    async def test_get_attachment(self, tools: MailboxTools, gateway: MagicMock) -> None:
        gateway.get_attachment.return_value = {"size": 2048, "data": "A" * 150}

        result = await tools.get_attachment("m1", "att-1")

        assert result == (
            "Attachment downloaded successfully:\n"
            "Attachment ID: att-1\n"
            "Size: 2 KB\n"
            f"Data: {'A' * 100}..."
        )


class TestThreads:
    @pytest.mark.anyio()
    async def test_get_thread(self, tools: MailboxTools, gateway: MagicMock) -> None:
        gateway.get_thread.return_value = {
            "id": "t1",
            "messages": [_message("m1", text="x" * 300), _message("m2", text="short reply")],
        }

        result = await tools.get_thread("t1")

        assert result.startswith("Thread ID: t1\nMessages: 2\n\nMessage 1:\nID: m1\n")
        assert f"Preview: {'x' * 200}...\n---" in result
        assert "Message 2:\nID: m2\n" in result
        assert "Preview: short reply\n---" in result

    @pytest.mark.anyio()
    async def test_get_empty_thread(self, tools: MailboxTools, gateway: MagicMock) -> None:
        gateway.get_thread.return_value = {"id": "t1"}

        assert await tools.get_thread("t1") == "No messages found in this thread."

    @pytest.mark.anyio()
    async def test_list_threads(self, tools: MailboxTools, gateway: MagicMock) -> None:
        gateway.list_threads.return_value = {"threads": [{"id": f"t{i}"} for i in range(12)]}
        gateway.get_thread.side_effect = lambda thread_id, **kwargs: {
            "id": thread_id,
            "messages": [_message("m1"), _message("m2")],
        }

        result = await tools.list_threads(label_ids=["INBOX"])

        assert result.startswith(
            "Found 12 threads. Showing first 10:\n\n"
            "Thread ID: t0\n"
            "Messages: 2\n"
            "Subject: Hello\n"
            "Participants: alice@example.com\n"
            "Last Activity: Mon, 6 Jan 2025 10:00:00 +0000\n---"
        )
        assert gateway.get_thread.call_count == 10

    @pytest.mark.anyio()
    async def test_list_threads_empty(self, tools: MailboxTools, gateway: MagicMock) -> None:
        gateway.list_threads.return_value = {"threads": []}

        assert await tools.list_threads() == "No threads found matching the criteria."
