"""Human-readable rendering of Gmail API responses for the mailbox operations."""

from __future__ import annotations

from typing import Any

from mailbridge.email.codec import extract_content
from mailbridge.email.models import (
    HTML_SUBSTITUTION_NOTE,
    AttachmentDescriptor,
    ExtractedContent,
    MimePart,
)

PREVIEW_LENGTH = 200


def get_header(message: dict[str, Any] | None, name: str) -> str:
    """Return a header value from a Gmail message resource (case-insensitive)."""
    if not message:
        return ""
    headers = (message.get("payload") or {}).get("headers") or []
    wanted = name.lower()
    for header in headers:
        if str(header.get("name", "")).lower() == wanted:
            return str(header.get("value", ""))
    return ""


def message_content(message: dict[str, Any] | None) -> ExtractedContent:
    """Extract text, HTML and attachments from a full-format message resource."""
    payload = (message or {}).get("payload")
    return extract_content(MimePart.from_gmail_payload(payload))


def body_with_note(content: ExtractedContent) -> str:
    """Return the preferred body, prefixed with a note when HTML stood in for text."""
    body, html_substituted = content.preferred_body()
    if html_substituted:
        return f"{HTML_SUBSTITUTION_NOTE}\n\n{body}"
    return body


def format_size_kb(size: int) -> str:
    """Render a byte count as whole kilobytes, rounding halves up."""
    return f"{(size + 512) // 1024} KB"


def format_attachments(
    attachments: tuple[AttachmentDescriptor, ...],
    detailed: bool = True,
) -> str:
    """Render the attachment section appended to a message body."""
    if not attachments:
        return ""
    if detailed:
        lines = [
            f"- {a.filename} ({a.mime_type}, {format_size_kb(a.size)}, ID: {a.id})"
            for a in attachments
        ]
    else:
        lines = [f"- {a.filename} ({a.mime_type})" for a in attachments]
    return f"\n\nAttachments ({len(attachments)}):\n" + "\n".join(lines)


def preview(content: ExtractedContent, length: int = PREVIEW_LENGTH) -> str:
    """Return the first ``length`` characters of the preferred body."""
    body, _ = content.preferred_body()
    if len(body) > length:
        return body[:length] + "..."
    return body


def format_labels(labels: list[dict[str, Any]]) -> str:
    """Render labels split into system and user sections."""
    system_labels = [label for label in labels if label.get("type") == "system"]
    user_labels = [label for label in labels if label.get("type") == "user"]

    def _section(section: list[dict[str, Any]]) -> str:
        return "\n\n".join(f"ID: {label.get('id')}\nName: {label.get('name')}" for label in section)

    return (
        f"Found {len(labels)} labels ({len(system_labels)} system, {len(user_labels)} user):\n\n"
        f"SYSTEM LABELS:\n{_section(system_labels)}\n\n"
        f"USER LABELS:\n{_section(user_labels)}"
    )
