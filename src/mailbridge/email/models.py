"""Pydantic v2 models for the email domain.

Provides frozen (immutable) models for outbound message specs, the recursive
MIME part tree returned by the Gmail API, and the content extracted from it.
"""

from __future__ import annotations

import base64
import binascii
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_ATTACHMENT_MIME_TYPE = "application/octet-stream"

HTML_SUBSTITUTION_NOTE = "[HTML content converted to text]"


def decode_base64url(data: str) -> bytes:
    """Decode URL-safe base64 that may have had its ``=`` padding stripped."""
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Invalid base64url body data: {exc}") from exc


class ContentMode(StrEnum):
    """How the outbound body is laid out."""

    PLAIN = "plain"
    HTML = "html"
    ALTERNATIVE = "alternative"


class OutboundMessageSpec(BaseModel):
    """Structured fields for an email to send or save as a draft.

    Address lists keep their first-seen order with duplicates removed.  When
    ``thread_id`` is set it is emitted as the ``References`` header and the
    message is attached to that thread by the gateway.
    """

    model_config = ConfigDict(frozen=True)

    to: tuple[str, ...]
    subject: str
    plain_body: str
    cc: tuple[str, ...] = ()
    bcc: tuple[str, ...] = ()
    html_body: str | None = None
    content_mode: ContentMode = ContentMode.PLAIN
    in_reply_to: str | None = None
    thread_id: str | None = None

    @field_validator("to", "cc", "bcc", mode="before")
    @classmethod
    def _dedupe_addresses(cls, value: Any) -> tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, str):
            value = [value]
        cleaned = (str(addr).strip() for addr in value)
        return tuple(dict.fromkeys(addr for addr in cleaned if addr))

    @field_validator("to", "cc", "bcc", "subject", "in_reply_to", "thread_id")
    @classmethod
    def _reject_line_breaks(cls, value: Any) -> Any:
        # Header values are written verbatim into the message.
        values = value if isinstance(value, tuple) else (value,)
        if any(item and ("\r" in item or "\n" in item) for item in values):
            raise ValueError("header values must not contain line breaks")
        return value


class PartBody(BaseModel):
    """The body of one MIME part: inline bytes or an attachment reference."""

    model_config = ConfigDict(frozen=True)

    data: bytes | None = None
    attachment_id: str | None = None
    size: int = 0


class MimePart(BaseModel):
    """One node of a MIME part tree.

    Containers (``multipart/*``) carry ``children`` and no inline data; leaves
    carry either inline ``body.data`` or an ``body.attachment_id`` pointing at
    content the provider stores separately.
    """

    model_config = ConfigDict(frozen=True)

    mime_type: str = ""
    filename: str = ""
    body: PartBody | None = None
    children: tuple[MimePart, ...] = ()

    @model_validator(mode="after")
    def _containers_have_no_data(self) -> MimePart:
        if self.children and self.body is not None and self.body.data:
            raise ValueError("a MIME part with children cannot carry inline body data")
        return self

    @classmethod
    def from_gmail_payload(cls, payload: dict[str, Any] | None) -> MimePart:
        """Build a part tree from a Gmail API ``payload`` dict.

        Gmail sends inline body data as URL-safe base64 under ``body.data``,
        attachment references under ``body.attachmentId``, and nested parts
        under ``parts``.

        Args:
            payload: The ``payload`` member of a ``users.messages.get``
                response with ``format="full"``.  ``None`` yields an empty part.

        Returns:
            The root ``MimePart``.
        """
        if not payload:
            return cls()

        raw_body: dict[str, Any] = payload.get("body") or {}
        body: PartBody | None = None
        if raw_body:
            encoded = raw_body.get("data")
            body = PartBody(
                data=decode_base64url(encoded) if encoded else None,
                attachment_id=raw_body.get("attachmentId") or None,
                size=int(raw_body.get("size") or 0),
            )

        return cls(
            mime_type=str(payload.get("mimeType") or ""),
            filename=str(payload.get("filename") or ""),
            body=body,
            children=tuple(cls.from_gmail_payload(p) for p in payload.get("parts") or []),
        )


MimePart.model_rebuild()


class AttachmentDescriptor(BaseModel):
    """Metadata for an attachment referenced from a MIME part tree."""

    model_config = ConfigDict(frozen=True)

    id: str
    filename: str
    mime_type: str = DEFAULT_ATTACHMENT_MIME_TYPE
    size: int = 0


class ExtractedContent(BaseModel):
    """Text, HTML and attachments collected from a MIME part tree."""

    model_config = ConfigDict(frozen=True)

    text: str = ""
    html: str = ""
    attachments: tuple[AttachmentDescriptor, ...] = Field(default_factory=tuple)

    def preferred_body(self) -> tuple[str, bool]:
        """Return the body a reader should see and whether HTML stood in for text.

        Returns:
            ``(body, html_substituted)`` where ``body`` is the text content if
            non-empty, else the HTML content, else ``""``.  ``html_substituted``
            is True only when HTML was used because text was absent.
        """
        if self.text:
            return self.text, False
        if self.html:
            return self.html, True
        return "", False
