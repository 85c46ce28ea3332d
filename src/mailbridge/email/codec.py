"""MIME message building and part-tree content extraction.

Provides helpers for:
- Building the base64url ``raw`` payload the Gmail API expects from an
  ``OutboundMessageSpec``
- Walking a nested ``MimePart`` tree to collect text, HTML and attachment
  descriptors in document order
"""

from __future__ import annotations

import base64
import uuid

import structlog

from mailbridge.email.models import (
    DEFAULT_ATTACHMENT_MIME_TYPE,
    AttachmentDescriptor,
    ContentMode,
    ExtractedContent,
    MimePart,
    OutboundMessageSpec,
    decode_base64url,
)

logger = structlog.get_logger()

_PLAIN_CONTENT_TYPE = "text/plain; charset=utf-8"
_HTML_CONTENT_TYPE = "text/html; charset=utf-8"


def _new_boundary() -> str:
    return f"boundary_{uuid.uuid4().hex}"


def _header_lines(spec: OutboundMessageSpec) -> list[str]:
    headers = [
        f"To: {', '.join(spec.to)}",
        f"Subject: {spec.subject}",
    ]
    if spec.cc:
        headers.append(f"Cc: {', '.join(spec.cc)}")
    if spec.bcc:
        headers.append(f"Bcc: {', '.join(spec.bcc)}")
    if spec.in_reply_to:
        headers.append(f"In-Reply-To: {spec.in_reply_to}")
    if spec.thread_id:
        headers.append(f"References: {spec.thread_id}")
    return headers


def render_message(spec: OutboundMessageSpec, boundary: str | None = None) -> str:
    """Render the RFC 2822 text of an outbound message, before encoding.

    Layout rules:
    - ``alternative`` with an HTML body: ``multipart/alternative`` with a
      text/plain part followed by a text/html part.
    - ``html``, or any HTML body outside ``alternative`` mode: single
      text/html part (falls back to the plain body when HTML is absent).
    - Everything else, including ``alternative`` without an HTML body:
      single text/plain part.

    Args:
        spec: The structured message fields.
        boundary: Boundary token for multipart output.  A unique token is
            generated when omitted.

    Returns:
        The message text: headers, a blank line, then the body.
    """
    headers = _header_lines(spec)

    if spec.content_mode is ContentMode.ALTERNATIVE and spec.html_body:
        boundary = boundary or _new_boundary()
        headers.append(f'Content-Type: multipart/alternative; boundary="{boundary}"')
        body = "\n".join(
            [
                f"--{boundary}",
                f"Content-Type: {_PLAIN_CONTENT_TYPE}",
                "",
                spec.plain_body,
                f"--{boundary}",
                f"Content-Type: {_HTML_CONTENT_TYPE}",
                "",
                spec.html_body,
                f"--{boundary}--",
            ]
        )
    elif spec.content_mode is ContentMode.HTML or (
        spec.html_body and spec.content_mode is not ContentMode.ALTERNATIVE
    ):
        headers.append(f"Content-Type: {_HTML_CONTENT_TYPE}")
        body = spec.html_body or spec.plain_body
    else:
        if spec.content_mode is ContentMode.ALTERNATIVE:
            logger.debug("alternative_without_html_degraded_to_plain", subject=spec.subject)
        headers.append(f"Content-Type: {_PLAIN_CONTENT_TYPE}")
        body = spec.plain_body

    return "\n".join(headers) + "\n\n" + body


def build_message(spec: OutboundMessageSpec, boundary: str | None = None) -> bytes:
    """Build the transmittable ``raw`` payload for an outbound message.

    The rendered message is UTF-8 encoded and then base64url encoded with
    the trailing ``=`` padding removed, which is the form the Gmail
    ``messages.send`` and ``drafts.create`` endpoints accept.

    Args:
        spec: The structured message fields.
        boundary: Optional fixed multipart boundary (see ``render_message``).

    Returns:
        The ASCII bytes of the encoded payload.
    """
    rendered = render_message(spec, boundary=boundary)
    return base64.urlsafe_b64encode(rendered.encode("utf-8")).rstrip(b"=")


def decode_payload(payload: bytes | str) -> bytes:
    """Reverse the base64url step of ``build_message``."""
    if isinstance(payload, bytes):
        payload = payload.decode("ascii")
    return decode_base64url(payload)


def extract_content(root: MimePart) -> ExtractedContent:
    """Collect text, HTML and attachments from a MIME part tree.

    Visits every part exactly once in document order using an explicit
    stack.  Inline ``text/plain`` bodies are concatenated into ``text`` and
    inline ``text/html`` bodies into ``html``.  Parts that reference an
    external attachment become ``AttachmentDescriptor`` entries, with the
    filename defaulting to ``attachment-<id>`` and the MIME type to
    ``application/octet-stream``.

    Args:
        root: The root of the part tree.

    Returns:
        The accumulated ``ExtractedContent``.
    """
    text_chunks: list[str] = []
    html_chunks: list[str] = []
    attachments: list[AttachmentDescriptor] = []

    stack: list[MimePart] = [root]
    while stack:
        part = stack.pop()
        body = part.body

        if body is not None and body.data:
            content = body.data.decode("utf-8", errors="replace")
            if part.mime_type == "text/plain":
                text_chunks.append(content)
            elif part.mime_type == "text/html":
                html_chunks.append(content)

        if body is not None and body.attachment_id:
            attachments.append(
                AttachmentDescriptor(
                    id=body.attachment_id,
                    filename=part.filename or f"attachment-{body.attachment_id}",
                    mime_type=part.mime_type or DEFAULT_ATTACHMENT_MIME_TYPE,
                    size=body.size,
                )
            )

        # Reversed so the first child is popped next.
        stack.extend(reversed(part.children))

    return ExtractedContent(
        text="".join(text_chunks),
        html="".join(html_chunks),
        attachments=tuple(attachments),
    )
