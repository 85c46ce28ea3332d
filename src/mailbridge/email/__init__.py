"""Email domain: MIME message building, part-tree extraction, and models."""

from mailbridge.email.codec import build_message, decode_payload, extract_content, render_message
from mailbridge.email.models import (
    AttachmentDescriptor,
    ContentMode,
    ExtractedContent,
    MimePart,
    OutboundMessageSpec,
    PartBody,
)

__all__ = [
    "AttachmentDescriptor",
    "ContentMode",
    "ExtractedContent",
    "MimePart",
    "OutboundMessageSpec",
    "PartBody",
    "build_message",
    "decode_payload",
    "extract_content",
    "render_message",
]
