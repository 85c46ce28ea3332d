"""Mailbox operations: text-returning wrappers over the Gmail gateway."""

from mailbridge.mailbox.tools import MailboxTools, reports_failure

__all__ = [
    "MailboxTools",
    "reports_failure",
]
