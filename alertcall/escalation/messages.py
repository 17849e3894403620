"""Spoken alert text."""

from typing import Optional

from alertcall.config import settings
from alertcall.models.alert import Alert
from alertcall.utils.validation import collapse_whitespace, sanitize_input, sender_display_name

PREVIEW_MAX_LENGTH = 500


def create_preview(text: Optional[str], max_length: int = PREVIEW_MAX_LENGTH) -> str:
    """Single-line preview of an alert body."""
    cleaned = collapse_whitespace(sanitize_input(text or "", max_length=max_length * 4))
    if len(cleaned) <= max_length:
        return cleaned
    return cleaned[:max_length] + "..."


def build_spoken_message(alert: Alert, confirm_digit: Optional[str] = None) -> str:
    """Text read to each contact when they pick up."""
    digit = confirm_digit or settings.CONFIRM_DIGIT
    sender = sender_display_name(sanitize_input(alert.sender or "")) or "unknown sender"
    subject = sanitize_input(alert.subject or "", max_length=200) or "no subject"
    preview = create_preview(alert.body_preview) or "no details"

    message = (
        f"Critical alert. "
        f"From: {sender}. "
        f"Subject: {subject}. "
        f"Message: {preview}. "
        f"Press {digit} to confirm you have received this alert."
    )
    return collapse_whitespace(message)
