from __future__ import annotations

import re
from typing import Any, Iterable, List

EMAIL_PLACEHOLDER = "[email]"
PHONE_PLACEHOLDER = "[phone]"

_EMAIL_PATTERN = re.compile(r"\b[\w.-]+@[\w.-]+\.\w+\b")
# optional "+", then 8+ digits/spaces/()/-/. starting and ending on a digit
_PHONE_PATTERN = re.compile(r"(?<![\w+])\+?\d[\d\s().-]{6,}\d")


def scrub(text: Any) -> str:
    """Replace email addresses and phone numbers with fixed placeholders.

    Emails are replaced before phone numbers so digits inside an address are
    never matched as a phone. Non-string input scrubs to an empty string.
    """
    if not isinstance(text, str) or not text:
        return ""
    redacted = _EMAIL_PATTERN.sub(EMAIL_PLACEHOLDER, text)
    return _PHONE_PATTERN.sub(PHONE_PLACEHOLDER, redacted)


def scrub_messages(messages: Iterable[dict]) -> List[dict]:
    """Scrub the content of every message, preserving role and order."""
    return [
        {"role": msg.get("role"), "content": scrub(msg.get("content") or "")}
        for msg in messages
    ]
