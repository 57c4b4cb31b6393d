from __future__ import annotations

import re
from typing import Any, Iterable, Mapping

CRISIS_PATTERN = re.compile(
    r"(suicide|kill myself|kill (him|her|them)|end my life|self[- ]?harm|overdose"
    r"|can['’]t go on|i want to die)",
    re.IGNORECASE,
)

SAFETY_SCRIPT = (
    "I’m really glad you told me. I can’t provide emergency care, but you deserve support. "
    "In Canada, call or text 9-8-8. First Nations & Inuit Hope for Wellness: 1-855-242-3310 (24/7). "
    "If you’re in immediate danger, call 911."
)


def _content_of(message: Any) -> str:
    if isinstance(message, Mapping):
        content = message.get("content")
    else:
        content = getattr(message, "content", None)
    return content if isinstance(content, str) else ""


def is_crisis(messages: Iterable[Any]) -> bool:
    """True when any message content contains a listed self-harm phrase.

    Plain pattern matching: paraphrases are missed and clinical mentions match.
    """
    return any(CRISIS_PATTERN.search(_content_of(msg)) for msg in messages)
