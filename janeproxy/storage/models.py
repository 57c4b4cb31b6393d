from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

MESSAGE_ROLES = frozenset({"user", "assistant", "system"})


def new_id() -> str:
    """Random 128-bit identifier; uniqueness is not enforced here."""
    return str(uuid.uuid4())


@dataclass
class Conversation:
    id: str
    user_id: str
    title: str
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class Message:
    id: str
    conversation_id: str
    role: str
    content: str
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class License:
    user_id: str
    status: str
    current_period_end: int = 0
    product: str = ""
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def active(self) -> bool:
        return self.status == "active"


@dataclass
class ConversationHistory:
    """Active conversation of a user and its messages, oldest first."""

    conversation_id: Optional[str]
    messages: list[Message] = field(default_factory=list)
