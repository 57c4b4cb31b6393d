from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from janeproxy.logging import get_logger
from janeproxy.service.errors import BadRequestError
from janeproxy.storage.models import MESSAGE_ROLES, ConversationHistory, Message

logger = get_logger(__name__)


class ConversationStore:
    """Single-active-conversation view over the durable store.

    A user's active conversation is the most recently created conversation row
    for that user. It is created lazily on the first turn and never mutated.
    """

    def __init__(self, store: Any, *, default_title: str = "General") -> None:
        self.store = store
        self.default_title = default_title

    def get_or_create_active(self, user_id: str) -> str:
        conversation, created = self.store.get_or_create_active_conversation(
            user_id, self.default_title
        )
        if created:
            logger.info(
                "conversation_created",
                user_id=user_id,
                conversation_id=conversation.id,
            )
        return conversation.id

    def append_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        created_at: Optional[datetime] = None,
    ) -> Message:
        if role not in MESSAGE_ROLES:
            raise BadRequestError(
                "unsupported message role", detail={"role": role}
            )
        return self.store.append_message(
            conversation_id, role, content, created_at=created_at
        )

    def list_messages(self, conversation_id: str) -> List[Message]:
        return self.store.list_messages(conversation_id)

    def get_history_for_user(self, user_id: str) -> ConversationHistory:
        conversation = self.store.get_active_conversation(user_id)
        if not conversation:
            return ConversationHistory(conversation_id=None, messages=[])
        return ConversationHistory(
            conversation_id=conversation.id,
            messages=self.list_messages(conversation.id),
        )
