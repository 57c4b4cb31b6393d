from __future__ import annotations

import contextlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

from janeproxy.logging import get_logger
from janeproxy.service.conversations import ConversationStore
from janeproxy.service.crisis import SAFETY_SCRIPT, is_crisis
from janeproxy.service.model_backend import CompletionBackend
from janeproxy.service.personas import PersonaRegistry
from janeproxy.service.privacy import scrub_messages
from janeproxy.service.web_context import WebContextFetcher

logger = get_logger(__name__)

FALLBACK_REPLY = (
    "I’m having trouble connecting right now. Let’s pick one small next step together."
)

# explicit offsets keep replies ordered after the user message of the same turn
SAFETY_REPLY_OFFSET = timedelta(milliseconds=1)
ASSISTANT_REPLY_OFFSET = timedelta(milliseconds=2)


class TurnState(str, Enum):
    RECEIVED = "received"
    SANITIZED = "sanitized"
    CRISIS_REPLY = "crisis_reply"
    RELAYING = "relaying"
    PERSISTED = "persisted"
    STREAM_CLOSED = "stream_closed"


def delta_event(text: str) -> Dict[str, Any]:
    return {"event": "delta", "data": text}


def done_event() -> Dict[str, Any]:
    return {"event": "done", "data": None}


@dataclass
class ChatTurn:
    user_id: Optional[str] = None
    pack_id: Optional[str] = None
    messages: List[dict] = field(default_factory=list)


class ChatPipeline:
    """Runs one chat turn and yields its output events.

    Every turn ends with exactly one ``done`` event: after the streamed reply,
    after the fixed safety script when crisis language is detected, or after a
    single fallback delta when the provider fails. A partially streamed reply is
    never persisted. Storage errors are not recovered and abort the turn.
    """

    def __init__(
        self,
        conversations: ConversationStore,
        personas: PersonaRegistry,
        backend: CompletionBackend,
        *,
        web_context: Optional[WebContextFetcher] = None,
        default_user_id: str = "local-user",
    ) -> None:
        self.conversations = conversations
        self.personas = personas
        self.backend = backend
        self.web_context = web_context
        self.default_user_id = default_user_id

    async def run_turn(self, turn: ChatTurn) -> AsyncIterator[Dict[str, Any]]:
        turn_start = datetime.utcnow()
        user_id = turn.user_id or self.default_user_id
        conversation_id = self.conversations.get_or_create_active(user_id)
        log = logger.bind(user_id=user_id, conversation_id=conversation_id)
        log.info(
            "chat_turn_state",
            state=TurnState.RECEIVED.value,
            message_count=len(turn.messages),
            pack_id=turn.pack_id,
        )

        sanitized = scrub_messages(turn.messages)
        log.debug("chat_turn_state", state=TurnState.SANITIZED.value)

        if is_crisis(sanitized):
            log.warning("chat_crisis_detected", state=TurnState.CRISIS_REPLY.value)
            self.conversations.append_message(
                conversation_id,
                "assistant",
                SAFETY_SCRIPT,
                created_at=turn_start + SAFETY_REPLY_OFFSET,
            )
            yield delta_event(SAFETY_SCRIPT)
            yield done_event()
            return

        if sanitized:
            last = sanitized[-1]
            self.conversations.append_message(
                conversation_id,
                last["role"] or "user",
                last["content"],
                created_at=turn_start,
            )

        prompt = await self._build_prompt(turn.pack_id, sanitized)
        log.info("chat_turn_state", state=TurnState.RELAYING.value, backend=self.backend.mode)
        parts: List[str] = []
        try:
            async with contextlib.aclosing(self.backend.stream(prompt)) as deltas:
                async for delta in deltas:
                    if not delta:
                        continue
                    parts.append(delta)
                    yield delta_event(delta)
        except Exception as exc:
            log.warning(
                "chat_provider_failed",
                error_type=type(exc).__name__,
                error=str(exc),
                deltas_relayed=len(parts),
            )
            yield delta_event(FALLBACK_REPLY)
            yield done_event()
            return

        reply = "".join(parts)
        self.conversations.append_message(
            conversation_id,
            "assistant",
            reply,
            created_at=turn_start + ASSISTANT_REPLY_OFFSET,
        )
        log.info(
            "chat_turn_state",
            state=TurnState.PERSISTED.value,
            deltas_relayed=len(parts),
            reply_chars=len(reply),
        )
        yield done_event()

    async def _build_prompt(self, pack_id: Optional[str], sanitized: List[dict]) -> List[dict]:
        prompt = [{"role": "system", "content": self.personas.resolve(pack_id)}]
        reference = await self._reference_text()
        if reference:
            prompt.append(
                {
                    "role": "system",
                    "content": f"Reference material (may be incomplete):\n{reference}",
                }
            )
        prompt.extend(sanitized)
        return prompt

    async def _reference_text(self) -> str:
        if self.web_context is None or not self.web_context.enabled:
            return ""
        try:
            context = await self.web_context.augment()
        except Exception as exc:
            logger.warning("web_context_failed", error_type=type(exc).__name__, error=str(exc))
            return ""
        return context.text
