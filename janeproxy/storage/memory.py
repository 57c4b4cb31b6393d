from __future__ import annotations

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from janeproxy.logging import get_logger
from janeproxy.storage.errors import ConstraintViolation, StorageError
from janeproxy.storage.models import Conversation, License, Message, new_id


class MemoryStore:
    """In-process store that snapshots its rows to a JSON file under ``fs_root``."""

    def __init__(self, fs_root: str = "/tmp/janeproxy") -> None:
        self.logger = get_logger(__name__)
        self.conversations: Dict[str, Conversation] = {}
        self.messages: Dict[str, List[Message]] = {}
        self.licenses: Dict[str, License] = {}
        # RLock so composite operations can call the single-row helpers
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root)
        self.fs_root.mkdir(parents=True, exist_ok=True)
        self._load_state()

    def _state_path(self) -> Path:
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "memory_store.json"

    @staticmethod
    def _serialize_datetime(dt: datetime) -> str:
        return dt.isoformat()

    @staticmethod
    def _deserialize_datetime(raw: str) -> datetime:
        return datetime.fromisoformat(raw)

    def verify_connection(self) -> None:
        self._state_path()

    def close(self) -> None:
        return None

    # conversations
    def get_active_conversation(self, user_id: str) -> Optional[Conversation]:
        """Most recently created conversation for ``user_id``."""
        with self._data_lock:
            latest: Optional[Conversation] = None
            for conv in self.conversations.values():
                if conv.user_id != user_id:
                    continue
                # ties keep the earlier row, matching insertion order
                if latest is None or conv.created_at > latest.created_at:
                    latest = conv
            return latest

    def create_conversation(
        self, user_id: str, title: str, created_at: Optional[datetime] = None
    ) -> Conversation:
        with self._data_lock:
            conv = Conversation(
                id=new_id(),
                user_id=user_id,
                title=title,
                created_at=created_at or datetime.utcnow(),
            )
            self.conversations[conv.id] = conv
            self.messages[conv.id] = []
            self._persist_state()
            return conv

    def get_or_create_active_conversation(
        self, user_id: str, title: str, created_at: Optional[datetime] = None
    ) -> tuple[Conversation, bool]:
        # read and insert under one lock so concurrent first turns share a row
        with self._data_lock:
            existing = self.get_active_conversation(user_id)
            if existing:
                return existing, False
            return self.create_conversation(user_id, title, created_at), True

    # messages
    def append_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        created_at: Optional[datetime] = None,
    ) -> Message:
        with self._data_lock:
            if conversation_id not in self.conversations:
                raise ConstraintViolation(
                    "conversation not found", {"conversation_id": conversation_id}
                )
            msg = Message(
                id=new_id(),
                conversation_id=conversation_id,
                role=role,
                content=content,
                created_at=created_at or datetime.utcnow(),
            )
            self.messages.setdefault(conversation_id, []).append(msg)
            self._persist_state()
            return msg

    def list_messages(self, conversation_id: str) -> List[Message]:
        with self._data_lock:
            msgs = list(self.messages.get(conversation_id, []))
        # sort is stable: equal timestamps keep insertion order
        msgs.sort(key=lambda m: m.created_at)
        return msgs

    # licenses
    def upsert_license(
        self,
        user_id: str,
        status: str,
        current_period_end: int = 0,
        product: str = "",
    ) -> License:
        with self._data_lock:
            record = License(
                user_id=user_id,
                status=status,
                current_period_end=current_period_end or 0,
                product=product or "",
                updated_at=datetime.utcnow(),
            )
            self.licenses[user_id] = record
            self._persist_state()
            return record

    def get_license(self, user_id: str) -> Optional[License]:
        with self._data_lock:
            return self.licenses.get(user_id)

    # persistence
    def _persist_state(self) -> None:
        state = {
            "conversations": [
                {
                    "id": c.id,
                    "user_id": c.user_id,
                    "title": c.title,
                    "created_at": self._serialize_datetime(c.created_at),
                }
                for c in self.conversations.values()
            ],
            "messages": [
                {
                    "id": m.id,
                    "conversation_id": m.conversation_id,
                    "role": m.role,
                    "content": m.content,
                    "created_at": self._serialize_datetime(m.created_at),
                }
                for msgs in self.messages.values()
                for m in msgs
            ],
            "licenses": [
                {
                    "user_id": lic.user_id,
                    "status": lic.status,
                    "current_period_end": lic.current_period_end,
                    "product": lic.product,
                    "updated_at": self._serialize_datetime(lic.updated_at),
                }
                for lic in self.licenses.values()
            ],
        }
        path = self._state_path()
        try:
            path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            raise StorageError(f"failed to persist in-memory state: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.conversations = {
            c["id"]: Conversation(
                id=c["id"],
                user_id=c["user_id"],
                title=c.get("title") or "",
                created_at=self._deserialize_datetime(c["created_at"]),
            )
            for c in data.get("conversations", [])
        }
        self.messages = {conv_id: [] for conv_id in self.conversations}
        for raw in data.get("messages", []):
            msg = Message(
                id=raw["id"],
                conversation_id=raw["conversation_id"],
                role=raw["role"],
                content=raw.get("content") or "",
                created_at=self._deserialize_datetime(raw["created_at"]),
            )
            self.messages.setdefault(msg.conversation_id, []).append(msg)
        self.licenses = {
            raw["user_id"]: License(
                user_id=raw["user_id"],
                status=raw.get("status") or "none",
                current_period_end=int(raw.get("current_period_end") or 0),
                product=raw.get("product") or "",
                updated_at=self._deserialize_datetime(raw["updated_at"]),
            )
            for raw in data.get("licenses", [])
        }
        self.logger.info(
            "memory_store_loaded",
            conversations=len(self.conversations),
            licenses=len(self.licenses),
        )
        return True
