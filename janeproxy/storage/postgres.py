from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from janeproxy.logging import get_logger
from janeproxy.storage.errors import ConstraintViolation
from janeproxy.storage.models import Conversation, License, Message, new_id

_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS conversation (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        created_at TIMESTAMP NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS conversation_user_created_idx ON conversation (user_id, created_at DESC)",
    """
    CREATE TABLE IF NOT EXISTS message (
        id TEXT PRIMARY KEY,
        seq BIGSERIAL,
        conversation_id TEXT NOT NULL REFERENCES conversation(id),
        role TEXT NOT NULL,
        content TEXT NOT NULL,
        created_at TIMESTAMP NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS message_conversation_created_idx ON message (conversation_id, created_at, seq)",
    """
    CREATE TABLE IF NOT EXISTS license (
        user_id TEXT PRIMARY KEY,
        status TEXT NOT NULL,
        current_period_end BIGINT NOT NULL DEFAULT 0,
        product TEXT NOT NULL DEFAULT '',
        updated_at TIMESTAMP NOT NULL
    )
    """,
)


def _conversation_from_row(row: dict) -> Conversation:
    return Conversation(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        title=row.get("title") or "",
        created_at=row["created_at"],
    )


class PostgresStore:
    """Postgres-backed store for conversations, messages and licenses."""

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=2,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        """Create the conversation, message and license tables if missing."""

        with self._connect() as conn:
            for statement in _SCHEMA_STATEMENTS:
                conn.execute(statement)
        self.logger.info("postgres_schema_ready")

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

    # conversations
    def get_active_conversation(self, user_id: str) -> Optional[Conversation]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM conversation WHERE user_id = %s ORDER BY created_at DESC LIMIT 1",
                (user_id,),
            ).fetchone()
        return _conversation_from_row(row) if row else None

    def get_or_create_active_conversation(
        self, user_id: str, title: str, created_at: Optional[datetime] = None
    ) -> tuple[Conversation, bool]:
        with self._connect() as conn:
            with conn.transaction():
                # serialize first turns of the same user; released at commit
                conn.execute(
                    "SELECT pg_advisory_xact_lock(hashtext(%s))", (user_id,)
                )
                row = conn.execute(
                    "SELECT * FROM conversation WHERE user_id = %s ORDER BY created_at DESC LIMIT 1",
                    (user_id,),
                ).fetchone()
                if row:
                    return _conversation_from_row(row), False
                conv = Conversation(
                    id=new_id(),
                    user_id=user_id,
                    title=title,
                    created_at=created_at or datetime.utcnow(),
                )
                conn.execute(
                    "INSERT INTO conversation (id, user_id, title, created_at) VALUES (%s, %s, %s, %s)",
                    (conv.id, conv.user_id, conv.title, conv.created_at),
                )
        return conv, True

    # messages
    def append_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        created_at: Optional[datetime] = None,
    ) -> Message:
        msg = Message(
            id=new_id(),
            conversation_id=conversation_id,
            role=role,
            content=content,
            created_at=created_at or datetime.utcnow(),
        )
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO message (id, conversation_id, role, content, created_at) VALUES (%s, %s, %s, %s, %s)",
                    (msg.id, msg.conversation_id, msg.role, msg.content, msg.created_at),
                )
        except errors.ForeignKeyViolation as exc:
            raise ConstraintViolation(
                "conversation not found", {"conversation_id": conversation_id}
            ) from exc
        return msg

    def list_messages(self, conversation_id: str) -> List[Message]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, conversation_id, role, content, created_at FROM message"
                " WHERE conversation_id = %s ORDER BY created_at ASC, seq ASC",
                (conversation_id,),
            ).fetchall()
        return [
            Message(
                id=str(row["id"]),
                conversation_id=str(row["conversation_id"]),
                role=row["role"],
                content=row["content"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    # licenses
    def upsert_license(
        self,
        user_id: str,
        status: str,
        current_period_end: int = 0,
        product: str = "",
    ) -> License:
        record = License(
            user_id=user_id,
            status=status,
            current_period_end=current_period_end or 0,
            product=product or "",
            updated_at=datetime.utcnow(),
        )
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO license (user_id, status, current_period_end, product, updated_at)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (user_id) DO UPDATE SET
                    status = EXCLUDED.status,
                    current_period_end = EXCLUDED.current_period_end,
                    product = EXCLUDED.product,
                    updated_at = EXCLUDED.updated_at
                """,
                (
                    record.user_id,
                    record.status,
                    record.current_period_end,
                    record.product,
                    record.updated_at,
                ),
            )
        return record

    def get_license(self, user_id: str) -> Optional[License]:
        with self._connect() as conn:
            row: Any = conn.execute(
                "SELECT * FROM license WHERE user_id = %s", (user_id,)
            ).fetchone()
        if not row:
            return None
        return License(
            user_id=str(row["user_id"]),
            status=row["status"],
            current_period_end=int(row.get("current_period_end") or 0),
            product=row.get("product") or "",
            updated_at=row["updated_at"],
        )
