"""DuckDB-backed durable store for users, chats and messages.

Database Schema:
    users table:
        - id, email (unique), display_name, avatar, is_verified,
          is_online, last_seen, created_at
    chats table:
        - id, user_a, user_b (sorted pair, unique together),
          last_content, last_sender_id, last_created_at,
          updated_at, created_at
    messages table:
        - id, chat_id, sender_id, content, seen, seen_at, created_at

Thread Safety:
    A single DuckDB connection is shared and every public method holds
    ``self._lock`` for its whole body, so each call is atomic with respect
    to the others. Callers on the event loop go through ``StoreGateway``,
    which runs these methods in worker threads. Writes it issues go through
    ``run_guarded``, which wraps them in a transaction whose commit a
    ``WriteGuard`` can veto after the caller has given up.

Ordering:
    ``create_message`` assigns timestamps that are strictly increasing per
    chat, so a strict ``created_at < cursor`` page boundary never skips or
    repeats a message.
"""
import logging
import threading
import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple, TypeVar

import duckdb

from .schemas import Chat, LastMessage, Message, User, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id           VARCHAR PRIMARY KEY,
        email        VARCHAR NOT NULL UNIQUE,
        display_name VARCHAR,
        avatar       VARCHAR NOT NULL DEFAULT '',
        is_verified  BOOLEAN NOT NULL DEFAULT FALSE,
        is_online    BOOLEAN NOT NULL DEFAULT FALSE,
        last_seen    TIMESTAMP NOT NULL,
        created_at   TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chats (
        id              VARCHAR PRIMARY KEY,
        user_a          VARCHAR NOT NULL,
        user_b          VARCHAR NOT NULL,
        last_content    VARCHAR,
        last_sender_id  VARCHAR,
        last_created_at TIMESTAMP,
        updated_at      TIMESTAMP NOT NULL,
        created_at      TIMESTAMP NOT NULL,
        UNIQUE (user_a, user_b)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id         VARCHAR PRIMARY KEY,
        chat_id    VARCHAR NOT NULL,
        sender_id  VARCHAR NOT NULL,
        content    VARCHAR NOT NULL,
        seen       BOOLEAN NOT NULL DEFAULT FALSE,
        seen_at    TIMESTAMP,
        created_at TIMESTAMP NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_chat ON messages(chat_id, created_at)",
]

_USER_COLUMNS = (
    "id, email, display_name, avatar, is_verified, is_online, last_seen, created_at"
)
_CHAT_COLUMNS = (
    "id, user_a, user_b, last_content, last_sender_id, last_created_at, "
    "updated_at, created_at"
)
_MESSAGE_COLUMNS = "id, chat_id, sender_id, content, seen, seen_at, created_at"

# Smallest step DuckDB TIMESTAMP can represent
_TICK = timedelta(microseconds=1)


class WriteAbandoned(Exception):
    """Raised in the worker when its caller gave up before the commit."""


class WriteGuard:
    """Decides, exactly once, whether a guarded write commits or is abandoned.

    The worker commits through ``try_commit``; a caller that stopped waiting
    calls ``abandon``. Both take the same lock, so afterwards exactly one of
    ``committed`` / ``abandoned`` is true and the caller knows which.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.committed = False
        self.abandoned = False

    def try_commit(self, commit: Callable[[], None]) -> bool:
        with self._lock:
            if self.abandoned:
                return False
            commit()
            self.committed = True
            return True

    def abandon(self) -> bool:
        """Abandon the write unless it already committed; returns ``committed``."""
        with self._lock:
            if not self.committed:
                self.abandoned = True
            return self.committed


class ChatStore:
    """Persistence for users, chats and messages in DuckDB.

    The connection is opened lazily on first use, so constructing a store
    (e.g. at application import time) never touches the filesystem.
    """

    def __init__(self, db_path: str = "pairchat.duckdb") -> None:
        self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.RLock()

    @property
    def db_path(self) -> str:
        return self._db_path

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
            for statement in _SCHEMA:
                self._connection.execute(statement)
            logger.info("[Store] Initialized with db=%s", self._db_path)
        return self._connection

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    def run_guarded(self, guard: WriteGuard, fn: Callable[..., T], *args) -> T:
        """Run ``fn`` in one transaction that commits only if ``guard`` allows it.

        Raises:
            WriteAbandoned: The guard was abandoned; nothing was written.
        """
        with self._lock:
            if guard.abandoned:
                raise WriteAbandoned()
            conn = self._get_connection()
            conn.begin()
            try:
                result = fn(*args)
            except BaseException:
                conn.rollback()
                raise
            if not guard.try_commit(conn.commit):
                conn.rollback()
                raise WriteAbandoned()
            return result

    # -----------------------------------------------------------------------
    # Users
    # -----------------------------------------------------------------------

    def create_user(
        self,
        email: str,
        *,
        display_name: Optional[str] = None,
        avatar: str = "",
        is_verified: bool = False,
    ) -> User:
        user = User(
            email=email.strip().lower(),
            displayName=display_name.strip() if display_name else None,
            avatar=avatar,
            isVerified=is_verified,
        )
        with self._lock:
            self._get_connection().execute(
                f"INSERT INTO users ({_USER_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    user.id, user.email, user.displayName, user.avatar,
                    user.isVerified, user.isOnline, user.lastSeen, user.createdAt,
                ],
            )
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            row = self._get_connection().execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", [user_id]
            ).fetchone()
        return self._row_to_user(row) if row else None

    def find_user_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            row = self._get_connection().execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE email = ?",
                [email.strip().lower()],
            ).fetchone()
        return self._row_to_user(row) if row else None

    def mark_verified(self, user_id: str) -> Optional[User]:
        with self._lock:
            self._get_connection().execute(
                "UPDATE users SET is_verified = TRUE WHERE id = ?", [user_id]
            )
            return self.get_user(user_id)

    def search_users(
        self, exclude_id: str, search: Optional[str] = None, limit: int = 20
    ) -> List[User]:
        """Verified users other than ``exclude_id``, optionally filtered by email."""
        query = (
            f"SELECT {_USER_COLUMNS} FROM users "
            "WHERE id <> ? AND is_verified = TRUE"
        )
        params: list = [exclude_id]
        if search:
            query += " AND contains(email, ?)"
            params.append(search.strip().lower())
        query += " ORDER BY email LIMIT ?"
        params.append(limit)
        with self._lock:
            rows = self._get_connection().execute(query, params).fetchall()
        return [self._row_to_user(r) for r in rows]

    def update_profile(
        self,
        user_id: str,
        display_name: Optional[str] = None,
        avatar: Optional[str] = None,
    ) -> Optional[User]:
        fields = {}
        if display_name is not None:
            fields["display_name"] = display_name.strip() or None
        if avatar is not None:
            fields["avatar"] = avatar
        with self._lock:
            if fields:
                set_clause = ", ".join(f"{k} = ?" for k in fields)
                self._get_connection().execute(
                    f"UPDATE users SET {set_clause} WHERE id = ?",
                    list(fields.values()) + [user_id],
                )
            return self.get_user(user_id)

    def set_presence(self, user_id: str, is_online: bool, last_seen: datetime) -> None:
        with self._lock:
            self._get_connection().execute(
                "UPDATE users SET is_online = ?, last_seen = ? WHERE id = ?",
                [is_online, last_seen, user_id],
            )

    # -----------------------------------------------------------------------
    # Chats
    # -----------------------------------------------------------------------

    def get_chat(self, chat_id: str) -> Optional[Chat]:
        with self._lock:
            row = self._get_connection().execute(
                f"SELECT {_CHAT_COLUMNS} FROM chats WHERE id = ?", [chat_id]
            ).fetchone()
        return self._row_to_chat(row) if row else None

    def find_or_create_chat(self, user_id: str, other_id: str) -> Tuple[Chat, bool]:
        """Return the chat between two users, creating it on first contact.

        Returns:
            Tuple of (chat, created).
        """
        if user_id == other_id:
            raise ValueError("A chat needs two distinct participants")
        user_a, user_b = sorted((user_id, other_id))
        with self._lock:
            conn = self._get_connection()
            row = conn.execute(
                f"SELECT {_CHAT_COLUMNS} FROM chats WHERE user_a = ? AND user_b = ?",
                [user_a, user_b],
            ).fetchone()
            if row:
                return self._row_to_chat(row), False

            chat = Chat(participants=[user_a, user_b])
            conn.execute(
                """
                INSERT INTO chats (id, user_a, user_b, updated_at, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                [chat.id, user_a, user_b, chat.updatedAt, chat.createdAt],
            )
        logger.info("[Store] Created chat %s between %s and %s", chat.id, user_a, user_b)
        return chat, True

    def list_chats_for(self, user_id: str) -> List[Chat]:
        """All chats the user participates in, most recently updated first."""
        with self._lock:
            rows = self._get_connection().execute(
                f"""
                SELECT {_CHAT_COLUMNS} FROM chats
                WHERE user_a = ? OR user_b = ?
                ORDER BY updated_at DESC
                """,
                [user_id, user_id],
            ).fetchall()
        return [self._row_to_chat(r) for r in rows]

    def update_last_message(self, chat_id: str, message: Message) -> Optional[Chat]:
        with self._lock:
            self._get_connection().execute(
                """
                UPDATE chats
                SET last_content = ?, last_sender_id = ?, last_created_at = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                [message.content, message.senderId, message.createdAt, utcnow(), chat_id],
            )
            return self.get_chat(chat_id)

    # -----------------------------------------------------------------------
    # Messages
    # -----------------------------------------------------------------------

    def create_message(self, chat_id: str, sender_id: str, content: str) -> Message:
        """Persist a message with a timestamp strictly after the chat's newest."""
        with self._lock:
            conn = self._get_connection()
            newest = conn.execute(
                "SELECT max(created_at) FROM messages WHERE chat_id = ?", [chat_id]
            ).fetchone()[0]
            created_at = utcnow()
            if newest is not None and created_at <= newest:
                created_at = newest + _TICK

            message = Message(
                id=str(uuid.uuid4()),
                chatId=chat_id,
                senderId=sender_id,
                content=content,
                createdAt=created_at,
            )
            conn.execute(
                f"INSERT INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                [
                    message.id, message.chatId, message.senderId, message.content,
                    message.seen, message.seenAt, message.createdAt,
                ],
            )
        return message

    def list_messages(
        self, chat_id: str, before: Optional[datetime] = None, limit: int = 50
    ) -> List[Message]:
        """Newest ``limit`` messages strictly before ``before``, oldest first."""
        query = f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE chat_id = ?"
        params: list = [chat_id]
        if before is not None:
            query += " AND created_at < ?"
            params.append(before)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        with self._lock:
            rows = self._get_connection().execute(query, params).fetchall()
        return [self._row_to_message(r) for r in reversed(rows)]

    def mark_seen(self, chat_id: str, reader_id: str) -> int:
        """Flip every unseen message not sent by ``reader_id``.

        Returns:
            Number of messages that changed; zero means nothing was written.
        """
        with self._lock:
            conn = self._get_connection()
            pending = conn.execute(
                """
                SELECT count(*) FROM messages
                WHERE chat_id = ? AND sender_id <> ? AND seen = FALSE
                """,
                [chat_id, reader_id],
            ).fetchone()[0]
            if not pending:
                return 0
            conn.execute(
                """
                UPDATE messages SET seen = TRUE, seen_at = ?
                WHERE chat_id = ? AND sender_id <> ? AND seen = FALSE
                """,
                [utcnow(), chat_id, reader_id],
            )
        return pending

    def unread_count(self, chat_id: str, user_id: str) -> int:
        with self._lock:
            return self._get_connection().execute(
                """
                SELECT count(*) FROM messages
                WHERE chat_id = ? AND sender_id <> ? AND seen = FALSE
                """,
                [chat_id, user_id],
            ).fetchone()[0]

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    @staticmethod
    def _row_to_user(row) -> User:
        return User(
            id=row[0],
            email=row[1],
            displayName=row[2],
            avatar=row[3] or "",
            isVerified=row[4],
            isOnline=row[5],
            lastSeen=row[6],
            createdAt=row[7],
        )

    @staticmethod
    def _row_to_chat(row) -> Chat:
        last_message = None
        if row[3] is not None:
            last_message = LastMessage(content=row[3], senderId=row[4], createdAt=row[5])
        return Chat(
            id=row[0],
            participants=[row[1], row[2]],
            lastMessage=last_message,
            updatedAt=row[6],
            createdAt=row[7],
        )

    @staticmethod
    def _row_to_message(row) -> Message:
        return Message(
            id=row[0],
            chatId=row[1],
            senderId=row[2],
            content=row[3],
            seen=row[4],
            seenAt=row[5],
            createdAt=row[6],
        )
