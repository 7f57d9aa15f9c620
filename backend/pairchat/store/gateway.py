"""Async, time-bounded access to the durable store.

The event loop never calls ``ChatStore`` directly: each call runs in a worker
thread and is abandoned after ``timeout_seconds``, surfacing as
``StoreUnavailableError`` instead of stalling a connection's processing loop.
Database errors are mapped to the same exception. No retries happen here;
retry policy belongs to the caller.

Writes are decidable: a write runs in one transaction behind a ``WriteGuard``.
When the caller times out it abandons the guard, and the worker then rolls
back instead of committing. If the commit won the race the caller gets the
committed result, so ``StoreUnavailableError`` always means nothing was
written and a retry cannot duplicate data.
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional, Tuple, TypeVar

import duckdb

from pairchat.errors import StoreUnavailableError

from .schemas import Chat, Message, User
from .service import ChatStore, WriteGuard

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _discard_outcome(task: "asyncio.Future") -> None:
    # An abandoned write ends in WriteAbandoned; retrieve it so it is not logged
    if not task.cancelled():
        task.exception()


class StoreGateway:
    """Awaitable facade over a ChatStore with a per-call timeout."""

    def __init__(self, store: ChatStore, timeout_seconds: float = 5.0) -> None:
        self.store = store
        self.timeout_seconds = timeout_seconds

    async def _call(self, fn: Callable[..., T], *args) -> T:
        name = getattr(fn, "__name__", repr(fn))
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            logger.error("[Store] %s timed out after %.2fs", name, self.timeout_seconds)
            raise StoreUnavailableError(
                f"Store did not answer within {self.timeout_seconds}s"
            ) from exc
        except duckdb.Error as exc:
            logger.error("[Store] %s failed: %s", name, exc)
            raise StoreUnavailableError("Store operation failed") from exc

    async def _write(self, fn: Callable[..., T], *args) -> T:
        """Like ``_call``, but a timed-out write is rolled back, never committed late."""
        name = getattr(fn, "__name__", repr(fn))
        guard = WriteGuard()
        task = asyncio.ensure_future(
            asyncio.to_thread(self.store.run_guarded, guard, fn, *args)
        )
        try:
            return await asyncio.wait_for(
                asyncio.shield(task), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            # The guard lock is held only around the commit itself
            committed = await asyncio.to_thread(guard.abandon)
            if committed:
                logger.warning(
                    "[Store] %s committed after the %.2fs deadline",
                    name, self.timeout_seconds,
                )
                return await task
            task.add_done_callback(_discard_outcome)
            logger.error(
                "[Store] %s abandoned after %.2fs, nothing written",
                name, self.timeout_seconds,
            )
            raise StoreUnavailableError(
                f"Store did not answer within {self.timeout_seconds}s"
            ) from exc
        except duckdb.Error as exc:
            logger.error("[Store] %s failed: %s", name, exc)
            raise StoreUnavailableError("Store operation failed") from exc

    # Users

    async def get_user(self, user_id: str) -> Optional[User]:
        return await self._call(self.store.get_user, user_id)

    async def search_users(
        self, exclude_id: str, search: Optional[str] = None, limit: int = 20
    ) -> List[User]:
        return await self._call(self.store.search_users, exclude_id, search, limit)

    async def update_profile(
        self, user_id: str, display_name: Optional[str], avatar: Optional[str]
    ) -> Optional[User]:
        return await self._write(self.store.update_profile, user_id, display_name, avatar)

    async def set_presence(self, user_id: str, is_online: bool, last_seen: datetime) -> None:
        await self._write(self.store.set_presence, user_id, is_online, last_seen)

    # Chats

    async def get_chat(self, chat_id: str) -> Optional[Chat]:
        return await self._call(self.store.get_chat, chat_id)

    async def find_or_create_chat(self, user_id: str, other_id: str) -> Tuple[Chat, bool]:
        return await self._write(self.store.find_or_create_chat, user_id, other_id)

    async def list_chats_for(self, user_id: str) -> List[Chat]:
        return await self._call(self.store.list_chats_for, user_id)

    async def update_last_message(self, chat_id: str, message: Message) -> Optional[Chat]:
        return await self._write(self.store.update_last_message, chat_id, message)

    # Messages

    async def create_message(self, chat_id: str, sender_id: str, content: str) -> Message:
        return await self._write(self.store.create_message, chat_id, sender_id, content)

    async def list_messages(
        self, chat_id: str, before: Optional[datetime], limit: int
    ) -> List[Message]:
        return await self._call(self.store.list_messages, chat_id, before, limit)

    async def mark_seen(self, chat_id: str, reader_id: str) -> int:
        return await self._write(self.store.mark_seen, chat_id, reader_id)

    async def unread_count(self, chat_id: str, user_id: str) -> int:
        return await self._call(self.store.unread_count, chat_id, user_id)
