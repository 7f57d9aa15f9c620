"""Keeps the pull path and the live channel consistent.

Seen state:
    ``mark_seen`` flips every unseen message the reader did not send. It is
    idempotent and writes nothing when there is nothing to flip.
    ``acknowledge`` additionally tells the rest of the room.

History:
    ``list_messages`` pages backward from the newest message. Catch-up after
    reconnect: fetch a page with no cursor, then keep passing the oldest
    returned ``createdAt`` as ``before`` until a page comes back shorter than
    the limit. Per-chat timestamps are strictly increasing, so messages
    appended during the walk never shift an already-returned page.
"""
import logging
from datetime import datetime
from typing import List, Optional

from pairchat.store import Message, StoreGateway
from pairchat.store.schemas import to_naive_utc

from .events import MessagesSeenEvent
from .rooms import RoomMembershipManager
from .session import Session, fan_out

logger = logging.getLogger(__name__)

# Default page size for message history pagination
DEFAULT_PAGE_SIZE = 50

# Maximum page size to prevent abuse
MAX_PAGE_SIZE = 100


class ReconciliationService:

    def __init__(
        self,
        store: StoreGateway,
        rooms: RoomMembershipManager,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
    ) -> None:
        self._store = store
        self._rooms = rooms
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    async def mark_seen(self, chat_id: str, reader_id: str) -> int:
        count = await self._store.mark_seen(chat_id, reader_id)
        if count:
            logger.info("[Seen] %s read %d message(s) in chat %s", reader_id, count, chat_id)
        return count

    async def acknowledge(
        self, chat_id: str, reader_id: str, origin: Optional[Session] = None
    ) -> int:
        """Mark seen and notify the other room members when anything changed."""
        count = await self.mark_seen(chat_id, reader_id)
        if count:
            event = MessagesSeenEvent(chatId=chat_id, userId=reader_id, count=count).to_wire()
            targets = [s for s in self._rooms.members(chat_id) if s is not origin]
            await fan_out(targets, event)
        return count

    def clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.default_page_size
        return max(1, min(limit, self.max_page_size))

    async def list_messages(
        self,
        chat_id: str,
        before: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Message]:
        """One page of history, oldest first."""
        if before is not None:
            before = to_naive_utc(before)
        return await self._store.list_messages(chat_id, before, self.clamp_limit(limit))
