"""Room membership: which live sessions are watching which chat.

A room is the set of sessions joined to one chat. Only the chat's two
participants may join. Fan-out for messages, seen receipts and typing is an
explicit iteration over this set.
"""
import logging
from typing import Dict, List, Set

from pairchat.errors import NotFoundError, NotParticipantError
from pairchat.store import Chat, StoreGateway

from .session import Session

logger = logging.getLogger(__name__)


class RoomMembershipManager:
    """Chat id -> joined sessions, plus the reverse index for cleanup."""

    def __init__(self, store: StoreGateway) -> None:
        self._store = store
        self._rooms: Dict[str, Set[Session]] = {}
        self._memberships: Dict[Session, Set[str]] = {}

    async def authorize(self, user_id: str, chat_id: str) -> Chat:
        """Load a chat and check that ``user_id`` participates in it.

        Raises:
            NotFoundError: If the chat does not exist.
            NotParticipantError: If the user is not one of its participants.
        """
        chat = await self._store.get_chat(chat_id)
        if chat is None:
            raise NotFoundError(f"Chat {chat_id} not found")
        if not chat.has_participant(user_id):
            logger.warning("[Rooms] User %s denied access to chat %s", user_id, chat_id)
            raise NotParticipantError(chat_id)
        return chat

    async def join(self, session: Session, chat_id: str) -> Chat:
        chat = await self.authorize(session.user_id, chat_id)
        # The session may have ended while the store lookup was in flight
        if session.closed:
            return chat
        self._rooms.setdefault(chat_id, set()).add(session)
        self._memberships.setdefault(session, set()).add(chat_id)
        logger.info(
            "[Rooms] Session %s (%s) joined chat %s (%d members)",
            session.id, session.user_id, chat_id, len(self._rooms[chat_id]),
        )
        return chat

    def leave(self, session: Session, chat_id: str) -> bool:
        members = self._rooms.get(chat_id)
        if not members or session not in members:
            return False
        members.discard(session)
        if not members:
            del self._rooms[chat_id]
        joined = self._memberships.get(session)
        if joined is not None:
            joined.discard(chat_id)
            if not joined:
                del self._memberships[session]
        logger.info("[Rooms] Session %s left chat %s", session.id, chat_id)
        return True

    def drop_session(self, session: Session) -> List[str]:
        """Remove a session from every room it joined; returns those chat ids."""
        chat_ids = list(self._memberships.get(session, ()))
        for chat_id in chat_ids:
            self.leave(session, chat_id)
        return chat_ids

    def members(self, chat_id: str) -> List[Session]:
        return list(self._rooms.get(chat_id, ()))

    def is_member(self, session: Session, chat_id: str) -> bool:
        return session in self._rooms.get(chat_id, ())

    def rooms_of(self, session: Session) -> Set[str]:
        return set(self._memberships.get(session, ()))

    def get_room_size(self, chat_id: str) -> int:
        return len(self._rooms.get(chat_id, ()))
