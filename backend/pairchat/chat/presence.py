"""Presence and typing broadcasts.

Presence is global: online/offline transitions go to every live session, not
just to users who share a chat. Typing state is fire-and-forget; it is neither
persisted nor expired here, and clients are expected to send
``isTyping: false`` themselves and to time out stale indicators locally.
"""
import logging
from datetime import datetime

from pairchat.errors import ChatError, NotParticipantError
from pairchat.store import StoreGateway
from pairchat.store.schemas import utcnow

from .events import UserOfflineEvent, UserOnlineEvent, UserTypingEvent
from .rooms import RoomMembershipManager
from .session import Session, SessionRegistry, fan_out

logger = logging.getLogger(__name__)


class PresenceService:
    """Writes presence to the store and broadcasts transitions and typing."""

    def __init__(
        self,
        registry: SessionRegistry,
        rooms: RoomMembershipManager,
        store: StoreGateway,
    ) -> None:
        self._registry = registry
        self._rooms = rooms
        self._store = store

    async def on_connect(self, user_id: str, origin: Session) -> None:
        await self._write(user_id, True, utcnow())
        event = UserOnlineEvent(userId=user_id, email=origin.user.email).to_wire()
        targets = [s for s in self._registry.all_sessions() if s is not origin]
        delivered = await fan_out(targets, event)
        logger.info("[Presence] %s online (notified %d sessions)", user_id, delivered)

    async def on_disconnect(self, user_id: str, last_seen: datetime) -> None:
        await self._write(user_id, False, last_seen)
        event = UserOfflineEvent(userId=user_id, lastSeen=last_seen).to_wire()
        delivered = await fan_out(self._registry.all_sessions(), event)
        logger.info("[Presence] %s offline (notified %d sessions)", user_id, delivered)

    async def set_typing(self, session: Session, chat_id: str, is_typing: bool) -> int:
        """Tell the other participant's joined sessions that this user is typing.

        Raises:
            NotParticipantError: If the session has not joined the chat's room.
        """
        if not self._rooms.is_member(session, chat_id):
            raise NotParticipantError(
                chat_id, f"Join chat {chat_id} before sending typing updates"
            )
        event = UserTypingEvent(
            chatId=chat_id,
            userId=session.user_id,
            email=session.user.email,
            isTyping=is_typing,
        ).to_wire()
        targets = [
            s for s in self._rooms.members(chat_id) if s.user_id != session.user_id
        ]
        return await fan_out(targets, event)

    async def _write(self, user_id: str, is_online: bool, last_seen: datetime) -> None:
        # The registry stays authoritative even if the store write fails
        try:
            await self._store.set_presence(user_id, is_online, last_seen)
        except ChatError as e:
            logger.warning(
                "[Presence] Could not persist %s for %s: %s",
                "online" if is_online else "offline", user_id, e.message,
            )
