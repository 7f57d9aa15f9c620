"""Chat manager: the real-time messaging and presence engine.

This module wires the engine's parts together and exposes the operations the
WebSocket handler and the HTTP pull path call.

Key features:
    - Multiple live sessions per user (multi-device)
    - Global online/offline presence derived from live sessions
    - Participant-only chat rooms with explicit join/leave
    - Per-chat ordered message creation and fan-out
    - Chat summary notifications to every session of both participants
    - Seen receipts reconciled on join, on request and from the pull path
    - Paginated history for catch-up after reconnect

Thread Safety:
    This implementation is designed for async/await usage with a single event
    loop. It is NOT thread-safe for concurrent access from multiple threads.

Note:
    One ChatManager is created per application by ``create_app`` and kept on
    ``app.state.chat_manager``; nothing here is a module-level singleton.
"""
import logging
from datetime import datetime
from typing import List, Optional

from pairchat.auth.service import TokenService
from pairchat.config import MessageSettings
from pairchat.errors import InvalidContentError, NotFoundError
from pairchat.store import Chat, Message, PublicUser, StoreGateway, User

from .pipeline import MessagePipeline
from .presence import PresenceService
from .reconciliation import ReconciliationService
from .rooms import RoomMembershipManager
from .session import Session, SessionRegistry

logger = logging.getLogger(__name__)


class ChatManager:
    """Owns the session registry, rooms and the services built on them."""

    def __init__(
        self,
        store: StoreGateway,
        tokens: TokenService,
        messages: Optional[MessageSettings] = None,
        send_timeout: float = 5.0,
    ) -> None:
        messages = messages or MessageSettings()
        self.store = store
        self.tokens = tokens
        self.send_timeout = send_timeout
        self.registry = SessionRegistry()
        self.rooms = RoomMembershipManager(store)
        self.presence = PresenceService(self.registry, self.rooms, store)
        self.registry.listener = self.presence
        self.pipeline = MessagePipeline(
            store, self.registry, self.rooms, max_length=messages.max_length
        )
        self.reconciliation = ReconciliationService(
            store,
            self.rooms,
            default_page_size=messages.default_page_size,
            max_page_size=messages.max_page_size,
        )

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    async def authenticate(self, token: Optional[str]) -> User:
        return await self.tokens.authenticate(token, self.store)

    async def open_session(self, websocket, user: User) -> Session:
        """Register an accepted connection for an authenticated user."""
        session = Session(websocket, user, send_timeout=self.send_timeout)
        await self.registry.register(session)
        return session

    async def close_session(self, session: Session) -> None:
        """Tear down a session: leave every room, then drop it from the registry.

        Safe to call more than once.
        """
        session.closed = True
        left = self.rooms.drop_session(session)
        if left:
            logger.info("[Manager] Session %s removed from rooms %s", session.id, left)
        await self.registry.unregister(session)

    # =========================================================================
    # Live operations
    # =========================================================================

    async def join(self, session: Session, chat_id: str) -> int:
        """Join a chat's room and acknowledge everything unseen in it.

        Returns:
            Number of messages newly marked as seen.
        """
        await self.rooms.join(session, chat_id)
        if not self.rooms.is_member(session, chat_id):
            # Session closed while the join was in flight; nothing to acknowledge
            return 0
        return await self.reconciliation.acknowledge(chat_id, session.user_id, origin=session)

    def leave(self, session: Session, chat_id: str) -> bool:
        return self.rooms.leave(session, chat_id)

    async def send_message(self, sender_id: str, chat_id: str, content: str) -> Message:
        return await self.pipeline.send_message(sender_id, chat_id, content)

    async def set_typing(self, session: Session, chat_id: str, is_typing: bool) -> int:
        return await self.presence.set_typing(session, chat_id, is_typing)

    async def mark_seen(
        self, user_id: str, chat_id: str, origin: Optional[Session] = None
    ) -> int:
        await self.rooms.authorize(user_id, chat_id)
        return await self.reconciliation.acknowledge(chat_id, user_id, origin=origin)

    # =========================================================================
    # Pull path
    # =========================================================================

    async def list_messages(
        self,
        user_id: str,
        chat_id: str,
        before: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Message]:
        await self.rooms.authorize(user_id, chat_id)
        return await self.reconciliation.list_messages(chat_id, before, limit)

    async def open_chat(self, user_id: str, participant_id: str) -> Chat:
        """Find or create the chat between the caller and another user."""
        if not participant_id:
            raise InvalidContentError("Participant ID is required")
        if participant_id == user_id:
            raise InvalidContentError("Cannot create chat with yourself")
        participant = await self.store.get_user(participant_id)
        if participant is None:
            raise NotFoundError(f"User {participant_id} not found")
        chat, created = await self.store.find_or_create_chat(user_id, participant_id)
        if created:
            logger.info("[Manager] %s opened new chat %s with %s", user_id, chat.id, participant_id)
        return chat

    async def get_chat(self, user_id: str, chat_id: str) -> Chat:
        return await self.rooms.authorize(user_id, chat_id)

    async def describe_chat(self, chat: Chat, user_id: str) -> dict:
        """Chat as seen by one participant: the other user's profile and unread count."""
        other_id = chat.other_participant(user_id)
        other = await self.store.get_user(other_id) if other_id else None
        return {
            "id": chat.id,
            "participant": self.public_user(other).model_dump(mode="json") if other else None,
            "lastMessage": chat.lastMessage.model_dump(mode="json") if chat.lastMessage else None,
            "updatedAt": chat.updatedAt.isoformat(),
            "createdAt": chat.createdAt.isoformat(),
            "unreadCount": await self.store.unread_count(chat.id, user_id),
        }

    async def list_chats(self, user_id: str) -> List[dict]:
        chats = await self.store.list_chats_for(user_id)
        return [await self.describe_chat(chat, user_id) for chat in chats]

    def public_user(self, user: User) -> PublicUser:
        """Public profile with presence taken from the live registry."""
        return PublicUser.from_user(user, is_online=self.registry.is_online(user.id))
