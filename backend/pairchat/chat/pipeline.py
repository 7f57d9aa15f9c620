"""Message pipeline: validate, persist, snapshot, fan out.

Ordering:
    Persist -> snapshot update -> fan-out for one chat runs under that chat's
    lock, so two concurrent sends to the same chat reach every observer in
    creation order. Different chats use different locks and never wait on
    each other.

Durability:
    A message is broadcast only after the store accepted it. The chat's
    last-message snapshot is a cache: if updating it fails the failure is
    logged and the message is still delivered.
"""
import logging
from typing import List

from pairchat.errors import ChatError, InvalidContentError
from pairchat.store import Message, StoreGateway

from .events import ChatSummaryChangedEvent, MessageReceivedEvent
from .locks import KeyedLocks
from .rooms import RoomMembershipManager
from .session import Session, SessionRegistry, fan_out

logger = logging.getLogger(__name__)

# Maximum number of characters in a message (after trimming)
MAX_MESSAGE_LENGTH = 5000


def validate_content(content: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """Return trimmed content or raise InvalidContentError."""
    if not isinstance(content, str):
        raise InvalidContentError("Message content must be text")
    text = content.strip()
    if not text:
        raise InvalidContentError("Message content is required")
    if len(text) > max_length:
        raise InvalidContentError(f"Message cannot exceed {max_length} characters")
    return text


class MessagePipeline:
    """Creates messages and delivers them to live sessions."""

    def __init__(
        self,
        store: StoreGateway,
        registry: SessionRegistry,
        rooms: RoomMembershipManager,
        max_length: int = MAX_MESSAGE_LENGTH,
    ) -> None:
        self._store = store
        self._registry = registry
        self._rooms = rooms
        self.max_length = max_length
        self._chat_locks = KeyedLocks()

    async def send_message(self, sender_id: str, chat_id: str, content: str) -> Message:
        """Create a message in a chat and push it to everyone watching.

        Raises:
            InvalidContentError: Empty, blank or over-length content.
            NotFoundError: The chat does not exist.
            NotParticipantError: The sender is not in the chat.
            StoreUnavailableError: The message could not be persisted.
        """
        text = validate_content(content, self.max_length)
        chat = await self._rooms.authorize(sender_id, chat_id)

        async with self._chat_locks.hold(chat_id):
            message = await self._store.create_message(chat_id, sender_id, text)
            logger.info(
                "[Pipeline] Message %s persisted in chat %s by %s",
                message.id, chat_id, sender_id,
            )

            updated_at = message.createdAt
            try:
                updated = await self._store.update_last_message(chat_id, message)
                if updated is not None:
                    updated_at = updated.updatedAt
            except ChatError as e:
                logger.warning(
                    "[Pipeline] Last-message snapshot for chat %s not updated: %s",
                    chat_id, e.message,
                )

            members = self._rooms.members(chat_id)
            delivered = await fan_out(
                members, MessageReceivedEvent(message=message).to_wire()
            )

            summary = ChatSummaryChangedEvent(
                chatId=chat_id,
                lastMessage=message.snapshot(),
                updatedAt=updated_at,
            ).to_wire()
            await fan_out(self._participant_sessions(chat.participants), summary)

        logger.debug(
            "[Pipeline] Message %s delivered to %d/%d room members",
            message.id, delivered, len(members),
        )
        return message

    def is_chat_busy(self, chat_id: str) -> bool:
        return self._chat_locks.is_locked(chat_id)

    def _participant_sessions(self, participants: List[str]) -> List[Session]:
        sessions: List[Session] = []
        for user_id in participants:
            sessions.extend(self._registry.sessions_for(user_id))
        return sessions
