"""Live-channel event protocol.

Every frame is a JSON object with a ``type`` discriminator. The client set is
closed: unknown types, unknown fields and missing fields are rejected with
``InvalidContentError`` before anything else happens.

Client -> server:
    - join:          {type, chatId}
    - leave:         {type, chatId}
    - send_message:  {type, chatId, content}
    - typing:        {type, chatId, isTyping}
    - mark_seen:     {type, chatId}

Server -> client:
    - connected, joined, left
    - message_received, chat_summary_changed, messages_seen
    - user_online, user_offline, user_typing
    - operation_failed
"""
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from pairchat.errors import ChatError, InvalidContentError
from pairchat.store import LastMessage, Message, PublicUser


# =============================================================================
# Client -> server
# =============================================================================


class ClientEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    chatId: str = Field(..., min_length=1)


class JoinEvent(ClientEvent):
    type: Literal["join"]


class LeaveEvent(ClientEvent):
    type: Literal["leave"]


class SendMessageEvent(ClientEvent):
    type: Literal["send_message"]
    # Length and blank checks happen in the pipeline so both paths share them
    content: str


class TypingEvent(ClientEvent):
    type: Literal["typing"]
    isTyping: bool


class MarkSeenEvent(ClientEvent):
    type: Literal["mark_seen"]


InboundEvent = Annotated[
    Union[JoinEvent, LeaveEvent, SendMessageEvent, TypingEvent, MarkSeenEvent],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter = TypeAdapter(InboundEvent)


def parse_client_event(raw: Union[str, bytes]) -> InboundEvent:
    """Validate one inbound frame.

    Raises:
        InvalidContentError: If the frame is not JSON or does not match any
            known event kind exactly.
    """
    try:
        return _inbound_adapter.validate_json(raw)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ())) or "frame"
        raise InvalidContentError(
            f"Malformed event ({location}): {first.get('msg', 'invalid')}"
        ) from e


# =============================================================================
# Server -> client
# =============================================================================


class ServerEvent(BaseModel):
    def to_wire(self) -> dict:
        return self.model_dump(mode="json")


class ConnectedEvent(ServerEvent):
    type: Literal["connected"] = "connected"
    sessionId: str
    user: PublicUser


class JoinedEvent(ServerEvent):
    type: Literal["joined"] = "joined"
    chatId: str
    markedSeen: int = 0


class LeftEvent(ServerEvent):
    type: Literal["left"] = "left"
    chatId: str


class MessageReceivedEvent(ServerEvent):
    type: Literal["message_received"] = "message_received"
    message: Message


class ChatSummaryChangedEvent(ServerEvent):
    type: Literal["chat_summary_changed"] = "chat_summary_changed"
    chatId: str
    lastMessage: LastMessage
    updatedAt: datetime


class MessagesSeenEvent(ServerEvent):
    type: Literal["messages_seen"] = "messages_seen"
    chatId: str
    userId: str
    count: int


class UserOnlineEvent(ServerEvent):
    type: Literal["user_online"] = "user_online"
    userId: str
    email: Optional[str] = None


class UserOfflineEvent(ServerEvent):
    type: Literal["user_offline"] = "user_offline"
    userId: str
    lastSeen: datetime


class UserTypingEvent(ServerEvent):
    type: Literal["user_typing"] = "user_typing"
    chatId: str
    userId: str
    email: Optional[str] = None
    isTyping: bool


class OperationFailedEvent(ServerEvent):
    type: Literal["operation_failed"] = "operation_failed"
    code: str
    reason: str
    retryable: bool = False
    requestType: Optional[str] = None
    chatId: Optional[str] = None

    @classmethod
    def from_error(
        cls,
        error: ChatError,
        request_type: Optional[str] = None,
        chat_id: Optional[str] = None,
    ) -> "OperationFailedEvent":
        return cls(
            code=error.code,
            reason=error.message,
            retryable=error.retryable,
            requestType=request_type,
            chatId=chat_id,
        )
