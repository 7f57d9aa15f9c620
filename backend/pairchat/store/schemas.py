"""Pydantic records persisted by the durable store.

Field names are camelCase because these records are sent to clients as-is
(``model_dump(mode="json")``) on both the live channel and the pull path.
All timestamps are naive UTC datetimes.
"""
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (the store's timestamp format)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalise a client-supplied datetime to naive UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class User(BaseModel):
    """A user account.

    Attributes:
        id: Unique user ID.
        email: Lower-cased email address (unique).
        displayName: Optional name chosen by the user.
        avatar: Avatar URL or data URI (empty when unset).
        isVerified: Whether the credential collaborator verified this user.
        isOnline: Last presence state written by the presence subsystem.
        lastSeen: When the user's last session ended (or first connected).
        createdAt: Account creation time.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    email: str
    displayName: Optional[str] = None
    avatar: str = ""
    isVerified: bool = False
    isOnline: bool = False
    lastSeen: datetime = Field(default_factory=utcnow)
    createdAt: datetime = Field(default_factory=utcnow)

    @property
    def name(self) -> str:
        if self.displayName:
            return self.displayName
        return self.email.split("@")[0]


class PublicUser(BaseModel):
    """User profile as exposed to other users."""
    id: str
    email: str
    displayName: str
    avatar: str = ""
    isVerified: bool
    isOnline: bool
    lastSeen: datetime
    createdAt: datetime

    @classmethod
    def from_user(cls, user: User, is_online: Optional[bool] = None) -> "PublicUser":
        return cls(
            id=user.id,
            email=user.email,
            displayName=user.name,
            avatar=user.avatar,
            isVerified=user.isVerified,
            isOnline=user.isOnline if is_online is None else is_online,
            lastSeen=user.lastSeen,
            createdAt=user.createdAt,
        )


class LastMessage(BaseModel):
    """Denormalised snapshot of a chat's newest message."""
    content: str
    senderId: str
    createdAt: datetime


class Chat(BaseModel):
    """A two-party conversation.

    ``participants`` is always the sorted pair of user IDs, which is what makes
    the pair unique regardless of who opened the chat.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    participants: List[str]
    lastMessage: Optional[LastMessage] = None
    updatedAt: datetime = Field(default_factory=utcnow)
    createdAt: datetime = Field(default_factory=utcnow)

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.participants

    def other_participant(self, user_id: str) -> Optional[str]:
        for participant in self.participants:
            if participant != user_id:
                return participant
        return None


class Message(BaseModel):
    """A persisted chat message."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    chatId: str
    senderId: str
    content: str
    seen: bool = False
    seenAt: Optional[datetime] = None
    createdAt: datetime = Field(default_factory=utcnow)

    def snapshot(self) -> LastMessage:
        return LastMessage(
            content=self.content,
            senderId=self.senderId,
            createdAt=self.createdAt,
        )
