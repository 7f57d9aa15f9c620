"""Durable store: DuckDB persistence plus a time-bounded async gateway."""
from .gateway import StoreGateway
from .schemas import Chat, LastMessage, Message, PublicUser, User
from .service import ChatStore

__all__ = [
    "Chat",
    "ChatStore",
    "LastMessage",
    "Message",
    "PublicUser",
    "StoreGateway",
    "User",
]
