"""Pull path: chat listing and paginated message history over HTTP.

Clients use these routes to catch up after a reconnect before re-joining
rooms on the live channel. Errors are ``ChatError`` subclasses rendered by the
application's exception handler.
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from pairchat.dependencies import get_chat_manager, get_current_user
from pairchat.store import User

from .manager import ChatManager

logger = logging.getLogger(__name__)

router = APIRouter()


class OpenChatRequest(BaseModel):
    participantId: str


class PostMessageRequest(BaseModel):
    content: str


# =============================================================================
# Chats
# =============================================================================


@router.get("/chats")
async def list_chats(
    user: User = Depends(get_current_user),
    manager: ChatManager = Depends(get_chat_manager),
) -> JSONResponse:
    """List the caller's chats, most recently active first."""
    return JSONResponse(await manager.list_chats(user.id))


@router.post("/chats")
async def open_chat(
    body: OpenChatRequest,
    user: User = Depends(get_current_user),
    manager: ChatManager = Depends(get_chat_manager),
) -> JSONResponse:
    """Find or create the chat between the caller and ``participantId``."""
    chat = await manager.open_chat(user.id, body.participantId)
    return JSONResponse(await manager.describe_chat(chat, user.id))


@router.get("/chats/{chat_id}")
async def get_chat(
    chat_id: str,
    user: User = Depends(get_current_user),
    manager: ChatManager = Depends(get_chat_manager),
) -> JSONResponse:
    chat = await manager.get_chat(user.id, chat_id)
    return JSONResponse(await manager.describe_chat(chat, user.id))


# =============================================================================
# Messages
# =============================================================================


@router.get("/messages/{chat_id}")
async def get_message_history(
    chat_id: str,
    before: Optional[datetime] = Query(None, description="Cursor: only messages created before this time"),
    limit: Optional[int] = Query(None, description="Number of messages to return"),
    user: User = Depends(get_current_user),
    manager: ChatManager = Depends(get_chat_manager),
) -> JSONResponse:
    """Get one page of a chat's history, oldest first.

    Listing does not change seen state; use ``PUT /messages/{chat_id}/seen``.

    Args:
        chat_id: The chat ID.
        before: ISO-8601 cursor. Pass the ``createdAt`` of the oldest message
            the client holds to page backward. Omit for the newest page.
        limit: Maximum number of messages to return. Out-of-range values are
            clamped to ``messages.max_page_size`` (and at least 1); omitted
            means ``messages.default_page_size``.

    Returns:
        JSON with messages array and hasMore boolean (true when the page is full).

    Example:
        GET /messages/abc123?limit=50
        GET /messages/abc123?before=2024-02-07T16:00:00.123456&limit=50
    """
    page_size = manager.reconciliation.clamp_limit(limit)
    messages = await manager.list_messages(user.id, chat_id, before, page_size)
    return JSONResponse({
        "messages": [msg.model_dump(mode="json") for msg in messages],
        "hasMore": len(messages) == page_size,
    })


@router.post("/messages/{chat_id}")
async def post_message(
    chat_id: str,
    body: PostMessageRequest,
    user: User = Depends(get_current_user),
    manager: ChatManager = Depends(get_chat_manager),
) -> JSONResponse:
    """Send a message without a live session.

    The message goes through the same pipeline as ``send_message`` on the
    live channel, so joined sessions receive it as well.
    """
    message = await manager.send_message(user.id, chat_id, body.content)
    return JSONResponse(message.model_dump(mode="json"), status_code=201)


@router.put("/messages/{chat_id}/seen")
async def mark_messages_seen(
    chat_id: str,
    user: User = Depends(get_current_user),
    manager: ChatManager = Depends(get_chat_manager),
) -> JSONResponse:
    count = await manager.mark_seen(user.id, chat_id)
    return JSONResponse({"markedCount": count})
