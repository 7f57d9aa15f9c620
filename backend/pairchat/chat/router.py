"""Live channel: the WebSocket endpoint.

Protocol Flow:
    1. Client connects to /ws?token=<credential> (or sends an
       ``Authorization: Bearer`` header). Missing, invalid, expired or
       unverified credentials close the socket with 1008 before it is
       accepted, so no session is ever created.
       → Other sessions receive: {type: "user_online"} if this is the user's
         first live session
       → Server sends: {type: "connected", sessionId, user}
    2. Client sends: {type: "join", chatId}
       → Server sends: {type: "joined", chatId, markedSeen}
       → Other room members receive: {type: "messages_seen"} if anything
         was unseen
    3. Client sends: {type: "send_message", chatId, content}
       → Room members receive: {type: "message_received", message}
       → Every session of both participants receives:
         {type: "chat_summary_changed", chatId, lastMessage, updatedAt}
    4. Client sends: {type: "typing", chatId, isTyping}
       → The other participant's room sessions receive: {type: "user_typing"}
    5. Client sends: {type: "mark_seen", chatId}
       → Other room members receive: {type: "messages_seen"}
    6. Client sends: {type: "leave", chatId} → Server sends: {type: "left"}
    7. On disconnect the session leaves all rooms; if it was the user's last
       session every other session receives {type: "user_offline", lastSeen}.

Any rejected request is answered with {type: "operation_failed", code,
reason} to the requesting session only; the connection stays open. A session
whose outbound sends stall longer than ``server.send_timeout_seconds`` is
dropped and closed with 1011.
"""
import asyncio
import logging
from typing import Optional, Union

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from pairchat.auth.service import bearer_token
from pairchat.errors import ChatError, StoreUnavailableError, UnauthorizedError

from .events import (
    ConnectedEvent,
    JoinedEvent,
    LeftEvent,
    OperationFailedEvent,
    parse_client_event,
)
from .manager import ChatManager
from .session import Session

logger = logging.getLogger(__name__)

router = APIRouter()

# Close codes (RFC 6455)
POLICY_VIOLATION = 1008
INTERNAL_ERROR = 1011


@router.websocket("/ws")
async def websocket_chat_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None, description="Bearer credential"),
) -> None:
    """WebSocket endpoint for one live session.

    Args:
        websocket: The WebSocket connection.
        token: Credential from the query string; falls back to the
            Authorization header.
    """
    manager: ChatManager = websocket.app.state.chat_manager
    credential = token or bearer_token(websocket.headers.get("authorization"))

    try:
        user = await manager.authenticate(credential)
    except UnauthorizedError as e:
        logger.warning("[WS] Handshake rejected: %s", e.message)
        await websocket.close(code=POLICY_VIOLATION)
        return
    except StoreUnavailableError as e:
        logger.error("[WS] Handshake aborted, store unavailable: %s", e.message)
        await websocket.close(code=INTERNAL_ERROR)
        return

    await websocket.accept()
    session = await manager.open_session(websocket, user)
    logger.info(
        "[WS] Session %s connected for %s (%d live sessions)",
        session.id, user.email, len(manager.registry),
    )

    fault = False
    dropped = False
    try:
        await session.send(
            ConnectedEvent(sessionId=session.id, user=session.public_user()).to_wire()
        )

        # Main message loop
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
            raw = frame.get("text")
            if raw is None:
                raw = frame.get("bytes") or b""
            await _handle_frame(manager, session, raw)
            if session.closed:
                # Outbound sends stalled and the session was dropped
                dropped = True
                break

    except WebSocketDisconnect:
        pass
    except Exception:
        fault = True
        logger.exception("[WS] Internal fault in session %s, disconnecting", session.id)
    finally:
        await manager.close_session(session)
        logger.info("[WS] Session %s for %s closed", session.id, user.email)

    if fault or dropped:
        try:
            await asyncio.wait_for(
                websocket.close(code=INTERNAL_ERROR), timeout=session.send_timeout
            )
        except Exception as e:
            logger.debug("[WS] Close after fault failed: %s", e)


async def _handle_frame(
    manager: ChatManager, session: Session, raw: Union[str, bytes]
) -> None:
    """Dispatch one client frame; ChatErrors become operation_failed events."""
    request_type = None
    chat_id = None
    try:
        event = parse_client_event(raw)
        request_type, chat_id = event.type, event.chatId
        logger.debug("[WS] Session %s received: type=%s chat=%s", session.id, request_type, chat_id)

        # --- Handle JOIN (participant check, then seen reconciliation) ---
        if event.type == "join":
            marked = await manager.join(session, chat_id)
            await session.send(JoinedEvent(chatId=chat_id, markedSeen=marked).to_wire())
            return

        # --- Handle LEAVE (always allowed) ---
        if event.type == "leave":
            manager.leave(session, chat_id)
            await session.send(LeftEvent(chatId=chat_id).to_wire())
            return

        # --- Handle SEND_MESSAGE ---
        if event.type == "send_message":
            await manager.send_message(session.user_id, chat_id, event.content)
            return

        # --- Handle TYPING indicator (fire-and-forget) ---
        if event.type == "typing":
            await manager.set_typing(session, chat_id, event.isTyping)
            return

        # --- Handle MARK_SEEN ---
        if event.type == "mark_seen":
            await manager.mark_seen(session.user_id, chat_id, origin=session)
            return

    except ChatError as e:
        logger.info(
            "[WS] %s from %s rejected (%s): %s",
            request_type or "frame", session.user_id, e.code, e.message,
        )
        await session.send(
            OperationFailedEvent.from_error(e, request_type, chat_id).to_wire()
        )
