"""FastAPI dependencies shared by the HTTP routers."""
from fastapi import Depends, Request

from pairchat.auth.service import bearer_token
from pairchat.chat.manager import ChatManager
from pairchat.store import User


def get_chat_manager(request: Request) -> ChatManager:
    return request.app.state.chat_manager


async def get_current_user(
    request: Request,
    manager: ChatManager = Depends(get_chat_manager),
) -> User:
    """Resolve the bearer credential on every request (raises UnauthorizedError)."""
    token = bearer_token(request.headers.get("authorization"))
    return await manager.authenticate(token)
