"""Auth router for profile and user directory endpoints.

Endpoints:
    GET /auth/me     - Current user's profile
    PUT /auth/me     - Update display name and/or avatar
    GET /auth/users  - Search verified users by email (excludes the caller)

Login itself (one-time codes, token minting) is handled by an external
collaborator; every route here only verifies the bearer credential.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from pairchat.chat.manager import ChatManager
from pairchat.dependencies import get_chat_manager, get_current_user
from pairchat.errors import NotFoundError
from pairchat.store import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

# Maximum number of users returned by a directory search
USER_SEARCH_LIMIT = 20


class ProfileUpdateRequest(BaseModel):
    """Request body for updating the caller's profile. Omitted fields are unchanged."""
    displayName: Optional[str] = None
    avatar: Optional[str] = None


@router.get("/me")
async def get_me(
    user: User = Depends(get_current_user),
    manager: ChatManager = Depends(get_chat_manager),
) -> dict:
    return {"user": manager.public_user(user).model_dump(mode="json")}


@router.put("/me")
async def update_me(
    body: ProfileUpdateRequest,
    user: User = Depends(get_current_user),
    manager: ChatManager = Depends(get_chat_manager),
) -> dict:
    """Update the caller's display name and/or avatar.

    An empty display name clears it, so the name falls back to the email's
    local part.
    """
    updated = await manager.store.update_profile(user.id, body.displayName, body.avatar)
    if updated is None:
        raise NotFoundError(f"User {user.id} not found")
    logger.info("Profile updated for %s", updated.email)
    return {"user": manager.public_user(updated).model_dump(mode="json")}


@router.get("/users")
async def search_users(
    search: Optional[str] = Query(None, description="Case-insensitive email fragment"),
    user: User = Depends(get_current_user),
    manager: ChatManager = Depends(get_chat_manager),
) -> dict:
    users = await manager.store.search_users(user.id, search, USER_SEARCH_LIMIT)
    return {"users": [manager.public_user(u).model_dump(mode="json") for u in users]}
