"""Error taxonomy shared by the live channel and the pull path.

Every error carries a stable ``code`` (sent to WebSocket clients in
``operation_failed`` events) and an HTTP ``status_code`` (used by the
FastAPI exception handler).
"""
from typing import Optional


class ChatError(Exception):
    """Base exception for chat errors."""
    code = "internal"
    status_code = 500
    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class UnauthorizedError(ChatError):
    """Raised when a credential is missing, invalid, expired or unverified."""
    code = "unauthorized"
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class NotParticipantError(UnauthorizedError):
    """Raised when acting on a chat the caller does not belong to."""
    status_code = 403

    def __init__(self, chat_id: str, message: Optional[str] = None):
        self.chat_id = chat_id
        super().__init__(message or f"Not a participant of chat {chat_id}")


class InvalidContentError(ChatError):
    """Raised for empty, over-length or malformed client input."""
    code = "invalid_content"
    status_code = 400


class NotFoundError(ChatError):
    """Raised when a chat or user does not exist."""
    code = "not_found"
    status_code = 404


class StoreUnavailableError(ChatError):
    """Raised when the durable store times out or fails. Safe to retry."""
    code = "store_unavailable"
    status_code = 503
    retryable = True
