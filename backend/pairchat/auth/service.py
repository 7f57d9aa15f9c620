"""Bearer credential verification.

Credentials are HS256 JWTs minted by the external one-time-code login flow
with ``sub`` set to the user ID. This module only verifies them; ``issue``
exists so the login collaborator (and the tests) share one signing setup.
"""
import logging
import time
from typing import Optional

import jwt

from pairchat.errors import UnauthorizedError
from pairchat.store import StoreGateway, User

logger = logging.getLogger(__name__)


class TokenService:
    """Signs and verifies session credentials."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        expire_minutes: int = 60 * 24 * 7,
    ) -> None:
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes

    def issue(self, user_id: str, expire_minutes: Optional[int] = None) -> str:
        now = int(time.time())
        ttl = self.expire_minutes if expire_minutes is None else expire_minutes
        claims = {"sub": user_id, "iat": now, "exp": now + ttl * 60}
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def verify(self, token: Optional[str]) -> str:
        """Return the user ID a credential is bound to.

        Raises:
            UnauthorizedError: If the token is absent, malformed, forged or expired.
        """
        if not token:
            raise UnauthorizedError("Authentication required")
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            raise UnauthorizedError("Token expired")
        except jwt.InvalidTokenError as e:
            logger.debug("JWT verification failed: %s", e)
            raise UnauthorizedError("Invalid token")
        return str(payload["sub"])

    async def authenticate(self, token: Optional[str], store: StoreGateway) -> User:
        """Resolve a credential to a verified user or raise UnauthorizedError."""
        user_id = self.verify(token)
        user = await store.get_user(user_id)
        if user is None:
            raise UnauthorizedError("User not found")
        if not user.isVerified:
            raise UnauthorizedError("User not verified")
        return user


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
