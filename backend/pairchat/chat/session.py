"""Live sessions and the session registry.

A ``Session`` is one authenticated WebSocket connection. A user may hold
several at once (multi-device). The ``SessionRegistry`` maps each identity to
its live sessions and is the source of truth for presence: the first session
of an identity flips it online, removing the last one flips it offline.

Thread Safety:
    Designed for a single event loop. The maps are only mutated between
    awaits, so readers (fan-out target lookups) always see a consistent
    snapshot. Presence transitions for one identity are serialised with a
    per-identity lock so online/offline notifications never reorder.
"""
import asyncio
import logging
import uuid
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol, Set

from pairchat.store import PublicUser, User
from pairchat.store.schemas import utcnow

from .locks import KeyedLocks

logger = logging.getLogger(__name__)


class Session:
    """One live connection bound to a verified user."""

    def __init__(self, websocket, user: User, send_timeout: float = 5.0) -> None:
        self.id = str(uuid.uuid4())
        self.websocket = websocket
        self.user = user
        self.send_timeout = send_timeout
        self.connected_at = utcnow()
        self.closed = False
        # Outbound frames for one socket must not interleave
        self._send_lock = asyncio.Lock()

    @property
    def user_id(self) -> str:
        return self.user.id

    def public_user(self) -> PublicUser:
        return PublicUser.from_user(self.user, is_online=True)

    async def send(self, event: dict) -> bool:
        """Send one event, returning False instead of raising if the socket is gone.

        A send that takes longer than ``send_timeout`` marks the session
        closed, so a stalled peer cannot hold up fan-out to everyone else.
        """
        if self.closed:
            return False
        try:
            async with self._send_lock:
                if self.closed:
                    return False
                await asyncio.wait_for(
                    self.websocket.send_json(event), timeout=self.send_timeout
                )
            return True
        except asyncio.TimeoutError:
            logger.warning(
                "Session %s stalled for %.2fs on send, closing it",
                self.id, self.send_timeout,
            )
            self.closed = True
            return False
        except Exception as e:
            logger.debug("Failed to send to session %s: %s", self.id, e)
            return False

    def __repr__(self) -> str:
        return f"Session(id={self.id!r}, user={self.user_id!r})"


async def fan_out(sessions: Iterable[Session], event: dict) -> int:
    """Deliver ``event`` to every session concurrently.

    Sends to closed connections are dropped; the session's own handler
    performs the cleanup when it notices the disconnect.

    Returns:
        Number of sessions the event reached.
    """
    targets = list(sessions)
    if not targets:
        return 0
    results = await asyncio.gather(
        *[session.send(event) for session in targets],
        return_exceptions=True,
    )
    return sum(1 for ok in results if ok is True)


class PresenceListener(Protocol):
    async def on_connect(self, user_id: str, origin: Session) -> None: ...

    async def on_disconnect(self, user_id: str, last_seen: datetime) -> None: ...


class SessionRegistry:
    """Identity -> live sessions."""

    def __init__(self, listener: Optional[PresenceListener] = None) -> None:
        self.listener = listener
        self._sessions: Dict[str, Set[Session]] = {}
        self._locks = KeyedLocks()

    async def register(self, session: Session) -> bool:
        """Add a session; returns True if it brought its user online."""
        user_id = session.user_id
        async with self._locks.hold(user_id):
            sessions = self._sessions.setdefault(user_id, set())
            first = not sessions
            sessions.add(session)
            logger.info(
                "[Registry] Session %s registered for %s (%d live)",
                session.id, user_id, len(sessions),
            )
            if first and self.listener is not None:
                await self.listener.on_connect(user_id, session)
        return first

    async def unregister(self, session: Session) -> bool:
        """Remove a session; returns True if it took its user offline.

        Unknown sessions are ignored so cleanup can run more than once.
        """
        user_id = session.user_id
        async with self._locks.hold(user_id):
            sessions = self._sessions.get(user_id)
            if not sessions or session not in sessions:
                return False
            sessions.discard(session)
            logger.info(
                "[Registry] Session %s unregistered for %s (%d live)",
                session.id, user_id, len(sessions),
            )
            if sessions:
                return False
            del self._sessions[user_id]
            if self.listener is not None:
                await self.listener.on_disconnect(user_id, utcnow())
        return True

    def sessions_for(self, user_id: str) -> Set[Session]:
        return set(self._sessions.get(user_id, ()))

    def is_online(self, user_id: str) -> bool:
        return bool(self._sessions.get(user_id))

    def all_sessions(self) -> List[Session]:
        return [s for sessions in self._sessions.values() for s in sessions]

    def online_users(self) -> List[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return sum(len(sessions) for sessions in self._sessions.values())
