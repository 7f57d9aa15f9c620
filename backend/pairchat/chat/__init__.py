"""Real-time messaging engine: sessions, rooms, presence and delivery.

Services:
    - ChatManager: Wires the engine together for one application.
    - SessionRegistry: Live sessions per user; source of presence.
    - RoomMembershipManager: Participant-only chat rooms.
    - MessagePipeline: Ordered persist-then-fan-out of messages.
    - ReconciliationService: Seen state and paginated history.
"""
from .manager import ChatManager
from .pipeline import MessagePipeline
from .reconciliation import ReconciliationService
from .rooms import RoomMembershipManager
from .session import Session, SessionRegistry

__all__ = [
    "ChatManager",
    "MessagePipeline",
    "ReconciliationService",
    "RoomMembershipManager",
    "Session",
    "SessionRegistry",
]
